# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Lifecycle management for a single disposable container: create, start,
resolve ports, wait until ready, run the post-start hook and tear down.
"""
import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

import structlog

from ..config import EphemSettings, get_settings
from ..MODELS.container_spec import ContainerSpec, MountMode
from ..MODELS.errors import (
    CreationError,
    LifecycleStateError,
    ReadinessTimeoutError,
    ResourceMappingError,
    StartError,
    StartupCancelledError,
    StartupError,
)
from ..MODELS.runtime_handle import AttemptRecord, LifecycleState, RuntimeHandle
from ..MODELS.service_definition import HookContext, PostStartHook, ServiceDefinition
from ..MODELS.wait_condition import PortWait, WaitCondition
from ..RUNTIME.gateway import RuntimeGateway
from ..UTILS.signals import CancelSignal
from .environment_manager import EnvironmentManager
from .resource_mapper import ResourceMapper
from .wait_engine import WaitStrategyEngine

logger = structlog.get_logger(__name__)

_RESTARTABLE = (
    LifecycleState.UNSTARTED,
    LifecycleState.STOPPED,
    LifecycleState.FAILED,
)


@dataclass
class _AttemptResult:
    """Outcome of one pass through create, start, map and wait."""

    handle: Optional[RuntimeHandle] = None
    error: Optional[StartupError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LifecycleController:
    """
    Drives one container through its startup state machine.

    Phases always run in the order creating, starting, awaiting_ready, hook,
    ready. Creation, start, port mapping and readiness failures share one
    attempt budget; every attempt uses a freshly created container and the
    container of a failed attempt is removed before the next one. Hook
    failures are not retried.

    Usage:
        controller = LifecycleController(DockerGateway())
        handle = controller.start(spec, PortWait())
        ...
        controller.stop()
    """

    def __init__(
        self,
        gateway: RuntimeGateway,
        settings: Optional[EphemSettings] = None,
        base_dir: str = ".",
        wait_engine: Optional[WaitStrategyEngine] = None,
        resource_mapper: Optional[ResourceMapper] = None,
    ):
        """
        Initializes the controller.

        Args:
            gateway: Runtime the container is created on.
            settings: Defaults for attempts and waiting.
            base_dir: Directory relative env files are resolved against.
            wait_engine: Readiness poller; built from ``gateway`` if omitted.
            resource_mapper: Port resolver; a default one if omitted.
        """
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.env_manager = EnvironmentManager(base_dir)
        self.wait_engine = wait_engine or WaitStrategyEngine(gateway, self.settings)
        self.resource_mapper = resource_mapper or ResourceMapper()

        self._lock = threading.Lock()
        self._state = LifecycleState.UNSTARTED
        self._container_id: Optional[str] = None
        self._handle: Optional[RuntimeHandle] = None
        self._attempts: List[AttemptRecord] = []
        self._stop_requested = threading.Event()

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def attempts(self) -> Tuple[AttemptRecord, ...]:
        """Records of the attempts made by the latest ``start()``."""
        return tuple(self._attempts)

    @property
    def handle(self) -> RuntimeHandle:
        """
        The live handle.

        Raises:
            LifecycleStateError: Unless the container is ready.
        """
        if self._state != LifecycleState.READY or self._handle is None:
            raise LifecycleStateError(f"Container is not ready (state: {self._state.value})")
        return self._handle

    def get_mapped_port(self, port: int) -> int:
        return self.handle.get_mapped_port(port)

    def get_host_address(self) -> str:
        return self.handle.get_host_address()

    def launch(
        self,
        definition: ServiceDefinition,
        attempts: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RuntimeHandle:
        """Start the container described by a provider's service definition."""
        return self.start(
            definition.spec,
            definition.wait_condition,
            attempts=attempts,
            post_start=definition.post_start,
            cancel_event=cancel_event,
        )

    def start(
        self,
        spec: ContainerSpec,
        wait_condition: Optional[WaitCondition] = None,
        attempts: Optional[int] = None,
        post_start: Optional[PostStartHook] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RuntimeHandle:
        """
        Bring a container from ``spec`` to the ready state.

        Args:
            spec: The container to run.
            wait_condition: Readiness condition; TCP connect on every declared
                port by default.
            attempts: Startup attempt budget; ``spec.startup_attempts`` or, if
                neither is set, ``settings.startup_attempts``.
            post_start: Called once the container is ready, before the handle
                is returned (e.g. to run an init script).
            cancel_event: Set by the caller to abort startup; the container is
                torn down before ``StartupCancelledError`` is raised.

        Returns:
            The handle of the ready container.

        Raises:
            CreationError, StartError, ReadinessTimeoutError: The error of the
                last attempt once the budget is exhausted.
            StartupCancelledError: If ``cancel_event`` was set or ``stop()`` was
                called meanwhile.
            LifecycleStateError: If this controller is already running a container.
        """
        if attempts is not None:
            budget = attempts
        elif spec.startup_attempts is not None:
            budget = spec.startup_attempts
        else:
            budget = self.settings.startup_attempts
        if budget < 1:
            raise ValueError(f"attempts must be at least 1, got {budget}")
        with self._lock:
            if self._state not in _RESTARTABLE:
                raise LifecycleStateError(
                    f"Cannot start: controller is {self._state.value}; stop it first"
                )
            self._stop_requested.clear()

        wait_condition = wait_condition or PortWait()
        cancel = CancelSignal(cancel_event, self._stop_requested)
        log = logger.bind(image=spec.image)
        self._attempts = []

        try:
            resolved = self.env_manager.resolve(spec)
        except (OSError, ValueError) as e:
            self._state = self._failed_state()
            raise CreationError(f"Could not resolve environment for {spec.image}: {e}") from e

        try:
            result = _AttemptResult(error=StartupError("No startup attempt was made"))
            for attempt in range(1, budget + 1):
                log.info("Starting container", attempt=attempt, of=budget)
                result = self._attempt(resolved, wait_condition, attempt, cancel)
                if result.ok or isinstance(result.error, StartupCancelledError):
                    break
                if attempt < budget:
                    log.warning(
                        "Startup attempt failed, retrying with a fresh container",
                        attempt=attempt,
                        error=str(result.error),
                    )

            if not result.ok:
                log.error("Container failed to start", attempts=len(self._attempts), error=str(result.error))
                raise result.error

            handle = result.handle
            if post_start is not None:
                log.debug("Running post-start hook", container_id=handle.container_id[:12])
                post_start(HookContext(handle=handle, gateway=self.gateway, cancel_event=cancel))

            with self._lock:
                stopped = self._stop_requested.is_set()
                if not stopped:
                    self._handle = handle
                    self._state = LifecycleState.READY
            if stopped:
                raise StartupCancelledError(
                    "Controller was stopped while starting", len(self._attempts), handle.container_id
                )

        except BaseException:
            self._teardown()
            self._state = self._failed_state()
            raise

        log.info(
            "Container ready",
            container_id=handle.container_id[:12],
            host=handle.host_address,
            ports=dict(handle.ports),
        )
        return handle

    def stop(self) -> None:
        """
        Stop and remove the container. Safe to call in any state, more than
        once and from another thread while ``start()`` is running, which then
        raises ``StartupCancelledError``. Teardown errors are logged, never
        raised.
        """
        with self._lock:
            self._stop_requested.set()
        self._teardown()
        self._state = LifecycleState.STOPPED

    def __enter__(self) -> "LifecycleController":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def _attempt(
        self,
        spec: ContainerSpec,
        wait_condition: WaitCondition,
        attempt: int,
        cancel_event: CancelSignal,
    ) -> _AttemptResult:
        """
        One pass through the startup phases. Failures come back as values so
        the retry loop can inspect them.
        """
        container_id = None
        phase = LifecycleState.CREATING
        try:
            self._check_cancelled(cancel_event, attempt)

            self._enter(LifecycleState.CREATING, attempt)
            try:
                container_id = self.gateway.create(spec)
                with self._lock:
                    self._container_id = container_id
                self._copy_resources(spec, container_id)
            except Exception as e:
                return self._failed(
                    attempt, phase, container_id,
                    CreationError(f"Could not create container from {spec.image}: {e}", attempt, container_id),
                    e,
                )

            self._check_cancelled(cancel_event, attempt, container_id)

            phase = LifecycleState.STARTING
            self._enter(LifecycleState.STARTING, attempt, container_id)
            try:
                self.gateway.start(container_id)
            except Exception as e:
                return self._failed(
                    attempt, phase, container_id,
                    StartError(f"Could not start container: {e}", attempt, container_id),
                    e,
                )

            try:
                info = self.gateway.inspect(container_id)
                handle = self.resource_mapper.resolve(spec, info)
            except Exception as e:
                return self._failed(
                    attempt, phase, container_id,
                    ResourceMappingError(f"Could not resolve container resources: {e}", attempt, container_id),
                    e,
                )

            self._check_cancelled(cancel_event, attempt, container_id)

            phase = LifecycleState.AWAITING_READY
            self._enter(LifecycleState.AWAITING_READY, attempt, container_id)
            outcome = self.wait_engine.wait(handle, wait_condition, cancel_event)
            if not outcome.ready:
                return self._failed(
                    attempt, phase, container_id,
                    ReadinessTimeoutError(
                        f"Timed out after {outcome.elapsed:.1f}s waiting for "
                        f"{wait_condition.describe()}; last observed: {outcome.last_probe.detail}",
                        attempt,
                        container_id,
                        last_observation=outcome.last_probe.detail,
                        elapsed=outcome.elapsed,
                    ),
                )

        except StartupCancelledError as e:
            return self._failed(
                attempt, phase, container_id,
                StartupCancelledError(f"Startup cancelled while {phase.value}", attempt, container_id),
                e,
            )

        self._attempts.append(AttemptRecord(number=attempt, phase=LifecycleState.READY, container_id=container_id))
        return _AttemptResult(handle=handle)

    def _failed(
        self,
        attempt: int,
        phase: LifecycleState,
        container_id: Optional[str],
        error: StartupError,
        cause: Optional[BaseException] = None,
    ) -> _AttemptResult:
        if cause is not None:
            error.__cause__ = cause
        self._attempts.append(
            AttemptRecord(number=attempt, phase=phase, container_id=container_id, error=error)
        )
        # the container of a failed attempt is never reused
        self._teardown()
        self._state = self._failed_state()
        return _AttemptResult(error=error)

    def _enter(self, state: LifecycleState, attempt: int, container_id: Optional[str] = None) -> None:
        self._state = state
        logger.debug(
            "Lifecycle state changed",
            state=state.value,
            attempt=attempt,
            container_id=container_id[:12] if container_id else None,
        )

    def _failed_state(self) -> LifecycleState:
        # a stop() from another thread wins over the failure it caused
        if self._stop_requested.is_set():
            return LifecycleState.STOPPED
        return LifecycleState.FAILED

    def _copy_resources(self, spec: ContainerSpec, container_id: str) -> None:
        for mount in spec.mounts:
            if mount.mode == MountMode.COPY:
                logger.debug("Copying resource", source=mount.source, target=mount.target)
                self.gateway.copy_file_in(container_id, mount.source, mount.target)

    @staticmethod
    def _check_cancelled(
        cancel_event: CancelSignal,
        attempt: int,
        container_id: Optional[str] = None,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise StartupCancelledError("Startup cancelled", attempt, container_id)

    def _teardown(self) -> None:
        with self._lock:
            container_id = self._container_id
            self._container_id = None
            self._handle = None
        if container_id is None:
            return
        try:
            self.gateway.stop(container_id)
            logger.info("Container stopped", container_id=container_id[:12])
        except Exception as e:
            logger.warning("Failed to stop container", container_id=container_id[:12], error=str(e))
