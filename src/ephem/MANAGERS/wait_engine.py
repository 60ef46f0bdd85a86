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
Readiness polling for started containers: TCP connectability, log output,
in-container commands and caller-supplied predicates.
"""
import re
import threading
import time
from typing import Callable, Optional

import structlog
from tenacity import Retrying, retry_if_result, stop_after_delay

from ..config import EphemSettings, get_settings
from ..MODELS.errors import InvalidWaitConditionError, PortNotMappedError, StartupCancelledError
from ..MODELS.runtime_handle import RuntimeHandle
from ..MODELS.wait_condition import (
    ExecWait,
    LogWait,
    PortWait,
    PredicateWait,
    Probe,
    WaitCondition,
    WaitOutcome,
)
from ..RUNTIME.gateway import RuntimeGateway
from ..UTILS.port_finder import is_port_open

logger = structlog.get_logger(__name__)


class WaitStrategyEngine:
    """
    Polls a wait condition until it holds or its timeout elapses.

    Elapsed time is measured on the monotonic clock; the last sleep is
    shortened so that the final poll happens no later than the deadline.
    """

    def __init__(self, gateway: RuntimeGateway, settings: Optional[EphemSettings] = None):
        """
        Initializes the wait engine.

        Args:
            gateway: Runtime used for log and exec probes.
            settings: Source of default timeout and poll interval.
        """
        self.gateway = gateway
        self.settings = settings or get_settings()

    def wait(
        self,
        handle: RuntimeHandle,
        condition: WaitCondition,
        cancel_event: Optional[threading.Event] = None,
    ) -> WaitOutcome:
        """
        Wait for ``condition`` to hold for the container behind ``handle``.

        Args:
            handle: Resolved coordinates of the started container.
            condition: The readiness condition.
            cancel_event: Set by the caller to abort the wait.

        Returns:
            The outcome; ``ready`` is False when the timeout elapsed.

        Raises:
            StartupCancelledError: If ``cancel_event`` was set.
            PortNotMappedError: If a PortWait names an undeclared port.
            InvalidWaitConditionError: If a LogWait pattern does not compile.
        """
        timeout = condition.timeout if condition.timeout is not None else self.settings.wait_timeout
        interval = condition.interval if condition.interval is not None else self.settings.poll_interval

        if isinstance(condition, PortWait) and condition.ports:
            for port in condition.ports:
                if port not in handle.ports:
                    raise PortNotMappedError(port, handle.declared_ports)
        if isinstance(condition, LogWait):
            try:
                re.compile(condition.pattern, re.MULTILINE)
            except re.error as e:
                raise InvalidWaitConditionError(
                    f"Invalid log pattern /{condition.pattern}/: {e}"
                ) from e

        polls = 0
        started = time.monotonic()

        def poll() -> Probe:
            nonlocal polls
            if cancel_event is not None and cancel_event.is_set():
                raise StartupCancelledError("Wait cancelled", container_id=handle.container_id)
            polls += 1
            probe = self.probe(handle, condition, interval)
            logger.debug(
                "Readiness probe",
                container_id=handle.container_id[:12],
                condition=condition.describe(),
                ready=probe.ready,
                detail=probe.detail,
            )
            return probe

        def remaining_interval(retry_state) -> float:
            return max(0.0, min(interval, timeout - retry_state.seconds_since_start))

        retrying = Retrying(
            stop=stop_after_delay(timeout),
            wait=remaining_interval,
            retry=retry_if_result(lambda probe: not probe.ready),
            sleep=self._sleeper(cancel_event, handle),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            reraise=True,
        )
        probe = retrying(poll)

        return WaitOutcome(
            ready=probe.ready,
            elapsed=time.monotonic() - started,
            polls=polls,
            last_probe=probe,
        )

    def probe(self, handle: RuntimeHandle, condition: WaitCondition, interval: float = 1.0) -> Probe:
        """
        Evaluate ``condition`` once. Never raises; failures are reported as
        a not-ready probe.
        """
        try:
            if isinstance(condition, PortWait):
                return self._probe_ports(handle, condition, interval)
            if isinstance(condition, LogWait):
                return self._probe_logs(handle, condition)
            if isinstance(condition, ExecWait):
                return self._probe_exec(handle, condition)
            if isinstance(condition, PredicateWait):
                return self._probe_predicate(handle, condition)
        except Exception as e:
            return Probe(ready=False, detail=f"{type(e).__name__}: {e}")
        raise TypeError(f"Unknown wait condition: {condition!r}")

    def _probe_ports(self, handle: RuntimeHandle, condition: PortWait, interval: float) -> Probe:
        connect_timeout = min(1.0, max(interval, 0.1))
        ports = condition.ports or handle.declared_ports
        for port in ports:
            host_port = handle.get_mapped_port(port)
            if not is_port_open(handle.host_address, host_port, timeout=connect_timeout):
                return Probe(
                    ready=False,
                    detail=f"{handle.host_address}:{host_port} (container port {port}) refused",
                )
        return Probe(ready=True, detail=f"ports {list(ports)} accepting connections")

    def _probe_logs(self, handle: RuntimeHandle, condition: LogWait) -> Probe:
        output = self.gateway.logs(handle.container_id)
        matches = len(re.compile(condition.pattern, re.MULTILINE).findall(output))
        lines = output.strip().splitlines()
        last_line = lines[-1] if lines else "<no output>"
        return Probe(
            ready=matches >= condition.times,
            detail=f"{matches}/{condition.times} matches, last line: {last_line[:200]}",
        )

    def _probe_exec(self, handle: RuntimeHandle, condition: ExecWait) -> Probe:
        result = self.gateway.exec(handle.container_id, list(condition.command))
        return Probe(
            ready=result.succeeded,
            detail=f"exit code {result.exit_code}: {result.output.strip()[:200]}",
        )

    def _probe_predicate(self, handle: RuntimeHandle, condition: PredicateWait) -> Probe:
        ready = bool(condition.check(handle))
        return Probe(ready=ready, detail=f"{condition.describe()} returned {ready}")

    @staticmethod
    def _sleeper(
        cancel_event: Optional[threading.Event], handle: RuntimeHandle
    ) -> Callable[[float], None]:
        """Sleep that wakes up as soon as the cancellation event is set."""
        event = cancel_event or threading.Event()

        def sleep(seconds: float) -> None:
            if event.wait(seconds):
                raise StartupCancelledError("Wait cancelled", container_id=handle.container_id)

        return sleep
