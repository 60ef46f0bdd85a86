"""
Models for a ready-to-start service: the container to create, how to tell it
is ready and what to do once it is.
"""
import threading
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Callable, Dict, Optional

from .container_spec import ContainerSpec
from .runtime_handle import ExecResult, RuntimeHandle
from .wait_condition import PortWait, WaitCondition

if TYPE_CHECKING:
    from ..RUNTIME.gateway import RuntimeGateway


@dataclass(frozen=True)
class HookContext:
    """
    What a post-start hook gets to work with: the live handle, the runtime
    the container runs on and the caller's cancellation signal.
    """

    handle: RuntimeHandle
    gateway: "RuntimeGateway"
    cancel_event: Optional[threading.Event] = None

    def exec(self, *command: str) -> ExecResult:
        return self.gateway.exec(self.handle.container_id, list(command))

    def logs(self) -> str:
        return self.gateway.logs(self.handle.container_id)


PostStartHook = Callable[[HookContext], None]


@dataclass(frozen=True)
class ServiceDefinition:
    """
    The full definition of a disposable service, as produced by a provider.
    """

    name: str
    spec: ContainerSpec
    wait_condition: WaitCondition = field(default_factory=PortWait)
    post_start: Optional[PostStartHook] = None
    # free-form service facts (credentials, driver names, ...)
    metadata: Dict[str, str] = field(default_factory=dict)

    def with_wait(self, condition: WaitCondition) -> "ServiceDefinition":
        return replace(self, wait_condition=condition)

    def with_post_start(self, hook: Optional[PostStartHook]) -> "ServiceDefinition":
        return replace(self, post_start=hook)

    def with_spec(self, spec: ContainerSpec) -> "ServiceDefinition":
        return replace(self, spec=spec)
