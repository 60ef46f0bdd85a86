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
Error hierarchy for container startup, script execution and provider lookup.

Startup errors carry the phase in which the failure happened, the attempt
number and the container identity used by that attempt, so that a caller
can tell an environmental failure (timeout) from a configuration one
(bad image, bad script).
"""
from typing import Optional


class EphemError(Exception):
    """Base class for all errors raised by ephem."""


class RuntimeGatewayError(EphemError):
    """The container runtime rejected or failed an operation."""


class LifecycleStateError(EphemError):
    """An operation was requested in a lifecycle state that does not allow it."""


class PortNotMappedError(EphemError, LookupError):
    """A port was requested that the container does not declare."""

    def __init__(self, port: int, declared=()):
        self.port = port
        self.declared = tuple(declared)
        super().__init__(
            f"Port {port} is not exposed by this container "
            f"(declared: {', '.join(str(p) for p in self.declared) or 'none'})"
        )


class StartupError(EphemError):
    """
    Base class for failures that prevent a container from becoming ready.
    """

    phase = "startup"

    def __init__(
        self,
        message: str,
        attempt: Optional[int] = None,
        container_id: Optional[str] = None,
    ):
        self.attempt = attempt
        self.container_id = container_id
        super().__init__(message)

    def __str__(self) -> str:
        details = [f"phase={self.phase}"]
        if self.attempt is not None:
            details.append(f"attempt={self.attempt}")
        if self.container_id:
            details.append(f"container={self.container_id[:12]}")
        return f"{self.args[0]} ({', '.join(details)})"


class CreationError(StartupError):
    """The runtime could not instantiate the container."""

    phase = "creating"


class StartError(StartupError):
    """The runtime could not start the created container."""

    phase = "starting"


class ResourceMappingError(StartError):
    """A declared port did not resolve to a host mapping after start."""

    phase = "mapping"


class ReadinessTimeoutError(StartupError):
    """The wait condition was not satisfied within its timeout."""

    phase = "awaiting_ready"

    def __init__(
        self,
        message: str,
        attempt: Optional[int] = None,
        container_id: Optional[str] = None,
        last_observation: str = "",
        elapsed: float = 0.0,
    ):
        self.last_observation = last_observation
        self.elapsed = elapsed
        super().__init__(message, attempt=attempt, container_id=container_id)


class StartupCancelledError(StartupError):
    """Startup was aborted through the caller's cancellation signal."""

    phase = "cancelled"


class ScriptError(EphemError):
    """Base class for initialization script failures."""


class ScriptLoadError(ScriptError):
    """The script source could not be resolved or read."""

    def __init__(self, source: str, reason: str = "Resource not found."):
        self.source = source
        super().__init__(f"Could not load init script: {source}. {reason}")


class ScriptExecutionError(ScriptError):
    """
    A statement of an initialization script failed.

    ``position`` is 1-based; statements before it were applied and are not
    rolled back.
    """

    def __init__(self, source: str, position: int, statement: str, cause: BaseException):
        self.source = source
        self.position = position
        self.statement = statement
        self.cause = cause
        super().__init__(
            f"Failed to execute statement {position} of {source}: "
            f"{statement!r}: {cause}"
        )


class UnsupportedProviderError(EphemError, LookupError):
    """No provider is registered for the requested service name."""

    def __init__(self, name: str, supported=()):
        self.name = name
        self.supported = tuple(supported)
        super().__init__(
            f"Unsupported service '{name}'. "
            f"Supported: {', '.join(self.supported) or 'none'}"
        )


class RegistryFrozenError(EphemError):
    """A provider was registered after the registry was frozen."""


class SpecParseError(EphemError):
    """A declarative container specification could not be parsed."""


class InvalidWaitConditionError(EphemError, ValueError):
    """A wait condition can never be evaluated, e.g. a malformed log pattern."""
