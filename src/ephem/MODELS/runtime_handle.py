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
Runtime-side views of a container: what the runtime reports about it and the
resolved handle a caller uses to reach the service.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from .errors import PortNotMappedError


class LifecycleState(str, Enum):
    """State of the container driven by a lifecycle controller."""

    UNSTARTED = "unstarted"
    CREATING = "creating"
    STARTING = "starting"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class ContainerInfo:
    """Result of inspecting a container through the runtime gateway."""

    container_id: str
    status: str = "created"
    host_address: str = "localhost"
    # container port -> host port, None while the runtime has not bound it
    port_mappings: Dict[int, Optional[int]] = field(default_factory=dict)


@dataclass
class ExecResult:
    """Outcome of a command executed inside a container."""

    exit_code: int
    output: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class RuntimeHandle:
    """
    Live identity and network coordinates of a started container.

    Only handed out once the container is ready; read-only for everyone but
    the controller that issued it.
    """

    container_id: str
    host_address: str
    ports: Mapping[int, int]

    def __post_init__(self):
        object.__setattr__(self, "ports", MappingProxyType(dict(self.ports)))

    def get_mapped_port(self, port: int) -> int:
        """
        Get the host port bound to a declared container port.

        Args:
            port: Container-side port declared in the spec.

        Returns:
            The host port.

        Raises:
            PortNotMappedError: If the port was not declared.
        """
        try:
            return self.ports[port]
        except KeyError:
            raise PortNotMappedError(port, sorted(self.ports)) from None

    def get_host_address(self) -> str:
        return self.host_address

    @property
    def declared_ports(self) -> Tuple[int, ...]:
        return tuple(self.ports)


@dataclass(frozen=True)
class AttemptRecord:
    """What happened during one startup attempt."""

    number: int
    phase: LifecycleState
    container_id: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None
