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
Boundary between ephem and a container runtime. The lifecycle engine only
talks to a runtime through this interface.
"""
from abc import ABC, abstractmethod
from typing import List

from ..MODELS.container_spec import ContainerSpec
from ..MODELS.runtime_handle import ContainerInfo, ExecResult


class RuntimeGateway(ABC):
    """
    Thin interface over a container runtime.

    Implementations raise ``RuntimeGatewayError`` when the runtime rejects an
    operation.
    """

    @abstractmethod
    def create(self, spec: ContainerSpec) -> str:
        """
        Create (but do not start) a container.

        Args:
            spec: The container to create. Environment files are already
                merged into ``spec.environment``.

        Returns:
            The runtime's identifier for the new container.
        """

    @abstractmethod
    def start(self, container_id: str) -> None:
        """Start a created container."""

    @abstractmethod
    def stop(self, container_id: str) -> None:
        """Stop and remove a container. Unknown ids are not an error."""

    @abstractmethod
    def inspect(self, container_id: str) -> ContainerInfo:
        """Report status, host address and port bindings of a container."""

    @abstractmethod
    def copy_file_in(self, container_id: str, local_path: str, container_path: str) -> None:
        """Copy a host file or directory to ``container_path``."""

    @abstractmethod
    def exec(self, container_id: str, command: List[str]) -> ExecResult:
        """Run a command inside a running container."""

    @abstractmethod
    def logs(self, container_id: str) -> str:
        """Fetch the container's accumulated stdout and stderr."""
