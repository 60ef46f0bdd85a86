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
Translation of declared container ports into the host ports the runtime
actually assigned.
"""
from typing import Dict

from ..MODELS.container_spec import ContainerSpec
from ..MODELS.runtime_handle import ContainerInfo, RuntimeHandle


class UnresolvedPortsError(Exception):
    """Raised when declared ports have no host binding."""

    def __init__(self, missing):
        self.missing = sorted(missing)
        super().__init__(
            f"No host mapping for declared port(s): {', '.join(str(p) for p in self.missing)}"
        )


class ResourceMapper:
    """
    Resolves live coordinates of a started container.
    """

    def resolve(self, spec: ContainerSpec, info: ContainerInfo) -> RuntimeHandle:
        """
        Builds the runtime handle for a started container.

        Exactly the ports declared in ``spec`` end up in the handle; extra
        bindings reported by the runtime are ignored.

        :param spec: The spec the container was created from.
        :param info: The runtime's post-start inspection.
        :return: The resolved handle.
        :raises UnresolvedPortsError: If any declared port is unbound.
        """
        ports: Dict[int, int] = {}
        missing = []
        for port in spec.exposed_ports:
            host_port = info.port_mappings.get(port)
            if host_port is None:
                missing.append(port)
            else:
                ports[port] = host_port

        if missing:
            raise UnresolvedPortsError(missing)

        return RuntimeHandle(
            container_id=info.container_id,
            host_address=info.host_address,
            ports=ports,
        )
