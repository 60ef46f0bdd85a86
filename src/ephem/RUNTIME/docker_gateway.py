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
Runtime gateway backed by the Docker Engine API (docker SDK).
"""
import io
import os
import tarfile
from typing import Dict, List, Optional
from urllib.parse import urlparse

import docker
import structlog
from docker.errors import DockerException, ImageNotFound, NotFound

from ..config import EphemSettings, get_settings
from ..MODELS.container_spec import ContainerSpec, MountMode
from ..MODELS.errors import RuntimeGatewayError
from ..MODELS.runtime_handle import ContainerInfo, ExecResult
from .gateway import RuntimeGateway

logger = structlog.get_logger(__name__)

MANAGED_LABEL = "ephem.managed"


class DockerGateway(RuntimeGateway):
    """
    Drives containers on a Docker daemon.

    Every container is labelled ``ephem.managed=true`` so leftovers can be
    found with ``docker ps --filter label=ephem.managed``.
    """

    def __init__(
        self,
        client: Optional[docker.DockerClient] = None,
        settings: Optional[EphemSettings] = None,
    ):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                if self.settings.docker_base_url:
                    self._client = docker.DockerClient(base_url=self.settings.docker_base_url)
                else:
                    self._client = docker.from_env()
            except DockerException as e:
                raise RuntimeGatewayError(f"Cannot connect to Docker: {e}") from e
        return self._client

    def host_address(self) -> str:
        """Address under which mapped ports are reachable from this process."""
        if self.settings.host_override:
            return self.settings.host_override
        docker_host = self.settings.docker_base_url or os.environ.get("DOCKER_HOST", "")
        if docker_host.startswith("tcp://"):
            parsed = urlparse(docker_host)
            if parsed.hostname:
                return parsed.hostname
        return "localhost"

    def create(self, spec: ContainerSpec) -> str:
        self._ensure_image(spec.image)

        volumes = {}
        for mount in spec.mounts:
            if mount.mode != MountMode.BIND:
                continue
            volumes[os.path.abspath(mount.source)] = {
                "bind": mount.target,
                "mode": "ro" if mount.read_only else "rw",
            }

        labels = dict(spec.labels)
        labels[MANAGED_LABEL] = "true"

        try:
            container = self.client.containers.create(
                spec.image,
                command=list(spec.command) or None,
                environment=dict(spec.environment),
                ports={f"{port}/tcp": None for port in spec.exposed_ports},
                volumes=volumes,
                labels=labels,
                detach=True,
            )
        except DockerException as e:
            raise RuntimeGatewayError(f"Failed to create container from {spec.image}: {e}") from e

        logger.debug("Container created", container_id=container.id, image=spec.image)
        return container.id

    def start(self, container_id: str) -> None:
        try:
            self.client.containers.get(container_id).start()
        except DockerException as e:
            raise RuntimeGatewayError(f"Failed to start container {container_id[:12]}: {e}") from e

    def stop(self, container_id: str) -> None:
        try:
            container = self.client.containers.get(container_id)
        except NotFound:
            return
        except DockerException as e:
            raise RuntimeGatewayError(f"Failed to look up container {container_id[:12]}: {e}") from e

        try:
            if container.status == "running":
                container.stop(timeout=self.settings.stop_timeout)
            container.remove(force=True, v=True)
        except NotFound:
            return
        except DockerException as e:
            raise RuntimeGatewayError(f"Failed to remove container {container_id[:12]}: {e}") from e

    def inspect(self, container_id: str) -> ContainerInfo:
        try:
            container = self.client.containers.get(container_id)
            container.reload()
        except DockerException as e:
            raise RuntimeGatewayError(f"Failed to inspect container {container_id[:12]}: {e}") from e

        network = container.attrs.get("NetworkSettings") or {}
        return ContainerInfo(
            container_id=container.id,
            status=container.status,
            host_address=self.host_address(),
            port_mappings=self.parse_port_bindings(network.get("Ports") or {}),
        )

    def copy_file_in(self, container_id: str, local_path: str, container_path: str) -> None:
        if not os.path.exists(local_path):
            raise RuntimeGatewayError(f"Cannot copy {local_path}: no such file or directory")

        target_dir = os.path.dirname(container_path.rstrip("/")) or "/"
        archive_name = os.path.basename(container_path.rstrip("/"))

        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            tar.add(local_path, arcname=archive_name)
        buffer.seek(0)

        try:
            container = self.client.containers.get(container_id)
            container.put_archive(target_dir, buffer.getvalue())
        except DockerException as e:
            raise RuntimeGatewayError(
                f"Failed to copy {local_path} to {container_id[:12]}:{container_path}: {e}"
            ) from e

    def exec(self, container_id: str, command: List[str]) -> ExecResult:
        try:
            container = self.client.containers.get(container_id)
            result = container.exec_run(command)
        except DockerException as e:
            raise RuntimeGatewayError(f"Exec failed in {container_id[:12]}: {e}") from e

        output = (result.output or b"").decode("utf-8", errors="replace")
        return ExecResult(exit_code=result.exit_code, output=output)

    def logs(self, container_id: str) -> str:
        try:
            raw = self.client.containers.get(container_id).logs(stdout=True, stderr=True)
        except DockerException as e:
            raise RuntimeGatewayError(f"Failed to read logs of {container_id[:12]}: {e}") from e
        return raw.decode("utf-8", errors="replace")

    @staticmethod
    def parse_port_bindings(ports: Dict[str, Optional[List[Dict[str, str]]]]) -> Dict[int, Optional[int]]:
        """
        Convert Docker's ``NetworkSettings.Ports`` into ``{container: host}``.

        Example: ``{"9042/tcp": [{"HostIp": "0.0.0.0", "HostPort": "54321"}]}``
        becomes ``{9042: 54321}``. Unbound ports map to None.
        """
        mappings: Dict[int, Optional[int]] = {}
        for key, bindings in ports.items():
            port_str, _, protocol = key.partition("/")
            if protocol and protocol != "tcp":
                continue
            host_port = None
            for binding in bindings or []:
                if binding.get("HostPort"):
                    host_port = int(binding["HostPort"])
                    break
            mappings[int(port_str)] = host_port
        return mappings

    def _ensure_image(self, image: str) -> None:
        try:
            self.client.images.get(image)
        except ImageNotFound:
            logger.info("Pulling image", image=image)
            try:
                self.client.images.pull(image)
            except DockerException as e:
                raise RuntimeGatewayError(f"Failed to pull image {image}: {e}") from e
        except DockerException as e:
            raise RuntimeGatewayError(f"Failed to look up image {image}: {e}") from e
