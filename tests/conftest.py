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
Shared fixtures: an in-memory runtime gateway standing in for Docker.
"""
import itertools
import socket
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from ephem.config import EphemSettings
from ephem.MODELS.container_spec import ContainerSpec
from ephem.MODELS.errors import RuntimeGatewayError
from ephem.MODELS.runtime_handle import ContainerInfo, ExecResult
from ephem.RUNTIME.gateway import RuntimeGateway


class FakeGateway(RuntimeGateway):
    """
    Records every call and hands out a new container id per ``create``.

    ``fail_create`` / ``fail_start`` make the first N calls fail (-1: all).
    """

    def __init__(
        self,
        port_mappings: Optional[Dict[int, Optional[int]]] = None,
        host: str = "127.0.0.1",
        fail_create: int = 0,
        fail_start: int = 0,
        stop_error: bool = False,
        logs: str = "",
        exec_handler: Optional[Callable[[str, List[str]], ExecResult]] = None,
    ):
        self.port_mappings = port_mappings if port_mappings is not None else {}
        self.host = host
        self.fail_create = fail_create
        self.fail_start = fail_start
        self.stop_error = stop_error
        self.log_output = logs
        self.exec_handler = exec_handler

        self.create_calls = 0
        self.start_calls = 0
        self.created: List[str] = []
        self.started: List[str] = []
        self.stopped: List[str] = []
        self.copied: List[Tuple[str, str, str]] = []
        self.exec_calls: List[Tuple[str, List[str]]] = []
        self.specs: Dict[str, ContainerSpec] = {}
        self.events: List[str] = []
        self._ids = itertools.count(1)

    def _fails(self, limit: int, calls: int) -> bool:
        return limit < 0 or calls <= limit

    def create(self, spec: ContainerSpec) -> str:
        self.create_calls += 1
        self.events.append("create")
        if self._fails(self.fail_create, self.create_calls):
            raise RuntimeGatewayError(f"create #{self.create_calls} failed")
        container_id = f"c{next(self._ids):015d}"
        self.created.append(container_id)
        self.specs[container_id] = spec
        return container_id

    def start(self, container_id: str) -> None:
        self.start_calls += 1
        self.events.append("start")
        if self._fails(self.fail_start, self.start_calls):
            raise RuntimeGatewayError(f"start #{self.start_calls} failed")
        self.started.append(container_id)

    def stop(self, container_id: str) -> None:
        self.events.append("stop")
        if self.stop_error:
            raise RuntimeGatewayError("daemon went away")
        self.stopped.append(container_id)

    def inspect(self, container_id: str) -> ContainerInfo:
        return ContainerInfo(
            container_id=container_id,
            status="running",
            host_address=self.host,
            port_mappings=dict(self.port_mappings),
        )

    def copy_file_in(self, container_id: str, local_path: str, container_path: str) -> None:
        self.events.append("copy")
        self.copied.append((container_id, local_path, container_path))

    def exec(self, container_id: str, command: List[str]) -> ExecResult:
        self.exec_calls.append((container_id, list(command)))
        if self.exec_handler:
            return self.exec_handler(container_id, command)
        return ExecResult(exit_code=0, output="")

    def logs(self, container_id: str) -> str:
        return self.log_output


@pytest.fixture
def settings():
    """Fast defaults so readiness failures do not slow the suite down."""
    return EphemSettings(
        startup_attempts=1,
        wait_timeout=0.3,
        poll_interval=0.02,
        stop_timeout=0,
    )


@pytest.fixture
def gateway():
    return FakeGateway(port_mappings={9042: 54321})


@pytest.fixture
def make_gateway():
    """The FakeGateway class, for tests that need a custom configuration."""
    return FakeGateway


@pytest.fixture
def listener():
    """A socket accepting connections on a random local port."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(5)
    yield server.getsockname()[1]
    server.close()


@pytest.fixture
def closed_port():
    """A local port nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
