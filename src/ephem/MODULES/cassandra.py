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
Apache Cassandra provider.

Supports 2.x, 3.x and 4.x images. Readiness is established by running a
trivial CQL query through ``cqlsh`` inside the container; init scripts are
applied the same way, one statement at a time.

    definition = cassandra_definition("3.11.2", init_script="schema.cql")
    with LifecycleController(DockerGateway()) as controller:
        handle = controller.launch(definition)
        host, port = contact_point(handle)
"""
from functools import partial
from typing import List, Optional, Tuple

import structlog

from ..MODELS.container_spec import ContainerSpec, MountMode, ResourceMount
from ..MODELS.errors import EphemError
from ..MODELS.runtime_handle import ExecResult, RuntimeHandle
from ..MODELS.service_definition import HookContext, ServiceDefinition
from ..MODELS.wait_condition import ExecWait
from ..REGISTRY.image_reference import ImageReference
from ..RUNNERS.script_executor import InitScript, ScriptDelegate, ScriptExecutor
from ..RUNTIME.gateway import RuntimeGateway

logger = structlog.get_logger(__name__)

NAME = "cassandra"
IMAGE = "cassandra"
DEFAULT_TAG = "3.11.2"

CQL_PORT = 9042
THRIFT_PORT = 9160
JMX_PORT = 7199

CONTAINER_CONFIG_LOCATION = "/etc/cassandra"
USERNAME = "cassandra"
PASSWORD = "cassandra"
TEST_QUERY = "SELECT release_version FROM system.local"
STARTUP_ATTEMPTS = 3
READY_TIMEOUT = 180.0


class CqlStatementError(EphemError):
    """cqlsh exited non-zero for a statement."""

    def __init__(self, statement: str, result: ExecResult):
        self.statement = statement
        self.result = result
        super().__init__(
            f"cqlsh exited with {result.exit_code}: {result.output.strip()[:500]}"
        )


def cqlsh_command(statement: str, username: str = USERNAME, password: str = PASSWORD) -> List[str]:
    return ["cqlsh", "-u", username, "-p", password, "-e", statement]


class CqlshDelegate(ScriptDelegate):
    """
    Executes CQL statements with ``cqlsh`` inside the Cassandra container.
    """

    def __init__(
        self,
        gateway: RuntimeGateway,
        container_id: str,
        username: str = USERNAME,
        password: str = PASSWORD,
    ):
        self.gateway = gateway
        self.container_id = container_id
        self.username = username
        self.password = password

    def execute_statement(self, statement: str) -> None:
        # cqlsh -e needs the terminating semicolon
        result = self.gateway.exec(
            self.container_id,
            cqlsh_command(f"{statement};", self.username, self.password),
        )
        if not result.succeeded:
            raise CqlStatementError(statement, result)


def run_init_script(script_location: str, context: HookContext) -> None:
    """
    Post-start hook: load the script and apply it through cqlsh.

    Raises:
        ScriptLoadError: If the script cannot be found.
        ScriptExecutionError: If a statement fails.
    """
    script = InitScript.load(script_location)
    delegate = CqlshDelegate(context.gateway, context.handle.container_id)
    ScriptExecutor().run(delegate, script, context.cancel_event)


def cassandra_definition(
    tag: str = DEFAULT_TAG,
    image: str = IMAGE,
    config_location: Optional[str] = None,
    init_script: Optional[str] = None,
    native_api: bool = False,
    jmx_reporting: bool = False,
) -> ServiceDefinition:
    """
    Build a Cassandra service definition.

    Args:
        tag: Image tag.
        image: Image repository, for mirrors of the official image.
        config_location: Host directory holding cassandra.yaml and friends.
            Its content replaces /etc/cassandra, so a missing or broken
            cassandra.yaml keeps Cassandra from starting.
        init_script: CQL script (path or ``package:resource``) applied once
            the node answers queries.
        native_api: Enable Thrift RPC on 9160, needed by most JDBC drivers.
        jmx_reporting: Expose JMX on 7199.

    Returns:
        A definition ready to hand to ``LifecycleController.launch``.
    """
    reference = ImageReference.parse(image).with_tag(tag)
    spec = ContainerSpec(
        image=str(reference),
        exposed_ports=[CQL_PORT],
        startup_attempts=STARTUP_ATTEMPTS,
    )

    if config_location:
        spec = spec.with_mount(
            ResourceMount(
                source=config_location,
                target=CONTAINER_CONFIG_LOCATION,
                mode=MountMode.COPY,
            )
        )
    if native_api:
        spec = spec.with_exposed_ports(THRIFT_PORT).with_env("CASSANDRA_START_RPC", "true")
    if jmx_reporting:
        spec = spec.with_exposed_ports(JMX_PORT)

    return ServiceDefinition(
        name=NAME,
        spec=spec,
        wait_condition=ExecWait(
            command=cqlsh_command(f"{TEST_QUERY};"),
            timeout=READY_TIMEOUT,
            interval=2.0,
        ),
        post_start=partial(run_init_script, init_script) if init_script else None,
        metadata={
            "username": USERNAME,
            "password": PASSWORD,
            "test_query": TEST_QUERY,
        },
    )


def get_cql_port(handle: RuntimeHandle) -> int:
    return handle.get_mapped_port(CQL_PORT)


def get_native_port(handle: RuntimeHandle) -> int:
    """Mapped Thrift port, or -1 if the native API is not enabled."""
    return handle.ports.get(THRIFT_PORT, -1)


def get_jmx_port(handle: RuntimeHandle) -> int:
    """Mapped JMX port, or -1 if JMX reporting is not enabled."""
    return handle.ports.get(JMX_PORT, -1)


def contact_point(handle: RuntimeHandle) -> Tuple[str, int]:
    """Host and port a CQL driver should connect to."""
    return handle.get_host_address(), get_cql_port(handle)


def register(registry) -> None:
    registry.register(
        NAME,
        cassandra_definition,
        default_tag=DEFAULT_TAG,
        description="Apache Cassandra, CQL on 9042",
    )
