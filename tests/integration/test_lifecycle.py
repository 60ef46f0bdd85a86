"""
End-to-end lifecycle scenarios against the in-memory gateway.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from ephem.config import EphemSettings
from ephem.MANAGERS import lifecycle_controller
from ephem.MANAGERS.lifecycle_controller import LifecycleController
from ephem.MODELS.container_spec import ContainerSpec, MountMode, ResourceMount
from ephem.MODELS.errors import (
    CreationError,
    InvalidWaitConditionError,
    LifecycleStateError,
    PortNotMappedError,
    ReadinessTimeoutError,
    ResourceMappingError,
    ScriptExecutionError,
    StartError,
    StartupCancelledError,
)
from ephem.MODELS.runtime_handle import ExecResult, LifecycleState
from ephem.MODELS.wait_condition import ExecWait, LogWait, PortWait, PredicateWait
from ephem.MODULES import cassandra

ALWAYS_READY = PredicateWait(check=lambda handle: True, description="always ready")
NEVER_READY = PredicateWait(check=lambda handle: False, description="never ready")


def cassandra_spec(**changes):
    data = {"image": "cassandra:3.11.2", "exposed_ports": [9042]}
    data.update(changes)
    return ContainerSpec(**data)


def test_port_mapping_after_ready(gateway, settings):
    controller = LifecycleController(gateway, settings)

    handle = controller.start(cassandra_spec(), ALWAYS_READY)

    assert controller.state == LifecycleState.READY
    assert handle.get_mapped_port(9042) == 54321
    assert controller.get_mapped_port(9042) == 54321
    assert controller.get_host_address() == "127.0.0.1"
    with pytest.raises(PortNotMappedError):
        controller.get_mapped_port(7199)

    controller.stop()
    assert controller.state == LifecycleState.STOPPED
    assert gateway.stopped == gateway.created


def test_default_wait_connects_to_mapped_port(make_gateway, settings, listener):
    gateway = make_gateway(port_mappings={9042: listener})
    with LifecycleController(gateway, settings) as controller:
        handle = controller.start(cassandra_spec())
        assert handle.get_mapped_port(9042) == listener
    assert gateway.stopped == gateway.created


def test_creation_failure_uses_whole_budget(make_gateway, settings):
    gateway = make_gateway(fail_create=-1)
    controller = LifecycleController(gateway, settings)

    with pytest.raises(CreationError) as exc_info:
        controller.start(cassandra_spec(), ALWAYS_READY, attempts=2)

    assert gateway.create_calls == 2
    assert exc_info.value.attempt == 2
    assert controller.state == LifecycleState.FAILED
    assert [record.number for record in controller.attempts] == [1, 2]
    assert all(record.phase == LifecycleState.CREATING for record in controller.attempts)


def test_spec_attempts_used_by_default(make_gateway, settings):
    gateway = make_gateway(port_mappings={9042: 54321}, fail_create=1)
    controller = LifecycleController(gateway, settings)

    controller.start(cassandra_spec(startup_attempts=2), ALWAYS_READY)

    assert gateway.create_calls == 2
    assert controller.attempts[0].error is not None
    assert controller.attempts[1].succeeded


def test_start_failure_retried_with_fresh_container(make_gateway, settings):
    gateway = make_gateway(port_mappings={9042: 54321}, fail_start=2)
    controller = LifecycleController(gateway, settings)

    handle = controller.start(cassandra_spec(), ALWAYS_READY, attempts=3)

    assert len(gateway.created) == 3
    assert len(set(gateway.created)) == 3
    assert handle.container_id == gateway.created[-1]
    # containers of failed attempts are removed before the next attempt
    assert gateway.stopped == gateway.created[:2]
    assert gateway.events[:6] == ["create", "start", "stop", "create", "start", "stop"]


def test_start_failure_exhausts_budget(make_gateway, settings):
    gateway = make_gateway(fail_start=-1)
    controller = LifecycleController(gateway, settings)

    with pytest.raises(StartError):
        controller.start(cassandra_spec(), ALWAYS_READY)

    assert gateway.stopped == gateway.created
    with pytest.raises(LifecycleStateError):
        controller.handle


def test_unmapped_port_is_a_start_failure(make_gateway, settings):
    gateway = make_gateway(port_mappings={9042: None})
    controller = LifecycleController(gateway, settings)

    with pytest.raises(ResourceMappingError) as exc_info:
        controller.start(cassandra_spec(), ALWAYS_READY, attempts=2)

    assert isinstance(exc_info.value, StartError)
    assert gateway.create_calls == 2


def test_readiness_timeout_consumes_attempt(make_gateway, settings):
    gateway = make_gateway(port_mappings={9042: 54321}, logs="Starting up\n")
    controller = LifecycleController(gateway, settings)

    with pytest.raises(ReadinessTimeoutError) as exc_info:
        controller.start(cassandra_spec(), LogWait(pattern="Starting listening for CQL clients", timeout=0.1), attempts=2)

    assert gateway.create_calls == 2
    assert exc_info.value.container_id == gateway.created[-1]
    assert exc_info.value.last_observation
    assert controller.state == LifecycleState.FAILED
    assert gateway.stopped == gateway.created


def test_exec_wait_uses_container(make_gateway, settings):
    polls = []

    def exec_handler(container_id, command):
        polls.append(container_id)
        return ExecResult(exit_code=0 if len(polls) >= 3 else 1, output="")

    gateway = make_gateway(port_mappings={9042: 54321}, exec_handler=exec_handler)
    with LifecycleController(gateway, settings) as controller:
        handle = controller.start(cassandra_spec(), ExecWait(command=["nodetool", "status"]))
        assert polls == [handle.container_id] * 3


def test_handle_not_exposed_before_ready(gateway, settings):
    controller = LifecycleController(gateway, settings)
    seen = {}

    def check(handle):
        seen["state"] = controller.state
        with pytest.raises(LifecycleStateError):
            controller.handle
        return True

    controller.start(cassandra_spec(), PredicateWait(check=check))

    assert seen["state"] == LifecycleState.AWAITING_READY
    assert controller.handle.container_id == gateway.created[0]
    controller.stop()


def test_post_start_hook_failure_not_retried(make_gateway, settings):
    gateway = make_gateway(port_mappings={9042: 54321})
    controller = LifecycleController(gateway, settings)
    calls = []

    def hook(context):
        calls.append(context.handle.container_id)
        raise RuntimeError("keyspace creation failed")

    with pytest.raises(RuntimeError):
        controller.start(cassandra_spec(), ALWAYS_READY, attempts=3, post_start=hook)

    assert gateway.create_calls == 1
    assert calls == gateway.created
    assert gateway.stopped == gateway.created
    assert controller.state == LifecycleState.FAILED


def test_init_script_runs_before_ready(make_gateway, settings, tmp_path):
    script = tmp_path / "schema.cql"
    script.write_text("CREATE KEYSPACE ks WITH replication = {'class': 'SimpleStrategy', 'replication_factor': 1};\n"
                      "CREATE TABLE ks.t (id int PRIMARY KEY);\n")
    gateway = make_gateway(port_mappings={9042: 54321})
    definition = cassandra.cassandra_definition(init_script=str(script)).with_wait(ALWAYS_READY)

    with LifecycleController(gateway, settings) as controller:
        controller.launch(definition)
        statements = [command[-1] for _, command in gateway.exec_calls]

    assert statements == [
        "CREATE KEYSPACE ks WITH replication = {'class': 'SimpleStrategy', 'replication_factor': 1};",
        "CREATE TABLE ks.t (id int PRIMARY KEY);",
    ]


def test_init_script_failure_tears_down(make_gateway, settings, tmp_path):
    script = tmp_path / "schema.cql"
    script.write_text("CREATE KEYSPACE ks;\nCREATE TABLE broken;\n")

    def exec_handler(container_id, command):
        return ExecResult(exit_code=1 if "broken" in command[-1] else 0, output="SyntaxException")

    gateway = make_gateway(port_mappings={9042: 54321}, exec_handler=exec_handler)
    definition = cassandra.cassandra_definition(init_script=str(script)).with_wait(ALWAYS_READY)
    controller = LifecycleController(gateway, settings)

    with pytest.raises(ScriptExecutionError) as exc_info:
        controller.launch(definition)

    assert exc_info.value.position == 2
    assert gateway.create_calls == 1
    assert gateway.stopped == gateway.created


def test_stop_is_idempotent(gateway, settings):
    controller = LifecycleController(gateway, settings)
    controller.stop()
    assert gateway.stopped == []

    controller.start(cassandra_spec(), ALWAYS_READY)
    controller.stop()
    controller.stop()

    assert gateway.stopped == gateway.created
    assert controller.state == LifecycleState.STOPPED


def test_stop_swallows_teardown_errors(make_gateway, settings):
    gateway = make_gateway(port_mappings={9042: 54321}, stop_error=True)
    controller = LifecycleController(gateway, settings)
    controller.start(cassandra_spec(), ALWAYS_READY)

    controller.stop()

    assert controller.state == LifecycleState.STOPPED


def test_restart_after_stop(gateway, settings):
    controller = LifecycleController(gateway, settings)
    first = controller.start(cassandra_spec(), ALWAYS_READY)
    controller.stop()
    second = controller.start(cassandra_spec(), ALWAYS_READY)

    assert first.container_id != second.container_id
    controller.stop()


def test_start_twice_without_stop(gateway, settings):
    controller = LifecycleController(gateway, settings)
    controller.start(cassandra_spec(), ALWAYS_READY)

    with pytest.raises(LifecycleStateError):
        controller.start(cassandra_spec(), ALWAYS_READY)

    controller.stop()
    assert gateway.create_calls == 1


def test_invalid_attempts(gateway, settings):
    with pytest.raises(ValueError):
        LifecycleController(gateway, settings).start(cassandra_spec(), attempts=0)
    assert gateway.create_calls == 0


def test_cancel_before_start(gateway, settings):
    cancel_event = threading.Event()
    cancel_event.set()
    controller = LifecycleController(gateway, settings)

    with pytest.raises(StartupCancelledError):
        controller.start(cassandra_spec(), ALWAYS_READY, attempts=3, cancel_event=cancel_event)

    assert gateway.create_calls == 0
    assert controller.state == LifecycleState.FAILED


def test_cancel_while_waiting_tears_down(make_gateway, settings):
    gateway = make_gateway(port_mappings={9042: 54321})
    cancel_event = threading.Event()

    def check(handle):
        cancel_event.set()
        return False

    controller = LifecycleController(gateway, settings)
    with pytest.raises(StartupCancelledError):
        controller.start(cassandra_spec(), PredicateWait(check=check, timeout=5), attempts=3,
                         cancel_event=cancel_event)

    assert gateway.create_calls == 1
    assert gateway.stopped == gateway.created


def test_copy_mounts_before_start(gateway, settings, tmp_path):
    config_dir = tmp_path / "conf"
    config_dir.mkdir()
    spec = cassandra_spec().with_mount(
        ResourceMount(source=str(config_dir), target="/etc/cassandra", mode=MountMode.COPY)
    ).with_mount(
        ResourceMount(source=str(tmp_path), target="/data")
    )

    with LifecycleController(gateway, settings) as controller:
        controller.start(spec, ALWAYS_READY)

    assert gateway.events[:3] == ["create", "copy", "start"]
    assert gateway.copied == [(gateway.created[0], str(config_dir), "/etc/cassandra")]


def test_env_files_merged_before_create(gateway, settings, tmp_path):
    (tmp_path / "cassandra.env").write_text("CASSANDRA_CLUSTER_NAME=it\nMAX_HEAP_SIZE=256M\n")
    spec = cassandra_spec(environment={"MAX_HEAP_SIZE": "512M"}, environment_files=["cassandra.env"])

    with LifecycleController(gateway, settings, base_dir=str(tmp_path)) as controller:
        controller.start(spec, ALWAYS_READY)

    created_spec = gateway.specs[gateway.created[0]]
    assert created_spec.environment == {"CASSANDRA_CLUSTER_NAME": "it", "MAX_HEAP_SIZE": "512M"}


def test_missing_env_file_fails_creation(gateway, settings, tmp_path):
    spec = cassandra_spec(environment_files=["missing.env"])
    controller = LifecycleController(gateway, settings, base_dir=str(tmp_path))

    with pytest.raises(CreationError):
        controller.start(spec, ALWAYS_READY)
    assert gateway.create_calls == 0


def test_undeclared_wait_port_fails(gateway, settings):
    controller = LifecycleController(gateway, settings)

    with pytest.raises(PortNotMappedError):
        controller.start(cassandra_spec(), PortWait(ports=[7199]))

    assert gateway.stopped == gateway.created
    assert controller.state == LifecycleState.FAILED


def test_independent_controllers_in_parallel(gateway, settings):
    def run(_):
        with LifecycleController(gateway, settings) as controller:
            return controller.start(cassandra_spec(), ALWAYS_READY).container_id

    with ThreadPoolExecutor(max_workers=4) as pool:
        container_ids = list(pool.map(run, range(8)))

    assert len(set(container_ids)) == 8
    assert sorted(gateway.stopped) == sorted(gateway.created)


def test_failed_start_then_never_ready(gateway, settings):
    controller = LifecycleController(gateway, settings)

    with pytest.raises(ReadinessTimeoutError):
        controller.start(cassandra_spec(), NEVER_READY)

    assert controller.attempts[0].phase == LifecycleState.AWAITING_READY
    assert gateway.stopped == gateway.created


def test_settings_attempts_used_without_spec_value(make_gateway):
    settings = EphemSettings(startup_attempts=3, wait_timeout=0.3, poll_interval=0.02, stop_timeout=0)
    gateway = make_gateway(fail_create=-1)

    with pytest.raises(CreationError):
        LifecycleController(gateway, settings).start(cassandra_spec(), ALWAYS_READY)
    assert gateway.create_calls == 3

    gateway = make_gateway(fail_create=-1)
    with pytest.raises(CreationError):
        LifecycleController(gateway, settings).start(cassandra_spec(startup_attempts=1), ALWAYS_READY)
    assert gateway.create_calls == 1


def test_stop_from_another_thread_while_waiting(gateway, settings):
    controller = LifecycleController(gateway, settings)
    errors = []

    def run():
        try:
            controller.start(cassandra_spec(), PredicateWait(check=lambda handle: False, timeout=5))
        except StartupCancelledError as e:
            errors.append(e)

    worker = threading.Thread(target=run)
    started = time.monotonic()
    worker.start()
    while controller.state != LifecycleState.AWAITING_READY:
        assert time.monotonic() - started < 5
        time.sleep(0.01)

    controller.stop()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert len(errors) == 1
    assert time.monotonic() - started < 2
    assert controller.state == LifecycleState.STOPPED
    assert gateway.stopped == gateway.created
    with pytest.raises(LifecycleStateError):
        controller.handle


def test_stop_during_post_start_hook_wins(gateway, settings):
    controller = LifecycleController(gateway, settings)

    def hook(context):
        controller.stop()

    with pytest.raises(StartupCancelledError):
        controller.start(cassandra_spec(), ALWAYS_READY, post_start=hook)

    assert gateway.create_calls == 1
    assert gateway.stopped == gateway.created
    assert controller.state == LifecycleState.STOPPED
    with pytest.raises(LifecycleStateError):
        controller.handle


class RecordingLogger:
    """Collects structured log calls as dicts."""

    def __init__(self):
        self.records = []

    def bind(self, **kw):
        return self

    def _record(self, event, **kw):
        self.records.append(dict(kw, event=event))

    debug = info = warning = error = _record


def test_state_changes_are_logged(gateway, settings, monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(lifecycle_controller, "logger", recorder)

    with LifecycleController(gateway, settings) as controller:
        controller.start(cassandra_spec(), ALWAYS_READY)

    changes = [r for r in recorder.records if r["event"] == "Lifecycle state changed"]
    assert [r["state"] for r in changes] == ["creating", "starting", "awaiting_ready"]
    assert all(r["attempt"] == 1 for r in changes)
    assert changes[0]["container_id"] is None
    assert changes[1]["container_id"] == gateway.created[0][:12]
    assert changes[2]["container_id"] == gateway.created[0][:12]


def test_invalid_log_pattern_is_not_retried(gateway, settings):
    controller = LifecycleController(gateway, settings)

    with pytest.raises(InvalidWaitConditionError):
        controller.start(cassandra_spec(), LogWait(pattern="ready(", timeout=5), attempts=3)

    assert gateway.create_calls == 1
    assert gateway.stopped == gateway.created
    assert controller.state == LifecycleState.FAILED
