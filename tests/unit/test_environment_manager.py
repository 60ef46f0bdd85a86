import pytest

from ephem.MANAGERS.environment_manager import EnvironmentManager
from ephem.MODELS.container_spec import ContainerSpec


def test_merge_env_files_and_explicit(tmp_path):
    (tmp_path / "base.env").write_text(
        "KEY1=VALUE1\n"
        "KEY2 = VALUE2\n"
        "# This is a comment\n"
        "KEY3=\"VALUE3\" # Trailing comment\n"
        "KEY4='VALUE4'\n"
    )
    (tmp_path / "override.env").write_text("KEY2=OVERRIDDEN\nBARE\n")

    manager = EnvironmentManager(base_dir=str(tmp_path))
    env = manager.get_merged_environment({'KEY4': 'EXPLICIT'}, ['base.env', 'override.env'])

    assert env['KEY1'] == 'VALUE1'
    assert env['KEY2'] == 'OVERRIDDEN'
    assert env['KEY3'] == 'VALUE3'
    assert env['KEY4'] == 'EXPLICIT'
    assert env['BARE'] == ''
    assert 'KEY5' not in env


def test_host_environment_not_inherited(tmp_path, monkeypatch):
    monkeypatch.setenv('EPHEM_SHOULD_NOT_LEAK', '1')
    env = EnvironmentManager(base_dir=str(tmp_path)).get_merged_environment({'A': 'B'}, [])
    assert env == {'A': 'B'}


def test_missing_env_file(tmp_path):
    manager = EnvironmentManager(base_dir=str(tmp_path))
    with pytest.raises(FileNotFoundError):
        manager.get_merged_environment({}, ['missing.env'])


def test_resolve_spec(tmp_path):
    (tmp_path / ".env").write_text("CASSANDRA_CLUSTER_NAME=test\nMAX_HEAP_SIZE=256M\n")
    spec = ContainerSpec(
        image='cassandra:3.11.2',
        environment={'MAX_HEAP_SIZE': '512M'},
        environment_files=['.env'],
    )

    resolved = EnvironmentManager(base_dir=str(tmp_path)).resolve(spec)

    assert resolved.environment == {'CASSANDRA_CLUSTER_NAME': 'test', 'MAX_HEAP_SIZE': '512M'}
    assert resolved.environment_files == ()
    assert spec.environment_files == ('.env',)


def test_resolve_without_files_returns_same_spec():
    spec = ContainerSpec(image='cassandra', environment={'A': '1'})
    assert EnvironmentManager().resolve(spec) is spec
