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
Parser for declarative container specifications written in YAML.

    name: cache
    image: redis:7
    ports: [6379]
    environment:
      - REDIS_ARGS=--save ""
    env_file: .env.test
    volumes:
      - ./conf:/usr/local/etc/redis:ro
      - {source: ./seed.rdb, target: /data/dump.rdb, mode: copy}
    startup_attempts: 2
    wait:
      type: log
      pattern: Ready to accept connections
      timeout: 30
"""
import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..MODELS.container_spec import ContainerSpec, MountMode, ResourceMount
from ..MODELS.errors import SpecParseError
from ..MODELS.service_definition import ServiceDefinition
from ..MODELS.wait_condition import ExecWait, LogWait, PortWait, WaitCondition


class SpecParser:
    """
    Parser for ephem spec files.
    """
    def __init__(self, base_dir: str = "."):
        """
        Initializes the parser.

        :param base_dir: Directory relative volume sources are resolved against.
        """
        self.base_dir = base_dir

    def parse(self, spec_path: str) -> ServiceDefinition:
        """
        Parses a spec file from a path. Relative paths inside the file are
        resolved against the file's directory.

        :param spec_path: Path to the spec file.
        :return: The parsed service definition.
        :raises SpecParseError: If the file cannot be read or is invalid.
        """
        try:
            with open(spec_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise SpecParseError(f"Cannot read {spec_path}: {e}") from e
        parser = SpecParser(base_dir=os.path.dirname(os.path.abspath(spec_path)))
        return parser.parse_from_string(content)

    def parse_from_string(self, content: str) -> ServiceDefinition:
        """
        Parses a spec from YAML text.

        :param content: YAML content.
        :return: The parsed service definition.
        :raises SpecParseError: If the YAML or any field is invalid.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise SpecParseError(f"Invalid YAML: {e}") from e

        if not isinstance(data, dict):
            raise SpecParseError("Spec must be a mapping")
        if not data.get('image'):
            raise SpecParseError("Spec has no 'image'")

        labels = data.get('labels') or {}
        if not isinstance(labels, dict):
            raise SpecParseError("'labels' must be a mapping")

        try:
            spec = ContainerSpec(
                image=data['image'],
                exposed_ports=[int(p) for p in self._to_list(data.get('ports'))],
                environment=self._parse_environment(data.get('environment')),
                environment_files=[self._resolve(p) for p in self._to_list(data.get('env_file'))],
                mounts=[self._parse_mount(v) for v in self._to_list(data.get('volumes'))],
                command=self._to_list(data.get('command')),
                labels={str(k): str(v) for k, v in labels.items()},
                startup_attempts=data.get('startup_attempts'),
            )
            wait_condition = self._parse_wait(data.get('wait'))
        except (ValidationError, ValueError, TypeError) as e:
            raise SpecParseError(f"Invalid spec: {e}") from e

        return ServiceDefinition(
            name=str(data.get('name') or spec.image),
            spec=spec,
            wait_condition=wait_condition,
        )

    def _parse_environment(self, env_spec: Any) -> Dict[str, str]:
        """
        Accepts either a ``KEY=VALUE`` list or a mapping.
        """
        environment = {}
        if isinstance(env_spec, list):
            for e in env_spec:
                if '=' not in str(e):
                    raise SpecParseError(f"Environment entry {e!r} is not KEY=VALUE")
                k, v = str(e).split('=', 1)
                environment[k] = v
        elif isinstance(env_spec, dict):
            environment = {str(k): '' if v is None else str(v) for k, v in env_spec.items()}
        elif env_spec is not None:
            raise SpecParseError("'environment' must be a list or a mapping")
        return environment

    def _parse_mount(self, volume: Any) -> ResourceMount:
        """
        Parses ``src:dst[:ro]`` strings or mappings with source/target/mode.
        """
        if isinstance(volume, str):
            parts = volume.split(':')
            if len(parts) not in (2, 3):
                raise SpecParseError(f"Volume {volume!r} is not source:target[:ro]")
            return ResourceMount(
                source=self._resolve(parts[0]),
                target=parts[1],
                read_only=len(parts) == 3 and parts[2] == 'ro',
            )
        if isinstance(volume, dict):
            if 'source' not in volume or 'target' not in volume:
                raise SpecParseError(f"Volume {volume!r} needs source and target")
            return ResourceMount(
                source=self._resolve(volume['source']),
                target=volume['target'],
                mode=MountMode(volume.get('mode', 'bind')),
                read_only=bool(volume.get('read_only', False)),
            )
        raise SpecParseError(f"Unsupported volume entry: {volume!r}")

    def _parse_wait(self, wait: Optional[Dict[str, Any]]) -> WaitCondition:
        if wait is None:
            return PortWait()
        if not isinstance(wait, dict):
            raise SpecParseError("'wait' must be a mapping")

        kind = wait.get('type', 'port')
        timing = {key: float(wait[key]) for key in ('timeout', 'interval') if key in wait}

        if kind == 'port':
            ports = [int(p) for p in self._to_list(wait.get('ports'))] or None
            return PortWait(ports=ports, **timing)
        if kind == 'log':
            if not wait.get('pattern'):
                raise SpecParseError("Log wait needs a 'pattern'")
            return LogWait(pattern=str(wait['pattern']), times=int(wait.get('times', 1)), **timing)
        if kind == 'exec':
            command = self._to_list(wait.get('command'))
            if not command:
                raise SpecParseError("Exec wait needs a 'command'")
            return ExecWait(command=command, **timing)
        raise SpecParseError(f"Unknown wait type {kind!r} (expected port, log or exec)")

    def _resolve(self, path: str) -> str:
        if os.path.isabs(path):
            return path
        return os.path.abspath(os.path.join(self.base_dir, path))

    def _to_list(self, val: Any) -> List[str]:
        """
        Helper to ensure a value is a list.

        :param val: The value to convert.
        :return: A list of values.
        """
        if val is None:
            return []
        if isinstance(val, (str, int)):
            return [val]
        return list(val)
