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
Readiness conditions. A closed set of variants, each evaluated repeatedly by
the wait engine until it holds or its timeout elapses.
"""
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

from .runtime_handle import RuntimeHandle


@dataclass(frozen=True)
class PortWait:
    """
    Ready once a TCP connection succeeds on the mapped host port of each
    listed container port (every declared port when ``ports`` is None).
    """

    ports: Optional[Sequence[int]] = None
    timeout: Optional[float] = None
    interval: Optional[float] = None
    kind = "port"

    def describe(self) -> str:
        targets = ", ".join(str(p) for p in self.ports) if self.ports else "all declared"
        return f"TCP connect on ports [{targets}]"


@dataclass(frozen=True)
class LogWait:
    """Ready once ``pattern`` has matched the container log ``times`` times."""

    pattern: str
    times: int = 1
    timeout: Optional[float] = None
    interval: Optional[float] = None
    kind = "log"

    def describe(self) -> str:
        return f"log matches /{self.pattern}/ x{self.times}"


@dataclass(frozen=True)
class ExecWait:
    """Ready once ``command`` run inside the container exits with status 0."""

    command: List[str]
    timeout: Optional[float] = None
    interval: Optional[float] = None
    kind = "exec"

    def describe(self) -> str:
        return f"exec {' '.join(self.command)!r} exits 0"


@dataclass(frozen=True)
class PredicateWait:
    """
    Ready once ``check(handle)`` returns True. An exception raised by the
    check counts as not ready yet.
    """

    check: Callable[[RuntimeHandle], bool]
    description: str = "custom check"
    timeout: Optional[float] = None
    interval: Optional[float] = None
    kind = "predicate"

    def describe(self) -> str:
        return self.description


WaitCondition = Union[PortWait, LogWait, ExecWait, PredicateWait]


@dataclass(frozen=True)
class Probe:
    """Result of evaluating a wait condition once."""

    ready: bool
    detail: str = ""


@dataclass(frozen=True)
class WaitOutcome:
    """Final result of waiting on a condition."""

    ready: bool
    elapsed: float
    polls: int
    last_probe: Probe
