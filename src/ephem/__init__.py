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
Ephem - ephemeral service containers for tests.

Brings a disposable container (database, message broker, ...) from a
declarative specification to a verified-ready state, runs optional
initialization work against it, exposes its connection coordinates and
tears it down again.
"""

__version__ = "0.1.0"
__author__ = "Michael Maillet, Damien Davison, Sacha Davison"
__license__ = "Apache-2.0"

from .MODELS.container_spec import ContainerSpec, ResourceMount, MountMode
from .MODELS.runtime_handle import RuntimeHandle, LifecycleState
from .MODELS.wait_condition import PortWait, LogWait, ExecWait, PredicateWait
from .MODELS.service_definition import ServiceDefinition
from .MANAGERS.lifecycle_controller import LifecycleController
from .RUNNERS.script_executor import InitScript, ScriptDelegate, ScriptExecutor
from .REGISTRY.provider_registry import (
    ProviderRegistry,
    ProviderEntry,
    UNSUPPORTED,
    default_registry,
)

__all__ = [
    "ContainerSpec",
    "ResourceMount",
    "MountMode",
    "RuntimeHandle",
    "LifecycleState",
    "PortWait",
    "LogWait",
    "ExecWait",
    "PredicateWait",
    "ServiceDefinition",
    "LifecycleController",
    "InitScript",
    "ScriptDelegate",
    "ScriptExecutor",
    "ProviderRegistry",
    "ProviderEntry",
    "UNSUPPORTED",
    "default_registry",
]
