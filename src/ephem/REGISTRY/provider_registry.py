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
Registry mapping logical service names (``"cassandra"``) to factories that
produce ready-to-start service definitions.

A registry is populated once, frozen, and then only read, so concurrent test
workers can resolve names without locking:

    registry = ProviderRegistry()
    registry.register("cassandra", cassandra_definition, default_tag="3.11.2")
    registry.freeze()

    entry = registry.resolve("Cassandra")
    if entry is UNSUPPORTED:
        ...
"""
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Union

import structlog

from ..MODELS.errors import RegistryFrozenError, UnsupportedProviderError
from ..MODELS.service_definition import ServiceDefinition

logger = structlog.get_logger(__name__)

# called as factory(tag, **options)
ProviderFactory = Callable[..., ServiceDefinition]


def normalize_name(name: str) -> str:
    """Lookup key for a service name: surrounding blanks and case are ignored."""
    return name.strip().lower()


@dataclass(frozen=True)
class ProviderEntry:
    """A registered provider: a name, a factory and the tag used by default."""

    name: str
    factory: ProviderFactory
    default_tag: str
    description: str = ""

    def supports(self, name: str) -> bool:
        return isinstance(name, str) and normalize_name(name) == self.name

    def create(self, tag: Optional[str] = None, **options) -> ServiceDefinition:
        """
        Build a new, not yet started, service definition.

        Args:
            tag: Image tag; ``default_tag`` if omitted.
            **options: Provider-specific keyword options, e.g. ``init_script``.
        """
        return self.factory(tag or self.default_tag, **options)


class _Unsupported:
    """Result of resolving a name no provider is registered for."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSUPPORTED"


UNSUPPORTED = _Unsupported()


class ProviderRegistry:
    """
    Maps service names to provider entries.

    Writes are serialized and only allowed before ``freeze()``; after that the
    mapping is read-only and lookups are safe from any number of threads.
    """

    def __init__(self):
        self._entries: Mapping[str, ProviderEntry] = {}
        self._lock = threading.Lock()
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(
        self,
        name: str,
        factory: ProviderFactory,
        default_tag: str,
        description: str = "",
    ) -> ProviderEntry:
        """
        Register a provider.

        Args:
            name: Logical service name.
            factory: Called with an image tag, returns a ServiceDefinition.
            default_tag: Tag used when the caller does not ask for one.
            description: Shown by ``ephem providers``.

        Raises:
            RegistryFrozenError: If the registry was already frozen.
            ValueError: If the name is empty or already registered.
        """
        key = normalize_name(name)
        if not key:
            raise ValueError("Provider name must not be empty")

        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(f"Cannot register '{key}': registry is frozen")
            if key in self._entries:
                raise ValueError(f"Provider '{key}' is already registered")
            entry = ProviderEntry(
                name=key, factory=factory, default_tag=default_tag, description=description
            )
            entries: Dict[str, ProviderEntry] = dict(self._entries)
            entries[key] = entry
            self._entries = entries

        logger.debug("Provider registered", provider=key, default_tag=default_tag)
        return entry

    def freeze(self) -> "ProviderRegistry":
        """End the registration phase. Idempotent."""
        with self._lock:
            if not self._frozen:
                self._entries = MappingProxyType(dict(self._entries))
                self._frozen = True
        return self

    def resolve(self, name: str) -> Union[ProviderEntry, _Unsupported]:
        """
        Look up a provider. Never raises.

        Returns:
            The entry, or ``UNSUPPORTED`` for an unknown or invalid name.
        """
        if not isinstance(name, str):
            return UNSUPPORTED
        return self._entries.get(normalize_name(name), UNSUPPORTED)

    def require(self, name: str) -> ProviderEntry:
        """
        Look up a provider that must exist.

        Raises:
            UnsupportedProviderError: If no provider is registered for ``name``.
        """
        entry = self.resolve(name)
        if entry is UNSUPPORTED:
            raise UnsupportedProviderError(str(name), self.names())
        return entry

    def supports(self, name: str) -> bool:
        return self.resolve(name) is not UNSUPPORTED

    def names(self) -> List[str]:
        return sorted(self._entries)

    def entries(self) -> List[ProviderEntry]:
        return [self._entries[name] for name in self.names()]

    def create(self, name: str, tag: Optional[str] = None, **options) -> ServiceDefinition:
        """Shortcut for ``require(name).create(tag, **options)``."""
        return self.require(name).create(tag, **options)


_default_registry: Optional[ProviderRegistry] = None
_default_lock = threading.Lock()


def default_registry() -> ProviderRegistry:
    """
    The registry of built-in providers, populated and frozen on first use.
    """
    global _default_registry
    if _default_registry is None:
        with _default_lock:
            if _default_registry is None:
                from ..MODULES import cassandra

                registry = ProviderRegistry()
                cassandra.register(registry)
                _default_registry = registry.freeze()
    return _default_registry
