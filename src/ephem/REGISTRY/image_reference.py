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
Image reference handling for providers: parses references like
'cassandra:3.11.2' or 'registry.local:5000/team/cassandra@sha256:...' and
derives tagged variants of a provider's base image.
"""

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed container image reference.

    Examples:
        - cassandra -> docker.io/library/cassandra:latest
        - cassandra:3.11 -> docker.io/library/cassandra:3.11
        - localhost:5000/cassandra:4 -> localhost:5000/cassandra:4
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'cassandra:3.11.2').

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: If the reference is empty.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValueError("Empty image reference")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)

        tag = None
        last_colon = reference.rfind(":")
        if last_colon != -1:
            after_colon = reference[last_colon + 1:]
            # a colon followed by a path or a bare number belongs to a registry port
            if "/" not in after_colon and not after_colon.isdigit():
                tag = after_colon
                reference = reference[:last_colon]

        parts = reference.split("/")
        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry = first
            repository = "/".join(parts[1:])
        elif len(parts) == 1:
            registry = cls.DEFAULT_REGISTRY
            repository = f"library/{first}"
        else:
            registry = cls.DEFAULT_REGISTRY
            repository = reference

        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def name(self) -> str:
        """Repository as a user would type it, without registry or tag."""
        if self.registry == self.DEFAULT_REGISTRY:
            if self.repository.startswith("library/"):
                return self.repository[len("library/"):]
            return self.repository
        return f"{self.registry}/{self.repository}"

    def with_tag(self, tag: str) -> "ImageReference":
        """Same repository with a different tag; any digest is dropped."""
        if not tag:
            raise ValueError("Empty image tag")
        return replace(self, tag=tag, digest=None)

    def same_repository(self, other: "ImageReference") -> bool:
        return self.registry == other.registry and self.repository == other.repository

    def __str__(self) -> str:
        if self.digest:
            return f"{self.name}@{self.digest}"
        return f"{self.name}:{self.tag}"
