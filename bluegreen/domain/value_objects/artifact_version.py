"""
Artifact Version Value Objects

Architectural Intent:
- Immutable value objects for the identity of a deployable container image
- Validates tag grammar and registry location shape at construction time
"""

import re
from dataclasses import dataclass

# Docker tag grammar: first char word char, then up to 127 of [\w.-]
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")

# Lowercase path components separated by '/', each alnum with ._- separators
_PATH_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:[._-][a-z0-9]+)*$")


@dataclass(frozen=True)
class ArtifactVersion:
    """
    Value Object representing an immutable image tag.
    """
    value: str

    def __post_init__(self) -> None:
        if not _TAG_RE.match(self.value or ""):
            raise ValueError(f"Malformed artifact tag: {self.value!r}")
        if self.value == "latest":
            raise ValueError("Mutable tag 'latest' cannot be deployed")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RegistryLocation:
    """
    Value Object for an image repository, e.g. 'registry.example.com/team/web'.

    The first component is treated as the registry host when it contains a
    '.' or ':' or is 'localhost'; the remainder is the repository path.
    """
    host: str
    repository: str

    def __post_init__(self) -> None:
        if not self.repository:
            raise ValueError("Registry location has no repository path")
        for component in self.repository.split("/"):
            if not _PATH_COMPONENT_RE.match(component):
                raise ValueError(f"Invalid repository component: {component!r}")

    def __str__(self) -> str:
        return f"{self.host}/{self.repository}" if self.host else self.repository

    def image(self, version: ArtifactVersion) -> str:
        return f"{self}:{version}"

    @staticmethod
    def parse(location: str) -> "RegistryLocation":
        location = (location or "").strip().rstrip("/")
        if not location:
            raise ValueError("Registry location cannot be empty")
        if "@" in location:
            raise ValueError("Registry location must not carry a digest")
        first, _, rest = location.partition("/")
        if rest and ("." in first or ":" in first or first == "localhost"):
            return RegistryLocation(host=first, repository=rest)
        return RegistryLocation(host="", repository=location)
