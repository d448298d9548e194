"""
Artifact Registry Port

Architectural Intent:
- Lets the ArtifactEvent listener confirm an image exists before any
  deployment work starts
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class ArtifactRegistryPort(Protocol):
    async def image_exists(self, registry_location: str, artifact_version: str) -> bool:
        """True when registry_location:artifact_version resolves.

        Raises on lookup errors (network, auth); callers treat those as
        invalid artifacts.
        """
        ...
