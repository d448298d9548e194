"""
Simulated Artifact Registry Adapter

Architectural Intent:
- Implements ArtifactRegistryPort over an in-memory set of published images
- Shaped after ECR DescribeImages: a missing tag is "not found", a lookup
  failure raises
"""

import logging

logger = logging.getLogger(__name__)


class SimulatedRegistry:
    def __init__(self, allow_all: bool = False) -> None:
        self.allow_all = allow_all
        self.fail = False
        self._images: set[tuple[str, str]] = set()

    def publish(self, registry_location: str, artifact_version: str) -> None:
        self._images.add((registry_location, artifact_version))

    async def image_exists(self, registry_location: str, artifact_version: str) -> bool:
        if self.fail:
            raise ConnectionError("DescribeImages: registry unreachable")
        found = self.allow_all or (registry_location, artifact_version) in self._images
        logger.debug("DescribeImages %s:%s -> %s", registry_location, artifact_version, found)
        return found
