"""
Deployment Request Module

Architectural Intent:
- ArtifactEvent is the raw, untrusted notification from the registry/CI system
- DeploymentRequest is the normalized, validated and immutable result of
  accepting an ArtifactEvent; it is consumed once by the pipeline
- TaskSpec carries the resource quantities requested for each instance
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Optional, Union


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> datetime:
    """Parse an ISO 8601 string or epoch seconds into an aware datetime."""
    if value is None or value == "":
        return datetime.now(UTC)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, UTC)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Timestamp {value!r} is out of range") from e
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass(frozen=True)
class ArtifactEvent:
    artifact_version: str
    registry_location: str
    published_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ArtifactEvent":
        """Build from an inbound payload; camelCase and snake_case keys accepted."""
        version = data.get("artifactVersion", data.get("artifact_version"))
        location = data.get("registryLocation", data.get("registry_location"))
        if version is None or location is None:
            raise ValueError("Event requires artifactVersion and registryLocation")
        return ArtifactEvent(
            artifact_version=str(version),
            registry_location=str(location),
            published_at=parse_timestamp(
                data.get("publishedAt", data.get("published_at"))
            ),
        )


@dataclass(frozen=True)
class TaskSpec:
    cpu: int = 256
    memory: int = 512
    container_port: int = 8080

    def __post_init__(self) -> None:
        if self.cpu <= 0:
            raise ValueError(f"cpu must be positive, got {self.cpu}")
        if self.memory <= 0:
            raise ValueError(f"memory must be positive, got {self.memory}")
        if not (1 <= self.container_port <= 65535):
            raise ValueError(f"container_port must be 1-65535, got {self.container_port}")

    def to_dict(self) -> dict[str, int]:
        return {"cpu": self.cpu, "memory": self.memory, "container_port": self.container_port}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "TaskSpec":
        return TaskSpec(
            cpu=int(data.get("cpu", 256)),
            memory=int(data.get("memory", 512)),
            container_port=int(data.get("container_port", 8080)),
        )


@dataclass(frozen=True)
class DeploymentRequest:
    service: str
    artifact_version: str
    registry_location: str
    task_spec: TaskSpec
    published_at: datetime
    submitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def image(self) -> str:
        return f"{self.registry_location}:{self.artifact_version}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "service": self.service,
            "artifact_version": self.artifact_version,
            "registry_location": self.registry_location,
            "task_spec": self.task_spec.to_dict(),
            "published_at": self.published_at.isoformat(),
            "submitted_at": self.submitted_at.isoformat(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "DeploymentRequest":
        return DeploymentRequest(
            request_id=data["request_id"],
            service=data["service"],
            artifact_version=data["artifact_version"],
            registry_location=data["registry_location"],
            task_spec=TaskSpec.from_dict(data.get("task_spec", {})),
            published_at=parse_timestamp(data.get("published_at")),
            submitted_at=parse_timestamp(data.get("submitted_at")),
        )


def optional_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
