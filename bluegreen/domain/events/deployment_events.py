"""
Deployment Events

Architectural Intent:
- Events published while artifacts flow from the registry to production
- Consumers (CLI progress output, dashboards, notifications) subscribe by type
"""

from dataclasses import dataclass
from typing import Optional

from bluegreen.domain.events.event_base import DomainEvent


@dataclass(frozen=True)
class DeploymentStateChangedEvent(DomainEvent):
    service: str = ""
    from_state: str = ""
    to_state: str = ""
    reason: str = ""


@dataclass(frozen=True)
class DeploymentTerminatedEvent(DomainEvent):
    service: str = ""
    state: str = ""
    artifact_version: str = ""
    summary: str = ""


@dataclass(frozen=True)
class ArtifactRejectedEvent(DomainEvent):
    artifact_version: str = ""
    registry_location: str = ""
    reason: str = ""


@dataclass(frozen=True)
class PipelineFailedEvent(DomainEvent):
    artifact_version: str = ""
    stage: str = ""
    attempts: int = 0
    error: str = ""


@dataclass(frozen=True)
class PoolScaledEvent(DomainEvent):
    service: str = ""
    previous_count: int = 0
    desired_count: int = 0
    utilization: Optional[float] = None
