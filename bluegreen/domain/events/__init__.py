"""
Domain Events Package

Architectural Intent:
- Contains domain events and the event base class
- Events are the primary mechanism for cross-boundary communication
"""

from bluegreen.domain.events.event_base import DomainEvent
from bluegreen.domain.events.deployment_events import (
    DeploymentStateChangedEvent,
    DeploymentTerminatedEvent,
    ArtifactRejectedEvent,
    PipelineFailedEvent,
    PoolScaledEvent,
)

__all__ = [
    "DomainEvent",
    "DeploymentStateChangedEvent",
    "DeploymentTerminatedEvent",
    "ArtifactRejectedEvent",
    "PipelineFailedEvent",
    "PoolScaledEvent",
]
