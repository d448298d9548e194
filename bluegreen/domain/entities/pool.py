"""
Pool Module

Architectural Intent:
- Pool is the only resource shared between the deployment state machine and
  the autoscaler
- Mutation of desired/current counts happens while holding the pool's lock;
  the lock is never held across a call to an external collaborator
- validation_locked marks a pool that must not be resized because a
  deployment is validating it

Design Decisions:
- Pool is a mutable entity (identity by pool_id), unlike Deployment
- The asyncio.Lock is process-local and is not persisted
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Optional

from bluegreen.domain.entities.descriptor import TaskDefinition


class PoolColor(Enum):
    BLUE = "blue"
    GREEN = "green"

    @property
    def other(self) -> "PoolColor":
        return PoolColor.GREEN if self is PoolColor.BLUE else PoolColor.BLUE


class PoolRole(Enum):
    PRODUCTION = "production"
    CANDIDATE = "candidate"
    RETIRED = "retired"


class HealthStatus(Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class InstanceHandle:
    instance_id: str
    pool_id: str

    def __str__(self) -> str:
        return self.instance_id


def make_pool_id(service: str, color: PoolColor, descriptor_id: str) -> str:
    return f"{service}-{color.value}-{descriptor_id[:8]}"


class Pool:
    def __init__(
        self,
        pool_id: str,
        service: str,
        color: PoolColor,
        artifact_version: str,
        desired_count: int,
        instances: Optional[list[InstanceHandle]] = None,
        role: PoolRole = PoolRole.CANDIDATE,
        validation_locked: bool = False,
        health: Optional[dict[str, HealthStatus]] = None,
        created_at: Optional[datetime] = None,
        task_definition: Optional[TaskDefinition] = None,
    ) -> None:
        self.pool_id = pool_id
        self.service = service
        self.color = color
        self.artifact_version = artifact_version
        self.desired_count = desired_count
        self.instances: list[InstanceHandle] = list(instances or [])
        self.role = role
        self.validation_locked = validation_locked
        self.health: dict[str, HealthStatus] = dict(health or {})
        self.created_at = created_at or datetime.now(UTC)
        self.task_definition = task_definition
        self.lock = asyncio.Lock()

    @property
    def current_count(self) -> int:
        return len(self.instances)

    @property
    def is_retired(self) -> bool:
        return self.role is PoolRole.RETIRED

    @property
    def can_autoscale(self) -> bool:
        return not self.validation_locked and not self.is_retired

    def add_instances(self, handles: list[InstanceHandle]) -> None:
        known = {h.instance_id for h in self.instances}
        self.instances.extend(h for h in handles if h.instance_id not in known)

    def remove_instances(self, handles: list[InstanceHandle]) -> None:
        gone = {h.instance_id for h in handles}
        self.instances = [h for h in self.instances if h.instance_id not in gone]
        for instance_id in gone:
            self.health.pop(instance_id, None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "service": self.service,
            "color": self.color.value,
            "artifact_version": self.artifact_version,
            "desired_count": self.desired_count,
            "instances": [h.instance_id for h in self.instances],
            "role": self.role.value,
            "validation_locked": self.validation_locked,
            "health": {k: v.value for k, v in self.health.items()},
            "created_at": self.created_at.isoformat(),
            "task_definition": self.task_definition.to_dict()
            if self.task_definition
            else None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Pool":
        pool_id = data["pool_id"]
        return Pool(
            pool_id=pool_id,
            service=data["service"],
            color=PoolColor(data["color"]),
            artifact_version=data["artifact_version"],
            desired_count=int(data["desired_count"]),
            instances=[InstanceHandle(i, pool_id) for i in data.get("instances", [])],
            role=PoolRole(data.get("role", PoolRole.CANDIDATE.value)),
            validation_locked=bool(data.get("validation_locked", False)),
            health={k: HealthStatus(v) for k, v in data.get("health", {}).items()},
            created_at=datetime.fromisoformat(data["created_at"])
            if data.get("created_at")
            else None,
            task_definition=TaskDefinition.from_dict(data["task_definition"])
            if data.get("task_definition")
            else None,
        )

    def __repr__(self) -> str:
        return (
            f"Pool(pool_id={self.pool_id}, color={self.color.value}, "
            f"version={self.artifact_version}, role={self.role.value}, "
            f"count={self.current_count}/{self.desired_count}, "
            f"locked={self.validation_locked})"
        )
