"""
Deployment Descriptor Module

Architectural Intent:
- DeploymentDescriptor is the fully resolved plan for one deployment
- Shift strategy is a closed set of variants; each variant is its own type so
  the state machine can dispatch on it without string comparisons
- Descriptors serialize to plain dicts for persistence and manifest output

Design Decisions:
- descriptor_id doubles as the deployment id and seeds the candidate pool id,
  which makes re-provisioning after a crash detectable by pool identity
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from typing import Any, Union

from bluegreen.domain.entities.deployment_request import DeploymentRequest


@dataclass(frozen=True)
class AllAtOnceShift:
    mode = "all_at_once"

    def to_dict(self) -> dict[str, Any]:
        return {"mode": self.mode}


@dataclass(frozen=True)
class LinearShift:
    step_percent: int = 10
    step_interval_seconds: float = 60.0
    mode = "linear"

    def __post_init__(self) -> None:
        if not (1 <= self.step_percent <= 100):
            raise ValueError(f"step_percent must be 1-100, got {self.step_percent}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "step_percent": self.step_percent,
            "step_interval_seconds": self.step_interval_seconds,
        }


@dataclass(frozen=True)
class CanaryShift:
    canary_percent: int = 10
    canary_bake_seconds: float = 300.0
    mode = "canary"

    def __post_init__(self) -> None:
        if not (1 <= self.canary_percent < 100):
            raise ValueError(f"canary_percent must be 1-99, got {self.canary_percent}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "canary_percent": self.canary_percent,
            "canary_bake_seconds": self.canary_bake_seconds,
        }


ShiftPolicy = Union[AllAtOnceShift, LinearShift, CanaryShift]


def shift_policy_from_dict(data: dict[str, Any]) -> ShiftPolicy:
    mode = data.get("mode", "all_at_once")
    if mode == "all_at_once":
        return AllAtOnceShift()
    if mode == "linear":
        return LinearShift(
            step_percent=int(data.get("step_percent", 10)),
            step_interval_seconds=float(data.get("step_interval_seconds", 60.0)),
        )
    if mode == "canary":
        return CanaryShift(
            canary_percent=int(data.get("canary_percent", 10)),
            canary_bake_seconds=float(data.get("canary_bake_seconds", 300.0)),
        )
    raise ValueError(f"Unknown shift mode: {mode!r}")


@dataclass(frozen=True)
class TaskDefinition:
    family: str
    image: str
    cpu: int
    memory: int
    container_port: int
    desired_count: int

    def __post_init__(self) -> None:
        if self.desired_count < 1:
            raise ValueError(f"desired_count must be >= 1, got {self.desired_count}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "family": self.family,
            "image": self.image,
            "cpu": self.cpu,
            "memory": self.memory,
            "container_port": self.container_port,
            "desired_count": self.desired_count,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "TaskDefinition":
        return TaskDefinition(
            family=data["family"],
            image=data["image"],
            cpu=int(data["cpu"]),
            memory=int(data["memory"]),
            container_port=int(data["container_port"]),
            desired_count=int(data["desired_count"]),
        )


@dataclass(frozen=True)
class DeploymentDescriptor:
    request: DeploymentRequest
    task_definition: TaskDefinition
    shift_policy: ShiftPolicy = field(default_factory=AllAtOnceShift)
    bake_seconds: float = 300.0
    rollback_on_alarm: bool = True
    manifest: dict[str, Any] = field(default_factory=dict, compare=False)
    descriptor_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def service(self) -> str:
        return self.request.service

    @property
    def artifact_version(self) -> str:
        return self.request.artifact_version

    def to_dict(self) -> dict[str, Any]:
        return {
            "descriptor_id": self.descriptor_id,
            "request": self.request.to_dict(),
            "task_definition": self.task_definition.to_dict(),
            "shift_policy": self.shift_policy.to_dict(),
            "bake_seconds": self.bake_seconds,
            "rollback_on_alarm": self.rollback_on_alarm,
            "manifest": self.manifest,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "DeploymentDescriptor":
        return DeploymentDescriptor(
            descriptor_id=data["descriptor_id"],
            request=DeploymentRequest.from_dict(data["request"]),
            task_definition=TaskDefinition.from_dict(data["task_definition"]),
            shift_policy=shift_policy_from_dict(data.get("shift_policy", {})),
            bake_seconds=float(data.get("bake_seconds", 300.0)),
            rollback_on_alarm=bool(data.get("rollback_on_alarm", True)),
            manifest=data.get("manifest", {}),
        )
