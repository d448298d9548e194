"""
Deployment Module

Architectural Intent:
- Deployment aggregate is the consistency boundary for one blue-green rollout
- Lifecycle managed through state transitions enforced by domain methods
- All state changes produce new instances to ensure auditability
- Every transition is appended to the history and emits a domain event

Lifecycle:
    Pending -> Provisioning -> ValidatingHealth -> ValidatingTraffic
            -> ShiftingProduction -> Baking -> Completed
    any non-terminal state -> RollingBack -> RolledBack | Failed
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Optional

from bluegreen.domain.entities.descriptor import DeploymentDescriptor
from bluegreen.domain.entities.deployment_request import optional_iso, parse_timestamp
from bluegreen.domain.errors import InvalidTransition
from bluegreen.domain.events.deployment_events import DeploymentStateChangedEvent


class DeploymentState(Enum):
    PENDING = "Pending"
    PROVISIONING = "Provisioning"
    VALIDATING_HEALTH = "ValidatingHealth"
    VALIDATING_TRAFFIC = "ValidatingTraffic"
    SHIFTING_PRODUCTION = "ShiftingProduction"
    BAKING = "Baking"
    COMPLETED = "Completed"
    ROLLING_BACK = "RollingBack"
    ROLLED_BACK = "RolledBack"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {DeploymentState.COMPLETED, DeploymentState.ROLLED_BACK, DeploymentState.FAILED}
)

_FORWARD = {
    DeploymentState.PENDING: DeploymentState.PROVISIONING,
    DeploymentState.PROVISIONING: DeploymentState.VALIDATING_HEALTH,
    DeploymentState.VALIDATING_HEALTH: DeploymentState.VALIDATING_TRAFFIC,
    DeploymentState.VALIDATING_TRAFFIC: DeploymentState.SHIFTING_PRODUCTION,
    DeploymentState.SHIFTING_PRODUCTION: DeploymentState.BAKING,
    DeploymentState.BAKING: DeploymentState.COMPLETED,
    DeploymentState.ROLLING_BACK: DeploymentState.ROLLED_BACK,
}


class FailureCategory(Enum):
    NONE = "none"
    PROVISIONING = "provisioning"
    VALIDATION = "validation"
    TRAFFIC_SHIFT = "traffic_shift"
    CANCELLED = "cancelled"
    ROLLBACK = "rollback"


@dataclass(frozen=True)
class StateTransition:
    from_state: DeploymentState
    to_state: DeploymentState
    at: datetime
    reason: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "at": self.at.isoformat(),
            "reason": self.reason,
        }

    @staticmethod
    def from_dict(data: dict[str, str]) -> "StateTransition":
        return StateTransition(
            from_state=DeploymentState(data["from"]),
            to_state=DeploymentState(data["to"]),
            at=parse_timestamp(data["at"]),
            reason=data.get("reason", ""),
        )


@dataclass(frozen=True)
class Deployment:
    descriptor: DeploymentDescriptor
    state: DeploymentState = DeploymentState.PENDING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: Optional[datetime] = None
    history: tuple[StateTransition, ...] = ()
    candidate_pool_id: Optional[str] = None
    prior_pool_id: Optional[str] = None
    prior_artifact_version: Optional[str] = None
    production_shifted: bool = False
    last_error: Optional[str] = None
    failure_category: FailureCategory = FailureCategory.NONE
    domain_events: tuple = field(default=(), compare=False, repr=False)

    @property
    def deployment_id(self) -> str:
        return self.descriptor.descriptor_id

    @property
    def service(self) -> str:
        return self.descriptor.service

    @property
    def artifact_version(self) -> str:
        return self.descriptor.artifact_version

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def _transition(self, to: DeploymentState, reason: str, **changes: Any) -> "Deployment":
        now = datetime.now(UTC)
        event = DeploymentStateChangedEvent(
            aggregate_id=self.deployment_id,
            service=self.service,
            from_state=self.state.value,
            to_state=to.value,
            reason=reason,
        )
        return replace(
            self,
            state=to,
            history=self.history + (StateTransition(self.state, to, now, reason),),
            finished_at=now if to.is_terminal else self.finished_at,
            domain_events=self.domain_events + (event,),
            **changes,
        )

    def advance(self, to: DeploymentState, reason: str = "", **changes: Any) -> "Deployment":
        """Move one step along the forward path."""
        if _FORWARD.get(self.state) is not to:
            raise InvalidTransition(
                f"Deployment {self.deployment_id} cannot move from "
                f"{self.state.value} to {to.value}"
            )
        return self._transition(to, reason, **changes)

    def begin_rollback(self, reason: str, category: FailureCategory) -> "Deployment":
        if self.is_terminal or self.state is DeploymentState.ROLLING_BACK:
            raise InvalidTransition(
                f"Deployment {self.deployment_id} cannot roll back from {self.state.value}"
            )
        return self._transition(
            DeploymentState.ROLLING_BACK,
            reason,
            last_error=reason,
            failure_category=category,
        )

    def fail(self, reason: str) -> "Deployment":
        if self.state is not DeploymentState.ROLLING_BACK:
            raise InvalidTransition("Deployment can only fail while ROLLING_BACK")
        return self._transition(
            DeploymentState.FAILED,
            reason,
            last_error=reason,
            failure_category=FailureCategory.ROLLBACK,
        )

    def with_changes(self, **changes: Any) -> "Deployment":
        return replace(self, **changes)

    def clear_events(self) -> "Deployment":
        return replace(self, domain_events=())

    def rollback_origin(self) -> Optional[DeploymentState]:
        """State the deployment was in when rollback began."""
        for transition in reversed(self.history):
            if transition.to_state is DeploymentState.ROLLING_BACK:
                return transition.from_state
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "descriptor": self.descriptor.to_dict(),
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": optional_iso(self.finished_at),
            "history": [t.to_dict() for t in self.history],
            "candidate_pool_id": self.candidate_pool_id,
            "prior_pool_id": self.prior_pool_id,
            "prior_artifact_version": self.prior_artifact_version,
            "production_shifted": self.production_shifted,
            "last_error": self.last_error,
            "failure_category": self.failure_category.value,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Deployment":
        return Deployment(
            descriptor=DeploymentDescriptor.from_dict(data["descriptor"]),
            state=DeploymentState(data["state"]),
            started_at=parse_timestamp(data["started_at"]),
            finished_at=parse_timestamp(data["finished_at"])
            if data.get("finished_at")
            else None,
            history=tuple(StateTransition.from_dict(t) for t in data.get("history", [])),
            candidate_pool_id=data.get("candidate_pool_id"),
            prior_pool_id=data.get("prior_pool_id"),
            prior_artifact_version=data.get("prior_artifact_version"),
            production_shifted=bool(data.get("production_shifted", False)),
            last_error=data.get("last_error"),
            failure_category=FailureCategory(data.get("failure_category", "none")),
        )
