"""
Deployment DTOs

Architectural Intent:
- Data Transfer Objects for the coordinator and CLI boundaries
- DeploymentReport is the operator-facing view of a terminal (or in-flight)
  deployment, decoupled from the Deployment aggregate
- A Failed report always carries remediation pointers
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from bluegreen.domain.entities.deployment import (
    Deployment,
    DeploymentState,
    FailureCategory,
)


class SubmissionOutcome(Enum):
    ADMITTED = "admitted"
    QUEUED = "queued"
    NOOP = "noop"


@dataclass(frozen=True)
class SubmissionResult:
    outcome: SubmissionOutcome
    deployment_id: Optional[str]
    artifact_version: str

    def __post_init__(self) -> None:
        if not self.artifact_version:
            raise ValueError("artifact_version cannot be empty")


@dataclass(frozen=True)
class DeploymentReport:
    deployment_id: str
    service: str
    artifact_version: str
    state: str
    summary: str
    failure_category: str = FailureCategory.NONE.value
    last_error: Optional[str] = None
    production_pool_id: Optional[str] = None
    orphaned_pool_ids: list[str] = field(default_factory=list)
    remediation: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == DeploymentState.COMPLETED.value

    @staticmethod
    def from_deployment(
        deployment: Deployment,
        production_pool_id: Optional[str] = None,
        orphaned_pool_ids: Optional[list[str]] = None,
    ) -> "DeploymentReport":
        state = deployment.state
        orphaned = list(orphaned_pool_ids or [])
        remediation = None
        version = deployment.artifact_version

        if state is DeploymentState.COMPLETED:
            summary = f"{version} is serving production from {deployment.candidate_pool_id}"
        elif state is DeploymentState.ROLLED_BACK:
            origin = deployment.rollback_origin()
            where = origin.value if origin else "unknown state"
            summary = (
                f"{version} rolled back from {where} "
                f"({deployment.failure_category.value}): {deployment.last_error}"
            )
        elif state is DeploymentState.FAILED:
            summary = f"{version} rollback failed: {deployment.last_error}"
            remediation = (
                f"Manual intervention required: production listener targets "
                f"{production_pool_id or 'nothing'}; orphaned pool(s): "
                f"{', '.join(orphaned) or 'none'}"
            )
        else:
            summary = f"{version} in progress ({state.value})"

        return DeploymentReport(
            deployment_id=deployment.deployment_id,
            service=deployment.service,
            artifact_version=version,
            state=state.value,
            summary=summary,
            failure_category=deployment.failure_category.value,
            last_error=deployment.last_error,
            production_pool_id=production_pool_id,
            orphaned_pool_ids=orphaned,
            remediation=remediation,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "service": self.service,
            "artifact_version": self.artifact_version,
            "state": self.state,
            "summary": self.summary,
            "failure_category": self.failure_category,
            "last_error": self.last_error,
            "production_pool_id": self.production_pool_id,
            "orphaned_pool_ids": self.orphaned_pool_ids,
            "remediation": self.remediation,
        }
