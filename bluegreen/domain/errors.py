"""
Domain Errors

Architectural Intent:
- Single taxonomy for every failure the orchestrator can surface
- Each category maps onto one propagation rule (retry, roll back, escalate)
- Carries enough context for operators to act without reading logs

Propagation:
- InvalidArtifact: rejected before the pipeline, never retried
- PipelineFailed: raised after bounded retries of a pipeline stage
- TrafficControlError: scheduler/load-balancer failure after bounded retries,
  triggers rollback
- ValidationFailed / ValidationTimeout: never retried, trigger rollback
- RollbackFailed: terminal, requires manual intervention
"""

from __future__ import annotations
from typing import Optional


class BlueGreenError(Exception):
    """Base class for all orchestrator errors."""


class InvalidArtifact(BlueGreenError):
    def __init__(self, artifact_version: str, reason: str) -> None:
        super().__init__(f"Invalid artifact {artifact_version!r}: {reason}")
        self.artifact_version = artifact_version
        self.reason = reason


class ManifestRenderError(BlueGreenError):
    """Transient failure while rendering deployment manifests."""


class PipelineFailed(BlueGreenError):
    def __init__(
        self, stage: str, attempts: int, cause: Optional[BaseException] = None
    ) -> None:
        super().__init__(
            f"Pipeline stage '{stage}' failed after {attempts} attempt(s): {cause}"
        )
        self.stage = stage
        self.attempts = attempts
        self.cause = cause


class TrafficControlError(BlueGreenError):
    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.message = message


class ProvisioningTimeout(TrafficControlError):
    def __init__(self, pool_id: str, running: int, desired: int, timeout: float) -> None:
        super().__init__(
            "await_capacity",
            f"pool {pool_id} reached {running}/{desired} running instances "
            f"within {timeout}s",
        )
        self.pool_id = pool_id


class ValidationFailed(BlueGreenError):
    """Explicit failure signal raised during validation or bake."""


class HealthCheckFailed(ValidationFailed):
    def __init__(self, pool_id: str, failing_windows: int, unhealthy: list[str]) -> None:
        super().__init__(
            f"Pool {pool_id} failed health checks for {failing_windows} consecutive "
            f"windows (unhealthy: {', '.join(unhealthy) or 'none'})"
        )
        self.pool_id = pool_id
        self.failing_windows = failing_windows
        self.unhealthy = unhealthy


class TrafficValidationFailed(ValidationFailed):
    pass


class AlarmTriggered(ValidationFailed):
    def __init__(self, pool_id: str, alarms: list[str]) -> None:
        super().__init__(f"Alarm(s) fired on pool {pool_id}: {', '.join(alarms)}")
        self.pool_id = pool_id
        self.alarms = alarms


class ValidationTimeout(BlueGreenError):
    def __init__(self, phase: str, timeout: float) -> None:
        super().__init__(f"{phase} validation exceeded {timeout}s")
        self.phase = phase
        self.timeout = timeout


class DeploymentCancelled(BlueGreenError):
    pass


class RollbackFailed(BlueGreenError):
    def __init__(
        self,
        last_state: str,
        production_pool_id: Optional[str],
        orphaned_pool_ids: list[str],
        last_error: str,
    ) -> None:
        super().__init__(
            f"Rollback from {last_state} failed: {last_error} "
            f"(production={production_pool_id}, orphaned={orphaned_pool_ids})"
        )
        self.last_state = last_state
        self.production_pool_id = production_pool_id
        self.orphaned_pool_ids = orphaned_pool_ids
        self.last_error = last_error


class InvalidTransition(BlueGreenError, ValueError):
    pass
