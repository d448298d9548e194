"""
Application Orchestration Package

Architectural Intent:
- Contains workflow orchestration components
- DAG-based execution for the deployment pipeline stages
- The deployment state machine that drives one rollout to a terminal state
"""

from bluegreen.application.orchestration.dag_orchestrator import (
    DAGOrchestrator,
    WorkflowStep,
    OrchestrationError,
    StepFailed,
)
from bluegreen.application.orchestration.state_machine import (
    DeploymentStateMachine,
    DeploymentTimings,
    categorize_failure,
)

__all__ = [
    "DAGOrchestrator",
    "WorkflowStep",
    "OrchestrationError",
    "StepFailed",
    "DeploymentStateMachine",
    "DeploymentTimings",
    "categorize_failure",
]
