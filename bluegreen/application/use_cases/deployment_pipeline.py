"""
Deployment Pipeline Use Case

Architectural Intent:
- Turns one DeploymentRequest into a DeploymentDescriptor and hands it to
  the coordinator
- Three strictly ordered stages (source -> configure -> dispatch) executed
  through the DAGOrchestrator as a linear dependency chain
- Each stage declares which of its errors are transient; only those are
  retried, with bounded exponential backoff

Design Decisions:
- A request is consumed at most once; re-running the pipeline for the same
  request id fails the source stage
- Manifests mirror the scheduler's task definition and the deploy tool's
  appspec so they can be archived next to the deployment
- Shift modes that need weighted routing are rejected at configure time:
  the load balancer only supports whole-listener swaps
"""

from __future__ import annotations
import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from bluegreen.application.dtos.deployment_dtos import SubmissionResult
from bluegreen.application.orchestration.dag_orchestrator import (
    DAGOrchestrator,
    StepFailed,
    WorkflowStep,
)
from bluegreen.domain.entities.deployment_request import DeploymentRequest
from bluegreen.domain.entities.descriptor import (
    AllAtOnceShift,
    DeploymentDescriptor,
    ShiftPolicy,
    TaskDefinition,
)
from bluegreen.domain.errors import InvalidArtifact, ManifestRenderError, PipelineFailed
from bluegreen.domain.services.retry import RetryPolicy
from bluegreen.domain.value_objects.artifact_version import ArtifactVersion, RegistryLocation

logger = logging.getLogger(__name__)

TRANSIENT_CONFIGURE_ERRORS = (ManifestRenderError, OSError)


@dataclass(frozen=True)
class PipelineSettings:
    desired_count: int = 2
    shift_policy: ShiftPolicy = field(default_factory=AllAtOnceShift)
    bake_seconds: float = 300.0
    rollback_on_alarm: bool = True
    artifacts_dir: Optional[str] = None
    task_family: Optional[str] = None


def render_task_definition(definition: TaskDefinition, container_name: str) -> dict[str, Any]:
    return {
        "family": definition.family,
        "networkMode": "awsvpc",
        "requiresCompatibilities": ["FARGATE"],
        "cpu": str(definition.cpu),
        "memory": str(definition.memory),
        "containerDefinitions": [
            {
                "name": container_name,
                "image": definition.image,
                "essential": True,
                "portMappings": [
                    {"containerPort": definition.container_port, "protocol": "tcp"}
                ],
            }
        ],
    }


def render_appspec(definition: TaskDefinition, container_name: str) -> dict[str, Any]:
    return {
        "version": 0.0,
        "Resources": [
            {
                "TargetService": {
                    "Type": "AWS::ECS::Service",
                    "Properties": {
                        "TaskDefinition": definition.family,
                        "LoadBalancerInfo": {
                            "ContainerName": container_name,
                            "ContainerPort": definition.container_port,
                        },
                    },
                }
            }
        ],
    }


class DeploymentPipeline:
    def __init__(
        self,
        coordinator: Any,
        settings: Optional[PipelineSettings] = None,
        configure_retry: Optional[RetryPolicy] = None,
    ) -> None:
        self.coordinator = coordinator
        self.settings = settings or PipelineSettings()
        self.configure_retry = configure_retry or RetryPolicy()
        self._consumed: set[str] = set()

    async def execute(self, request: DeploymentRequest) -> SubmissionResult:
        async def source_step(context: dict[str, Any], results: dict[str, Any]) -> DeploymentRequest:
            if request.request_id in self._consumed:
                raise ValueError(f"request {request.request_id} has already been consumed")
            try:
                ArtifactVersion(request.artifact_version)
                RegistryLocation.parse(request.registry_location)
            except ValueError as e:
                raise InvalidArtifact(request.artifact_version, str(e)) from e
            self._consumed.add(request.request_id)
            return request

        async def configure_step(context: dict[str, Any], results: dict[str, Any]) -> DeploymentDescriptor:
            return await self.configure(results["source"])

        async def dispatch_step(context: dict[str, Any], results: dict[str, Any]) -> SubmissionResult:
            return await self.coordinator.submit(results["configure"])

        orchestrator = DAGOrchestrator([
            WorkflowStep("source", source_step, depends_on=[]),
            WorkflowStep(
                "configure",
                configure_step,
                depends_on=["source"],
                retry=self.configure_retry,
                retry_on=TRANSIENT_CONFIGURE_ERRORS,
            ),
            WorkflowStep("dispatch", dispatch_step, depends_on=["configure"]),
        ])

        try:
            results = await orchestrator.execute({})
        except StepFailed as e:
            logger.error("Pipeline for %s failed: %s", request.artifact_version, e)
            raise PipelineFailed(e.step, e.attempts, e.cause) from e.cause

        submission: SubmissionResult = results["dispatch"]
        logger.info(
            "Pipeline dispatched %s: %s (%s)",
            request.artifact_version,
            submission.outcome.value,
            submission.deployment_id,
        )
        return submission

    async def configure(self, request: DeploymentRequest) -> DeploymentDescriptor:
        """Render the descriptor and its manifests for request."""
        settings = self.settings
        if not isinstance(settings.shift_policy, AllAtOnceShift):
            raise ValueError(
                f"shift mode {settings.shift_policy.mode!r} is not supported by "
                "whole-listener routing; use all_at_once"
            )

        definition = TaskDefinition(
            family=settings.task_family or request.service,
            image=request.image,
            cpu=request.task_spec.cpu,
            memory=request.task_spec.memory,
            container_port=request.task_spec.container_port,
            desired_count=settings.desired_count,
        )
        manifest = {
            "taskdef": render_task_definition(definition, request.service),
            "appspec": render_appspec(definition, request.service),
        }
        descriptor = DeploymentDescriptor(
            request=request,
            task_definition=definition,
            shift_policy=settings.shift_policy,
            bake_seconds=settings.bake_seconds,
            rollback_on_alarm=settings.rollback_on_alarm,
            manifest=manifest,
        )
        if settings.artifacts_dir:
            await asyncio.to_thread(
                self._write_manifests,
                Path(settings.artifacts_dir) / descriptor.descriptor_id,
                manifest,
            )
        return descriptor

    @staticmethod
    def _write_manifests(directory: Path, manifest: dict[str, Any]) -> None:
        try:
            rendered = {name: json.dumps(doc, indent=2) for name, doc in manifest.items()}
        except (TypeError, ValueError) as e:
            raise ManifestRenderError(f"manifest is not serializable: {e}") from e
        directory.mkdir(parents=True, exist_ok=True)
        for name, text in rendered.items():
            (directory / f"{name}.json").write_text(text + "\n")
        logger.debug("Wrote manifests to %s", directory)
