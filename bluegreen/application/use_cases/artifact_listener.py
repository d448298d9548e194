"""
ArtifactEvent Listener Use Case

Architectural Intent:
- Entry point for "image published" notifications from the registry/CI
- Validates each event into an immutable DeploymentRequest, or rejects it
  with InvalidArtifact before any deployment work starts
- Hands accepted requests to the pipeline without blocking the listener

Design Decisions:
- handle() never raises; rejections, unprocessable events and pipeline
  failures are logged and published as events instead
- Pipeline runs are tracked tasks so that drain() can wait for them and no
  failure is dropped
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Union

from bluegreen.application.use_cases.deployment_pipeline import DeploymentPipeline
from bluegreen.domain.entities.deployment_request import (
    ArtifactEvent,
    DeploymentRequest,
    TaskSpec,
)
from bluegreen.domain.errors import InvalidArtifact, PipelineFailed
from bluegreen.domain.events.deployment_events import (
    ArtifactRejectedEvent,
    PipelineFailedEvent,
)
from bluegreen.domain.ports.event_bus_port import EventBusPort
from bluegreen.domain.ports.registry_port import ArtifactRegistryPort
from bluegreen.domain.value_objects.artifact_version import ArtifactVersion, RegistryLocation

logger = logging.getLogger(__name__)

EventLike = Union[ArtifactEvent, dict[str, Any]]


class ArtifactEventListener:
    def __init__(
        self,
        registry: ArtifactRegistryPort,
        pipeline: DeploymentPipeline,
        service: str,
        expected_repository: Optional[str] = None,
        task_spec: Optional[TaskSpec] = None,
        event_bus: Optional[EventBusPort] = None,
    ) -> None:
        self.registry = registry
        self.pipeline = pipeline
        self.service = service
        self.expected_repository = expected_repository
        self.task_spec = task_spec or TaskSpec()
        self.event_bus = event_bus
        self._tasks: set[asyncio.Task] = set()

    async def accept(self, event: EventLike) -> DeploymentRequest:
        """Validate event into a DeploymentRequest or raise InvalidArtifact."""
        if isinstance(event, dict):
            try:
                event = ArtifactEvent.from_dict(event)
            except ValueError as e:
                raise InvalidArtifact(str(event.get("artifactVersion", "?")), str(e)) from e

        version_text = event.artifact_version
        try:
            version = ArtifactVersion(version_text)
            location = RegistryLocation.parse(event.registry_location)
        except ValueError as e:
            raise InvalidArtifact(version_text, str(e)) from e

        if self.expected_repository:
            expected = RegistryLocation.parse(self.expected_repository)
            if location.repository != expected.repository or (
                expected.host and location.host != expected.host
            ):
                raise InvalidArtifact(
                    version_text,
                    f"registry location {location} does not match repository {expected}",
                )

        try:
            exists = await self.registry.image_exists(str(location), str(version))
        except Exception as e:
            raise InvalidArtifact(version_text, f"registry lookup failed: {e}") from e
        if not exists:
            raise InvalidArtifact(version_text, f"image {location.image(version)} not found")

        return DeploymentRequest(
            service=self.service,
            artifact_version=str(version),
            registry_location=str(location),
            task_spec=self.task_spec,
            published_at=event.published_at,
        )

    async def handle(self, event: EventLike) -> Optional[DeploymentRequest]:
        try:
            request = await self.accept(event)
        except InvalidArtifact as e:
            logger.error("Rejected artifact event: %s", e)
            await self._reject(event, e.artifact_version, e.reason)
            return None
        except Exception as e:
            logger.exception("Could not process artifact event %r", event)
            await self._reject(event, _version_of(event), f"unprocessable event: {e}")
            return None

        task = asyncio.create_task(
            self._run_pipeline(request), name=f"pipeline-{request.artifact_version}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Accepted %s; pipeline started", request.image)
        return request

    async def _run_pipeline(self, request: DeploymentRequest) -> None:
        try:
            await self.pipeline.execute(request)
        except PipelineFailed as e:
            logger.error("Pipeline failed for %s: %s", request.artifact_version, e)
            await self._publish(
                PipelineFailedEvent(
                    aggregate_id=request.request_id,
                    artifact_version=request.artifact_version,
                    stage=e.stage,
                    attempts=e.attempts,
                    error=str(e.cause),
                )
            )
        except Exception as e:
            logger.exception("Pipeline crashed for %s", request.artifact_version)
            await self._publish(
                PipelineFailedEvent(
                    aggregate_id=request.request_id,
                    artifact_version=request.artifact_version,
                    stage="unknown",
                    attempts=1,
                    error=str(e),
                )
            )

    async def listen(self, source: AsyncIterator[EventLike]) -> int:
        """Handle every event from source; returns how many were accepted."""
        accepted = 0
        async for event in source:
            if await self.handle(event) is not None:
                accepted += 1
        return accepted

    async def drain(self) -> None:
        """Wait for every pipeline run started by handle()."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _reject(self, event: EventLike, version: str, reason: str) -> None:
        await self._publish(
            ArtifactRejectedEvent(
                artifact_version=version,
                registry_location=_location_of(event),
                reason=reason,
            )
        )

    async def _publish(self, event: Any) -> None:
        if self.event_bus:
            await self.event_bus.publish([event])


def _version_of(event: EventLike) -> str:
    if isinstance(event, dict):
        return str(event.get("artifactVersion", event.get("artifact_version", "?")))
    return str(getattr(event, "artifact_version", "?"))


def _location_of(event: EventLike) -> str:
    if isinstance(event, dict):
        return str(event.get("registryLocation", event.get("registry_location", "")))
    return str(getattr(event, "registry_location", ""))
