"""Tests for ArtifactEvent acceptance and hand-off to the pipeline."""

import pytest
from unittest.mock import AsyncMock

from bluegreen.application.use_cases.artifact_listener import ArtifactEventListener
from bluegreen.domain.entities.deployment_request import ArtifactEvent
from bluegreen.domain.errors import InvalidArtifact, PipelineFailed
from bluegreen.domain.events import ArtifactRejectedEvent, PipelineFailedEvent

from conftest import REGISTRY


def event(version="v1", location=REGISTRY, **extra):
    return {"artifactVersion": version, "registryLocation": location, **extra}


@pytest.fixture
def mock_pipeline():
    return AsyncMock()


@pytest.fixture
def isolated_listener(registry, mock_pipeline, event_bus):
    return ArtifactEventListener(
        registry=registry,
        pipeline=mock_pipeline,
        service="web",
        expected_repository=REGISTRY,
        event_bus=event_bus,
    )


class TestAccept:
    @pytest.mark.asyncio
    async def test_accepts_published_image(self, isolated_listener):
        request = await isolated_listener.accept(
            event("v2", publishedAt="2024-05-01T00:00:00Z")
        )

        assert request.service == "web"
        assert request.artifact_version == "v2"
        assert request.image == f"{REGISTRY}:v2"
        assert request.published_at.year == 2024

    @pytest.mark.asyncio
    async def test_accepts_event_objects(self, isolated_listener):
        request = await isolated_listener.accept(ArtifactEvent("v3", REGISTRY))
        assert request.artifact_version == "v3"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload,reason",
        [
            (event("latest"), "Mutable tag"),
            (event("bad tag"), "Malformed"),
            (event("v1", "Registry/UPPER"), "Invalid repository component"),
            (event("v1", "registry.example.com/other/web"), "does not match"),
            (event("v9"), "not found"),
            ({"artifactVersion": "v1"}, "requires"),
        ],
    )
    async def test_rejections(self, isolated_listener, payload, reason):
        with pytest.raises(InvalidArtifact, match=reason):
            await isolated_listener.accept(payload)

    @pytest.mark.asyncio
    async def test_registry_errors_reject(self, isolated_listener, registry):
        registry.fail = True

        with pytest.raises(InvalidArtifact, match="registry lookup failed"):
            await isolated_listener.accept(event("v1"))

    @pytest.mark.asyncio
    async def test_any_repository_without_expectation(self, registry, mock_pipeline):
        registry.publish("other.example.com/web", "v1")
        listener = ArtifactEventListener(registry, mock_pipeline, "web")

        request = await listener.accept(event("v1", "other.example.com/web"))

        assert request.registry_location == "other.example.com/web"


class TestHandle:
    @pytest.mark.asyncio
    async def test_rejection_is_published_not_raised(
        self, isolated_listener, mock_pipeline, recorded_events
    ):
        assert await isolated_listener.handle(event("latest")) is None

        rejected = [e for e in recorded_events if isinstance(e, ArtifactRejectedEvent)]
        assert len(rejected) == 1
        assert rejected[0].artifact_version == "latest"
        assert rejected[0].registry_location == REGISTRY
        mock_pipeline.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_accepted_event_starts_pipeline(self, isolated_listener, mock_pipeline):
        request = await isolated_listener.handle(event("v1"))
        await isolated_listener.drain()

        mock_pipeline.execute.assert_awaited_once_with(request)

    @pytest.mark.asyncio
    async def test_pipeline_failure_is_published(
        self, isolated_listener, mock_pipeline, recorded_events
    ):
        mock_pipeline.execute.side_effect = PipelineFailed("configure", 3, OSError("disk full"))

        await isolated_listener.handle(event("v1"))
        await isolated_listener.drain()

        failed = [e for e in recorded_events if isinstance(e, PipelineFailedEvent)]
        assert len(failed) == 1
        assert failed[0].stage == "configure"
        assert failed[0].attempts == 3
        assert failed[0].error == "disk full"

    @pytest.mark.asyncio
    async def test_pipeline_crash_is_published(
        self, isolated_listener, mock_pipeline, recorded_events
    ):
        mock_pipeline.execute.side_effect = RuntimeError("boom")

        await isolated_listener.handle(event("v1"))
        await isolated_listener.drain()

        failed = [e for e in recorded_events if isinstance(e, PipelineFailedEvent)]
        assert failed[0].stage == "unknown"

    @pytest.mark.asyncio
    async def test_listen_counts_accepted(self, isolated_listener):
        async def source():
            for payload in (event("v1"), event("latest"), event("v2")):
                yield payload

        assert await isolated_listener.listen(source()) == 2
        await isolated_listener.drain()

    @pytest.mark.asyncio
    async def test_listen_survives_out_of_range_timestamps(
        self, isolated_listener, mock_pipeline, recorded_events
    ):
        async def source():
            yield event("v1", publishedAt=float("nan"))
            yield event("v2", publishedAt=1e20)
            yield event("v3")

        assert await isolated_listener.listen(source()) == 1
        await isolated_listener.drain()

        rejected = [e for e in recorded_events if isinstance(e, ArtifactRejectedEvent)]
        assert [e.artifact_version for e in rejected] == ["v1", "v2"]
        assert "out of range" in rejected[1].reason
        assert mock_pipeline.execute.await_args.args[0].artifact_version == "v3"

    @pytest.mark.asyncio
    async def test_unprocessable_event_is_rejected(self, isolated_listener, recorded_events):
        assert await isolated_listener.handle(object()) is None

        rejected = [e for e in recorded_events if isinstance(e, ArtifactRejectedEvent)]
        assert rejected[0].artifact_version == "?"
        assert rejected[0].reason.startswith("unprocessable event")

    @pytest.mark.asyncio
    async def test_end_to_end_deploys(self, listener, coordinator, traffic):
        await listener.handle(event("v1"))
        await listener.drain()
        await coordinator.wait_idle()

        assert traffic.production_pool.artifact_version == "v1"
