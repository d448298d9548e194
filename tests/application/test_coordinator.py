"""Tests for the per-service deployment coordinator."""

import asyncio

import pytest

from bluegreen.application.dtos.deployment_dtos import SubmissionOutcome
from bluegreen.application.orchestration.state_machine import DeploymentStateMachine
from bluegreen.application.use_cases.deployment_coordinator import (
    SKIPPED_SUPERSEDED,
    DeploymentCoordinator,
)
from bluegreen.domain.entities.deployment import Deployment, DeploymentState, FailureCategory
from bluegreen.domain.entities.pool import PoolColor, make_pool_id
from bluegreen.domain.events import DeploymentTerminatedEvent
from bluegreen.domain.services.health_oracle import HealthOracle
from bluegreen.domain.services.traffic_controller import TrafficController
from bluegreen.infrastructure.repositories.sqlite_repository import SQLiteRepository

from conftest import PRODUCTION_LISTENER, SERVICE, TEST_LISTENER


class TestSubmission:
    def test_unknown_queue_policy_rejected(self, state_machine, traffic, repository):
        with pytest.raises(ValueError, match="queue_policy"):
            DeploymentCoordinator(SERVICE, state_machine, traffic, repository, queue_policy="lifo")

    @pytest.mark.asyncio
    async def test_admitted_deployment_runs_to_completion(self, coordinator, descriptor_factory):
        result = await coordinator.submit(descriptor_factory("v1"))

        assert result.outcome is SubmissionOutcome.ADMITTED
        assert coordinator.active_deployment_id == result.deployment_id
        deployment = await coordinator.wait(result.deployment_id, timeout=2)
        assert deployment.state == DeploymentState.COMPLETED
        assert coordinator.active_deployment_id is None

    @pytest.mark.asyncio
    async def test_second_request_is_queued(self, coordinator, repository, descriptor_factory):
        await coordinator.submit(descriptor_factory("v1"))

        result = await coordinator.submit(descriptor_factory("v2"))

        assert result.outcome is SubmissionOutcome.QUEUED
        assert [d.artifact_version for d in repository.list_queue(SERVICE)] == ["v2"]
        await coordinator.wait_idle()
        assert repository.list_queue(SERVICE) == []

    @pytest.mark.asyncio
    async def test_queue_runs_in_arrival_order(
        self, coordinator, traffic, recorded_events, descriptor_factory
    ):
        for version in ("v1", "v2", "v3"):
            await coordinator.submit(descriptor_factory(version))

        await coordinator.wait_idle()

        finished = [e for e in recorded_events if isinstance(e, DeploymentTerminatedEvent)]
        assert [e.artifact_version for e in finished] == ["v1", "v2", "v3"]
        assert all(e.state == "Completed" for e in finished)
        assert traffic.production_pool.artifact_version == "v3"

    @pytest.mark.asyncio
    async def test_keep_latest_drops_superseded_requests(
        self, state_machine, traffic, repository, event_bus, descriptor_factory
    ):
        coordinator = DeploymentCoordinator(
            SERVICE, state_machine, traffic, repository, event_bus, queue_policy="keep_latest"
        )
        await coordinator.submit(descriptor_factory("v1"))
        skipped = await coordinator.submit(descriptor_factory("v2"))
        latest = await coordinator.submit(descriptor_factory("v3"))

        await coordinator.wait_idle()

        assert repository.get_deployment(skipped.deployment_id) is None
        assert repository.get_deployment(latest.deployment_id).state == DeploymentState.COMPLETED
        assert traffic.production_pool.artifact_version == "v3"

    @pytest.mark.asyncio
    async def test_superseded_request_releases_its_waiters(
        self, state_machine, traffic, repository, event_bus, descriptor_factory
    ):
        coordinator = DeploymentCoordinator(
            SERVICE, state_machine, traffic, repository, event_bus, queue_policy="keep_latest"
        )
        await coordinator.submit(descriptor_factory("v1", bake_seconds=0.1))
        skipped = await coordinator.submit(descriptor_factory("v2"))
        waiting = asyncio.create_task(coordinator.wait(skipped.deployment_id, timeout=1))
        await asyncio.sleep(0)

        await coordinator.submit(descriptor_factory("v3"))

        assert await waiting is None
        assert await coordinator.wait(skipped.deployment_id, timeout=1) is None
        assert coordinator.skip_reason(skipped.deployment_id) == SKIPPED_SUPERSEDED
        await coordinator.wait_idle()

    @pytest.mark.asyncio
    async def test_redeploying_production_version_is_noop(
        self, coordinator, scheduler, descriptor_factory
    ):
        first = await coordinator.submit(descriptor_factory("v1"))
        await coordinator.wait(first.deployment_id, timeout=2)
        created = len(scheduler.created)

        again = await coordinator.submit(descriptor_factory("v1"))

        assert again.outcome is SubmissionOutcome.NOOP
        assert again.deployment_id is None
        assert coordinator.active_deployment_id is None
        assert len(scheduler.created) == created

    @pytest.mark.asyncio
    async def test_queued_duplicate_resolves_as_noop(self, coordinator, scheduler, descriptor_factory):
        await coordinator.submit(descriptor_factory("v1"))
        duplicate = await coordinator.submit(descriptor_factory("v1"))
        assert duplicate.outcome is SubmissionOutcome.QUEUED

        await coordinator.wait_idle()

        assert await coordinator.wait(duplicate.deployment_id, timeout=1) is None
        assert len(scheduler.created) == 2

    @pytest.mark.asyncio
    async def test_terminated_event_carries_summary(
        self, coordinator, recorded_events, descriptor_factory
    ):
        result = await coordinator.submit(descriptor_factory("v1"))
        await coordinator.wait(result.deployment_id, timeout=2)

        event = next(e for e in recorded_events if isinstance(e, DeploymentTerminatedEvent))
        assert event.aggregate_id == result.deployment_id
        assert event.service == SERVICE
        assert "serving production" in event.summary


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_active_deployment(self, coordinator, descriptor_factory):
        result = await coordinator.submit(descriptor_factory("v1"))

        assert await coordinator.cancel()

        deployment = await coordinator.wait(result.deployment_id, timeout=2)
        assert deployment.state == DeploymentState.ROLLED_BACK
        assert deployment.failure_category == FailureCategory.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_without_active_deployment(self, coordinator):
        assert not await coordinator.cancel()

    @pytest.mark.asyncio
    async def test_cancel_finished_deployment_refused(self, coordinator, descriptor_factory):
        result = await coordinator.submit(descriptor_factory("v1"))
        await coordinator.wait(result.deployment_id, timeout=2)

        assert not await coordinator.cancel(result.deployment_id)


class TestStartup:
    @pytest.mark.asyncio
    async def test_start_resumes_persisted_deployment(
        self, coordinator, traffic, repository, scheduler, descriptor_factory
    ):
        descriptor = descriptor_factory("v1")
        pool = await traffic.provision_candidate(descriptor)
        deployment = Deployment(descriptor=descriptor).advance(
            DeploymentState.PROVISIONING, candidate_pool_id=pool.pool_id
        )
        repository.save_deployment(deployment)

        resumed = await coordinator.start()

        assert resumed.deployment_id == deployment.deployment_id
        finished = await coordinator.wait(deployment.deployment_id, timeout=2)
        assert finished.state == DeploymentState.COMPLETED
        assert len(scheduler.created) == 2

    @pytest.mark.asyncio
    async def test_start_admits_queued_request(self, coordinator, repository, descriptor_factory):
        descriptor = descriptor_factory("v1")
        repository.enqueue(descriptor)

        assert await coordinator.start() is None

        finished = await coordinator.wait(descriptor.descriptor_id, timeout=2)
        assert finished.state == DeploymentState.COMPLETED

    @pytest.mark.asyncio
    async def test_start_with_nothing_to_do(self, coordinator):
        assert await coordinator.start() is None
        assert coordinator.active_deployment_id is None


class TestReporting:
    @pytest.mark.asyncio
    async def test_status_lists_pools_and_queue(self, coordinator, descriptor_factory):
        first = await coordinator.submit(descriptor_factory("v1"))
        await coordinator.wait(first.deployment_id, timeout=2)

        status = coordinator.status()

        assert status["service"] == SERVICE
        assert status["active"] is None
        assert status["latest_completed"] == "v1"
        assert status["queue"] == []
        assert [p["color"] for p in status["pools"]] == ["blue"]

    @pytest.mark.asyncio
    async def test_failed_report_lists_orphaned_pools(
        self, coordinator, scheduler, alarms, descriptor_factory
    ):
        descriptor = descriptor_factory("v1")
        alarms.trigger(make_pool_id(SERVICE, PoolColor.BLUE, descriptor.descriptor_id), "5xxRate")
        result = await coordinator.submit(descriptor)

        deployment = await coordinator.wait(result.deployment_id, timeout=2)
        report = coordinator.report(deployment)

        assert deployment.state == DeploymentState.FAILED
        assert report.remediation.startswith("Manual intervention required")


@pytest.fixture
def other_process(
    tmp_path, scheduler, load_balancer, fast_retry, health_policy, timings, probe, alarms
):
    """A second coordinator on its own connection to the same database file."""
    repository = SQLiteRepository(str(tmp_path / "bluegreen.db"))
    repository.connect()
    traffic = TrafficController(
        SERVICE, scheduler, load_balancer, repository,
        PRODUCTION_LISTENER, TEST_LISTENER, retry=fast_retry, drain_seconds=0.0,
    )
    yield DeploymentCoordinator(
        SERVICE,
        DeploymentStateMachine(
            traffic, HealthOracle(scheduler), repository,
            health_policy=health_policy, timings=timings, probe=probe, alarms=alarms,
        ),
        traffic,
        repository,
        owner_id="other-process",
        poll_interval=0.005,
    )
    repository.close()


class TestLease:
    @pytest.mark.asyncio
    async def test_lease_held_only_while_working(self, coordinator, repository, descriptor_factory):
        result = await coordinator.submit(descriptor_factory("v1"))

        assert coordinator.holds_lease
        assert repository.lease_holder(SERVICE) == coordinator.owner_id

        await coordinator.wait(result.deployment_id, timeout=2)
        await coordinator.wait_idle()

        assert not coordinator.holds_lease
        assert repository.lease_holder(SERVICE) is None

    @pytest.mark.asyncio
    async def test_live_deployment_is_not_resumed_twice(
        self, coordinator, other_process, wait_for_state, descriptor_factory
    ):
        descriptor = descriptor_factory("v1", bake_seconds=0.3)
        await coordinator.submit(descriptor)
        await wait_for_state(descriptor.descriptor_id, DeploymentState.BAKING)

        assert await other_process.start() is None

        assert other_process.active_deployment_id is None
        assert not other_process.holds_lease
        final = await coordinator.wait(descriptor.descriptor_id, timeout=2)
        assert final.state == DeploymentState.COMPLETED
        assert [t.to_state for t in final.history].count(DeploymentState.COMPLETED) == 1

    @pytest.mark.asyncio
    async def test_submission_elsewhere_queues_for_lease_holder(
        self, coordinator, other_process, traffic, descriptor_factory
    ):
        first = await coordinator.submit(descriptor_factory("v1", bake_seconds=0.1))

        result = await other_process.submit(descriptor_factory("v2"))

        assert result.outcome is SubmissionOutcome.QUEUED
        assert other_process.active_deployment_id is None
        final = await other_process.wait(result.deployment_id, timeout=3)
        assert final.state == DeploymentState.COMPLETED
        assert (await coordinator.wait(first.deployment_id, timeout=1)).state == (
            DeploymentState.COMPLETED
        )
        await coordinator.wait_idle()
        assert traffic.production_pool.artifact_version == "v2"
        assert other_process.traffic.production_pool_id == traffic.production_pool_id

    @pytest.mark.asyncio
    async def test_cancel_from_another_process(
        self, coordinator, other_process, wait_for_state, descriptor_factory
    ):
        first = await coordinator.submit(descriptor_factory("v1"))
        await coordinator.wait(first.deployment_id, timeout=2)
        descriptor = descriptor_factory("v2", bake_seconds=5.0)
        await coordinator.submit(descriptor)
        await wait_for_state(descriptor.descriptor_id, DeploymentState.BAKING)

        assert await other_process.cancel()

        final = await other_process.wait(descriptor.descriptor_id, timeout=3)
        assert final.state == DeploymentState.ROLLED_BACK
        assert final.failure_category is FailureCategory.CANCELLED
        assert other_process.active_deployment_id is None

    @pytest.mark.asyncio
    async def test_released_lease_lets_another_process_resume(
        self, coordinator, other_process, repository, wait_for_state, descriptor_factory
    ):
        descriptor = descriptor_factory("v1", bake_seconds=0.2)
        await coordinator.submit(descriptor)
        await wait_for_state(descriptor.descriptor_id, DeploymentState.BAKING)

        await coordinator.shutdown()
        resumed = await other_process.start()

        assert resumed.deployment_id == descriptor.descriptor_id
        assert repository.lease_holder(SERVICE) == "other-process"
        final = await other_process.wait(descriptor.descriptor_id, timeout=3)
        assert final.state == DeploymentState.COMPLETED

    @pytest.mark.asyncio
    async def test_expired_lease_is_taken_over(
        self, coordinator, traffic, repository, descriptor_factory
    ):
        descriptor = descriptor_factory("v1")
        pool = await traffic.provision_candidate(descriptor)
        repository.save_deployment(
            Deployment(descriptor=descriptor).advance(
                DeploymentState.PROVISIONING, candidate_pool_id=pool.pool_id
            )
        )
        repository.acquire_lease(SERVICE, "crashed-host", -1)

        resumed = await coordinator.start()

        assert resumed.deployment_id == descriptor.descriptor_id
        final = await coordinator.wait(descriptor.descriptor_id, timeout=2)
        assert final.state == DeploymentState.COMPLETED

    @pytest.mark.asyncio
    async def test_waiter_adopts_work_left_behind(
        self, coordinator, other_process, wait_for_state, descriptor_factory
    ):
        interrupted = descriptor_factory("v1", bake_seconds=0.2)
        await coordinator.submit(interrupted)
        queued = await other_process.submit(descriptor_factory("v2"))
        await wait_for_state(interrupted.descriptor_id, DeploymentState.BAKING)

        await coordinator.shutdown()

        final = await other_process.wait(queued.deployment_id, timeout=3)
        assert final.state == DeploymentState.COMPLETED
        assert other_process.traffic.production_pool.artifact_version == "v2"
        resumed = other_process.repository.get_deployment(interrupted.descriptor_id)
        assert resumed.state == DeploymentState.COMPLETED

    @pytest.mark.asyncio
    async def test_supervisor_picks_up_interrupted_deployment(
        self, coordinator, other_process, wait_for_state, descriptor_factory
    ):
        descriptor = descriptor_factory("v1", bake_seconds=0.2)
        await coordinator.submit(descriptor)
        await wait_for_state(descriptor.descriptor_id, DeploymentState.BAKING)
        await coordinator.shutdown()
        stop = asyncio.Event()

        supervisor = asyncio.create_task(other_process.supervise(0.005, stop=stop))
        try:
            await wait_for_state(descriptor.descriptor_id, DeploymentState.COMPLETED)
        finally:
            stop.set()
            await supervisor

        assert other_process.traffic.production_pool.artifact_version == "v1"

    @pytest.mark.asyncio
    async def test_lost_lease_stops_driving(
        self, state_machine, traffic, repository, wait_for_state, descriptor_factory
    ):
        coordinator = DeploymentCoordinator(
            SERVICE, state_machine, traffic, repository, lease_seconds=0.03
        )
        descriptor = descriptor_factory("v1", bake_seconds=5.0)
        await coordinator.submit(descriptor)
        await wait_for_state(descriptor.descriptor_id, DeploymentState.BAKING)

        repository.release_lease(SERVICE, coordinator.owner_id)
        assert repository.acquire_lease(SERVICE, "new-owner", 30)
        await asyncio.sleep(0.1)

        assert coordinator.active_deployment_id is None
        assert not coordinator.holds_lease
        assert repository.get_deployment(descriptor.descriptor_id).state == DeploymentState.BAKING
        assert repository.lease_holder(SERVICE) == "new-owner"

    def test_lease_must_have_a_duration(self, state_machine, traffic, repository):
        with pytest.raises(ValueError, match="lease_seconds"):
            DeploymentCoordinator(SERVICE, state_machine, traffic, repository, lease_seconds=0)
