"""Global test configuration.

Shared fixtures wire real use cases to the simulated adapters and a
throwaway SQLite database, with timings shrunk so whole deployments run in
milliseconds.
"""

import asyncio
from datetime import datetime, UTC

import pytest

from bluegreen.application.orchestration.state_machine import (
    DeploymentStateMachine,
    DeploymentTimings,
)
from bluegreen.application.use_cases.artifact_listener import ArtifactEventListener
from bluegreen.application.use_cases.deployment_coordinator import DeploymentCoordinator
from bluegreen.application.use_cases.deployment_pipeline import (
    DeploymentPipeline,
    PipelineSettings,
)
from bluegreen.domain.entities.deployment_request import DeploymentRequest, TaskSpec
from bluegreen.domain.entities.descriptor import (
    AllAtOnceShift,
    DeploymentDescriptor,
    TaskDefinition,
)
from bluegreen.domain.events import (
    ArtifactRejectedEvent,
    DeploymentStateChangedEvent,
    DeploymentTerminatedEvent,
    PipelineFailedEvent,
    PoolScaledEvent,
)
from bluegreen.domain.services.health_oracle import HealthCheckPolicy, HealthOracle
from bluegreen.domain.services.retry import RetryPolicy
from bluegreen.domain.services.traffic_controller import TrafficController
from bluegreen.infrastructure.adapters.simulated_load_balancer import SimulatedLoadBalancer
from bluegreen.infrastructure.adapters.simulated_monitoring import (
    SimulatedAlarms,
    SimulatedMetrics,
    StaticProbe,
)
from bluegreen.infrastructure.adapters.simulated_registry import SimulatedRegistry
from bluegreen.infrastructure.adapters.simulated_scheduler import SimulatedScheduler
from bluegreen.infrastructure.event_bus import EventBus
from bluegreen.infrastructure.repositories.sqlite_repository import SQLiteRepository

SERVICE = "web"
REGISTRY = "registry.example.com/team/web"
PRODUCTION_LISTENER = "production"
TEST_LISTENER = "test"


def make_request(version: str = "v1", service: str = SERVICE) -> DeploymentRequest:
    return DeploymentRequest(
        service=service,
        artifact_version=version,
        registry_location=REGISTRY,
        task_spec=TaskSpec(),
        published_at=datetime.now(UTC),
    )


def make_descriptor(
    version: str = "v1",
    desired_count: int = 2,
    bake_seconds: float = 0.01,
    shift_policy=None,
    rollback_on_alarm: bool = True,
) -> DeploymentDescriptor:
    request = make_request(version)
    return DeploymentDescriptor(
        request=request,
        task_definition=TaskDefinition(
            family=SERVICE,
            image=request.image,
            cpu=256,
            memory=512,
            container_port=8080,
            desired_count=desired_count,
        ),
        shift_policy=shift_policy or AllAtOnceShift(),
        bake_seconds=bake_seconds,
        rollback_on_alarm=rollback_on_alarm,
    )


@pytest.fixture
def repository(tmp_path):
    repo = SQLiteRepository(str(tmp_path / "bluegreen.db"))
    repo.connect()
    yield repo
    repo.close()


@pytest.fixture
def scheduler():
    return SimulatedScheduler()


@pytest.fixture
def load_balancer():
    return SimulatedLoadBalancer({PRODUCTION_LISTENER: None, TEST_LISTENER: None})


@pytest.fixture
def metrics():
    return SimulatedMetrics()


@pytest.fixture
def alarms():
    return SimulatedAlarms()


@pytest.fixture
def probe():
    return StaticProbe()


@pytest.fixture
def registry():
    r = SimulatedRegistry()
    for version in ("v1", "v2", "v3", "v4"):
        r.publish(REGISTRY, version)
    return r


@pytest.fixture
def fast_retry():
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def health_policy():
    return HealthCheckPolicy(
        interval_seconds=0.001,
        healthy_windows_required=2,
        failure_threshold=2,
        unknown_retry_budget=3,
        timeout_seconds=2.0,
    )


@pytest.fixture
def timings():
    return DeploymentTimings(
        provision_timeout=1.0,
        poll_interval=0.001,
        traffic_validation_window=0.01,
        probe_interval=0.002,
        probe_timeout=0.5,
        alarm_poll_interval=0.002,
    )


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def recorded_events(event_bus):
    events = []

    async def record(event):
        events.append(event)

    for event_type in (
        DeploymentStateChangedEvent,
        DeploymentTerminatedEvent,
        ArtifactRejectedEvent,
        PipelineFailedEvent,
        PoolScaledEvent,
    ):
        event_bus.subscribe(event_type, record)
    return events


@pytest.fixture
def traffic(scheduler, load_balancer, repository, fast_retry):
    return TrafficController(
        service=SERVICE,
        scheduler=scheduler,
        load_balancer=load_balancer,
        repository=repository,
        production_listener=PRODUCTION_LISTENER,
        test_listener=TEST_LISTENER,
        retry=fast_retry,
        listener_timeout=0.5,
        drain_seconds=0.0,
    )


@pytest.fixture
def state_machine(traffic, scheduler, repository, event_bus, health_policy, timings, probe, alarms):
    return DeploymentStateMachine(
        traffic=traffic,
        health_oracle=HealthOracle(scheduler),
        repository=repository,
        event_bus=event_bus,
        health_policy=health_policy,
        timings=timings,
        probe=probe,
        alarms=alarms,
    )


@pytest.fixture
def coordinator(state_machine, traffic, repository, event_bus):
    return DeploymentCoordinator(
        service=SERVICE,
        state_machine=state_machine,
        traffic=traffic,
        repository=repository,
        event_bus=event_bus,
    )


@pytest.fixture
def pipeline(coordinator, fast_retry):
    return DeploymentPipeline(
        coordinator,
        PipelineSettings(desired_count=2, bake_seconds=0.01),
        configure_retry=fast_retry,
    )


@pytest.fixture
def listener(registry, pipeline, event_bus):
    return ArtifactEventListener(
        registry=registry,
        pipeline=pipeline,
        service=SERVICE,
        expected_repository=REGISTRY,
        event_bus=event_bus,
    )


@pytest.fixture
def wait_for_state(repository):
    """Poll the repository until a deployment reaches one of the given states."""

    async def _wait(deployment_id, *states, timeout=2.0):
        names = {s.value for s in states}
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            deployment = repository.get_deployment(deployment_id)
            if deployment is not None and deployment.state.value in names:
                return deployment
            await asyncio.sleep(0.001)
        raise AssertionError(f"{deployment_id} never reached {sorted(names)}")

    return _wait


@pytest.fixture
def descriptor_factory():
    return make_descriptor


@pytest.fixture
def request_factory():
    return make_request
