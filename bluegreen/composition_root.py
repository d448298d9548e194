"""
Composition Root

Architectural Intent:
- Dependency injection composition root for the orchestrator
- Single place where all adapters and use cases are wired together
- No adapter instantiation should occur outside this module (except tests)

Design Decisions:
- Uses a simple dataclass container instead of a DI framework
- Factory function creates and wires all dependencies from BlueGreenConfig
- External collaborators are the simulated adapters; the SQLite repository
  is the only durable component
"""

from dataclasses import dataclass
from typing import Optional, Union

from bluegreen.application.orchestration.state_machine import (
    DeploymentStateMachine,
    DeploymentTimings,
)
from bluegreen.application.use_cases.artifact_listener import ArtifactEventListener
from bluegreen.application.use_cases.autoscaler_loop import AutoscalerLoop, ScalingPolicy
from bluegreen.application.use_cases.deployment_coordinator import DeploymentCoordinator
from bluegreen.application.use_cases.deployment_pipeline import (
    DeploymentPipeline,
    PipelineSettings,
)
from bluegreen.domain.entities.deployment_request import TaskSpec
from bluegreen.domain.entities.descriptor import shift_policy_from_dict
from bluegreen.domain.services.health_oracle import HealthCheckPolicy, HealthOracle
from bluegreen.domain.services.retry import RetryPolicy
from bluegreen.domain.services.traffic_controller import TrafficController
from bluegreen.infrastructure.adapters.http_probe import HttpProbe
from bluegreen.infrastructure.adapters.simulated_load_balancer import SimulatedLoadBalancer
from bluegreen.infrastructure.adapters.simulated_monitoring import (
    SimulatedAlarms,
    SimulatedMetrics,
)
from bluegreen.infrastructure.adapters.simulated_registry import SimulatedRegistry
from bluegreen.infrastructure.adapters.simulated_scheduler import SimulatedScheduler
from bluegreen.infrastructure.config import BlueGreenConfig
from bluegreen.infrastructure.event_bus import EventBus
from bluegreen.infrastructure.repositories.sqlite_repository import SQLiteRepository


@dataclass
class BlueGreenContainer:
    """DI container holding all wired dependencies."""

    config: BlueGreenConfig
    repository: SQLiteRepository
    scheduler: SimulatedScheduler
    load_balancer: SimulatedLoadBalancer
    metrics: SimulatedMetrics
    alarms: SimulatedAlarms
    registry: SimulatedRegistry
    probe: Optional[HttpProbe]
    event_bus: EventBus
    traffic: TrafficController
    health_oracle: HealthOracle
    state_machine: DeploymentStateMachine
    coordinator: DeploymentCoordinator
    pipeline: DeploymentPipeline
    listener: ArtifactEventListener
    autoscaler: AutoscalerLoop

    def close(self) -> None:
        self.repository.close()


def create_container(
    config: Optional[BlueGreenConfig] = None,
    probe: Union[HttpProbe, None] = None,
) -> BlueGreenContainer:
    """Create and wire all dependencies."""
    config = config or BlueGreenConfig()
    service = config.service
    deployment = config.deployment

    repository = SQLiteRepository(config.storage.db_path)
    repository.connect()

    scheduler = SimulatedScheduler()
    load_balancer = SimulatedLoadBalancer()
    metrics = SimulatedMetrics()
    alarms = SimulatedAlarms()
    registry = SimulatedRegistry(allow_all=True)
    if probe is None and config.probe.url:
        probe = HttpProbe(
            config.probe.url,
            expected_status=config.probe.expected_status,
            timeout=deployment.probe_timeout,
        )
    event_bus = EventBus()

    traffic = TrafficController(
        service=service.name,
        scheduler=scheduler,
        load_balancer=load_balancer,
        repository=repository,
        production_listener=service.production_listener,
        test_listener=service.test_listener,
        retry=RetryPolicy(max_attempts=deployment.max_attempts, base_delay=deployment.base_delay),
        listener_timeout=deployment.listener_timeout,
        drain_seconds=deployment.drain_seconds,
    )
    health_oracle = HealthOracle(scheduler)
    state_machine = DeploymentStateMachine(
        traffic=traffic,
        health_oracle=health_oracle,
        repository=repository,
        event_bus=event_bus,
        health_policy=HealthCheckPolicy(
            interval_seconds=config.health.interval_seconds,
            healthy_windows_required=config.health.healthy_windows,
            failure_threshold=config.health.failure_threshold,
            unknown_retry_budget=config.health.unknown_retry_budget,
            timeout_seconds=config.health.timeout_seconds,
        ),
        timings=DeploymentTimings(
            provision_timeout=deployment.provision_timeout,
            poll_interval=deployment.poll_interval,
            traffic_validation_window=deployment.traffic_validation_window,
            probe_interval=deployment.probe_interval,
            probe_timeout=deployment.probe_timeout,
            alarm_poll_interval=deployment.alarm_poll_interval,
        ),
        probe=probe,
        alarms=alarms,
    )
    coordinator = DeploymentCoordinator(
        service=service.name,
        state_machine=state_machine,
        traffic=traffic,
        repository=repository,
        event_bus=event_bus,
        queue_policy=config.pipeline.queue_policy,
        lease_seconds=config.pipeline.lease_seconds,
        poll_interval=config.pipeline.poll_interval,
    )
    pipeline = DeploymentPipeline(
        coordinator,
        PipelineSettings(
            desired_count=service.desired_count,
            shift_policy=shift_policy_from_dict({"mode": deployment.shift_mode}),
            bake_seconds=deployment.bake_seconds,
            rollback_on_alarm=deployment.rollback_on_alarm,
            artifacts_dir=config.pipeline.artifacts_dir or None,
        ),
        configure_retry=RetryPolicy(
            max_attempts=config.pipeline.max_attempts,
            base_delay=config.pipeline.base_delay,
            max_delay=config.pipeline.max_delay,
        ),
    )
    listener = ArtifactEventListener(
        registry=registry,
        pipeline=pipeline,
        service=service.name,
        expected_repository=service.repository or None,
        task_spec=TaskSpec(
            cpu=service.cpu,
            memory=service.memory,
            container_port=service.container_port,
        ),
        event_bus=event_bus,
    )
    autoscaler = AutoscalerLoop(
        traffic,
        metrics,
        ScalingPolicy(
            target_utilization=config.autoscaler.target_utilization,
            min_count=config.autoscaler.min_count,
            max_count=config.autoscaler.max_count,
            window_seconds=config.autoscaler.window_seconds,
            gain=config.autoscaler.gain,
            tolerance=config.autoscaler.tolerance,
        ),
        event_bus=event_bus,
    )

    return BlueGreenContainer(
        config=config,
        repository=repository,
        scheduler=scheduler,
        load_balancer=load_balancer,
        metrics=metrics,
        alarms=alarms,
        registry=registry,
        probe=probe,
        event_bus=event_bus,
        traffic=traffic,
        health_oracle=health_oracle,
        state_machine=state_machine,
        coordinator=coordinator,
        pipeline=pipeline,
        listener=listener,
        autoscaler=autoscaler,
    )
