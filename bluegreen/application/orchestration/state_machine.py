"""
Deployment State Machine

Architectural Intent:
- Drives a single Deployment through provisioning, health validation,
  test-traffic validation, production shift and bake, or through rollback
- One handler per state; a handler performs the side effects of its state
  and returns the Deployment advanced to the next state
- Every transition is persisted before the next handler runs, so a restarted
  process re-enters the machine at the last recorded state

Failure Policy:
- TrafficControlError, ValidationFailed and ValidationTimeout from any
  forward state begin a rollback; they are never retried here
- Operator cancellation is observed at every suspension point and is
  equivalent to an external transition into RollingBack
- Rollback only reverses observable side effects: production is re-shifted
  only if it was actually repointed at the candidate
- A rollback that cannot complete ends in Failed and is never retried
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from bluegreen.domain.entities.deployment import (
    Deployment,
    DeploymentState,
    FailureCategory,
)
from bluegreen.domain.entities.descriptor import AllAtOnceShift
from bluegreen.domain.entities.pool import Pool
from bluegreen.domain.errors import (
    AlarmTriggered,
    DeploymentCancelled,
    ProvisioningTimeout,
    RollbackFailed,
    TrafficControlError,
    TrafficValidationFailed,
    ValidationFailed,
    ValidationTimeout,
)
from bluegreen.domain.ports.deployment_repository_port import DeploymentRepositoryPort
from bluegreen.domain.ports.event_bus_port import EventBusPort
from bluegreen.domain.ports.monitoring_port import AlarmPort, TrafficProbePort
from bluegreen.domain.services.health_oracle import HealthCheckPolicy, HealthOracle
from bluegreen.domain.services.traffic_controller import TrafficController

logger = logging.getLogger(__name__)

Checkpoint = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class DeploymentTimings:
    provision_timeout: float = 600.0
    poll_interval: float = 5.0
    traffic_validation_window: float = 60.0
    probe_interval: float = 5.0
    probe_timeout: float = 10.0
    alarm_poll_interval: float = 10.0


def categorize_failure(state: DeploymentState, error: BaseException) -> FailureCategory:
    if isinstance(error, ProvisioningTimeout):
        return FailureCategory.PROVISIONING
    if isinstance(error, (ValidationFailed, ValidationTimeout)):
        return FailureCategory.VALIDATION
    if isinstance(error, TrafficControlError):
        if state in (DeploymentState.PENDING, DeploymentState.PROVISIONING):
            return FailureCategory.PROVISIONING
        return FailureCategory.TRAFFIC_SHIFT
    return FailureCategory.VALIDATION


class DeploymentStateMachine:
    def __init__(
        self,
        traffic: TrafficController,
        health_oracle: HealthOracle,
        repository: DeploymentRepositoryPort,
        event_bus: Optional[EventBusPort] = None,
        health_policy: Optional[HealthCheckPolicy] = None,
        timings: Optional[DeploymentTimings] = None,
        probe: Optional[TrafficProbePort] = None,
        alarms: Optional[AlarmPort] = None,
    ) -> None:
        self._traffic = traffic
        self._health_oracle = health_oracle
        self._repository = repository
        self._event_bus = event_bus
        self._health_policy = health_policy or HealthCheckPolicy()
        self._timings = timings or DeploymentTimings()
        self._probe = probe
        self._alarms = alarms
        self._cancel_requests: set[str] = set()
        self._handlers = {
            DeploymentState.PENDING: self._pending,
            DeploymentState.PROVISIONING: self._provisioning,
            DeploymentState.VALIDATING_HEALTH: self._validating_health,
            DeploymentState.VALIDATING_TRAFFIC: self._validating_traffic,
            DeploymentState.SHIFTING_PRODUCTION: self._shifting_production,
            DeploymentState.BAKING: self._baking,
            DeploymentState.ROLLING_BACK: self._rolling_back,
        }

    def request_cancel(self, deployment_id: str) -> None:
        self._cancel_requests.add(deployment_id)

    async def run(self, deployment: Deployment) -> Deployment:
        """Drive deployment from its current state to a terminal state."""
        logger.info(
            "Running deployment %s (%s) from %s",
            deployment.deployment_id,
            deployment.artifact_version,
            deployment.state.value,
        )
        checkpoint = self._checkpoint_for(deployment.deployment_id)
        while not deployment.is_terminal:
            state = deployment.state
            handler = self._handlers[state]
            if state is DeploymentState.ROLLING_BACK:
                deployment = await handler(deployment, checkpoint)
                continue
            try:
                await checkpoint()
                deployment = await handler(deployment, checkpoint)
            except DeploymentCancelled as e:
                logger.warning("Deployment %s cancelled in %s", deployment.deployment_id, state.value)
                deployment = await self._save(
                    deployment.begin_rollback(str(e), FailureCategory.CANCELLED)
                )
            except (TrafficControlError, ValidationFailed, ValidationTimeout) as e:
                logger.error(
                    "Deployment %s failed in %s: %s", deployment.deployment_id, state.value, e
                )
                deployment = await self._save(
                    deployment.begin_rollback(str(e), categorize_failure(state, e))
                )
            except Exception as e:
                logger.exception(
                    "Unexpected error in %s for deployment %s", state.value, deployment.deployment_id
                )
                deployment = await self._save(
                    deployment.begin_rollback(
                        f"unexpected error: {e}", categorize_failure(state, e)
                    )
                )
        self._cancel_requests.discard(deployment.deployment_id)
        return deployment

    # -- Helpers -----------------------------------------------------------------

    def _checkpoint_for(self, deployment_id: str) -> Checkpoint:
        async def checkpoint() -> None:
            if deployment_id in self._cancel_requests or self._repository.is_cancel_requested(
                deployment_id
            ):
                raise DeploymentCancelled("cancelled by operator")

        return checkpoint

    async def _save(self, deployment: Deployment) -> Deployment:
        self._repository.save_deployment(deployment)
        if self._event_bus and deployment.domain_events:
            await self._event_bus.publish(list(deployment.domain_events))
        return deployment.clear_events()

    def _candidate(self, deployment: Deployment) -> Pool:
        pool = self._traffic.get_pool(deployment.candidate_pool_id)
        if pool is None:
            raise TrafficControlError(
                "candidate_lookup",
                f"candidate pool {deployment.candidate_pool_id} is not known",
            )
        return pool

    async def _observe(self, seconds: float, interval: float, checkpoint: Checkpoint) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        while True:
            await checkpoint()
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            await asyncio.sleep(min(interval, remaining))

    # -- Forward states --------------------------------------------------------------

    async def _pending(self, deployment: Deployment, checkpoint: Checkpoint) -> Deployment:
        prior = self._traffic.production_pool
        return await self._save(
            deployment.advance(
                DeploymentState.PROVISIONING,
                "dispatched",
                prior_pool_id=prior.pool_id if prior else None,
                prior_artifact_version=prior.artifact_version if prior else None,
            )
        )

    async def _provisioning(self, deployment: Deployment, checkpoint: Checkpoint) -> Deployment:
        pool = await self._traffic.provision_candidate(deployment.descriptor)
        if deployment.candidate_pool_id != pool.pool_id:
            deployment = await self._save(deployment.with_changes(candidate_pool_id=pool.pool_id))
        running = await self._traffic.await_capacity(
            pool,
            timeout=self._timings.provision_timeout,
            interval=self._timings.poll_interval,
            checkpoint=checkpoint,
        )
        return await self._save(
            deployment.advance(
                DeploymentState.VALIDATING_HEALTH,
                f"{running}/{pool.desired_count} instances running",
            )
        )

    async def _validating_health(self, deployment: Deployment, checkpoint: Checkpoint) -> Deployment:
        pool = self._candidate(deployment)
        windows = await self._health_oracle.await_healthy(pool, self._health_policy, checkpoint)
        return await self._save(
            deployment.advance(
                DeploymentState.VALIDATING_TRAFFIC,
                f"healthy after {windows} window(s)",
            )
        )

    async def _validating_traffic(self, deployment: Deployment, checkpoint: Checkpoint) -> Deployment:
        pool = self._candidate(deployment)
        await self._traffic.route_test_traffic(pool)
        probes = await self._validate_test_traffic(checkpoint)
        return await self._save(
            deployment.advance(
                DeploymentState.SHIFTING_PRODUCTION,
                f"{probes} synthetic check(s) passed",
            )
        )

    async def _validate_test_traffic(self, checkpoint: Checkpoint) -> int:
        timings = self._timings
        if self._probe is None:
            await self._observe(timings.traffic_validation_window, timings.probe_interval, checkpoint)
            return 0

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timings.traffic_validation_window
        listener = self._traffic.test_listener
        probes = 0
        while True:
            await checkpoint()
            try:
                passed = await asyncio.wait_for(self._probe.probe(listener), timings.probe_timeout)
            except asyncio.TimeoutError:
                raise ValidationTimeout("traffic", timings.probe_timeout)
            except Exception as e:
                raise TrafficValidationFailed(f"synthetic check errored: {e}") from e
            probes += 1
            if not passed:
                raise TrafficValidationFailed(
                    f"synthetic check {probes} failed against {listener}"
                )
            remaining = deadline - loop.time()
            if remaining <= 0:
                return probes
            await asyncio.sleep(min(timings.probe_interval, remaining))

    async def _shifting_production(self, deployment: Deployment, checkpoint: Checkpoint) -> Deployment:
        pool = self._candidate(deployment)
        policy = deployment.descriptor.shift_policy
        if not isinstance(policy, AllAtOnceShift):
            raise TrafficControlError(
                "shift_production",
                f"shift mode {policy.mode!r} needs weighted routing, which listeners do not support",
            )
        await self._traffic.shift_production(pool)
        return await self._save(
            deployment.advance(
                DeploymentState.BAKING,
                f"production listener now targets {pool.pool_id}",
                production_shifted=True,
            )
        )

    async def _baking(self, deployment: Deployment, checkpoint: Checkpoint) -> Deployment:
        pool = self._candidate(deployment)
        descriptor = deployment.descriptor
        loop = asyncio.get_running_loop()
        deadline = loop.time() + descriptor.bake_seconds

        while True:
            await checkpoint()
            alarms = await self._active_alarms(pool)
            if alarms:
                if descriptor.rollback_on_alarm:
                    raise AlarmTriggered(pool.pool_id, alarms)
                logger.warning(
                    "Alarm(s) %s on %s ignored: rollback_on_alarm is off",
                    ", ".join(alarms),
                    pool.pool_id,
                )
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self._timings.alarm_poll_interval, remaining))

        prior = self._traffic.get_pool(deployment.prior_pool_id)
        if prior is not None and prior.pool_id != pool.pool_id:
            await self._traffic.retire_pool(prior)
        await self._traffic.promote(pool)
        return await self._save(
            deployment.advance(DeploymentState.COMPLETED, "bake finished without alarms")
        )

    async def _active_alarms(self, pool: Pool) -> list[str]:
        if self._alarms is None:
            return []
        try:
            return list(await self._alarms.active_alarms(pool.pool_id))
        except Exception as e:
            logger.warning("Alarm lookup for %s failed: %s", pool.pool_id, e)
            return []

    # -- Rollback ------------------------------------------------------------------------

    async def _rolling_back(self, deployment: Deployment, checkpoint: Checkpoint) -> Deployment:
        origin = deployment.rollback_origin() or DeploymentState.ROLLING_BACK
        pool = self._traffic.get_pool(deployment.candidate_pool_id) or self._traffic.candidate_for(
            deployment.deployment_id
        )
        try:
            if pool is not None:
                actual = await self._traffic.current_production_target()
                if deployment.production_shifted or actual == pool.pool_id:
                    prior = self._traffic.get_pool(deployment.prior_pool_id)
                    if prior is None or prior.is_retired or prior.current_count == 0:
                        raise RollbackFailed(
                            origin.value,
                            actual,
                            [pool.pool_id],
                            "no prior production pool with running instances to shift back to",
                        )
                    await self._traffic.shift_production(prior)
                    deployment = await self._save(deployment.with_changes(production_shifted=False))
                await self._traffic.retire_pool(pool)
        except (TrafficControlError, RollbackFailed) as e:
            return await self._escalate(deployment, origin, e)
        except Exception as e:
            logger.exception("Unexpected error rolling back %s", deployment.deployment_id)
            return await self._escalate(deployment, origin, e)

        return await self._save(
            deployment.advance(
                DeploymentState.ROLLED_BACK,
                f"rolled back from {origin.value}",
            )
        )

    async def _escalate(
        self, deployment: Deployment, origin: DeploymentState, error: BaseException
    ) -> Deployment:
        if isinstance(error, RollbackFailed):
            failure = error
        else:
            production = self._traffic.production_pool_id
            orphaned = [
                p.pool_id
                for p in self._traffic.pools()
                if p.current_count > 0 and p.pool_id != production
            ]
            failure = RollbackFailed(origin.value, production, orphaned, str(error))
        logger.critical(
            "Rollback of %s failed; manual intervention required. production=%s orphaned=%s: %s",
            deployment.deployment_id,
            failure.production_pool_id,
            failure.orphaned_pool_ids,
            failure.last_error,
        )
        return await self._save(deployment.fail(str(failure)))
