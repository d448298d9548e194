"""
Health Oracle

Architectural Intent:
- Abstracts readiness/liveness checks against the instances of a pool
- Interprets the scheduler's raw instance description into HealthStatus
- Debounces validation so a single flaky check never fails a deployment

Design Decisions:
- A check that errors yields UNKNOWN, never an exception
- UNKNOWN counts as "not yet healthy" until an instance has been UNKNOWN for
  more consecutive checks than the retry budget; after that it is UNHEALTHY
- A validation window is one round of checks over every instance
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from bluegreen.domain.entities.pool import HealthStatus, InstanceHandle, Pool
from bluegreen.domain.errors import HealthCheckFailed, ValidationTimeout
from bluegreen.domain.ports.scheduler_port import SchedulerPort

logger = logging.getLogger(__name__)

_STOPPED_STATES = frozenset({"STOPPED", "STOPPING", "DEPROVISIONING", "DEACTIVATING"})


@dataclass(frozen=True)
class HealthCheckPolicy:
    interval_seconds: float = 10.0
    healthy_windows_required: int = 3
    failure_threshold: int = 3
    unknown_retry_budget: int = 5
    timeout_seconds: float = 600.0


class HealthOracle:
    def __init__(self, scheduler: SchedulerPort) -> None:
        self._scheduler = scheduler

    @staticmethod
    def interpret(description: dict[str, Any]) -> HealthStatus:
        last_status = str(description.get("lastStatus", "")).upper()
        health = str(description.get("healthStatus", "UNKNOWN")).upper()
        if last_status in _STOPPED_STATES:
            return HealthStatus.UNHEALTHY
        if last_status != "RUNNING":
            return HealthStatus.UNKNOWN
        if health == "HEALTHY":
            return HealthStatus.HEALTHY
        if health == "UNHEALTHY":
            return HealthStatus.UNHEALTHY
        return HealthStatus.UNKNOWN

    async def check(self, instance: InstanceHandle) -> HealthStatus:
        try:
            description = await self._scheduler.describe_instance(instance)
        except Exception as e:
            logger.debug("Health check for %s errored: %s", instance, e)
            return HealthStatus.UNKNOWN
        return self.interpret(description)

    async def check_pool(self, pool: Pool) -> dict[str, HealthStatus]:
        """Check every instance concurrently and record results on the pool."""
        instances = list(pool.instances)
        statuses = await asyncio.gather(*(self.check(h) for h in instances))
        result = {h.instance_id: s for h, s in zip(instances, statuses)}
        async with pool.lock:
            pool.health = dict(result)
        return result

    async def await_healthy(
        self,
        pool: Pool,
        policy: HealthCheckPolicy,
        checkpoint: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> int:
        """Block until the pool is healthy for a sustained number of windows.

        Returns the number of windows evaluated. Raises HealthCheckFailed after
        policy.failure_threshold consecutive failing windows and
        ValidationTimeout once policy.timeout_seconds has elapsed.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + policy.timeout_seconds
        healthy_streak = 0
        failing_streak = 0
        unknown_counts: dict[str, int] = {}
        windows = 0

        while True:
            if checkpoint:
                await checkpoint()

            statuses = await self.check_pool(pool)
            windows += 1

            unhealthy: list[str] = []
            all_healthy = bool(statuses)
            for instance_id, status in statuses.items():
                if status is HealthStatus.UNKNOWN:
                    unknown_counts[instance_id] = unknown_counts.get(instance_id, 0) + 1
                    if unknown_counts[instance_id] > policy.unknown_retry_budget:
                        unhealthy.append(instance_id)
                    all_healthy = False
                    continue
                unknown_counts.pop(instance_id, None)
                if status is HealthStatus.UNHEALTHY:
                    unhealthy.append(instance_id)
                    all_healthy = False

            if unhealthy:
                healthy_streak = 0
                failing_streak += 1
                logger.warning(
                    "Pool %s failing window %d/%d: %s",
                    pool.pool_id,
                    failing_streak,
                    policy.failure_threshold,
                    ", ".join(sorted(unhealthy)),
                )
                if failing_streak >= policy.failure_threshold:
                    raise HealthCheckFailed(pool.pool_id, failing_streak, sorted(unhealthy))
            elif all_healthy:
                failing_streak = 0
                healthy_streak += 1
                logger.debug(
                    "Pool %s healthy window %d/%d",
                    pool.pool_id,
                    healthy_streak,
                    policy.healthy_windows_required,
                )
                if healthy_streak >= policy.healthy_windows_required:
                    return windows
            else:
                healthy_streak = 0

            if loop.time() >= deadline:
                raise ValidationTimeout("health", policy.timeout_seconds)
            await asyncio.sleep(policy.interval_seconds)
