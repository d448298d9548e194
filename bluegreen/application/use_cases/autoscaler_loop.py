"""
Autoscaler Loop Use Case

Architectural Intent:
- Keeps the production pool sized to its load, concurrently with deployments
- On a fixed interval, reads mean utilization of the current production pool
  and writes a damped proportional desired count back through the
  TrafficController
- Never resizes a validation-locked or retired pool; that check is made by
  scale_pool under the pool lock

Design Decisions:
- Utilization inside the tolerance band around the target leaves the count
  unchanged
- Scale-out rounds up and scale-in rounds down, then the result is clamped
  to [min_count, max_count]
"""

from __future__ import annotations
import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Optional

from bluegreen.domain.events.deployment_events import PoolScaledEvent
from bluegreen.domain.ports.event_bus_port import EventBusPort
from bluegreen.domain.ports.monitoring_port import MetricsPort
from bluegreen.domain.services.traffic_controller import TrafficController

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScalingPolicy:
    target_utilization: float = 60.0
    min_count: int = 1
    max_count: int = 10
    window_seconds: int = 300
    gain: float = 0.5
    tolerance: float = 0.1

    def __post_init__(self) -> None:
        if not (0 < self.target_utilization <= 100):
            raise ValueError("target_utilization must be in (0, 100]")
        if self.min_count < 1 or self.max_count < self.min_count:
            raise ValueError("need 1 <= min_count <= max_count")
        if not (0 < self.gain <= 1):
            raise ValueError("gain must be in (0, 1]")


def compute_desired_count(current: int, utilization: float, policy: ScalingPolicy) -> int:
    """Damped proportional controller over instance count."""
    if current <= 0:
        return policy.min_count
    error = utilization / policy.target_utilization - 1.0
    if abs(error) <= policy.tolerance:
        desired = current
    else:
        raw = current * (1.0 + policy.gain * error)
        desired = math.ceil(raw) if error > 0 else math.floor(raw)
    return max(policy.min_count, min(policy.max_count, desired))


@dataclass(frozen=True)
class ScalingDecision:
    pool_id: Optional[str]
    utilization: Optional[float]
    previous_count: int
    desired_count: int
    applied: bool
    reason: str = ""


class AutoscalerLoop:
    def __init__(
        self,
        traffic: TrafficController,
        metrics: MetricsPort,
        policy: Optional[ScalingPolicy] = None,
        event_bus: Optional[EventBusPort] = None,
    ) -> None:
        self.traffic = traffic
        self.metrics = metrics
        self.policy = policy or ScalingPolicy()
        self.event_bus = event_bus

    async def tick(self) -> ScalingDecision:
        pool = self.traffic.production_pool
        if pool is None:
            return ScalingDecision(None, None, 0, 0, False, "no production pool")
        if not pool.can_autoscale:
            logger.debug("Skipping %s: locked for validation or retired", pool.pool_id)
            return ScalingDecision(
                pool.pool_id, None, pool.desired_count, pool.desired_count, False, "locked"
            )

        try:
            utilization = await self.metrics.get_utilization(
                pool.pool_id, self.policy.window_seconds
            )
        except Exception as e:
            logger.warning("Utilization read for %s failed: %s", pool.pool_id, e)
            return ScalingDecision(
                pool.pool_id, None, pool.desired_count, pool.desired_count, False, "no metrics"
            )

        previous = pool.desired_count
        desired = compute_desired_count(previous, utilization, self.policy)
        if desired == previous:
            return ScalingDecision(pool.pool_id, utilization, previous, desired, False, "steady")

        applied = await self.traffic.scale_pool(pool, desired)
        if not applied:
            return ScalingDecision(pool.pool_id, utilization, previous, previous, False, "locked")

        logger.info(
            "Scaled %s from %d to %d (utilization %.1f%%, target %.1f%%)",
            pool.pool_id,
            previous,
            desired,
            utilization,
            self.policy.target_utilization,
        )
        if self.event_bus:
            await self.event_bus.publish([
                PoolScaledEvent(
                    aggregate_id=pool.pool_id,
                    service=pool.service,
                    previous_count=previous,
                    desired_count=desired,
                    utilization=utilization,
                )
            ])
        return ScalingDecision(pool.pool_id, utilization, previous, desired, True, "scaled")

    async def execute(
        self,
        interval_seconds: float = 60.0,
        run_once: bool = False,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error("Autoscaler tick failed: %s", e)

            if run_once or (stop is not None and stop.is_set()):
                break
            if stop is None:
                await asyncio.sleep(interval_seconds)
                continue
            try:
                await asyncio.wait_for(stop.wait(), interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
