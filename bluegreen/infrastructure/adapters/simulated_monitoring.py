"""
Simulated Monitoring Adapters

Architectural Intent:
- In-memory MetricsPort, AlarmPort and TrafficProbePort implementations
- Values are set directly by tests and demos; every read is logged at DEBUG
"""

import asyncio
import logging
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class SimulatedMetrics:
    """Serves a fixed mean utilization per pool (CloudWatch GetMetricStatistics shape)."""

    def __init__(self, default_utilization: float = 50.0) -> None:
        self.default_utilization = default_utilization
        self.utilization: dict[str, float] = {}
        self.requests: list[tuple[str, int]] = []

    async def get_utilization(self, pool_id: str, window_seconds: int) -> float:
        self.requests.append((pool_id, window_seconds))
        value = self.utilization.get(pool_id, self.default_utilization)
        logger.debug("GetMetricStatistics %s over %ds: %.1f", pool_id, window_seconds, value)
        return value


class SimulatedAlarms:
    def __init__(self) -> None:
        self.alarms: dict[str, list[str]] = {}
        self.fail = False

    def trigger(self, pool_id: str, alarm_name: str) -> None:
        self.alarms.setdefault(pool_id, []).append(alarm_name)

    def clear(self, pool_id: Optional[str] = None) -> None:
        if pool_id is None:
            self.alarms.clear()
        else:
            self.alarms.pop(pool_id, None)

    async def active_alarms(self, pool_id: str) -> list[str]:
        if self.fail:
            raise ConnectionError("DescribeAlarms: throttled")
        return list(self.alarms.get(pool_id, []))


class StaticProbe:
    """Synthetic check whose outcome is scripted.

    Results are consumed from `results` in order; once exhausted every probe
    returns `default`. `delay` slows each probe down to exercise timeouts.
    """

    def __init__(
        self,
        default: bool = True,
        results: Optional[Iterable[bool]] = None,
        delay: float = 0.0,
    ) -> None:
        self.default = default
        self._results = list(results or [])
        self.delay = delay
        self.calls: list[str] = []

    async def probe(self, listener_id: str) -> bool:
        self.calls.append(listener_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._results:
            return self._results.pop(0)
        return self.default
