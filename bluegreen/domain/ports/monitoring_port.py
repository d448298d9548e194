"""
Monitoring Ports

Architectural Intent:
- MetricsPort feeds the autoscaler with averaged utilization per pool
- AlarmPort reports alarms that fire against a pool while it bakes
- TrafficProbePort runs synthetic checks against a listener
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class MetricsPort(Protocol):
    async def get_utilization(self, pool_id: str, window_seconds: int) -> float:
        """Mean utilization percentage (0-100) of pool_id over the window."""
        ...


@runtime_checkable
class AlarmPort(Protocol):
    async def active_alarms(self, pool_id: str) -> list[str]:
        """Names of alarms currently in ALARM state for pool_id."""
        ...


@runtime_checkable
class TrafficProbePort(Protocol):
    async def probe(self, listener_id: str) -> bool:
        """Run one synthetic check through listener_id; True when it passes."""
        ...
