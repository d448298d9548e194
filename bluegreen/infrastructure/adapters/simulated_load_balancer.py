"""
Simulated Load Balancer Adapter

Architectural Intent:
- Implements LoadBalancerPort with in-memory listeners shaped like ELBv2
  ModifyListener / DescribeListeners
- Each listener forwards 100% of its traffic to one target group (pool)
- Every rule change is appended to a history, so tests can check that
  production was never pointed at a partially shifted target

Design Decisions:
- Fault injection: fail_next_sets raises on the next N modifications;
  failing_listeners raises on every modification of the named listeners;
  set_delay makes modifications slow enough to trip a listener timeout
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListenerChange:
    listener_id: str
    previous: Optional[str]
    target: Optional[str]
    at: str


class SimulatedLoadBalancer:
    """In-memory listeners with single-target forward rules."""

    def __init__(self, listeners: Optional[dict[str, Optional[str]]] = None) -> None:
        self._targets: dict[str, Optional[str]] = dict(listeners or {})
        self.history: list[ListenerChange] = []
        self.fail_next_sets = 0
        self.failing_listeners: set[str] = set()
        self.fail_gets = False
        self.set_delay = 0.0

    async def set_listener_target(self, listener_id: str, pool_id: Optional[str]) -> None:
        if self.set_delay:
            await asyncio.sleep(self.set_delay)
        if listener_id in self.failing_listeners:
            raise ConnectionError(f"ModifyListener {listener_id}: access denied")
        if self.fail_next_sets > 0:
            self.fail_next_sets -= 1
            raise ConnectionError(f"ModifyListener {listener_id}: throttled")
        previous = self._targets.get(listener_id)
        self._targets[listener_id] = pool_id
        self.history.append(
            ListenerChange(listener_id, previous, pool_id, datetime.now(UTC).isoformat())
        )
        logger.debug("ModifyListener %s: %s -> %s", listener_id, previous, pool_id)

    async def get_listener_target(self, listener_id: str) -> Optional[str]:
        if self.fail_gets:
            raise ConnectionError(f"DescribeListeners {listener_id}: timeout")
        return self._targets.get(listener_id)

    def targets_of(self, listener_id: str) -> list[Optional[str]]:
        """Every target listener_id has pointed at, oldest first."""
        return [c.target for c in self.history if c.listener_id == listener_id]
