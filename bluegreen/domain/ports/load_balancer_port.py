"""
Load Balancer Port

Architectural Intent:
- Port interface for listener routing on the load balancer
- A listener forwards 100% of its traffic to exactly one target pool
- Swapping a listener's target is a single atomic rule update
"""

from typing import Protocol, runtime_checkable, Optional


@runtime_checkable
class LoadBalancerPort(Protocol):
    async def set_listener_target(self, listener_id: str, pool_id: Optional[str]) -> None:
        """Point listener_id at pool_id (None detaches the listener)."""
        ...

    async def get_listener_target(self, listener_id: str) -> Optional[str]: ...
