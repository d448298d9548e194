"""
Scheduler Port

Architectural Intent:
- Port interface for the managed task scheduler that runs service instances
- Abstracts instance creation, destruction and description
- Implemented by the simulated scheduler adapter (ECS-shaped responses)

Design Decisions:
- Uses Protocol for structural typing (no inheritance needed)
- describe_instance returns the scheduler's raw status dict; the Health
  Oracle owns the interpretation of 'lastStatus' / 'healthStatus'
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable, Any

from bluegreen.domain.entities.descriptor import TaskDefinition
from bluegreen.domain.entities.pool import InstanceHandle


@dataclass(frozen=True)
class PoolSpec:
    pool_id: str
    task_definition: TaskDefinition
    count: int


@runtime_checkable
class SchedulerPort(Protocol):
    """Port for scheduler instance lifecycle operations."""

    async def create_instances(self, pool_spec: PoolSpec) -> list[InstanceHandle]:
        """Launch pool_spec.count instances and return their handles."""
        ...

    async def destroy_instances(self, handles: list[InstanceHandle]) -> None:
        """Stop and deallocate the given instances."""
        ...

    async def describe_instance(self, handle: InstanceHandle) -> dict[str, Any]:
        """Return {'lastStatus': ..., 'healthStatus': ...} for an instance."""
        ...
