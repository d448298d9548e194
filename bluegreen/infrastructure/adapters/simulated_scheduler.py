"""
Simulated Task Scheduler Adapter

Architectural Intent:
- Implements SchedulerPort with in-memory tasks shaped like ECS RunTask /
  DescribeTasks / StopTask responses
- Lets the orchestrator run end to end with zero cloud credentials
- When a real SDK is wired in, replace the _stub_* helpers; the public
  method signatures remain stable

Design Decisions:
- Each task reports PROVISIONING, then PENDING, for its first
  start_delay_checks describe calls and RUNNING afterwards
- Health is UNKNOWN for the first health_delay_checks describes after RUNNING
- Fault injection (failing calls, unhealthy or stuck pools) is driven
  by plain attributes so tests can script scenarios
- State lives in the process; tasks do not survive a restart
"""

import logging
import uuid
from datetime import datetime, UTC
from typing import Any, Optional

from bluegreen.domain.entities.pool import InstanceHandle
from bluegreen.domain.ports.scheduler_port import PoolSpec

logger = logging.getLogger(__name__)


def _make_task_arn(cluster: str) -> str:
    return f"arn:aws:ecs:us-east-1:123456789012:task/{cluster}/{uuid.uuid4().hex}"


def _stub_run_task(cluster: str, pool_spec: PoolSpec) -> dict:
    """Simulate an ECS RunTask response for pool_spec.count tasks."""
    now = datetime.now(UTC).isoformat()
    definition = pool_spec.task_definition
    return {
        "tasks": [
            {
                "taskArn": _make_task_arn(cluster),
                "clusterArn": f"arn:aws:ecs:us-east-1:123456789012:cluster/{cluster}",
                "taskDefinitionArn": f"arn:aws:ecs:us-east-1:123456789012:task-definition/{definition.family}",
                "group": f"service:{pool_spec.pool_id}",
                "lastStatus": "PROVISIONING",
                "desiredStatus": "RUNNING",
                "healthStatus": "UNKNOWN",
                "cpu": str(definition.cpu),
                "memory": str(definition.memory),
                "createdAt": now,
                "containers": [{"name": definition.family, "image": definition.image}],
            }
            for _ in range(pool_spec.count)
        ],
        "failures": [],
    }


class SimulatedScheduler:
    """In-memory scheduler with ECS-shaped task descriptions."""

    def __init__(
        self,
        cluster: str = "bluegreen",
        start_delay_checks: int = 0,
        health_delay_checks: int = 0,
    ) -> None:
        self.cluster = cluster
        self.start_delay_checks = start_delay_checks
        self.health_delay_checks = health_delay_checks
        self.fail_next_creates = 0
        self.fail_next_destroys = 0
        self.fail_describes = False
        self.unhealthy_pools: set[str] = set()
        self.stuck_pools: set[str] = set()
        self._tasks: dict[str, dict[str, Any]] = {}
        self._checks: dict[str, int] = {}
        self.created: list[InstanceHandle] = []
        self.destroyed: list[InstanceHandle] = []

    async def create_instances(self, pool_spec: PoolSpec) -> list[InstanceHandle]:
        if self.fail_next_creates > 0:
            self.fail_next_creates -= 1
            raise ConnectionError("RunTask: service unavailable")
        response = _stub_run_task(self.cluster, pool_spec)
        handles = []
        for task in response["tasks"]:
            arn = task["taskArn"]
            task["pool_id"] = pool_spec.pool_id
            self._tasks[arn] = task
            self._checks[arn] = 0
            handles.append(InstanceHandle(arn, pool_spec.pool_id))
        self.created.extend(handles)
        logger.debug("RunTask %s x%d", pool_spec.pool_id, pool_spec.count)
        return handles

    async def destroy_instances(self, handles: list[InstanceHandle]) -> None:
        if self.fail_next_destroys > 0:
            self.fail_next_destroys -= 1
            raise ConnectionError("StopTask: throttled")
        for handle in handles:
            task = self._tasks.pop(handle.instance_id, None)
            self._checks.pop(handle.instance_id, None)
            if task is not None:
                self.destroyed.append(handle)
        logger.debug("StopTask x%d", len(handles))

    async def describe_instance(self, handle: InstanceHandle) -> dict[str, Any]:
        if self.fail_describes:
            raise ConnectionError("DescribeTasks: timeout")
        task = self._tasks.get(handle.instance_id)
        if task is None:
            return {"taskArn": handle.instance_id, "lastStatus": "STOPPED", "healthStatus": "UNKNOWN"}

        pool_id = task["pool_id"]
        checks = self._checks[handle.instance_id] = self._checks[handle.instance_id] + 1
        if pool_id in self.stuck_pools:
            task["lastStatus"] = "PENDING"
        elif checks <= self.start_delay_checks:
            task["lastStatus"] = "PROVISIONING" if checks <= self.start_delay_checks // 2 else "PENDING"
        else:
            task["lastStatus"] = "RUNNING"
            running_checks = checks - self.start_delay_checks
            if pool_id in self.unhealthy_pools:
                task["healthStatus"] = "UNHEALTHY"
            elif running_checks > self.health_delay_checks:
                task["healthStatus"] = "HEALTHY"
            else:
                task["healthStatus"] = "UNKNOWN"
        return {
            "taskArn": task["taskArn"],
            "lastStatus": task["lastStatus"],
            "healthStatus": task["healthStatus"],
            "group": task["group"],
        }

    def live_count(self, pool_id: Optional[str] = None) -> int:
        return sum(1 for t in self._tasks.values() if pool_id is None or t["pool_id"] == pool_id)
