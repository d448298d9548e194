"""
Traffic Controller

Architectural Intent:
- Owns the two named pools (blue, green) of one service and the two
  listeners (production, test) that route to them
- The durable "current production pool" record is only ever changed here,
  through shift_production's single listener-rule swap
- Every scheduler/load-balancer call is retried with bounded backoff;
  exhaustion surfaces as TrafficControlError naming the operation

Design Decisions:
- Candidate pool ids derive from the descriptor id, so re-provisioning after a
  crash finds the existing pool and only tops up missing instances
- Pool count mutations happen under the pool lock; scheduler calls are made
  after the lock is released
- A fully retired pool is deleted from the repository and dropped from memory
  when the next candidate is provisioned
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from bluegreen.domain.entities.descriptor import DeploymentDescriptor
from bluegreen.domain.entities.pool import (
    InstanceHandle,
    Pool,
    PoolColor,
    PoolRole,
    make_pool_id,
)
from bluegreen.domain.errors import ProvisioningTimeout, TrafficControlError
from bluegreen.domain.ports.deployment_repository_port import DeploymentRepositoryPort
from bluegreen.domain.ports.load_balancer_port import LoadBalancerPort
from bluegreen.domain.ports.scheduler_port import PoolSpec, SchedulerPort
from bluegreen.domain.services.retry import RetryExhausted, RetryPolicy
from bluegreen.domain.value_objects.traffic_split import TrafficSplit

logger = logging.getLogger(__name__)


class TrafficController:
    def __init__(
        self,
        service: str,
        scheduler: SchedulerPort,
        load_balancer: LoadBalancerPort,
        repository: DeploymentRepositoryPort,
        production_listener: str,
        test_listener: str,
        retry: Optional[RetryPolicy] = None,
        listener_timeout: float = 10.0,
        drain_seconds: float = 30.0,
    ) -> None:
        self.service = service
        self._scheduler = scheduler
        self._load_balancer = load_balancer
        self._repository = repository
        self.production_listener = production_listener
        self.test_listener = test_listener
        self._retry = retry or RetryPolicy()
        self._listener_timeout = listener_timeout
        self._drain_seconds = drain_seconds
        self._pools: dict[str, Pool] = {}
        self._production_pool_id: Optional[str] = None

    # -- State ---------------------------------------------------------------

    async def load(self) -> None:
        """Restore pools and the production record from the repository."""
        self._pools = {p.pool_id: p for p in self._repository.list_pools(self.service)}
        recorded = self._repository.get_production_pool_id(self.service)
        try:
            actual = await self._load_balancer.get_listener_target(self.production_listener)
        except Exception as e:
            logger.warning("Could not read production listener on load: %s", e)
            actual = None
        if actual and actual != recorded and actual in self._pools:
            logger.warning(
                "Production record %s disagrees with listener target %s; using listener",
                recorded,
                actual,
            )
            self._repository.set_production_pool(self.service, actual)
            recorded = actual
        self._production_pool_id = recorded
        logger.info(
            "Loaded %d pool(s) for %s; production=%s",
            len(self._pools),
            self.service,
            recorded,
        )

    @property
    def production_pool_id(self) -> Optional[str]:
        return self._production_pool_id

    @property
    def production_pool(self) -> Optional[Pool]:
        if self._production_pool_id is None:
            return None
        return self._pools.get(self._production_pool_id)

    def get_pool(self, pool_id: Optional[str]) -> Optional[Pool]:
        if pool_id is None:
            return None
        return self._pools.get(pool_id)

    def pools(self) -> list[Pool]:
        """Pools that still hold instances or a role; fully retired pools are left out."""
        return [p for p in self._pools.values() if not _spent(p)]

    def _prune(self) -> None:
        for pool_id in [pid for pid, p in self._pools.items() if _spent(p)]:
            del self._pools[pool_id]

    def _persist(self, pool: Pool) -> None:
        self._repository.save_pool(pool)

    async def _call(
        self,
        operation: str,
        fn: Callable[[], Awaitable[Any]],
        timeout: Optional[float] = None,
    ) -> Any:
        async def attempt() -> Any:
            if timeout:
                return await asyncio.wait_for(fn(), timeout)
            return await fn()

        try:
            return await self._retry.run(operation, attempt)
        except RetryExhausted as e:
            raise TrafficControlError(
                operation, str(e.last_error) or type(e.last_error).__name__
            ) from e.last_error

    # -- Operations ------------------------------------------------------------

    async def provision_candidate(self, descriptor: DeploymentDescriptor) -> Pool:
        """Create the candidate pool for descriptor; production is untouched."""
        pool = self.candidate_for(descriptor.descriptor_id)
        if pool is None:
            self._prune()
            production = self.production_pool
            color = production.color.other if production else PoolColor.BLUE
            pool = Pool(
                pool_id=make_pool_id(self.service, color, descriptor.descriptor_id),
                service=self.service,
                color=color,
                artifact_version=descriptor.artifact_version,
                desired_count=descriptor.task_definition.desired_count,
                role=PoolRole.CANDIDATE,
                validation_locked=True,
                task_definition=descriptor.task_definition,
            )
            self._pools[pool.pool_id] = pool
            self._persist(pool)
            logger.info("Created candidate pool %s for %s", pool.pool_id, pool.artifact_version)
        elif pool.is_retired:
            raise TrafficControlError(
                "provision_candidate", f"pool {pool.pool_id} has already been retired"
            )

        missing = pool.desired_count - pool.current_count
        if missing <= 0:
            logger.info("Candidate pool %s already provisioned", pool.pool_id)
            return pool

        spec = PoolSpec(pool.pool_id, descriptor.task_definition, missing)
        handles = await self._call(
            "provision_candidate", lambda: self._scheduler.create_instances(spec)
        )
        async with pool.lock:
            pool.add_instances(handles)
        self._persist(pool)
        logger.info(
            "Provisioned %d instance(s) in %s (%d/%d)",
            len(handles),
            pool.pool_id,
            pool.current_count,
            pool.desired_count,
        )
        return pool

    def candidate_for(self, descriptor_id: str) -> Optional[Pool]:
        for color in PoolColor:
            pool = self._pools.get(make_pool_id(self.service, color, descriptor_id))
            if pool is not None:
                return pool
        return None

    async def await_capacity(
        self,
        pool: Pool,
        timeout: float,
        interval: float = 5.0,
        checkpoint: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> int:
        """Wait until every desired instance of pool reports RUNNING."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if checkpoint:
                await checkpoint()
            running = await self._running_count(pool)
            if pool.current_count >= pool.desired_count and running >= pool.desired_count:
                return running
            if loop.time() >= deadline:
                raise ProvisioningTimeout(pool.pool_id, running, pool.desired_count, timeout)
            await asyncio.sleep(interval)

    async def _running_count(self, pool: Pool) -> int:
        running = 0
        for handle in list(pool.instances):
            try:
                description = await self._scheduler.describe_instance(handle)
            except Exception as e:
                logger.debug("describe_instance(%s) failed: %s", handle, e)
                continue
            if str(description.get("lastStatus", "")).upper() == "RUNNING":
                running += 1
        return running

    async def route_test_traffic(self, pool: Pool) -> None:
        if pool.is_retired:
            raise TrafficControlError("route_test_traffic", f"pool {pool.pool_id} is retired")
        await self._call(
            "route_test_traffic",
            lambda: self._load_balancer.set_listener_target(self.test_listener, pool.pool_id),
            timeout=self._listener_timeout,
        )
        logger.info("Test listener %s -> %s", self.test_listener, pool.pool_id)

    async def current_production_target(self) -> Optional[str]:
        return await self._call(
            "get_listener_target",
            lambda: self._load_balancer.get_listener_target(self.production_listener),
            timeout=self._listener_timeout,
        )

    async def shift_production(self, pool: Pool) -> None:
        """Atomically repoint the production listener at pool."""
        if pool.is_retired or pool.current_count == 0:
            raise TrafficControlError(
                "shift_production", f"pool {pool.pool_id} has no instances to serve"
            )
        current = await self.current_production_target()
        if current != pool.pool_id:
            await self._call(
                "shift_production",
                lambda: self._load_balancer.set_listener_target(
                    self.production_listener, pool.pool_id
                ),
                timeout=self._listener_timeout,
            )
            confirmed = await self.current_production_target()
            if confirmed != pool.pool_id:
                raise TrafficControlError(
                    "shift_production",
                    f"listener reports {confirmed} after swap to {pool.pool_id}",
                )
        previous = self._production_pool_id
        self._production_pool_id = pool.pool_id
        self._repository.set_production_pool(self.service, pool.pool_id)
        logger.info("Production listener %s: %s -> %s", self.production_listener, previous, pool.pool_id)

    async def promote(self, pool: Pool) -> None:
        """Record pool as production after a completed deployment."""
        async with pool.lock:
            pool.role = PoolRole.PRODUCTION
            pool.validation_locked = False
        self._persist(pool)

    async def retire_pool(self, pool: Pool) -> None:
        """Stop routing to pool, drain, then deallocate its instances."""
        if pool.is_retired and pool.current_count == 0:
            return
        if pool.pool_id == self._production_pool_id:
            raise TrafficControlError(
                "retire_pool", f"refusing to retire production pool {pool.pool_id}"
            )

        test_target = await self._call(
            "retire_pool",
            lambda: self._load_balancer.get_listener_target(self.test_listener),
            timeout=self._listener_timeout,
        )
        if test_target == pool.pool_id:
            await self._call(
                "retire_pool",
                lambda: self._load_balancer.set_listener_target(self.test_listener, None),
                timeout=self._listener_timeout,
            )

        async with pool.lock:
            pool.role = PoolRole.RETIRED
            pool.validation_locked = False
        self._persist(pool)

        if self._drain_seconds > 0:
            logger.info("Draining %s for %.1fs", pool.pool_id, self._drain_seconds)
            await asyncio.sleep(self._drain_seconds)

        handles = list(pool.instances)
        if handles:
            await self._call(
                "retire_pool", lambda: self._scheduler.destroy_instances(handles)
            )
        async with pool.lock:
            pool.remove_instances(handles)
            pool.desired_count = 0
        self._repository.delete_pool(pool.pool_id)
        logger.info("Retired pool %s (%d instance(s) destroyed)", pool.pool_id, len(handles))

    async def scale_pool(self, pool: Pool, desired: int) -> bool:
        """Resize the production pool. Returns False when the pool is off limits."""
        async with pool.lock:
            if not pool.can_autoscale or pool.pool_id != self._production_pool_id:
                return False
            pool.desired_count = desired
            delta = desired - pool.current_count
            surplus = list(pool.instances[desired:]) if delta < 0 else []
            task_definition = pool.task_definition
        self._persist(pool)

        if delta > 0:
            if task_definition is None:
                raise TrafficControlError("scale_pool", f"pool {pool.pool_id} has no task definition")
            spec = PoolSpec(pool.pool_id, task_definition, delta)
            handles: list[InstanceHandle] = await self._call(
                "scale_pool", lambda: self._scheduler.create_instances(spec)
            )
            async with pool.lock:
                retired_meanwhile = pool.is_retired
                if not retired_meanwhile:
                    pool.add_instances(handles)
            if retired_meanwhile:
                await self._call("scale_pool", lambda: self._scheduler.destroy_instances(handles))
        elif delta < 0:
            await self._call("scale_pool", lambda: self._scheduler.destroy_instances(surplus))
            async with pool.lock:
                pool.remove_instances(surplus)
        self._persist(pool)
        return True

    async def sample_split(self) -> TrafficSplit:
        production = await self._load_balancer.get_listener_target(self.production_listener)
        test = await self._load_balancer.get_listener_target(self.test_listener)
        return TrafficSplit(production_pool_id=production, test_pool_id=test)


def _spent(pool: Pool) -> bool:
    return pool.is_retired and pool.current_count == 0
