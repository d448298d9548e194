"""Tests for the Traffic Controller against the simulated adapters."""

import pytest

from bluegreen.domain.entities.pool import PoolColor, PoolRole
from bluegreen.domain.errors import ProvisioningTimeout, TrafficControlError
from bluegreen.domain.services.traffic_controller import TrafficController

from conftest import PRODUCTION_LISTENER, TEST_LISTENER


async def promote_first(traffic, descriptor):
    pool = await traffic.provision_candidate(descriptor)
    await traffic.shift_production(pool)
    await traffic.promote(pool)
    return pool


class TestProvisioning:
    @pytest.mark.asyncio
    async def test_first_candidate_is_blue(self, traffic, scheduler, descriptor_factory):
        descriptor = descriptor_factory("v1", desired_count=3)

        pool = await traffic.provision_candidate(descriptor)

        assert pool.color is PoolColor.BLUE
        assert pool.role is PoolRole.CANDIDATE
        assert pool.validation_locked
        assert pool.current_count == 3
        assert scheduler.live_count(pool.pool_id) == 3

    @pytest.mark.asyncio
    async def test_candidate_takes_the_other_color(self, traffic, descriptor_factory):
        blue = await promote_first(traffic, descriptor_factory("v1"))

        green = await traffic.provision_candidate(descriptor_factory("v2"))

        assert blue.color is PoolColor.BLUE
        assert green.color is PoolColor.GREEN
        assert traffic.production_pool_id == blue.pool_id

    @pytest.mark.asyncio
    async def test_reprovision_tops_up_only_missing(self, traffic, scheduler, descriptor_factory):
        descriptor = descriptor_factory("v1", desired_count=2)
        pool = await traffic.provision_candidate(descriptor)
        await scheduler.destroy_instances(pool.instances[:1])
        pool.remove_instances(pool.instances[:1])

        again = await traffic.provision_candidate(descriptor)

        assert again is pool
        assert pool.current_count == 2
        assert len(scheduler.created) == 3

    @pytest.mark.asyncio
    async def test_transient_create_failure_is_retried(self, traffic, scheduler, descriptor_factory):
        scheduler.fail_next_creates = 2

        pool = await traffic.provision_candidate(descriptor_factory("v1"))

        assert pool.current_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_create_raises(self, traffic, scheduler, descriptor_factory):
        scheduler.fail_next_creates = 3

        with pytest.raises(TrafficControlError, match="provision_candidate"):
            await traffic.provision_candidate(descriptor_factory("v1"))

    @pytest.mark.asyncio
    async def test_await_capacity(self, traffic, scheduler, descriptor_factory):
        scheduler.start_delay_checks = 2
        pool = await traffic.provision_candidate(descriptor_factory("v1"))

        running = await traffic.await_capacity(pool, timeout=1.0, interval=0.001)

        assert running == 2

    @pytest.mark.asyncio
    async def test_await_capacity_times_out(self, traffic, scheduler, descriptor_factory):
        pool = await traffic.provision_candidate(descriptor_factory("v1"))
        scheduler.stuck_pools.add(pool.pool_id)

        with pytest.raises(ProvisioningTimeout):
            await traffic.await_capacity(pool, timeout=0.02, interval=0.005)


class TestListeners:
    @pytest.mark.asyncio
    async def test_route_test_traffic(self, traffic, load_balancer, descriptor_factory):
        pool = await traffic.provision_candidate(descriptor_factory("v1"))

        await traffic.route_test_traffic(pool)

        assert await load_balancer.get_listener_target(TEST_LISTENER) == pool.pool_id
        assert await load_balancer.get_listener_target(PRODUCTION_LISTENER) is None

    @pytest.mark.asyncio
    async def test_shift_production_is_one_swap(
        self, traffic, load_balancer, repository, descriptor_factory
    ):
        blue = await promote_first(traffic, descriptor_factory("v1"))
        green = await traffic.provision_candidate(descriptor_factory("v2"))

        await traffic.shift_production(green)

        assert load_balancer.targets_of(PRODUCTION_LISTENER) == [blue.pool_id, green.pool_id]
        assert repository.get_production_pool_id("web") == green.pool_id
        assert traffic.production_pool_id == green.pool_id

    @pytest.mark.asyncio
    async def test_shift_is_idempotent(self, traffic, load_balancer, descriptor_factory):
        pool = await traffic.provision_candidate(descriptor_factory("v1"))
        await traffic.shift_production(pool)
        await traffic.shift_production(pool)

        assert load_balancer.targets_of(PRODUCTION_LISTENER) == [pool.pool_id]

    @pytest.mark.asyncio
    async def test_shift_to_empty_pool_refused(self, traffic, scheduler, descriptor_factory):
        pool = await traffic.provision_candidate(descriptor_factory("v1"))
        pool.remove_instances(list(pool.instances))

        with pytest.raises(TrafficControlError, match="no instances"):
            await traffic.shift_production(pool)

    @pytest.mark.asyncio
    async def test_unreachable_listener_raises(self, traffic, load_balancer, descriptor_factory):
        pool = await traffic.provision_candidate(descriptor_factory("v1"))
        load_balancer.failing_listeners.add(PRODUCTION_LISTENER)

        with pytest.raises(TrafficControlError, match="shift_production"):
            await traffic.shift_production(pool)

        assert traffic.production_pool_id is None

    @pytest.mark.asyncio
    async def test_slow_listener_times_out(
        self, scheduler, load_balancer, repository, fast_retry, descriptor_factory
    ):
        traffic = TrafficController(
            "web", scheduler, load_balancer, repository,
            PRODUCTION_LISTENER, TEST_LISTENER, retry=fast_retry, listener_timeout=0.01,
        )
        pool = await traffic.provision_candidate(descriptor_factory("v1"))
        load_balancer.set_delay = 0.1

        with pytest.raises(TrafficControlError, match="route_test_traffic"):
            await traffic.route_test_traffic(pool)


class TestRetire:
    @pytest.mark.asyncio
    async def test_retire_destroys_instances_and_detaches_test(
        self, traffic, scheduler, load_balancer, descriptor_factory
    ):
        await promote_first(traffic, descriptor_factory("v1"))
        green = await traffic.provision_candidate(descriptor_factory("v2"))
        await traffic.route_test_traffic(green)

        await traffic.retire_pool(green)

        assert green.is_retired
        assert green.current_count == 0
        assert scheduler.live_count(green.pool_id) == 0
        assert await load_balancer.get_listener_target(TEST_LISTENER) is None

    @pytest.mark.asyncio
    async def test_refuses_to_retire_production(self, traffic, descriptor_factory):
        blue = await promote_first(traffic, descriptor_factory("v1"))

        with pytest.raises(TrafficControlError, match="refusing"):
            await traffic.retire_pool(blue)

    @pytest.mark.asyncio
    async def test_retire_twice_is_noop(self, traffic, scheduler, descriptor_factory):
        await promote_first(traffic, descriptor_factory("v1"))
        green = await traffic.provision_candidate(descriptor_factory("v2"))
        await traffic.retire_pool(green)

        await traffic.retire_pool(green)

        assert len(scheduler.destroyed) == 2

    @pytest.mark.asyncio
    async def test_retired_pool_leaves_listing_and_storage(
        self, traffic, repository, descriptor_factory
    ):
        blue = await promote_first(traffic, descriptor_factory("v1"))
        green = await traffic.provision_candidate(descriptor_factory("v2"))

        await traffic.retire_pool(green)

        assert traffic.pools() == [blue]
        assert [p.pool_id for p in repository.list_pools("web")] == [blue.pool_id]
        assert traffic.get_pool(green.pool_id) is green

    @pytest.mark.asyncio
    async def test_retired_pools_do_not_accumulate(self, traffic, repository, descriptor_factory):
        first = previous = await promote_first(traffic, descriptor_factory("v1"))
        for version in ("v2", "v3", "v4"):
            candidate = await traffic.provision_candidate(descriptor_factory(version))
            await traffic.shift_production(candidate)
            await traffic.retire_pool(previous)
            await traffic.promote(candidate)
            previous = candidate

        assert traffic.pools() == [previous]
        assert [p.pool_id for p in repository.list_pools("web")] == [previous.pool_id]
        assert traffic.get_pool(first.pool_id) is None

    @pytest.mark.asyncio
    async def test_retired_pool_cannot_be_reprovisioned(self, traffic, descriptor_factory):
        await promote_first(traffic, descriptor_factory("v1"))
        descriptor = descriptor_factory("v2")
        green = await traffic.provision_candidate(descriptor)
        await traffic.retire_pool(green)

        with pytest.raises(TrafficControlError, match="retired"):
            await traffic.provision_candidate(descriptor)


class TestScaling:
    @pytest.mark.asyncio
    async def test_scale_production_up_and_down(self, traffic, scheduler, descriptor_factory):
        blue = await promote_first(traffic, descriptor_factory("v1", desired_count=2))

        assert await traffic.scale_pool(blue, 4)
        assert blue.current_count == 4
        assert await traffic.scale_pool(blue, 1)
        assert blue.current_count == 1
        assert scheduler.live_count(blue.pool_id) == 1

    @pytest.mark.asyncio
    async def test_locked_candidate_not_scaled(self, traffic, descriptor_factory):
        await promote_first(traffic, descriptor_factory("v1"))
        green = await traffic.provision_candidate(descriptor_factory("v2"))

        assert not await traffic.scale_pool(green, 5)
        assert green.desired_count == 2


class TestLoad:
    @pytest.mark.asyncio
    async def test_load_restores_pools_and_production(
        self, traffic, repository, scheduler, load_balancer, fast_retry, descriptor_factory
    ):
        blue = await promote_first(traffic, descriptor_factory("v1"))
        restored = TrafficController(
            "web", scheduler, load_balancer, repository,
            PRODUCTION_LISTENER, TEST_LISTENER, retry=fast_retry,
        )

        await restored.load()

        assert restored.production_pool_id == blue.pool_id
        assert restored.production_pool.role is PoolRole.PRODUCTION

    @pytest.mark.asyncio
    async def test_listener_wins_over_stale_record(
        self, traffic, repository, scheduler, load_balancer, fast_retry, descriptor_factory
    ):
        blue = await promote_first(traffic, descriptor_factory("v1"))
        green = await traffic.provision_candidate(descriptor_factory("v2"))
        # listener swapped but the process died before the record was written
        await load_balancer.set_listener_target(PRODUCTION_LISTENER, green.pool_id)
        restored = TrafficController(
            "web", scheduler, load_balancer, repository,
            PRODUCTION_LISTENER, TEST_LISTENER, retry=fast_retry,
        )

        await restored.load()

        assert restored.production_pool_id == green.pool_id
        assert repository.get_production_pool_id("web") == green.pool_id

    @pytest.mark.asyncio
    async def test_sample_split(self, traffic, descriptor_factory):
        blue = await promote_first(traffic, descriptor_factory("v1"))
        green = await traffic.provision_candidate(descriptor_factory("v2"))
        await traffic.route_test_traffic(green)

        split = await traffic.sample_split()

        assert split.production_pool_id == blue.pool_id
        assert split.test_pool_id == green.pool_id
