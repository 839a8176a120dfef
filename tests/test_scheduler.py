from unittest.mock import AsyncMock

import pytest

from backend.pterocoin.scheduler import EconomyScheduler


def test_build_registers_three_jobs(economy):
    scheduler = EconomyScheduler(economy).build()
    assert {job.id for job in scheduler.get_jobs()} == {"boost_expiry", "scheduled_boosts", "staking_accrual"}


@pytest.mark.asyncio
async def test_run_all_once_calls_every_pass(economy):
    economy.boosts.sweep_expired = AsyncMock(return_value=2)
    economy.boosts.dispatch_scheduled = AsyncMock(return_value=0)
    economy.staking.accrue_rewards = AsyncMock(return_value=1)

    await EconomyScheduler(economy).run_all_once()

    economy.boosts.sweep_expired.assert_awaited_once()
    economy.boosts.dispatch_scheduled.assert_awaited_once()
    economy.staking.accrue_rewards.assert_awaited_once()


@pytest.mark.asyncio
async def test_failing_pass_does_not_stop_the_others(economy):
    economy.boosts.sweep_expired = AsyncMock(side_effect=RuntimeError("boom"))
    economy.staking.accrue_rewards = AsyncMock(return_value=0)

    await EconomyScheduler(economy).run_all_once()
    economy.staking.accrue_rewards.assert_awaited_once()


@pytest.mark.asyncio
async def test_start_and_shutdown(economy):
    scheduler = EconomyScheduler(economy)
    scheduler.start()
    try:
        assert scheduler.running
        first = scheduler.scheduler
        scheduler.start()
        assert scheduler.scheduler is first
    finally:
        scheduler.shutdown()
    assert not scheduler.running
