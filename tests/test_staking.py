import asyncio
from decimal import Decimal

import pytest

from backend.pterocoin.errors import ErrorCode
from backend.pterocoin.services.staking import stakes_key

DAY_MS = 24 * 60 * 60 * 1000


@pytest.mark.asyncio
async def test_silver_scenario_minimum_and_balance(economy):
    await economy.ledger.credit("u1", 500)

    below_min = await economy.staking.create_stake("u1", "silver", 300)
    assert below_min.error == ErrorCode.INSUFFICIENT_AMOUNT

    too_much = await economy.staking.create_stake("u1", "silver", 600)
    assert too_much.error == ErrorCode.INSUFFICIENT_BALANCE
    assert await economy.ledger.get_balance("u1") == 500
    assert await economy.staking.get_user_stakes("u1") == []


@pytest.mark.asyncio
async def test_create_stake_validation(economy):
    await economy.ledger.credit("u1", 5000)
    assert (await economy.staking.create_stake("u1", "diamond", 1000)).error == ErrorCode.INVALID_PLAN
    assert (await economy.staking.create_stake("u1", "flexible", 150.5)).error == ErrorCode.INVALID_AMOUNT
    assert (await economy.staking.create_stake("u1", "flexible", "150")).error == ErrorCode.INVALID_AMOUNT


@pytest.mark.asyncio
async def test_flexible_claim_returns_principal_and_rewards(economy, clock):
    await economy.ledger.credit("u1", 1000)
    res = await economy.staking.create_stake("u1", "flexible", 1000)
    assert res.value["balance"] == 0
    stake = res.value["stake"]
    assert stake["endTime"] is None
    assert await economy.staking.get_active_users() == ["u1"]

    clock.advance(days=1)
    assert await economy.staking.accrue_rewards() == 1

    claimed = await economy.staking.claim_stake("u1", stake["id"])
    assert claimed.ok
    out = claimed.value["stake"]
    assert out["status"] == "claimed"
    assert out["penalty"] == 0
    assert out["accruedRewards"] == pytest.approx(0.41095890)
    assert out["returnedAmount"] == pytest.approx(1000.41095890)
    assert claimed.value["balance"] == 1000
    assert await economy.staking.get_active_users() == []


@pytest.mark.asyncio
async def test_gold_early_claim_penalizes_principal_only(economy, clock, store):
    await economy.ledger.credit("u1", 1000)
    stake = (await economy.staking.create_stake("u1", "gold", 1000)).value["stake"]
    assert stake["endTime"] == stake["createdAt"] + 30 * DAY_MS

    clock.advance(days=1)
    await economy.staking.accrue_rewards()

    clock.now = stake["endTime"] - 1
    claimed = (await economy.staking.claim_stake("u1", stake["id"])).value
    raw = next(s for s in await store.get(stakes_key("u1")) if s["id"] == stake["id"])
    assert Decimal(raw["penalty"]) == Decimal("400")
    assert Decimal(raw["returnedAmount"]) == Decimal("601.64383561")
    assert claimed["balance"] == 601


@pytest.mark.asyncio
async def test_gold_claim_at_end_time_has_no_penalty(economy, clock):
    await economy.ledger.credit("u1", 1000)
    stake = (await economy.staking.create_stake("u1", "gold", 1000)).value["stake"]
    clock.now = stake["endTime"]
    claimed = (await economy.staking.claim_stake("u1", stake["id"])).value
    assert claimed["stake"]["penalty"] == 0
    assert claimed["balance"] == 1000


@pytest.mark.asyncio
async def test_claim_errors(economy):
    await economy.ledger.credit("u1", 200)
    stake = (await economy.staking.create_stake("u1", "flexible", 100)).value["stake"]
    assert (await economy.staking.claim_stake("u1", "missing")).error == ErrorCode.STAKE_NOT_FOUND
    assert (await economy.staking.claim_stake("u1", stake["id"])).ok
    assert (await economy.staking.claim_stake("u1", stake["id"])).error == ErrorCode.STAKE_NOT_ACTIVE


@pytest.mark.asyncio
async def test_accrual_runs_once_per_day_without_catch_up(economy, clock):
    await economy.ledger.credit("u1", 10000)
    await economy.staking.create_stake("u1", "platinum", 3650)

    assert await economy.staking.accrue_rewards() == 0
    clock.advance(days=3)
    assert await economy.staking.accrue_rewards() == 1
    assert await economy.staking.accrue_rewards() == 0

    summary = await economy.staking.get_summary("u1")
    # 3650 * 80% / 365 = 8 per day, one step only
    assert summary["totalRewards"] == pytest.approx(8.0)
    assert summary["totalStaked"] == 3650
    assert summary["activeStakesCount"] == 1
    assert summary["availableBalance"] == 10000 - 3650


@pytest.mark.asyncio
async def test_user_stays_active_while_any_stake_is_active(economy):
    await economy.ledger.credit("u1", 1000)
    first = (await economy.staking.create_stake("u1", "flexible", 100)).value["stake"]
    await economy.staking.create_stake("u1", "flexible", 200)

    await economy.staking.claim_stake("u1", first["id"])
    assert await economy.staking.get_active_users() == ["u1"]

    stakes = await economy.staking.get_user_stakes("u1")
    assert [s["status"] for s in stakes] == ["claimed", "active"]
    assert stakes[0]["planDetails"]["name"] == "Flexible"

    history = await economy.staking.get_history("u1")
    assert [h["type"] for h in history] == ["stake", "stake", "claim"]


def test_calculate_projection(economy):
    res = economy.staking.calculate("silver", "730", 14)
    assert res.ok
    out = res.value
    assert out["durationDays"] == 14
    assert out["dailyReward"] == pytest.approx(0.8)
    assert out["projectedRewards"] == pytest.approx(11.2)
    assert out["totalReturn"] == pytest.approx(741.2)
    assert out["yearlyReward"] == pytest.approx(292.0)


def test_calculate_defaults_and_validation(economy):
    assert economy.staking.calculate("flexible", 100).value["durationDays"] == 30
    assert economy.staking.calculate("nope", 100).error == ErrorCode.INVALID_PLAN
    assert economy.staking.calculate("gold", 999).error == ErrorCode.INVALID_AMOUNT
    assert economy.staking.calculate("gold", "abc").error == ErrorCode.INVALID_AMOUNT


def test_plans_catalog(economy):
    plans = economy.staking.get_plans()
    assert plans["gold"]["penaltyPercent"] == 40
    assert plans["platinum"]["minAmount"] == 2500


@pytest.mark.asyncio
async def test_concurrent_stakes_cannot_overdraw(economy):
    await economy.ledger.credit("u1", 1000)
    results = await asyncio.gather(*(economy.staking.create_stake("u1", "silver", 600) for _ in range(3)))
    assert [r.error for r in results] == [None, ErrorCode.INSUFFICIENT_BALANCE, ErrorCode.INSUFFICIENT_BALANCE]
    assert await economy.ledger.get_balance("u1") == 400
    assert len(await economy.staking.get_user_stakes("u1")) == 1
