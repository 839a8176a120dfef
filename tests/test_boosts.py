import asyncio

import pytest
import pytest_asyncio

from backend.pterocoin.errors import ErrorCode
from backend.pterocoin.panel_client import PanelError
from backend.pterocoin.services.boosts import ACTIVE_KEY, SCHEDULED_KEY


@pytest_asyncio.fixture
async def ready(economy, store, panel):
    await store.set("users-u1", 10)
    await economy.ledger.credit("u1", 5000)
    panel.add_server(1, user=10, memory=1024, cpu=100, disk=5120)
    return economy


async def _apply(economy, panel, boost_type="cpu", duration="1h", user="u1", server_id=1):
    server = await panel.get_server(server_id)
    return await economy.boosts.apply_boost(user, server, boost_type, duration)


@pytest.mark.asyncio
async def test_cpu_boost_patches_and_sweep_reverts(ready, panel, clock, store):
    res = await _apply(ready, panel)
    assert res.ok
    boost = res.value["boost"]
    assert boost["appliedChange"] == {"memory": 0, "cpu": 200, "disk": 0}
    assert boost["initialResources"] == {"memory": 1024, "cpu": 100, "disk": 5120}
    assert panel.limits(1)["cpu"] == 300
    assert res.value["newBalance"] == 4900

    clock.advance(hours=1, ms=1)
    assert await ready.boosts.sweep_expired() == 1
    assert panel.limits(1) == {"memory": 1024, "cpu": 100, "disk": 5120}
    assert await store.get(ACTIVE_KEY) == {}

    # second pass is a no-op
    panel.patch_server_build.reset_mock()
    assert await ready.boosts.sweep_expired() == 0
    panel.patch_server_build.assert_not_awaited()

    history = await ready.boosts.get_history("u1")
    assert [h["type"] for h in history] == ["expired", "applied"]


@pytest.mark.asyncio
async def test_boost_is_not_swept_before_expiry(ready, panel, clock):
    await _apply(ready, panel)
    clock.advance(hours=1)
    assert await ready.boosts.sweep_expired() == 0
    assert panel.limits(1)["cpu"] == 300


@pytest.mark.asyncio
async def test_same_type_on_same_server_is_rejected_for_any_user(ready, panel, store, economy):
    assert (await _apply(ready, panel)).ok
    await economy.ledger.credit("u2", 5000)
    again = await _apply(ready, panel, user="u2")
    assert again.error == ErrorCode.BOOST_ALREADY_ACTIVE
    assert await economy.ledger.get_balance("u2") == 5000


@pytest.mark.asyncio
async def test_different_types_stack_and_revert_independently(ready, panel, clock):
    cpu = (await _apply(ready, panel, "cpu")).value["boost"]
    clock.advance(hours=2)
    mem = (await _apply(ready, panel, "memory", "6h")).value["boost"]
    assert panel.limits(1) == {"memory": 3072, "cpu": 300, "disk": 5120}

    assert (await ready.boosts.cancel_boost("u1", 1, cpu["id"])).ok
    assert panel.limits(1) == {"memory": 3072, "cpu": 100, "disk": 5120}

    clock.advance(hours=7)
    assert await ready.boosts.sweep_expired() == 1
    assert panel.limits(1) == {"memory": 1024, "cpu": 100, "disk": 5120}
    assert mem["id"] not in await ready.boosts.get_server_boosts(1)


@pytest.mark.asyncio
async def test_invalid_inputs(ready, panel):
    assert (await _apply(ready, panel, boost_type="turbo")).error == ErrorCode.INVALID_BOOST_TYPE
    assert (await _apply(ready, panel, duration="2h")).error == ErrorCode.INVALID_DURATION


@pytest.mark.asyncio
async def test_insufficient_coins_leaves_panel_untouched(economy, store, panel):
    await store.set("users-u1", 10)
    await economy.ledger.credit("u1", 50)
    panel.add_server(1, user=10)
    res = await _apply(economy, panel, "extreme", "24h")
    assert res.error == ErrorCode.INSUFFICIENT_COINS
    panel.patch_server_build.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_panel_patch_creates_nothing(ready, panel, store):
    panel.patch_ok = False
    res = await _apply(ready, panel)
    assert res.error == ErrorCode.UPDATE_FAILED
    assert await ready.ledger.get_balance("u1") == 5000
    assert await store.get(ACTIVE_KEY) is None


@pytest.mark.asyncio
async def test_cancel_refund_is_half_of_remaining_share(ready, panel, clock):
    boost = (await _apply(ready, panel, "performance", "1h")).value["boost"]
    res = await ready.boosts.cancel_boost("u1", 1, boost["id"])
    assert res.value["refundAmount"] == 75
    assert res.value["newBalance"] == 5000 - 150 + 75
    assert panel.limits(1) == {"memory": 1024, "cpu": 100, "disk": 5120}


@pytest.mark.asyncio
@pytest.mark.parametrize("elapsed_min,expected", [(0, 50), (15, 37), (30, 25), (59, 0), (60, 0), (90, 0)])
async def test_cancel_refund_bounds(ready, panel, clock, elapsed_min, expected):
    boost = (await _apply(ready, panel, "cpu", "1h")).value["boost"]
    clock.advance(ms=elapsed_min * 60 * 1000)
    refund = (await ready.boosts.cancel_boost("u1", 1, boost["id"])).value["refundAmount"]
    assert refund == expected
    assert 0 <= refund <= 50


@pytest.mark.asyncio
async def test_cancel_keeps_boost_when_revert_fails(ready, panel, store):
    boost = (await _apply(ready, panel)).value["boost"]
    panel.get_server.side_effect = PanelError("down")
    res = await ready.boosts.cancel_boost("u1", 1, boost["id"])
    assert res.error == ErrorCode.UPSTREAM_FAILURE
    assert boost["id"] in (await store.get(ACTIVE_KEY))["1"]


@pytest.mark.asyncio
async def test_cancel_checks_ownership_and_existence(ready, panel):
    boost = (await _apply(ready, panel)).value["boost"]
    assert (await ready.boosts.cancel_boost("u2", 1, boost["id"])).error == ErrorCode.NOT_OWNER
    assert (await ready.boosts.cancel_boost("u1", 1, "nope")).error == ErrorCode.BOOST_NOT_FOUND


@pytest.mark.asyncio
async def test_extend_moves_expiry_without_repatching(ready, panel, clock):
    boost = (await _apply(ready, panel, "cpu", "1h")).value["boost"]
    panel.patch_server_build.reset_mock()

    res = await ready.boosts.extend_boost("u1", 1, boost["id"], "3h")
    assert res.ok
    extended = res.value["boost"]
    assert extended["id"] == boost["id"]
    assert extended["expiresAt"] == boost["expiresAt"] + 3 * 60 * 60 * 1000
    assert res.value["newBalance"] == 5000 - 100 - 250
    panel.patch_server_build.assert_not_awaited()

    # refund stays within half of everything paid
    refund = (await ready.boosts.cancel_boost("u1", 1, boost["id"])).value["refundAmount"]
    assert refund == (100 + 250) // 2


@pytest.mark.asyncio
async def test_extend_validation(ready, panel):
    boost = (await _apply(ready, panel)).value["boost"]
    assert (await ready.boosts.extend_boost("u1", 1, boost["id"], "5h")).error == ErrorCode.INVALID_DURATION
    assert (await ready.boosts.extend_boost("u2", 1, boost["id"], "1h")).error == ErrorCode.NOT_OWNER
    await ready.ledger.set_balance("u1", 0)
    assert (await ready.boosts.extend_boost("u1", 1, boost["id"], "1h")).error == ErrorCode.INSUFFICIENT_COINS


@pytest.mark.asyncio
async def test_schedule_predebits_and_dispatch_applies(ready, panel, clock, store):
    server = await panel.get_server(1)
    when = clock() + 60_000
    res = await ready.boosts.schedule_boost("u1", server, "memory", "1h", when)
    assert res.ok
    assert res.value["newBalance"] == 4900
    panel.patch_server_build.assert_not_awaited()

    assert await ready.boosts.dispatch_scheduled() == 0
    clock.advance(ms=60_000)
    assert await ready.boosts.dispatch_scheduled() == 1

    assert panel.limits(1)["memory"] == 3072
    assert await store.get(SCHEDULED_KEY) == []
    assert await ready.ledger.get_balance("u1") == 4900
    types = [h["type"] for h in await ready.boosts.get_history("u1")]
    assert types[:2] == ["scheduled_applied", "applied"]


@pytest.mark.asyncio
async def test_schedule_rejects_past_time(ready, panel, clock):
    server = await panel.get_server(1)
    res = await ready.boosts.schedule_boost("u1", server, "cpu", "1h", clock())
    assert res.error == ErrorCode.INVALID_SCHEDULED_TIME
    assert await ready.ledger.get_balance("u1") == 5000


@pytest.mark.asyncio
async def test_dispatch_refunds_when_server_vanished(ready, panel, clock):
    server = await panel.get_server(1)
    await ready.boosts.schedule_boost("u1", server, "cpu", "1h", clock() + 1000)
    del panel.servers[1]
    clock.advance(ms=1000)

    assert await ready.boosts.dispatch_scheduled() == 0
    assert await ready.ledger.get_balance("u1") == 5000
    failed = (await ready.boosts.get_history("u1"))[0]
    assert failed["type"] == "scheduled_failed"
    assert failed["details"]["reason"] == "Server not found"


@pytest.mark.asyncio
async def test_dispatch_refunds_when_boost_already_active(ready, panel, clock):
    await _apply(ready, panel, "cpu", "24h")
    server = await panel.get_server(1)
    await ready.boosts.schedule_boost("u1", server, "cpu", "1h", clock() + 1000)
    clock.advance(ms=1000)

    assert await ready.boosts.dispatch_scheduled() == 0
    assert await ready.ledger.get_balance("u1") == 5000 - 1500


@pytest.mark.asyncio
async def test_cancel_scheduled_refunds_in_full(ready, panel, clock):
    server = await panel.get_server(1)
    item = (await ready.boosts.schedule_boost("u1", server, "extreme", "3h", clock() + 5000)).value["scheduledBoost"]
    assert (await ready.boosts.cancel_scheduled_boost("u2", item["id"])).error == ErrorCode.SCHEDULED_BOOST_NOT_FOUND

    res = await ready.boosts.cancel_scheduled_boost("u1", item["id"])
    assert res.value == {"refundAmount": 800, "newBalance": 5000}
    assert await ready.boosts.get_scheduled_boosts("u1") == []


@pytest.mark.asyncio
async def test_sweep_keeps_boost_when_panel_rejects_revert(ready, panel, clock, store):
    await _apply(ready, panel)
    clock.advance(hours=2)
    panel.patch_ok = False
    assert await ready.boosts.sweep_expired() == 0
    assert len((await store.get(ACTIVE_KEY))["1"]) == 1

    panel.patch_ok = True
    assert await ready.boosts.sweep_expired() == 1


@pytest.mark.asyncio
async def test_sweep_drops_boost_of_deleted_server(ready, panel, clock, store):
    await _apply(ready, panel)
    del panel.servers[1]
    clock.advance(hours=2)
    assert await ready.boosts.sweep_expired() == 1
    assert await store.get(ACTIVE_KEY) == {}


@pytest.mark.asyncio
async def test_resolve_server_checks_owner(ready, panel):
    panel.add_server(2, user=77)
    assert (await ready.boosts.resolve_server("u1", 1)).ok
    assert (await ready.boosts.resolve_server("u1", 2)).error == ErrorCode.NOT_OWNER
    assert (await ready.boosts.resolve_server("u1", 3)).error == ErrorCode.SERVER_NOT_FOUND
    assert (await ready.boosts.resolve_server("u9", 1)).error == ErrorCode.NOT_OWNER


@pytest.mark.asyncio
async def test_user_views(ready, panel):
    boost = (await _apply(ready, panel)).value["boost"]
    assert (await ready.boosts.get_user_active_boosts("u1")) == {"1": {boost["id"]: boost}}
    assert await ready.boosts.get_user_active_boosts("u2") == {}
    assert set(ready.boosts.get_boost_types()) == {"performance", "cpu", "memory", "storage", "extreme"}


@pytest.mark.asyncio
async def test_sweep_restores_initial_resources_after_panel_edit(ready, panel, clock):
    await _apply(ready, panel)
    panel.servers[1].limits["cpu"] = 350

    clock.advance(hours=1, ms=1)
    assert await ready.boosts.sweep_expired() == 1
    assert panel.limits(1) == {"memory": 1024, "cpu": 100, "disk": 5120}


@pytest.mark.asyncio
async def test_overlapping_boosts_keep_unboosted_baseline(ready, panel, clock):
    await _apply(ready, panel, "performance")
    assert panel.limits(1) == {"memory": 2048, "cpu": 200, "disk": 10240}

    cpu = (await _apply(ready, panel, "cpu", "6h")).value["boost"]
    assert cpu["appliedChange"] == {"memory": 0, "cpu": 400, "disk": 0}
    assert cpu["initialResources"] == {"memory": 1024, "cpu": 100, "disk": 5120}
    assert panel.limits(1)["cpu"] == 600

    clock.advance(hours=1, ms=1)
    assert await ready.boosts.sweep_expired() == 1
    assert panel.limits(1) == {"memory": 1024, "cpu": 500, "disk": 5120}

    clock.advance(hours=6)
    assert await ready.boosts.sweep_expired() == 1
    assert panel.limits(1) == {"memory": 1024, "cpu": 100, "disk": 5120}


@pytest.mark.asyncio
async def test_concurrent_applies_of_same_type_charge_once(ready, panel, economy):
    server = await panel.get_server(1)
    results = await asyncio.gather(
        *(economy.boosts.apply_boost("u1", server, "cpu", "1h") for _ in range(5))
    )
    assert sum(1 for r in results if r.ok) == 1
    assert {r.error for r in results if not r.ok} == {ErrorCode.BOOST_ALREADY_ACTIVE}
    assert panel.limits(1)["cpu"] == 300
    assert panel.patch_server_build.await_count == 1
    assert await economy.ledger.get_balance("u1") == 4900
