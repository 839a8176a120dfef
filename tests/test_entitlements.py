import pytest

from backend.pterocoin.catalog import ResourceEnvelope
from backend.pterocoin.errors import ErrorCode
from backend.pterocoin.panel_client import PanelError, PanelServer
from backend.pterocoin.services.entitlements import EntitlementCalculator, add_extra


def _server(server_id, memory, disk, cpu):
    return PanelServer(id=server_id, name="s", user=1, limits={"memory": memory, "disk": disk, "cpu": cpu})


def test_compute_sums_package_extra_and_usage():
    ent = EntitlementCalculator.compute(
        ResourceEnvelope(4096, 20480, 150, 2),
        ResourceEnvelope(1024, 0, 50, 1),
        [_server(1, 2048, 10240, 100), _server(2, 1024, 5120, 50)],
    )
    assert ent.allowed == ResourceEnvelope(5120, 20480, 200, 3)
    assert ent.used == ResourceEnvelope(3072, 15360, 150, 2)
    assert ent.remaining() == ResourceEnvelope(2048, 5120, 50, 1)
    assert ent.over_limit == []
    assert ent.server_ids == [1, 2]


def test_over_limit_lists_each_exceeded_dimension():
    ent = EntitlementCalculator.compute(
        ResourceEnvelope(1024, 5120, 100, 1),
        ResourceEnvelope(),
        [_server(1, 2048, 5120, 100), _server(2, 0, 0, 0)],
    )
    assert ent.over_limit == ["ram", "servers"]


def test_boost_deltas_raise_the_ceiling():
    ent = EntitlementCalculator.compute(
        ResourceEnvelope(4096, 20480, 150, 2),
        ResourceEnvelope(),
        [_server(1, 12288, 5120, 100)],
        boosted=ResourceEnvelope(ram=8192),
    )
    assert ent.over_limit == []
    assert ent.to_public()["boosted"]["ram"] == 8192


def test_admit_rejects_requests_beyond_remaining():
    ent = EntitlementCalculator.compute(
        ResourceEnvelope(4096, 20480, 150, 2), ResourceEnvelope(), [_server(1, 2048, 10240, 100)]
    )
    ok = EntitlementCalculator.admit(ent, ram=2048, disk=10240, cpu=50)
    assert ok.ok
    assert ok.value == ResourceEnvelope(0, 0, 0, 0)

    denied = EntitlementCalculator.admit(ent, ram=4096)
    assert denied.error == ErrorCode.RESOURCE_LIMIT_EXCEEDED
    assert "ram" in denied.message


@pytest.mark.asyncio
async def test_snapshot_uses_package_extra_and_linked_servers(economy, store, panel):
    await store.set("users-u1", 10)
    await store.set("package-u1", "premium")
    await add_extra(store, economy.locks, "u1", ResourceEnvelope(ram=1024))
    panel.add_server(1, user=10, memory=2048, disk=10240, cpu=100)
    panel.add_server(2, user=99, memory=99999)

    ent = await economy.entitlements.snapshot("u1")
    assert ent.allowed == ResourceEnvelope(8192 + 1024, 40960, 300, 4)
    assert ent.used == ResourceEnvelope(2048, 10240, 100, 1)


@pytest.mark.asyncio
async def test_unknown_package_falls_back_to_default(economy, store):
    await store.set("package-u1", "does-not-exist")
    assert await economy.entitlements.get_package("u1") == ResourceEnvelope(4096, 20480, 150, 2)


@pytest.mark.asyncio
async def test_unlinked_user_has_no_servers(economy, panel):
    ent = await economy.entitlements.snapshot("u1")
    assert ent.server_ids == []
    panel.list_user_servers.assert_not_awaited()


@pytest.mark.asyncio
async def test_reconcile_suspends_all_servers_when_over_limit(economy, store, panel):
    await store.set("users-u1", 10)
    panel.add_server(1, user=10, memory=4096, cpu=50)
    panel.add_server(2, user=10, memory=1024, cpu=50)

    outcome = await economy.reconciler.reconcile("u1")
    assert outcome["action"] == "suspend"
    assert outcome["overLimit"] == ["ram"]
    assert panel.servers[1].suspended and panel.servers[2].suspended


@pytest.mark.asyncio
async def test_reconcile_unsuspends_once_back_within_limits(economy, store, panel):
    await store.set("users-u1", 10)
    panel.add_server(1, user=10, memory=4096, cpu=50)
    panel.add_server(2, user=10, memory=1024, cpu=50)
    await economy.reconciler.reconcile("u1")

    await add_extra(store, economy.locks, "u1", ResourceEnvelope(ram=1024))
    outcome = await economy.reconciler.reconcile("u1")
    assert outcome["action"] == "unsuspend"
    assert not panel.servers[1].suspended and not panel.servers[2].suspended


@pytest.mark.asyncio
async def test_reconcile_never_raises_on_panel_errors(economy, store, panel):
    await store.set("users-u1", 10)
    panel.list_user_servers.side_effect = PanelError("down")
    assert (await economy.reconciler.reconcile("u1"))["action"] == "error"


@pytest.mark.asyncio
async def test_reconcile_collects_per_server_failures(economy, store, panel):
    await store.set("users-u1", 10)
    panel.add_server(1, user=10, memory=9000)
    panel.add_server(2, user=10)
    panel.suspend_server.side_effect = PanelError("nope")

    outcome = await economy.reconciler.reconcile("u1")
    assert outcome["action"] == "suspend"
    assert sorted(outcome["failed"]) == [1, 2]


@pytest.mark.asyncio
async def test_reconcile_survives_unexpected_per_server_errors(economy, store, panel):
    await store.set("users-u1", 10)
    panel.add_server(1, user=10, memory=9000)
    panel.add_server(2, user=10)
    panel.suspend_server.side_effect = [RuntimeError("boom"), None]

    outcome = await economy.reconciler.reconcile("u1")
    assert outcome["action"] == "suspend"
    assert outcome["failed"] == [1]
    assert panel.suspend_server.await_count == 2
