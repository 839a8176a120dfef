import pytest
from fastapi.testclient import TestClient

from backend.pterocoin.main import create_app

USER = {"X-User-Id": "u1"}
ADMIN = {"X-Admin-Token": "admin-secret"}


@pytest.fixture
def client(economy):
    with TestClient(create_app(economy)) as c:
        yield c


def _seed(client, user="u1", coins=None, panel_user=None):
    if coins is not None:
        assert client.put(f"/api/admin/users/{user}/coins", json={"amount": coins}, headers=ADMIN).status_code == 200
    if panel_user is not None:
        r = client.put(f"/api/admin/users/{user}/panel-account", json={"panelUserId": panel_user}, headers=ADMIN)
        assert r.status_code == 200


def test_healthz_and_root(client):
    assert client.get("/healthz").json() == {"status": "ok", "economy": True, "scheduler": False}
    assert client.get("/").json()["api_prefix"] == "/api"


def test_user_header_required(client):
    r = client.get("/api/boosts/active")
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"


def test_missing_fields(client):
    r = client.post("/api/boosts/apply", json={"serverId": 1}, headers=USER)
    assert r.status_code == 400
    assert r.json() == {"error": "Missing required fields", "code": "MISSING_FIELDS"}


def test_apply_boost_flow(client, panel):
    _seed(client, coins=1000, panel_user=10)
    panel.add_server(1, user=10)

    r = client.post("/api/boosts/apply", json={"serverId": 1, "boostType": "cpu", "duration": "1h"}, headers=USER)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["newBalance"] == 900
    assert panel.limits(1)["cpu"] == 300

    active = client.get("/api/boosts/active", headers=USER).json()
    assert list(active["1"]) == [body["boost"]["id"]]

    again = client.post("/api/boosts/apply", json={"serverId": 1, "boostType": "cpu", "duration": "1h"}, headers=USER)
    assert again.status_code == 409
    assert again.json()["code"] == "BOOST_ALREADY_ACTIVE"


def test_apply_boost_on_foreign_server(client, panel):
    _seed(client, coins=1000, panel_user=10)
    panel.add_server(2, user=99)
    r = client.post("/api/boosts/apply", json={"serverId": 2, "boostType": "cpu", "duration": "1h"}, headers=USER)
    assert r.status_code == 403
    assert r.json()["code"] == "NOT_OWNER"


def test_store_insufficient_funds_body(client):
    _seed(client, coins=100)
    r = client.post("/api/store/buy", json={"resourceType": "ram", "amount": 1}, headers=USER)
    assert r.status_code == 402
    assert r.json() == {"error": "Insufficient funds", "code": "INSUFFICIENT_FUNDS", "required": 600, "balance": 100}


def test_staking_routes(client):
    _seed(client, coins=1000)
    assert client.get("/api/staking/calculate", params={"planId": "silver"}).json()["code"] == "MISSING_FIELDS"

    r = client.post("/api/staking/stakes", json={"planId": "flexible", "amount": 400}, headers=USER)
    assert r.status_code == 200
    stake_id = r.json()["stake"]["id"]
    assert client.get("/api/staking/summary", headers=USER).json()["totalStaked"] == 400

    claimed = client.post(f"/api/staking/stakes/{stake_id}/claim", headers=USER)
    assert claimed.json()["balance"] == 1000
    assert client.post(f"/api/staking/stakes/{stake_id}/claim", headers=USER).status_code == 409


def test_daily_claim_and_leaderboard(client):
    r = client.post("/api/daily-rewards/claim", headers={**USER, "X-User-Name": "alice"})
    assert r.status_code == 200
    assert r.json()["reward"] == 25
    assert client.post("/api/daily-rewards/claim", headers=USER).status_code == 409

    board = client.get("/api/daily-rewards/leaderboard").json()
    assert board[0]["username"] == "alice"


def test_billing_checkout_and_verify(client, payments):
    r = client.post("/api/v5/billing/checkout", json={"amount_usd": 0.5}, headers=USER)
    assert r.json()["code"] == "INVALID_AMOUNT"

    payments.add_session("cs_1", "u1", "4.00")
    ok = client.get("/api/v5/billing/verify-checkout", params={"session_id": "cs_1"}, headers=USER)
    assert ok.json() == {"success": True, "credit_usd": 4.0}
    dup = client.get("/api/v5/billing/verify-checkout", params={"session_id": "cs_1"}, headers=USER)
    assert dup.status_code == 409

    bought = client.post("/api/v5/billing/purchase-coins", json={"package_id": 1000}, headers=USER)
    assert bought.json()["new_coin_balance"] == 1000


def test_referral_routes_have_no_prefix(client):
    assert client.get("/generate", params={"code": "FRIEND"}, headers=USER).status_code == 200
    r = client.get("/claim", params={"code": "FRIEND"}, headers={"X-User-Id": "u2"})
    assert r.json() == {"success": "Referral code claimed"}
    assert client.get("/claim", params={"code": "FRIEND"}, headers={"X-User-Id": "u2"}).status_code == 409


def test_resources_snapshot(client, panel):
    _seed(client, panel_user=10)
    panel.add_server(1, user=10, memory=2048)
    body = client.get("/api/resources", headers=USER).json()
    assert body["used"]["ram"] == 2048
    assert body["remaining"]["ram"] == 2048
    assert body["overLimit"] == []


def test_admin_requires_token(client):
    r = client.put("/api/admin/users/u1/coins", json={"amount": 5})
    assert r.status_code == 403
    assert r.json()["code"] == "FORBIDDEN"
    wrong = client.put("/api/admin/users/u1/coins", json={"amount": 5}, headers={"X-Admin-Token": "nope"})
    assert wrong.status_code == 403


def test_admin_resources_and_package(client, panel):
    _seed(client, panel_user=10)
    panel.add_server(1, user=10, memory=6144)

    r = client.put("/api/admin/users/u1/package", json={"package": "premium"}, headers=ADMIN)
    assert r.json()["package"] == "premium"
    assert client.put("/api/admin/users/u1/package", json={"package": "gold"}, headers=ADMIN).status_code == 400

    r = client.put("/api/admin/users/u1/resources", json={"ram": 1024}, headers=ADMIN)
    assert r.json()["resources"]["ram"] == 1024

    info = client.get("/api/admin/users/u1/resources", headers=ADMIN).json()
    assert info["package"] == "premium"
    assert info["allowed"]["ram"] == 8192 + 1024


def test_admin_validation_error(client):
    r = client.put("/api/admin/users/u1/coins", json={"amount": "lots"}, headers=ADMIN)
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


def test_admin_jobs_run(client):
    assert client.post("/api/admin/jobs/run", headers=ADMIN).json() == {"success": True}
    assert client.get("/api/admin/staking/active-users", headers=ADMIN).json() == {"count": 0, "users": []}


def test_resize_server_route(client, panel):
    _seed(client, panel_user=10)
    panel.add_server(1, user=10, memory=1024)

    r = client.patch("/api/servers/1", json={"ram": 2048, "disk": 5120, "cpu": 100}, headers=USER)
    assert r.status_code == 200
    assert r.json()["limits"] == {"memory": 2048, "disk": 5120, "cpu": 100}
    assert panel.limits(1)["memory"] == 2048

    over = client.patch("/api/servers/1", json={"ram": 8192, "disk": 5120, "cpu": 100}, headers=USER)
    assert over.status_code == 400
    assert over.json()["code"] == "RESOURCE_LIMIT_EXCEEDED"
    assert over.json()["available"]["ram"] == 4096

    missing = client.patch("/api/servers/1", json={"ram": 2048}, headers=USER)
    assert missing.json()["code"] == "MISSING_FIELDS"
