import json

import httpx
import pytest

from backend.pterocoin.panel_client import PanelClient, PanelError


def _attrs(server_id, user=10, memory=1024, suspended=False):
    return {
        "id": server_id,
        "name": f"server-{server_id}",
        "user": user,
        "identifier": f"abc{server_id}",
        "suspended": suspended,
        "limits": {"memory": memory, "swap": 0, "disk": 5120, "io": 500, "cpu": 100},
    }


def _client(handler):
    return PanelClient("https://panel.test/", "ptla_key", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_get_server_parses_attributes():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"object": "server", "attributes": _attrs(7, memory=2048)})

    server = await _client(handler).get_server(7)
    assert server.id == 7
    assert server.limits == {"memory": 2048, "disk": 5120, "cpu": 100}
    assert server.identifier == "abc7"
    assert seen[0].url.path == "/api/application/servers/7"
    assert seen[0].headers["Authorization"] == "Bearer ptla_key"


@pytest.mark.asyncio
async def test_get_server_404_is_none_and_other_errors_raise():
    assert await _client(lambda r: httpx.Response(404)).get_server(1) is None
    with pytest.raises(PanelError):
        await _client(lambda r: httpx.Response(500)).get_server(1)


@pytest.mark.asyncio
async def test_network_error_raises_panel_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(PanelError):
        await _client(handler).get_server(1)


@pytest.mark.asyncio
async def test_patch_build_body_and_result():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"attributes": _attrs(3)})

    ok = await _client(handler).patch_server_build(3, {"memory": 3072, "disk": 5120, "cpu": 300})
    assert ok is True
    assert seen[0].method == "PATCH"
    assert seen[0].url.path == "/api/application/servers/3/build"
    assert json.loads(seen[0].content) == {"memory": 3072, "swap": 0, "disk": 5120, "io": 500, "cpu": 300}

    rejected = await _client(lambda r: httpx.Response(422)).patch_server_build(3, {"memory": 1, "disk": 1, "cpu": 1})
    assert rejected is False


@pytest.mark.asyncio
async def test_suspend_and_unsuspend_paths():
    paths = []

    def handler(request):
        paths.append((request.method, request.url.path))
        return httpx.Response(204)

    client = _client(handler)
    await client.suspend_server(5)
    await client.unsuspend_server(5)
    assert paths == [
        ("POST", "/api/application/servers/5/suspend"),
        ("POST", "/api/application/servers/5/unsuspend"),
    ]

    with pytest.raises(PanelError):
        await _client(lambda r: httpx.Response(500)).suspend_server(5)


@pytest.mark.asyncio
async def test_list_user_servers_reads_relationships():
    def handler(request):
        assert request.url.path == "/api/application/users/10"
        assert request.url.params["include"] == "servers"
        return httpx.Response(200, json={"attributes": {"id": 10, "relationships": {"servers": {
            "object": "list",
            "data": [{"attributes": _attrs(1)}, {"attributes": _attrs(2, suspended=True)}],
        }}}})

    servers = await _client(handler).list_user_servers(10)
    assert [s.id for s in servers] == [1, 2]
    assert servers[1].suspended is True
