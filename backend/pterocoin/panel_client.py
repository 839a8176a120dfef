# 📂 backend/pterocoin/panel_client.py — клиент Application API панели Pterodactyl
# -----------------------------------------------------------------------------
# Что делает:
#   • get_server(id)              → GET  /api/application/servers/{id}
#   • patch_server_build(id, ...) → PATCH /api/application/servers/{id}/build
#       тело: {memory, swap: 0, disk, io: 500, cpu}
#   • suspend_server / unsuspend_server → POST /servers/{id}/suspend|unsuspend
#   • list_user_servers(panel_user_id)  → GET /api/application/users/{id}?include=servers
#
# Правила:
#   • Один запрос = одна попытка, без ретраев. Таймаут из settings.HTTP_TIMEOUT.
#   • Сетевые ошибки и неуспешные статусы → PanelError (кроме 404 в get_server → None
#     и patch_server_build, который возвращает True/False).
#   • Авторизация: Bearer <PTERODACTYL_KEY>.
# -----------------------------------------------------------------------------

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .errors import UpstreamError
from .utils import get_logger

log = get_logger("panel")


class PanelError(UpstreamError):
    """Панель недоступна или ответила ошибкой."""


@dataclass
class PanelServer:
    id: int
    name: str
    user: int
    limits: Dict[str, int] = field(default_factory=dict)
    suspended: bool = False
    identifier: Optional[str] = None

    @classmethod
    def from_attributes(cls, attrs: Dict[str, Any]) -> "PanelServer":
        limits = attrs.get("limits") or {}
        return cls(
            id=int(attrs["id"]),
            name=attrs.get("name") or "",
            user=int(attrs.get("user") or 0),
            limits={
                "memory": int(limits.get("memory") or 0),
                "disk": int(limits.get("disk") or 0),
                "cpu": int(limits.get("cpu") or 0),
            },
            suspended=bool(attrs.get("suspended", False)),
            identifier=attrs.get("identifier"),
        )


class PanelClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self.base_url}/api/application",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    async def get_server(self, server_id: Any) -> Optional[PanelServer]:
        """Сервер по id или None, если панель ответила 404."""
        try:
            async with self._client() as client:
                r = await client.get(f"/servers/{server_id}")
        except httpx.HTTPError as e:
            raise PanelError(f"get_server({server_id}): {e}") from e
        if r.status_code == 404:
            return None
        if r.is_error:
            raise PanelError(f"get_server({server_id}): HTTP {r.status_code}")
        return PanelServer.from_attributes(r.json()["attributes"])

    async def patch_server_build(self, server_id: Any, limits: Dict[str, int]) -> bool:
        """
        Выставляет лимиты memory/disk/cpu. Возвращает False при любой неудаче
        (ошибка логируется), True при успехе.
        """
        body = {
            "memory": int(limits["memory"]),
            "swap": 0,
            "disk": int(limits["disk"]),
            "io": 500,
            "cpu": int(limits["cpu"]),
        }
        try:
            async with self._client() as client:
                r = await client.patch(f"/servers/{server_id}/build", json=body)
        except httpx.HTTPError as e:
            log.error("patch build %s failed: %s", server_id, e)
            return False
        if r.is_error:
            log.error("patch build %s rejected: HTTP %s %s", server_id, r.status_code, r.text[:300])
            return False
        return True

    async def _post_action(self, server_id: Any, action: str) -> None:
        try:
            async with self._client() as client:
                r = await client.post(f"/servers/{server_id}/{action}")
        except httpx.HTTPError as e:
            raise PanelError(f"{action}({server_id}): {e}") from e
        if r.is_error:
            raise PanelError(f"{action}({server_id}): HTTP {r.status_code}")

    async def suspend_server(self, server_id: Any) -> None:
        await self._post_action(server_id, "suspend")

    async def unsuspend_server(self, server_id: Any) -> None:
        await self._post_action(server_id, "unsuspend")

    async def list_user_servers(self, panel_user_id: Any) -> List[PanelServer]:
        try:
            async with self._client() as client:
                r = await client.get(f"/users/{panel_user_id}", params={"include": "servers"})
        except httpx.HTTPError as e:
            raise PanelError(f"list_user_servers({panel_user_id}): {e}") from e
        if r.is_error:
            raise PanelError(f"list_user_servers({panel_user_id}): HTTP {r.status_code}")
        data = (
            r.json().get("attributes", {})
            .get("relationships", {})
            .get("servers", {})
            .get("data", [])
        )
        return [PanelServer.from_attributes(item["attributes"]) for item in data]
