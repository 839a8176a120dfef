import copy
from datetime import datetime
from typing import Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from backend.pterocoin.config import Settings
from backend.pterocoin.container import EconomyContainer
from backend.pterocoin.kv_store import MemoryKeyValueStore
from backend.pterocoin.panel_client import PanelServer
from backend.pterocoin.payments import CheckoutSession, PaymentError
from backend.pterocoin.utils import MS_PER_DAY, MS_PER_HOUR

# Local noon keeps calendar-day arithmetic stable in any timezone.
START_MS = int(datetime(2026, 3, 10, 12, 0, 0).timestamp() * 1000)


class FakeClock:
    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 0, hours: int = 0, days: int = 0) -> int:
        self.now += ms + hours * MS_PER_HOUR + days * MS_PER_DAY
        return self.now


class FakePanel:
    """In-memory panel: patches change the stored limits, get_server sees them."""

    def __init__(self):
        self.servers: Dict[int, PanelServer] = {}
        self.patch_ok = True
        self.get_server = AsyncMock(side_effect=self._get_server)
        self.patch_server_build = AsyncMock(side_effect=self._patch_server_build)
        self.suspend_server = AsyncMock(side_effect=self._suspend)
        self.unsuspend_server = AsyncMock(side_effect=self._unsuspend)
        self.list_user_servers = AsyncMock(side_effect=self._list_user_servers)

    def add_server(
        self, server_id: int, user: int, memory: int = 1024, cpu: int = 100, disk: int = 5120, name: Optional[str] = None
    ) -> PanelServer:
        server = PanelServer(
            id=server_id,
            name=name or f"server-{server_id}",
            user=user,
            limits={"memory": memory, "cpu": cpu, "disk": disk},
        )
        self.servers[server_id] = server
        return copy.deepcopy(server)

    def limits(self, server_id: int) -> Dict[str, int]:
        return dict(self.servers[server_id].limits)

    async def _get_server(self, server_id) -> Optional[PanelServer]:
        server = self.servers.get(int(server_id))
        return copy.deepcopy(server) if server else None

    async def _patch_server_build(self, server_id, limits) -> bool:
        if not self.patch_ok or int(server_id) not in self.servers:
            return False
        self.servers[int(server_id)].limits = {
            "memory": int(limits["memory"]),
            "cpu": int(limits["cpu"]),
            "disk": int(limits["disk"]),
        }
        return True

    async def _suspend(self, server_id) -> None:
        self.servers[int(server_id)].suspended = True

    async def _unsuspend(self, server_id) -> None:
        self.servers[int(server_id)].suspended = False

    async def _list_user_servers(self, panel_user_id) -> List[PanelServer]:
        return [copy.deepcopy(s) for s in self.servers.values() if s.user == int(panel_user_id)]


class FakePayments:
    def __init__(self):
        self.sessions: Dict[str, CheckoutSession] = {}
        self.create_checkout_session = AsyncMock(side_effect=self._create)
        self.retrieve_session = AsyncMock(side_effect=self._retrieve)

    def add_session(self, session_id: str, user_id: str, amount_usd: str, paid: bool = True) -> CheckoutSession:
        session = CheckoutSession(
            id=session_id,
            url=f"https://checkout.test/{session_id}",
            payment_status="paid" if paid else "unpaid",
            metadata={"userId": user_id, "type": "credit_purchase", "amount_usd": amount_usd},
        )
        self.sessions[session_id] = session
        return session

    async def _create(self, amount_usd, metadata, success_url, cancel_url) -> CheckoutSession:
        session_id = f"cs_test_{len(self.sessions) + 1}"
        session = CheckoutSession(
            id=session_id,
            url=f"https://checkout.test/{session_id}",
            metadata={k: str(v) for k, v in metadata.items()},
        )
        self.sessions[session_id] = session
        return session

    async def _retrieve(self, session_id) -> CheckoutSession:
        if session_id not in self.sessions:
            raise PaymentError(f"no such session {session_id}")
        return self.sessions[session_id]


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        STORE_BACKEND="memory",
        ADMIN_API_TOKEN="admin-secret",
        SCHEDULER_ENABLED=False,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def panel():
    return FakePanel()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def economy(settings, store, panel, payments, clock):
    return EconomyContainer.build(settings, store=store, panel=panel, payments=payments, clock=clock)
