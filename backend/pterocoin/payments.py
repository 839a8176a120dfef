# 📂 backend/pterocoin/payments.py — Stripe Checkout через REST API (httpx)
# -----------------------------------------------------------------------------
# Что делает:
#   • create_checkout_session(amount_usd, metadata, success_url, cancel_url)
#       POST {STRIPE_API_BASE}/v1/checkout/sessions (form-encoded, вложенные ключи
#       в формате line_items[0][price_data][currency]=usd ...)
#   • retrieve_session(session_id)
#       GET  {STRIPE_API_BASE}/v1/checkout/sessions/{id}
#
# Правила:
#   • Авторизация — secret key как логин Basic Auth (как делает сам Stripe SDK).
#   • Сумма передаётся в центах: round(amount_usd * 100).
#   • Любая сетевая ошибка / неуспешный статус → PaymentError.
# -----------------------------------------------------------------------------

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import httpx

from .errors import UpstreamError
from .utils import dec, get_logger

log = get_logger("payments")


class PaymentError(UpstreamError):
    """Платёжный провайдер недоступен или отклонил запрос."""


@dataclass
class CheckoutSession:
    id: str
    url: Optional[str] = None
    payment_status: str = "unpaid"
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "CheckoutSession":
        return cls(
            id=data["id"],
            url=data.get("url"),
            payment_status=data.get("payment_status") or "unpaid",
            metadata={k: str(v) for k, v in (data.get("metadata") or {}).items()},
        )


class PaymentProcessor:
    def __init__(
        self,
        secret_key: str,
        api_base: str = "https://api.stripe.com",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            auth=(self.secret_key, ""),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def create_checkout_session(
        self,
        amount_usd: Any,
        metadata: Dict[str, Any],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        cents = int((dec(amount_usd) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        form: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types[0]": "card",
            "line_items[0][quantity]": 1,
            "line_items[0][price_data][currency]": "usd",
            "line_items[0][price_data][unit_amount]": cents,
            "line_items[0][price_data][product_data][name]": "Credit Balance",
            "line_items[0][price_data][product_data][description]": f"Add ${amount_usd} credit to your account",
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        for k, v in metadata.items():
            form[f"metadata[{k}]"] = str(v)

        try:
            async with self._client() as client:
                r = await client.post("/v1/checkout/sessions", data=form)
        except httpx.HTTPError as e:
            raise PaymentError(f"create checkout session: {e}") from e
        if r.is_error:
            log.error("stripe rejected checkout session: HTTP %s %s", r.status_code, r.text[:300])
            raise PaymentError(f"create checkout session: HTTP {r.status_code}")
        return CheckoutSession.from_payload(r.json())

    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        try:
            async with self._client() as client:
                r = await client.get(f"/v1/checkout/sessions/{session_id}")
        except httpx.HTTPError as e:
            raise PaymentError(f"retrieve session {session_id}: {e}") from e
        if r.is_error:
            raise PaymentError(f"retrieve session {session_id}: HTTP {r.status_code}")
        return CheckoutSession.from_payload(r.json())
