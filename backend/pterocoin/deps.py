# 📂 backend/pterocoin/deps.py — зависимости FastAPI (пользователь, админ, контейнер)
# -----------------------------------------------------------------------------
# • get_economy   — EconomyContainer из app.state (создаётся в main.py на старте)
# • require_user  — X-User-Id (уже аутентифицирован фронтом); пусто → 401
# • user_name     — необязательный X-User-Name (для лидерборда)
# • require_admin — X-Admin-Token == ADMIN_API_TOKEN; иначе 403
# • unwrap        — Result движка → значение или ApiError
# -----------------------------------------------------------------------------

from __future__ import annotations

import hmac
from typing import Any, Optional

from fastapi import Header, Request

from .container import EconomyContainer
from .errors import ApiError, ErrorCode, Result


def get_economy(request: Request) -> EconomyContainer:
    economy = getattr(request.app.state, "economy", None)
    if economy is None:
        raise ApiError(ErrorCode.INTERNAL_ERROR, "Economy is not initialised", status_code=503)
    return economy


async def require_user(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """
    Идентификатор пользователя дашборда. Аутентификацию выполняет фронт/шлюз,
    сюда приходит уже проверенный id.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise ApiError(ErrorCode.UNAUTHORIZED, "X-User-Id header required")
    return user_id


async def user_name(x_user_name: Optional[str] = Header(None, alias="X-User-Name")) -> Optional[str]:
    return (x_user_name or "").strip() or None


async def require_admin(
    request: Request,
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
) -> str:
    expected = get_economy(request).settings.ADMIN_API_TOKEN
    if not expected or not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise ApiError(ErrorCode.FORBIDDEN, "Недостаточно прав")
    return x_admin_token


def unwrap(result: Result) -> Any:
    if not result.ok:
        raise ApiError.from_result(result)
    return result.value
