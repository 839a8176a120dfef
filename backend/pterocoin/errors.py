# 📂 backend/pterocoin/errors.py — коды ошибок и результат операций движков
# -----------------------------------------------------------------------------
# Движки (ledger, boosts, staking, daily, billing, referrals, store) не бросают
# исключения для бизнес-ошибок. Каждый публичный метод возвращает Result:
#   • Result.success(value)             — операция выполнена;
#   • Result.failure(ErrorCode.X, msg)  — отказ с кодом из закрытого перечня.
# HTTP-слой (deps.unwrap) превращает отказ в ApiError → JSON {"error", "code"}
# со статусом из HTTP_STATUS.
#
# Неожиданные исключения внутри движков перехватывает декоратор @guarded:
# пишет traceback в лог и возвращает INTERNAL_ERROR с общим сообщением.
# -----------------------------------------------------------------------------

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    # --- доступ ---
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_OWNER = "NOT_OWNER"
    SESSION_NOT_OWNED = "SESSION_NOT_OWNED"

    # --- валидация ---
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_FIELDS = "MISSING_FIELDS"
    INVALID_BOOST_TYPE = "INVALID_BOOST_TYPE"
    INVALID_DURATION = "INVALID_DURATION"
    INVALID_SCHEDULED_TIME = "INVALID_SCHEDULED_TIME"
    INVALID_PLAN = "INVALID_PLAN"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INSUFFICIENT_AMOUNT = "INSUFFICIENT_AMOUNT"
    INVALID_LEVEL = "INVALID_LEVEL"
    INVALID_CODE = "INVALID_CODE"
    INVALID_PACKAGE = "INVALID_PACKAGE"
    INVALID_BUNDLE = "INVALID_BUNDLE"
    INVALID_RESOURCE = "INVALID_RESOURCE"
    RESOURCE_LIMIT_EXCEEDED = "RESOURCE_LIMIT_EXCEEDED"
    PAYMENT_NOT_COMPLETED = "PAYMENT_NOT_COMPLETED"

    # --- нехватка средств ---
    INSUFFICIENT_COINS = "INSUFFICIENT_COINS"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INSUFFICIENT_CREDIT = "INSUFFICIENT_CREDIT"

    # --- конфликты ---
    BOOST_ALREADY_ACTIVE = "BOOST_ALREADY_ACTIVE"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    ALREADY_PROTECTED = "ALREADY_PROTECTED"
    ALREADY_PURCHASED = "ALREADY_PURCHASED"
    CANNOT_CLAIM_OWN_CODE = "CANNOT_CLAIM_OWN_CODE"
    CODE_TAKEN = "CODE_TAKEN"
    REFERRAL_ALREADY_CLAIMED = "REFERRAL_ALREADY_CLAIMED"
    SESSION_ALREADY_PROCESSED = "SESSION_ALREADY_PROCESSED"
    STAKE_NOT_ACTIVE = "STAKE_NOT_ACTIVE"

    # --- не найдено ---
    BOOST_NOT_FOUND = "BOOST_NOT_FOUND"
    SCHEDULED_BOOST_NOT_FOUND = "SCHEDULED_BOOST_NOT_FOUND"
    STAKE_NOT_FOUND = "STAKE_NOT_FOUND"
    SERVER_NOT_FOUND = "SERVER_NOT_FOUND"
    CODE_NOT_FOUND = "CODE_NOT_FOUND"
    ACCOUNT_NOT_LINKED = "ACCOUNT_NOT_LINKED"

    # --- внешние системы / внутренние ---
    UPDATE_FAILED = "UPDATE_FAILED"
    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def http_status(self) -> int:
        return HTTP_STATUS.get(self, 400)


HTTP_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_OWNER: 403,
    ErrorCode.SESSION_NOT_OWNED: 403,
    ErrorCode.INSUFFICIENT_CREDIT: 402,
    ErrorCode.INSUFFICIENT_FUNDS: 402,
    ErrorCode.BOOST_NOT_FOUND: 404,
    ErrorCode.SCHEDULED_BOOST_NOT_FOUND: 404,
    ErrorCode.STAKE_NOT_FOUND: 404,
    ErrorCode.SERVER_NOT_FOUND: 404,
    ErrorCode.CODE_NOT_FOUND: 404,
    ErrorCode.ACCOUNT_NOT_LINKED: 404,
    ErrorCode.BOOST_ALREADY_ACTIVE: 409,
    ErrorCode.ALREADY_CLAIMED: 409,
    ErrorCode.ALREADY_PROTECTED: 409,
    ErrorCode.ALREADY_PURCHASED: 409,
    ErrorCode.CANNOT_CLAIM_OWN_CODE: 409,
    ErrorCode.CODE_TAKEN: 409,
    ErrorCode.REFERRAL_ALREADY_CLAIMED: 409,
    ErrorCode.SESSION_ALREADY_PROCESSED: 409,
    ErrorCode.STAKE_NOT_ACTIVE: 409,
    ErrorCode.UPDATE_FAILED: 502,
    ErrorCode.UPSTREAM_FAILURE: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}

DEFAULT_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.UNAUTHORIZED: "Unauthorized",
    ErrorCode.FORBIDDEN: "Forbidden",
    ErrorCode.NOT_OWNER: "You do not own this resource",
    ErrorCode.SESSION_NOT_OWNED: "Unauthorized payment session",
    ErrorCode.MISSING_FIELDS: "Missing required fields",
    ErrorCode.INVALID_BOOST_TYPE: "Invalid boost type",
    ErrorCode.INVALID_DURATION: "Invalid duration",
    ErrorCode.INVALID_SCHEDULED_TIME: "Scheduled time must be in the future",
    ErrorCode.INVALID_PLAN: "Invalid staking plan",
    ErrorCode.INVALID_LEVEL: "Invalid protection level",
    ErrorCode.INVALID_CODE: "Invalid code",
    ErrorCode.INVALID_PACKAGE: "Invalid package selected",
    ErrorCode.INVALID_BUNDLE: "Invalid bundle selected",
    ErrorCode.INVALID_RESOURCE: "Invalid resource type",
    ErrorCode.INVALID_AMOUNT: "Invalid amount",
    ErrorCode.RESOURCE_LIMIT_EXCEEDED: "Resource limit exceeded",
    ErrorCode.PAYMENT_NOT_COMPLETED: "Payment not completed",
    ErrorCode.INSUFFICIENT_COINS: "Insufficient coins",
    ErrorCode.INSUFFICIENT_BALANCE: "Insufficient balance",
    ErrorCode.INSUFFICIENT_FUNDS: "Insufficient funds",
    ErrorCode.INSUFFICIENT_CREDIT: "Insufficient credit balance",
    ErrorCode.BOOST_ALREADY_ACTIVE: "Server already has this boost type active",
    ErrorCode.ALREADY_CLAIMED: "You already claimed your daily reward today",
    ErrorCode.ALREADY_PROTECTED: "You already have equal or better streak protection",
    ErrorCode.ALREADY_PURCHASED: "Already purchased",
    ErrorCode.CANNOT_CLAIM_OWN_CODE: "Cannot claim your own code",
    ErrorCode.CODE_TAKEN: "Code already exists",
    ErrorCode.REFERRAL_ALREADY_CLAIMED: "Already claimed a code",
    ErrorCode.SESSION_ALREADY_PROCESSED: "This payment has already been processed",
    ErrorCode.STAKE_NOT_ACTIVE: "Stake is not active",
    ErrorCode.BOOST_NOT_FOUND: "Boost not found",
    ErrorCode.SCHEDULED_BOOST_NOT_FOUND: "Scheduled boost not found",
    ErrorCode.STAKE_NOT_FOUND: "Stake not found",
    ErrorCode.SERVER_NOT_FOUND: "Server not found",
    ErrorCode.CODE_NOT_FOUND: "Invalid code",
    ErrorCode.ACCOUNT_NOT_LINKED: "Panel account is not linked",
    ErrorCode.UPDATE_FAILED: "Failed to update server resources",
    ErrorCode.UPSTREAM_FAILURE: "Upstream service unavailable",
    ErrorCode.INTERNAL_ERROR: "Internal server error",
}


@dataclass(frozen=True)
class Result(Generic[T]):
    """Итог операции движка: либо value, либо error (+ message)."""

    value: Optional[T] = None
    error: Optional[ErrorCode] = None
    message: str = ""
    details: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls, code: ErrorCode, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None
    ) -> "Result[Any]":
        return cls(error=code, message=message or DEFAULT_MESSAGES.get(code, code.value), details=details)


class ApiError(Exception):
    """Ошибка HTTP-слоя: рендерится обработчиком в main.py как {"error", "code"}."""

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message or DEFAULT_MESSAGES.get(code, code.value)
        self.status_code = status_code or code.http_status
        self.details = details or {}
        super().__init__(self.message)

    @classmethod
    def from_result(cls, result: Result) -> "ApiError":
        return cls(result.error or ErrorCode.INTERNAL_ERROR, result.message, details=result.details)

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code.value, **self.details}


class UpstreamError(Exception):
    """Базовое исключение внешних клиентов (панель, платёжный провайдер)."""


def guarded(logger: logging.Logger, action: str):
    """
    Декоратор для публичных методов движков, возвращающих Result.
    Любое неожиданное исключение → лог с traceback + Result(INTERNAL_ERROR).
    """

    def decorator(fn: Callable[..., Awaitable[Result]]):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs) -> Result:
            try:
                return await fn(*args, **kwargs)
            except UpstreamError as e:
                logger.error("%s: upstream failure: %s", action, e)
                return Result.failure(ErrorCode.UPSTREAM_FAILURE)
            except Exception:
                logger.exception("%s failed", action)
                return Result.failure(ErrorCode.INTERNAL_ERROR, f"Failed to {action}")

        return wrapper

    return decorator
