# 📂 backend/pterocoin/services/boosts.py — временные бусты ресурсов сервера
# -----------------------------------------------------------------------------
# Жизненный цикл на пару (serverId, boostType):
#   none → active → expired | cancelled;  active → active (extend, тот же id)
#   none → scheduled → active | refunded
#
# Хранилище:
#   • active-boosts          — {serverId: {boostId: Boost}}
#   • scheduled-boosts       — [ScheduledBoost]
#   • boost-history-<uid>    — журнал (новые сверху, максимум 100)
#
# Порядок apply (всё под замком "boosts"):
#   1) тип/длительность → INVALID_BOOST_TYPE / INVALID_DURATION
#   2) баланс < цены   → INSUFFICIENT_COINS
#   3) такой тип уже активен на сервере → BOOST_ALREADY_ACTIVE
#   4) PATCH build на панели → при неудаче UPDATE_FAILED, больше ничего не меняется
#   5) списание; если баланс успели потратить параллельно — откат PATCH и INSUFFICIENT_COINS
#   6) запись буста + журнал "applied"
#
# initialResources — лимиты сервера без бустов (текущие минус appliedChange уже
# активных бустов на этом сервере). Откат ставит initialResources + appliedChange
# оставшихся активных бустов сервера: единственный буст возвращает сервер ровно
# к initialResources, даже если лимиты меняли на панели во время буста.
#
# Отмена: refund = floor(price * remaining/total * 0.5). Если панель не дала
# откатить лимиты — UPSTREAM_FAILURE, буст остаётся активным.
# Фоновые проходы: sweep_expired() и dispatch_scheduled() — один проход за вызов.
# -----------------------------------------------------------------------------

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from ..catalog import (
    BOOST_HISTORY_CAP,
    BOOST_TYPES,
    BoostDuration,
    BoostType,
    parse_enum,
)
from ..errors import ErrorCode, Result, guarded
from ..kv_store import KeyedLock, KeyValueStore
from ..ledger import LedgerService
from ..panel_client import PanelClient, PanelError, PanelServer
from ..utils import Clock, gen_id, get_logger, now_ms, push_capped

log = get_logger("boosts")

ACTIVE_KEY = "active-boosts"
SCHEDULED_KEY = "scheduled-boosts"
LOCK = "boosts"
RESOURCES = ("memory", "cpu", "disk")


def history_key(user_id: str) -> str:
    return f"boost-history-{user_id}"


def _stacked_change(server_boosts: Dict[str, Any], exclude: Optional[str] = None) -> Dict[str, int]:
    total = dict.fromkeys(RESOURCES, 0)
    for boost_id, boost in (server_boosts or {}).items():
        if boost_id == exclude:
            continue
        change = boost.get("appliedChange") or {}
        for res in RESOURCES:
            total[res] += int(change.get(res) or 0)
    return total


class BoostEngine:
    def __init__(
        self,
        store: KeyValueStore,
        ledger: LedgerService,
        panel: PanelClient,
        locks: KeyedLock,
        reconciler=None,
        clock: Clock = now_ms,
    ):
        self.store = store
        self.ledger = ledger
        self.panel = panel
        self.locks = locks
        self.reconciler = reconciler
        self.clock = clock

    # =========================================================================
    # Чтение
    # =========================================================================
    def get_boost_types(self) -> Dict[str, Any]:
        return {t.value: spec.to_public() for t, spec in BOOST_TYPES.items()}

    async def get_server_boosts(self, server_id: Any, user_id: Optional[str] = None) -> Dict[str, Any]:
        active = await self.store.get(ACTIVE_KEY) or {}
        boosts = active.get(str(server_id)) or {}
        if user_id is None:
            return boosts
        return {bid: b for bid, b in boosts.items() if b.get("userId") == user_id}

    async def get_user_active_boosts(self, user_id: str) -> Dict[str, Dict[str, Any]]:
        active = await self.store.get(ACTIVE_KEY) or {}
        result: Dict[str, Dict[str, Any]] = {}
        for server_id, boosts in active.items():
            for boost_id, boost in boosts.items():
                if boost.get("userId") == user_id:
                    result.setdefault(server_id, {})[boost_id] = boost
        return result

    async def get_scheduled_boosts(self, user_id: str) -> List[Dict[str, Any]]:
        scheduled = await self.store.get(SCHEDULED_KEY) or []
        return [b for b in scheduled if b.get("userId") == user_id]

    async def get_history(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        history = await self.store.get(history_key(user_id)) or []
        return history[: max(0, limit)]

    async def resolve_server(self, user_id: str, server_id: Any) -> Result[PanelServer]:
        """Сервер с панели + проверка, что он принадлежит привязанному аккаунту пользователя."""
        try:
            server = await self.panel.get_server(server_id)
        except PanelError as e:
            log.error("resolve server %s: %s", server_id, e)
            return Result.failure(ErrorCode.UPSTREAM_FAILURE)
        if server is None:
            return Result.failure(ErrorCode.SERVER_NOT_FOUND)
        owner = await self.store.get(f"users-{user_id}")
        try:
            owner = int(owner) if owner is not None else None
        except (TypeError, ValueError):
            owner = None
        if owner is None or server.user != owner:
            return Result.failure(ErrorCode.NOT_OWNER, "You do not own this server")
        return Result.success(server)

    # =========================================================================
    # Служебное
    # =========================================================================
    async def _log(self, user_id: str, server_id: Any, kind: str, details: Dict[str, Any]) -> None:
        entry = {
            "id": gen_id(self.clock),
            "userId": user_id,
            "serverId": str(server_id),
            "type": kind,
            "details": details,
            "timestamp": self.clock(),
        }
        await push_capped(self.store, history_key(user_id), entry, cap=BOOST_HISTORY_CAP)

    async def _revert(self, server_id: Any, boost: Dict[str, Any], server_boosts: Dict[str, Any]) -> bool:
        """
        Возвращает сервер к initialResources буста плюс appliedChange остальных
        бустов из server_boosts. Сервер, исчезнувший с панели, считается откатанным.
        PanelError пробрасывается.
        """
        server = await self.panel.get_server(server_id)
        if server is None:
            log.warning("server %s is gone, dropping boost %s without revert", server_id, boost.get("id"))
            return True
        initial = boost.get("initialResources") or {}
        others = _stacked_change(server_boosts, exclude=boost.get("id"))
        target = {res: max(0, int(initial.get(res) or 0) + others[res]) for res in RESOURCES}
        return await self.panel.patch_server_build(server_id, target)

    async def _reconcile(self, user_ids) -> None:
        if self.reconciler is None:
            return
        for uid in dict.fromkeys(user_ids):
            await self.reconciler.reconcile(uid)

    async def _apply_locked(
        self,
        user_id: str,
        server: PanelServer,
        boost_type: Any,
        duration: Any,
        prepaid: bool = False,
    ) -> Result[Dict[str, Any]]:
        bt = parse_enum(BoostType, boost_type)
        if bt is None:
            return Result.failure(ErrorCode.INVALID_BOOST_TYPE)
        dur = parse_enum(BoostDuration, duration)
        if dur is None:
            return Result.failure(ErrorCode.INVALID_DURATION)
        spec = BOOST_TYPES[bt]
        price = spec.prices[dur]

        if not prepaid and await self.ledger.get_balance(user_id) < price:
            return Result.failure(ErrorCode.INSUFFICIENT_COINS)

        server_key = str(server.id)
        active = await self.store.get(ACTIVE_KEY) or {}
        server_boosts = active.get(server_key) or {}
        if any(b.get("boostType") == bt.value for b in server_boosts.values()):
            return Result.failure(ErrorCode.BOOST_ALREADY_ACTIVE)

        current = {res: int(server.limits.get(res, 0)) for res in RESOURCES}
        stacked = _stacked_change(server_boosts)
        initial = {res: max(0, current[res] - stacked[res]) for res in RESOURCES}
        multiplier = {"memory": spec.ram, "cpu": spec.cpu, "disk": spec.disk}
        applied_change = {res: int(math.floor(current[res] * multiplier[res])) - current[res] for res in RESOURCES}
        boosted = {res: current[res] + applied_change[res] for res in RESOURCES}

        if not await self.panel.patch_server_build(server.id, boosted):
            return Result.failure(ErrorCode.UPDATE_FAILED)

        if prepaid:
            new_balance = await self.ledger.get_balance(user_id)
        else:
            debit = await self.ledger.debit(
                user_id, price, reason=f"boost {bt.value} {dur.value}", shortfall=ErrorCode.INSUFFICIENT_COINS
            )
            if not debit.ok:
                if not await self.panel.patch_server_build(server.id, current):
                    log.error("server %s: failed to revert patch after rejected debit", server.id)
                return debit
            new_balance = debit.value

        now = self.clock()
        boost = {
            "id": gen_id(self.clock),
            "userId": user_id,
            "serverId": server_key,
            "serverName": server.name,
            "boostType": bt.value,
            "duration": dur.value,
            "durationMs": dur.ms,
            "appliedAt": now,
            "expiresAt": now + dur.ms,
            "price": price,
            "appliedChange": applied_change,
            "initialResources": initial,
            "boostedResources": boosted,
        }
        active.setdefault(server_key, {})[boost["id"]] = boost
        await self.store.set(ACTIVE_KEY, active)
        await self._log(user_id, server_key, "applied", {
            "boostType": bt.value,
            "duration": dur.value,
            "expiresAt": boost["expiresAt"],
            "price": price,
            "resources": applied_change,
        })
        log.info("boost %s (%s %s) applied to server %s by %s", boost["id"], bt.value, dur.value, server_key, user_id)
        return Result.success({"boost": boost, "newBalance": new_balance})

    # =========================================================================
    # Операции пользователя
    # =========================================================================
    @guarded(log, "apply boost")
    async def apply_boost(self, user_id: str, server: PanelServer, boost_type: Any, duration: Any) -> Result[Dict[str, Any]]:
        async with self.locks.hold(LOCK):
            return await self._apply_locked(user_id, server, boost_type, duration)

    @guarded(log, "cancel boost")
    async def cancel_boost(self, user_id: str, server_id: Any, boost_id: str) -> Result[Dict[str, Any]]:
        server_key = str(server_id)
        async with self.locks.hold(LOCK):
            active = await self.store.get(ACTIVE_KEY) or {}
            boost = (active.get(server_key) or {}).get(boost_id)
            if boost is None:
                return Result.failure(ErrorCode.BOOST_NOT_FOUND)
            if boost.get("userId") != user_id:
                return Result.failure(ErrorCode.NOT_OWNER, "You do not own this boost")

            total = int(boost["durationMs"])
            elapsed = self.clock() - int(boost["appliedAt"])
            remaining = max(0, total - elapsed)
            refund = (int(boost["price"]) * remaining) // (2 * total) if total > 0 else 0

            try:
                reverted = await self._revert(server_key, boost, active[server_key])
            except PanelError as e:
                log.error("cancel %s: revert failed: %s", boost_id, e)
                reverted = False
            if not reverted:
                return Result.failure(ErrorCode.UPSTREAM_FAILURE, "Failed to revert server resources")

            del active[server_key][boost_id]
            if not active[server_key]:
                del active[server_key]
            await self.store.set(ACTIVE_KEY, active)

            if refund > 0:
                credited = await self.ledger.credit(user_id, refund, reason=f"boost {boost_id} cancel refund")
                new_balance = credited.value if credited.ok else await self.ledger.get_balance(user_id)
            else:
                new_balance = await self.ledger.get_balance(user_id)

            await self._log(user_id, server_key, "cancelled", {
                "boostType": boost["boostType"],
                "duration": boost["duration"],
                "refundAmount": refund,
                "resources": boost.get("appliedChange"),
            })

        await self._reconcile([user_id])
        return Result.success({"refundAmount": refund, "newBalance": new_balance})

    @guarded(log, "extend boost")
    async def extend_boost(self, user_id: str, server_id: Any, boost_id: str, additional_duration: Any) -> Result[Dict[str, Any]]:
        """
        Продление: списывает цену выбранной длительности и сдвигает expiresAt.
        Лимиты на панели не трогает. durationMs и price копятся, чтобы возврат
        при отмене оставался пропорциональным всему оплаченному сроку.
        """
        server_key = str(server_id)
        async with self.locks.hold(LOCK):
            active = await self.store.get(ACTIVE_KEY) or {}
            boost = (active.get(server_key) or {}).get(boost_id)
            if boost is None:
                return Result.failure(ErrorCode.BOOST_NOT_FOUND)
            if boost.get("userId") != user_id:
                return Result.failure(ErrorCode.NOT_OWNER, "You do not own this boost")

            dur = parse_enum(BoostDuration, additional_duration)
            if dur is None:
                return Result.failure(ErrorCode.INVALID_DURATION, "Invalid extension duration")
            price = BOOST_TYPES[BoostType(boost["boostType"])].prices[dur]

            debit = await self.ledger.debit(
                user_id, price, reason=f"boost {boost_id} extend {dur.value}", shortfall=ErrorCode.INSUFFICIENT_COINS
            )
            if not debit.ok:
                return debit

            boost["expiresAt"] = int(boost["expiresAt"]) + dur.ms
            boost["durationMs"] = int(boost["durationMs"]) + dur.ms
            boost["price"] = int(boost["price"]) + price
            await self.store.set(ACTIVE_KEY, active)
            await self._log(user_id, server_key, "extended", {
                "boostType": boost["boostType"],
                "additionalDuration": dur.value,
                "newExpiresAt": boost["expiresAt"],
                "price": price,
            })
        return Result.success({"boost": boost, "newBalance": debit.value})

    @guarded(log, "schedule boost")
    async def schedule_boost(
        self,
        user_id: str,
        server: PanelServer,
        boost_type: Any,
        duration: Any,
        scheduled_time: int,
    ) -> Result[Dict[str, Any]]:
        bt = parse_enum(BoostType, boost_type)
        if bt is None:
            return Result.failure(ErrorCode.INVALID_BOOST_TYPE)
        dur = parse_enum(BoostDuration, duration)
        if dur is None:
            return Result.failure(ErrorCode.INVALID_DURATION)
        if int(scheduled_time) <= self.clock():
            return Result.failure(ErrorCode.INVALID_SCHEDULED_TIME)
        price = BOOST_TYPES[bt].prices[dur]

        async with self.locks.hold(LOCK):
            debit = await self.ledger.debit(
                user_id, price, reason=f"scheduled boost {bt.value} {dur.value}", shortfall=ErrorCode.INSUFFICIENT_COINS
            )
            if not debit.ok:
                return debit

            item = {
                "id": gen_id(self.clock),
                "userId": user_id,
                "serverId": str(server.id),
                "serverName": server.name,
                "boostType": bt.value,
                "duration": dur.value,
                "price": price,
                "scheduledTime": int(scheduled_time),
                "createdAt": self.clock(),
            }
            scheduled = await self.store.get(SCHEDULED_KEY) or []
            scheduled.append(item)
            await self.store.set(SCHEDULED_KEY, scheduled)
            await self._log(user_id, item["serverId"], "scheduled", {
                "boostType": bt.value,
                "duration": dur.value,
                "scheduledTime": item["scheduledTime"],
                "price": price,
            })
        return Result.success({"scheduledBoost": item, "newBalance": debit.value})

    @guarded(log, "cancel scheduled boost")
    async def cancel_scheduled_boost(self, user_id: str, scheduled_boost_id: str) -> Result[Dict[str, Any]]:
        async with self.locks.hold(LOCK):
            scheduled = await self.store.get(SCHEDULED_KEY) or []
            idx = next(
                (i for i, b in enumerate(scheduled) if b.get("id") == scheduled_boost_id and b.get("userId") == user_id),
                None,
            )
            if idx is None:
                return Result.failure(ErrorCode.SCHEDULED_BOOST_NOT_FOUND)
            item = scheduled.pop(idx)
            await self.store.set(SCHEDULED_KEY, scheduled)

            credited = await self.ledger.credit(user_id, int(item["price"]), reason=f"scheduled boost {item['id']} cancelled")
            if not credited.ok:
                return credited
            await self._log(user_id, item["serverId"], "scheduled_cancelled", {
                "boostType": item["boostType"],
                "duration": item["duration"],
                "scheduledTime": item["scheduledTime"],
                "refundAmount": item["price"],
            })
        return Result.success({"refundAmount": item["price"], "newBalance": credited.value})

    # =========================================================================
    # Фоновые проходы
    # =========================================================================
    async def sweep_expired(self) -> int:
        """
        Один проход по активным бустам: всё, что expiresAt < now, откатывается на панели
        и удаляется. Если откат не удался, запись остаётся до следующего прохода.
        Возвращает число снятых бустов.
        """
        expired: List[Dict[str, Any]] = []
        async with self.locks.hold(LOCK):
            active = await self.store.get(ACTIVE_KEY) or {}
            now = self.clock()
            for server_id in list(active.keys()):
                boosts = active[server_id]
                for boost_id in list(boosts.keys()):
                    boost = boosts[boost_id]
                    if int(boost.get("expiresAt") or 0) >= now:
                        continue
                    try:
                        reverted = await self._revert(server_id, boost, boosts)
                    except Exception as e:
                        log.error("expire boost %s on server %s: %s", boost_id, server_id, e)
                        continue
                    if not reverted:
                        log.error("expire boost %s on server %s: panel rejected revert", boost_id, server_id)
                        continue
                    del boosts[boost_id]
                    expired.append(boost)
                if not boosts:
                    del active[server_id]

            if expired:
                await self.store.set(ACTIVE_KEY, active)
                for boost in expired:
                    await self._log(boost["userId"], boost["serverId"], "expired", {
                        "boostType": boost["boostType"],
                        "duration": boost["duration"],
                        "resources": boost.get("appliedChange"),
                    })
                log.info("expired %d boost(s)", len(expired))

        await self._reconcile(b["userId"] for b in expired)
        return len(expired)

    async def dispatch_scheduled(self) -> int:
        """
        Один проход по отложенным бустам со scheduledTime ≤ now: запись снимается
        из очереди и применяется как уже оплаченная. Любая неудача → полный возврат
        цены и запись "scheduled_failed". Возвращает число применённых.
        """
        applied = 0
        async with self.locks.hold(LOCK):
            now = self.clock()
            scheduled = await self.store.get(SCHEDULED_KEY) or []
            due = [b for b in scheduled if int(b.get("scheduledTime") or 0) <= now]
            if not due:
                return 0
            await self.store.set(SCHEDULED_KEY, [b for b in scheduled if int(b.get("scheduledTime") or 0) > now])
            log.info("processing %d scheduled boost(s)", len(due))

            for item in due:
                try:
                    server = await self.panel.get_server(item["serverId"])
                    if server is None:
                        reason = "Server not found"
                    else:
                        res = await self._apply_locked(
                            item["userId"], server, item["boostType"], item["duration"], prepaid=True
                        )
                        reason = None if res.ok else res.message
                except Exception as e:
                    log.error("scheduled boost %s: %s", item.get("id"), e)
                    reason = str(e) or "Unknown error"

                if reason is None:
                    applied += 1
                    await self._log(item["userId"], item["serverId"], "scheduled_applied", {
                        **item, "scheduledTime": item["scheduledTime"], "appliedTime": now,
                    })
                    continue

                log.error("scheduled boost %s failed: %s, refunding %s", item.get("id"), reason, item.get("price"))
                refund = await self.ledger.credit(item["userId"], int(item["price"]), reason=f"scheduled boost {item['id']} failed")
                if not refund.ok:
                    log.error("scheduled boost %s: refund failed: %s", item.get("id"), refund.message)
                await self._log(item["userId"], item["serverId"], "scheduled_failed", {
                    **item, "reason": reason, "refundAmount": item["price"],
                })
        return applied
