# 📂 backend/pterocoin/services/staking.py — стейкинг монет с APY и штрафом за досрочный вывод
# -----------------------------------------------------------------------------
# Хранилище:
#   • stakes-<uid>            — [Stake]
#   • staking-active-users    — [uid] (сканируется ежедневным начислением)
#   • staking-history-<uid>   — журнал stake/claim (дописывается в конец)
#
# Денежные правила:
#   • amount — целые монеты; accruedRewards/returnedAmount/penalty — Decimal,
#     в хранилище строкой с 8 знаками (ROUND_DOWN).
#   • Начисление: amount * apy/365/100 за проход, если с lastRewardTime прошло ≥ 24ч.
#     Пропущенные дни не догоняются (один шаг на стейк за проход).
#   • Досрочный вывод (plan.min_duration > 0 и now < createdAt + minDuration):
#       penalty = amount * penaltyPercent/100 (только от суммы, не от наград).
#   • На баланс зачисляется floor(amount + accruedRewards − penalty).
#
# Замки: stakes:<uid> → stakers (список активных) → coins:<uid>.
# -----------------------------------------------------------------------------

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, List, Optional

from ..catalog import STAKING_PLANS, StakingPlanId, parse_enum
from ..errors import ErrorCode, Result, guarded
from ..kv_store import KeyedLock, KeyValueStore
from ..ledger import LedgerService
from ..utils import MS_PER_DAY, Clock, dec, gen_id, get_logger, now_ms, q2, q8

log = get_logger("staking")

ACTIVE_USERS_KEY = "staking-active-users"


def stakes_key(user_id: str) -> str:
    return f"stakes-{user_id}"


def history_key(user_id: str) -> str:
    return f"staking-history-{user_id}"


def _num(value: Any) -> float:
    """Decimal-строка из хранилища → число для JSON-ответа."""
    return float(dec(value or 0))


class StakingEngine:
    def __init__(self, store: KeyValueStore, ledger: LedgerService, locks: KeyedLock, clock: Clock = now_ms):
        self.store = store
        self.ledger = ledger
        self.locks = locks
        self.clock = clock

    # ---------------- представление ----------------
    @staticmethod
    def to_public(stake: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(stake)
        out["accruedRewards"] = _num(stake.get("accruedRewards"))
        for k in ("returnedAmount", "penalty"):
            if k in stake:
                out[k] = _num(stake[k])
        return out

    def get_plans(self) -> Dict[str, Any]:
        return {p.value: plan.to_public() for p, plan in STAKING_PLANS.items()}

    async def get_user_stakes(self, user_id: str) -> List[Dict[str, Any]]:
        stakes = await self.store.get(stakes_key(user_id)) or []
        result = []
        for stake in stakes:
            item = self.to_public(stake)
            plan_id = parse_enum(StakingPlanId, stake.get("planId"))
            item["planDetails"] = STAKING_PLANS[plan_id].to_public() if plan_id else None
            result.append(item)
        return result

    async def get_summary(self, user_id: str) -> Dict[str, Any]:
        stakes = await self.store.get(stakes_key(user_id)) or []
        active = [s for s in stakes if s.get("status") == "active"]
        return {
            "totalStaked": sum(int(s["amount"]) for s in active),
            "totalRewards": float(q8(sum((dec(s.get("accruedRewards") or 0) for s in active), Decimal(0)))),
            "activeStakesCount": len(active),
            "totalStakesCount": len(stakes),
            "availableBalance": await self.ledger.get_balance(user_id),
        }

    async def get_history(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.store.get(history_key(user_id)) or []

    async def get_active_users(self) -> List[str]:
        return await self.store.get(ACTIVE_USERS_KEY) or []

    def calculate(self, plan_id: Any, amount: Any, duration_days: Optional[int] = None) -> Result[Dict[str, Any]]:
        """Прогноз доходности без изменения состояния (простые проценты)."""
        pid = parse_enum(StakingPlanId, plan_id)
        if pid is None:
            return Result.failure(ErrorCode.INVALID_PLAN)
        plan = STAKING_PLANS[pid]
        try:
            principal = dec(amount)
        except ArithmeticError:
            return Result.failure(ErrorCode.INVALID_AMOUNT)
        if not principal.is_finite() or principal < plan.min_amount:
            return Result.failure(ErrorCode.INVALID_AMOUNT, f"Minimum amount is {plan.min_amount}")
        days = int(duration_days) if duration_days and int(duration_days) > 0 else 30

        daily = principal * plan.daily_rate
        projected = daily * days
        return Result.success({
            "plan": plan.to_public(),
            "initialAmount": float(principal),
            "durationDays": days,
            "projectedRewards": float(q2(projected)),
            "totalReturn": float(q2(principal + projected)),
            "dailyReward": float(q2(daily)),
            "monthlyReward": float(q2(daily * 30)),
            "yearlyReward": float(q2(principal * Decimal(plan.apy) / 100)),
        })

    # ---------------- служебное ----------------
    async def _log(self, user_id: str, kind: str, details: Dict[str, Any]) -> None:
        history = await self.store.get(history_key(user_id)) or []
        history.append({
            "id": gen_id(self.clock),
            "userId": user_id,
            "type": kind,
            "details": details,
            "timestamp": self.clock(),
        })
        await self.store.set(history_key(user_id), history)

    async def _set_active(self, user_id: str, active: bool) -> None:
        async with self.locks.hold("stakers"):
            users = await self.store.get(ACTIVE_USERS_KEY) or []
            if active and user_id not in users:
                users.append(user_id)
            elif not active and user_id in users:
                users = [u for u in users if u != user_id]
            else:
                return
            await self.store.set(ACTIVE_USERS_KEY, users)

    # ---------------- операции ----------------
    @guarded(log, "create stake")
    async def create_stake(self, user_id: str, plan_id: Any, amount: Any) -> Result[Dict[str, Any]]:
        pid = parse_enum(StakingPlanId, plan_id)
        if pid is None:
            return Result.failure(ErrorCode.INVALID_PLAN)
        plan = STAKING_PLANS[pid]
        if isinstance(amount, bool) or not isinstance(amount, int):
            return Result.failure(ErrorCode.INVALID_AMOUNT)
        if amount < plan.min_amount:
            return Result.failure(ErrorCode.INSUFFICIENT_AMOUNT, f"Minimum stake amount is {plan.min_amount} coins")

        async with self.locks.hold(f"stakes:{user_id}"):
            debit = await self.ledger.debit(
                user_id, amount, reason=f"stake {pid.value}", shortfall=ErrorCode.INSUFFICIENT_BALANCE
            )
            if not debit.ok:
                return debit

            now = self.clock()
            stake = {
                "id": gen_id(self.clock),
                "userId": user_id,
                "planId": pid.value,
                "amount": amount,
                "createdAt": now,
                "lastRewardTime": now,
                "accruedRewards": "0",
                "status": "active",
                "endTime": now + plan.min_duration_ms if plan.min_duration_ms > 0 else None,
            }
            stakes = await self.store.get(stakes_key(user_id)) or []
            stakes.append(stake)
            await self.store.set(stakes_key(user_id), stakes)
            await self._set_active(user_id, True)
            await self._log(user_id, "stake", {"stakeId": stake["id"], "planId": pid.value, "amount": amount})

        log.info("user %s staked %s into %s (%s)", user_id, amount, pid.value, stake["id"])
        return Result.success({"stake": self.to_public(stake), "balance": debit.value})

    @guarded(log, "claim stake")
    async def claim_stake(self, user_id: str, stake_id: str) -> Result[Dict[str, Any]]:
        async with self.locks.hold(f"stakes:{user_id}"):
            stakes = await self.store.get(stakes_key(user_id)) or []
            stake = next((s for s in stakes if s.get("id") == stake_id), None)
            if stake is None:
                return Result.failure(ErrorCode.STAKE_NOT_FOUND)
            if stake.get("status") != "active":
                return Result.failure(ErrorCode.STAKE_NOT_ACTIVE)

            plan = STAKING_PLANS[StakingPlanId(stake["planId"])]
            now = self.clock()
            amount = Decimal(int(stake["amount"]))
            rewards = dec(stake.get("accruedRewards") or 0)
            early = plan.min_duration_ms > 0 and now < int(stake["createdAt"]) + plan.min_duration_ms
            penalty = q8(amount * Decimal(plan.penalty_percent) / 100) if early else Decimal(0)
            returned = q8(amount + rewards - penalty)
            payout = int(returned.to_integral_value(rounding=ROUND_FLOOR))

            if payout > 0:
                credited = await self.ledger.credit(user_id, payout, reason=f"stake {stake_id} claim")
                if not credited.ok:
                    return credited
                balance = credited.value
            else:
                balance = await self.ledger.get_balance(user_id)

            stake["status"] = "claimed"
            stake["claimedAt"] = now
            stake["returnedAmount"] = str(returned)
            stake["penalty"] = str(penalty)
            await self.store.set(stakes_key(user_id), stakes)

            if not any(s.get("status") == "active" for s in stakes):
                await self._set_active(user_id, False)

            await self._log(user_id, "claim", {
                "stakeId": stake_id,
                "amount": int(stake["amount"]),
                "rewards": float(rewards),
                "penalty": float(penalty),
                "totalReturned": float(returned),
            })

        log.info("user %s claimed stake %s: returned %s, penalty %s", user_id, stake_id, returned, penalty)
        return Result.success({"stake": self.to_public(stake), "balance": balance})

    async def accrue_rewards(self) -> int:
        """
        Один проход ежедневного начисления по всем активным стейкерам.
        Ошибка по одному пользователю логируется и не останавливает проход.
        Возвращает число стейков, получивших начисление.
        """
        users = await self.get_active_users()
        log.info("processing staking rewards for %d user(s)", len(users))
        accrued = 0
        for user_id in users:
            try:
                async with self.locks.hold(f"stakes:{user_id}"):
                    stakes = await self.store.get(stakes_key(user_id)) or []
                    now = self.clock()
                    updated = False
                    for stake in stakes:
                        if stake.get("status") != "active":
                            continue
                        if now - int(stake["lastRewardTime"]) < MS_PER_DAY:
                            continue
                        plan = STAKING_PLANS[StakingPlanId(stake["planId"])]
                        reward = Decimal(int(stake["amount"])) * plan.daily_rate
                        stake["accruedRewards"] = str(q8(dec(stake.get("accruedRewards") or 0) + reward))
                        stake["lastRewardTime"] = now
                        updated = True
                        accrued += 1
                    if updated:
                        await self.store.set(stakes_key(user_id), stakes)
            except Exception:
                log.exception("staking accrual failed for user %s", user_id)
        return accrued
