# 📂 backend/pterocoin/scheduler.py — фоновые проходы экономики (APScheduler)
# -----------------------------------------------------------------------------
# Задачи (interval, AsyncIOScheduler):
#   • boost_expiry       — BoostEngine.sweep_expired, каждые BOOST_EXPIRY_INTERVAL_SEC,
#                          первый запуск сразу при старте;
#   • scheduled_boosts   — BoostEngine.dispatch_scheduled, каждые SCHEDULED_BOOST_INTERVAL_SEC,
#                          первый запуск через SCHEDULED_BOOST_FIRST_DELAY_SEC;
#   • staking_accrual    — StakingEngine.accrue_rewards, каждые STAKING_ACCRUAL_INTERVAL_HOURS,
#                          первый запуск сразу.
# Каждый проход — обычная корутина движка: тесты вызывают её напрямую,
# без ожидания таймера. Ошибка прохода логируется и не роняет планировщик.
# -----------------------------------------------------------------------------

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .container import EconomyContainer
from .utils import get_logger

log = get_logger("scheduler")


def _job(name: str, fn: Callable[[], Awaitable[int]]) -> Callable[[], Awaitable[None]]:
    async def run() -> None:
        try:
            count = await fn()
            if count:
                log.info("%s: processed %s item(s)", name, count)
        except Exception:
            log.exception("%s pass failed", name)

    run.__name__ = name
    return run


class EconomyScheduler:
    """Владелец фоновых задач: start() на старте приложения, shutdown() при остановке."""

    def __init__(self, container: EconomyContainer):
        self.container = container
        self.scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def build(self) -> AsyncIOScheduler:
        s = self.container.settings
        now = datetime.now(timezone.utc)
        scheduler = AsyncIOScheduler(timezone="UTC")

        scheduler.add_job(
            _job("boost_expiry", self.container.boosts.sweep_expired),
            "interval", seconds=s.BOOST_EXPIRY_INTERVAL_SEC, id="boost_expiry",
            next_run_time=now, max_instances=1, coalesce=True,
        )
        scheduler.add_job(
            _job("scheduled_boosts", self.container.boosts.dispatch_scheduled),
            "interval", seconds=s.SCHEDULED_BOOST_INTERVAL_SEC, id="scheduled_boosts",
            next_run_time=now + timedelta(seconds=s.SCHEDULED_BOOST_FIRST_DELAY_SEC),
            max_instances=1, coalesce=True,
        )
        scheduler.add_job(
            _job("staking_accrual", self.container.staking.accrue_rewards),
            "interval", hours=s.STAKING_ACCRUAL_INTERVAL_HOURS, id="staking_accrual",
            next_run_time=now, max_instances=1, coalesce=True,
        )
        return scheduler

    def start(self) -> None:
        if self.running:
            return
        self.scheduler = self.build()
        self.scheduler.start()
        log.info("scheduler started: %s", ", ".join(j.id for j in self.scheduler.get_jobs()))

    def shutdown(self) -> None:
        if self.running:
            self.scheduler.shutdown(wait=False)
            log.info("scheduler stopped")
        self.scheduler = None

    async def run_all_once(self) -> None:
        """Один проход всех задач подряд (отладка/админка)."""
        await _job("boost_expiry", self.container.boosts.sweep_expired)()
        await _job("scheduled_boosts", self.container.boosts.dispatch_scheduled)()
        await _job("staking_accrual", self.container.staking.accrue_rewards)()
