"""
Дневные квоты по аккаунту.

Лимиты FREE:
- audit_runs 10
- bulk_edits 10
- meta_updates 50
- alt_updates 100
- metrics_calls 100
- sitemap_generations 5

PRO без лимитов.

Запись с датой раньше сегодняшней читается как нулевая, без отдельного
сброса: переход суток делает сам increment, атомарно в хранилище.
reset_stale нужен только для уборки.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from .clock import Clock, SystemClock, next_utc_midnight, utc_day
from .models import ActionUsage, BatchAllowance, UsageCheck, UsageRecord, UsageStatus
from .repository import UsageStore
from .types import MeteredAction, PlanTier
from storeaudit.infrastructure.metrics import quota_rejections

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaLimits:
    """Лимиты на день. None = без ограничения."""
    audit_runs: Optional[int]
    bulk_edits: Optional[int]
    meta_updates: Optional[int]
    alt_updates: Optional[int]
    metrics_calls: Optional[int]
    sitemap_generations: Optional[int]

    def for_action(self, action: MeteredAction) -> Optional[int]:
        return getattr(self, action.value)


FREE_TIER_LIMITS = QuotaLimits(
    audit_runs=10,
    bulk_edits=10,
    meta_updates=50,
    alt_updates=100,
    metrics_calls=100,
    sitemap_generations=5,
)

PRO_TIER_LIMITS = QuotaLimits(
    audit_runs=None,
    bulk_edits=None,
    meta_updates=None,
    alt_updates=None,
    metrics_calls=None,
    sitemap_generations=None,
)

DEFAULT_TIER_LIMITS: Dict[PlanTier, QuotaLimits] = {
    PlanTier.FREE: FREE_TIER_LIMITS,
    PlanTier.PRO: PRO_TIER_LIMITS,
}

WARNING_THRESHOLD_PERCENT = 80


class UsageTracker:
    """Проверка и учёт дневных квот."""

    def __init__(
        self,
        store: UsageStore,
        clock: Optional[Clock] = None,
        tier_limits: Optional[Dict[PlanTier, QuotaLimits]] = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.tier_limits = tier_limits or DEFAULT_TIER_LIMITS

    # ==================== Helpers ====================

    def today(self) -> str:
        return utc_day(self.clock.now()).isoformat()

    def reset_at(self) -> datetime:
        """Когда обнулятся квоты (полночь UTC)."""
        return next_utc_midnight(self.clock.now())

    def limit_for(self, action: MeteredAction, tier: PlanTier = PlanTier.FREE) -> Optional[int]:
        return self.tier_limits[tier].for_action(action)

    async def _today_record(self, account_id: str) -> UsageRecord:
        """Сегодняшняя запись без записи в хранилище: устаревшая читается как нулевая."""
        today = self.today()
        record = await self.store.read(account_id)
        if record is None or record.day != today:
            return UsageRecord(account_id=account_id, day=today)
        return record

    @staticmethod
    def _check_amount(amount: int) -> None:
        if amount < 0:
            raise ValueError("amount не может быть отрицательным")

    # ==================== Check & increment ====================

    async def can_perform(
        self,
        account_id: str,
        action: MeteredAction,
        amount: int = 1,
        tier: PlanTier = PlanTier.FREE,
    ) -> UsageCheck:
        """
        Поместится ли ещё `amount` единиц в сегодняшний лимит. Ничего не меняет.

        Returns:
            UsageCheck(allowed, used, remaining, limit); remaining никогда не
            бывает отрицательным.
        """
        self._check_amount(amount)
        record = await self._today_record(account_id)
        used = record.get(action)
        limit = self.limit_for(action, tier)

        if limit is None:
            return UsageCheck(allowed=True, used=used, remaining=None, limit=None)

        allowed = used + amount <= limit
        if not allowed:
            quota_rejections.labels(action=action.value).inc()
            logger.warning(
                f"Account {account_id} exceeded {action.value} limit: {used}+{amount}/{limit}"
            )

        return UsageCheck(
            allowed=allowed,
            used=used,
            remaining=max(0, limit - used),
            limit=limit,
        )

    async def increment(self, account_id: str, action: MeteredAction, amount: int = 1) -> UsageRecord:
        """
        Учесть использование. Вызывать только после can_perform(...).allowed;
        порядок вызовов трекер не проверяет.
        """
        self._check_amount(amount)
        record = await self.store.increment(account_id, self.today(), action, amount)
        logger.info(f"Incremented {action.value} for account {account_id} by {amount}")
        return record

    # ==================== Status ====================

    async def status(self, account_id: str, tier: PlanTier = PlanTier.FREE) -> UsageStatus:
        """Снимок использования по всем действиям."""
        record = await self._today_record(account_id)
        actions = {}
        for action in MeteredAction:
            used = record.get(action)
            limit = self.limit_for(action, tier)
            if limit is None:
                actions[action] = ActionUsage(used=used, limit=None, remaining=None, percentage=0)
            else:
                actions[action] = ActionUsage(
                    used=used,
                    limit=limit,
                    remaining=max(0, limit - used),
                    percentage=round(used / limit * 100) if limit else 100,
                )
        return UsageStatus(account_id=account_id, day=record.day, actions=actions)

    async def is_at_warning_threshold(
        self, account_id: str, action: MeteredAction, tier: PlanTier = PlanTier.FREE
    ) -> bool:
        """80% и выше."""
        status = await self.status(account_id, tier)
        return status[action].percentage >= WARNING_THRESHOLD_PERCENT

    async def is_limit_reached(
        self, account_id: str, action: MeteredAction, tier: PlanTier = PlanTier.FREE
    ) -> bool:
        usage = (await self.status(account_id, tier))[action]
        return usage.limit is not None and usage.used >= usage.limit

    async def plan_batch(
        self,
        account_id: str,
        action: MeteredAction,
        item_count: int,
        tier: PlanTier = PlanTier.FREE,
    ) -> BatchAllowance:
        """
        Сколько элементов пакетной операции влезает в остаток квоты.

        Ничего не списывает: вызывающий делает increment на can_update.
        """
        self._check_amount(item_count)
        check = await self.can_perform(account_id, action, item_count, tier)
        can_update = item_count if check.remaining is None else min(item_count, check.remaining)
        return BatchAllowance(
            action=action,
            allowed=check.allowed,
            item_count=item_count,
            can_update=can_update,
            used=check.used,
            limit=check.limit,
            remaining=check.remaining,
            reset_at=self.reset_at(),
        )

    # ==================== Admin / housekeeping ====================

    async def reset(self, account_id: str) -> None:
        """Обнулить счётчики аккаунта (админка, тесты)."""
        await self.store.reset(account_id, self.today())
        logger.info(f"Reset usage for account {account_id}")

    async def reset_stale(self) -> int:
        """Пакетно обнулить вчерашние и более старые записи."""
        count = await self.store.reset_stale(self.today())
        logger.info(f"Batch reset usage for {count} accounts")
        return count

    async def global_stats(self) -> Dict[str, int]:
        """Суммарное использование за сегодня по всем аккаунтам."""
        today = self.today()
        records = [r for r in await self.store.list_records() if r.day == today]
        stats = {"total_accounts": len(records)}
        for action in MeteredAction:
            stats[f"total_{action.value}"] = sum(r.get(action) for r in records)
        return stats
