"""
Доступ к внешней аналитике (клики, показы, CTR, позиция).

OAuth и обновление токенов на стороне провайдера. Здесь только:
кэш на час, квота metrics_calls на промах кэша, проверка подключения.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Optional, Protocol, Union

from .cache import CacheNamespace, CacheTTL, ExpiringCache, build_cache_key
from .clock import Clock, SystemClock, utc_day
from .errors import MetricsNotConnectedError
from .models import QuotaExceeded
from .repository import AccountDirectory
from .types import MeteredAction
from .usage import UsageTracker

logger = logging.getLogger(__name__)

# Данные у провайдера появляются с задержкой 2-3 дня
REPORTING_DELAY_DAYS = 3
DEFAULT_PERIOD_DAYS = 28


@dataclass
class DateRange:
    start: date
    end: date

    def to_dict(self) -> Dict[str, str]:
        return {"start_date": self.start.isoformat(), "end_date": self.end.isoformat()}


class AnalyticsProvider(Protocol):

    async def fetch_metrics(self, account_id: str, date_range: DateRange) -> Dict[str, Any]:
        """Агрегированные метрики за период."""
        ...


class AnalyticsGateway:
    """
    Использование:
        gateway = AnalyticsGateway(provider, accounts, usage, cache)
        result = await gateway.get_metrics("acc-1")
        if isinstance(result, QuotaExceeded):
            ...
    """

    def __init__(
        self,
        provider: AnalyticsProvider,
        accounts: AccountDirectory,
        usage: UsageTracker,
        cache: ExpiringCache,
        clock: Optional[Clock] = None,
        ttl: float = CacheTTL.METRICS,
    ):
        self.provider = provider
        self.accounts = accounts
        self.usage = usage
        self.cache = cache
        self.clock = clock or SystemClock()
        self.ttl = ttl

    def date_range(self, days: int = DEFAULT_PERIOD_DAYS) -> DateRange:
        end = utc_day(self.clock.now()) - timedelta(days=REPORTING_DELAY_DAYS)
        return DateRange(start=end - timedelta(days=days), end=end)

    @staticmethod
    def cache_key(account_id: str, days: int) -> str:
        return build_cache_key(CacheNamespace.METRICS, account_id, f"{days}d")

    async def get_metrics(
        self,
        account_id: str,
        days: int = DEFAULT_PERIOD_DAYS,
        force_refresh: bool = False,
    ) -> Union[Dict[str, Any], QuotaExceeded]:
        """
        Метрики из кэша или от провайдера.

        Попадание в кэш квоту не тратит. Промах проверяет metrics_calls и
        списывает одну единицу после успешного вызова.

        Raises:
            MetricsNotConnectedError: аналитика не подключена
        """
        key = self.cache_key(account_id, days)
        if force_refresh:
            self.cache.delete(key)
        else:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        account = await self.accounts.get_account(account_id)
        if not account.metrics_connected:
            raise MetricsNotConnectedError(f"Analytics not connected for account {account_id}")

        check = await self.usage.can_perform(
            account_id, MeteredAction.METRICS_CALLS, tier=account.plan_tier
        )
        if not check.allowed:
            return QuotaExceeded(
                account_id=account_id,
                action=MeteredAction.METRICS_CALLS,
                used=check.used,
                limit=check.limit,
                remaining=check.remaining,
                reset_at=self.usage.reset_at(),
            )

        async def produce() -> Dict[str, Any]:
            date_range = self.date_range(days)
            logger.info(f"Fetching metrics for account {account_id} ({date_range.start} - {date_range.end})")
            metrics = await self.provider.fetch_metrics(account_id, date_range)
            await self.usage.increment(account_id, MeteredAction.METRICS_CALLS)
            return {**metrics, **date_range.to_dict()}

        return await self.cache.get_or_set(key, produce, ttl=self.ttl)
