"""
Подсчёт балла SEO (0-100).

Два уровня:
1. raw_issue_score: балл одного аудита по числу проблем каждой серьёзности
   (100 - 15*critical - 10*high - 5*medium - 2*low)
2. ScoringEngine.score: итоговый балл здоровья магазина
   база - 5*critical - 2*high + 5 (sitemap) + 5 (метрики подключены)

Промежуточные значения вне [0, 100] нормальны, обрезаются в конце.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from .cache import CacheNamespace, CacheTTL, ExpiringCache, build_cache_key
from .models import HealthScore, ScoreBreakdown
from .repository import AccountDirectory, AuditRepository
from .types import HealthStatus

logger = logging.getLogger(__name__)

MIN_SCORE = 0
MAX_SCORE = 100


@dataclass(frozen=True)
class ScoreWeights:
    """Штраф за одну проблему каждой серьёзности в raw_issue_score."""
    critical: int = 15
    high: int = 10
    medium: int = 5
    low: int = 2


DEFAULT_SCORE_WEIGHTS = ScoreWeights()

# (нижняя граница, статус), по убыванию
_STATUS_BANDS = (
    (86, HealthStatus.EXCELLENT),
    (71, HealthStatus.GOOD),
    (41, HealthStatus.NEEDS_WORK),
    (0, HealthStatus.CRITICAL),
)

_STATUS_TEXT = {
    HealthStatus.CRITICAL: "Critical - Immediate action needed",
    HealthStatus.NEEDS_WORK: "Needs Work - Several issues to fix",
    HealthStatus.GOOD: "Good - Minor improvements possible",
    HealthStatus.EXCELLENT: "Excellent - Keep up the great work!",
}


def round_half_up(value: float) -> int:
    """70.5 -> 71, -0.5 -> 0. Встроенный round() округляет к чётному."""
    return int(math.floor(value + 0.5))


def clamp_score(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, value))


def _check_counts(**counts: int) -> None:
    for name, count in counts.items():
        if count < 0:
            raise ValueError(f"{name} не может быть отрицательным: {count}")


def raw_issue_score(
    critical: int,
    high: int,
    medium: int = 0,
    low: int = 0,
    weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
) -> int:
    """Балл аудита по проблемам, до бонусов."""
    _check_counts(critical=critical, high=high, medium=medium, low=low)
    penalty = (
        critical * weights.critical
        + high * weights.high
        + medium * weights.medium
        + low * weights.low
    )
    return clamp_score(MAX_SCORE - penalty)


def status_for(score: int) -> HealthStatus:
    for lower_bound, status in _STATUS_BANDS:
        if score >= lower_bound:
            return status
    return HealthStatus.CRITICAL


def status_text(status: HealthStatus) -> str:
    return _STATUS_TEXT[status]


class ScoringEngine:
    """Детерминированная формула балла здоровья."""

    def __init__(
        self,
        critical_penalty: int = 5,
        high_penalty: int = 2,
        sitemap_bonus: int = 5,
        metrics_bonus: int = 5,
    ):
        self.critical_penalty = critical_penalty
        self.high_penalty = high_penalty
        self.sitemap_bonus = sitemap_bonus
        self.metrics_bonus = metrics_bonus

    def score(
        self,
        base_score: Optional[float],
        critical_count: int,
        high_count: int,
        sitemap_present: bool,
        metrics_connected: bool,
    ) -> HealthScore:
        """
        Итоговый балл и разбивка.

        Args:
            base_score: raw-балл последнего аудита; None = аудитов ещё не было (100)
            critical_count: Количество critical-проблем
            high_count: Количество high-проблем
            sitemap_present: Sitemap сгенерирован
            metrics_connected: Подключена аналитика

        Returns:
            HealthScore(score, status, breakdown), score всегда в [0, 100]
        """
        _check_counts(critical_count=critical_count, high_count=high_count)

        base = float(MAX_SCORE if base_score is None else base_score)
        breakdown = ScoreBreakdown(
            base_score=base,
            critical_penalty=critical_count * self.critical_penalty,
            high_penalty=high_count * self.high_penalty,
            sitemap_bonus=self.sitemap_bonus if sitemap_present else 0,
            metrics_bonus=self.metrics_bonus if metrics_connected else 0,
            raw_total=0.0,
        )
        breakdown.raw_total = (
            base
            - breakdown.critical_penalty
            - breakdown.high_penalty
            + breakdown.sitemap_bonus
            + breakdown.metrics_bonus
        )

        final = clamp_score(round_half_up(breakdown.raw_total))
        return HealthScore(score=final, status=status_for(final), breakdown=breakdown)


class HealthScoreService:
    """
    Балл здоровья для дашборда: последний COMPLETED аудит + сигналы аккаунта.

    Кэшируется на 5 минут; после аудита ключ сбрасывает CacheInvalidator.
    """

    def __init__(
        self,
        repository: AuditRepository,
        accounts: AccountDirectory,
        cache: ExpiringCache,
        engine: Optional[ScoringEngine] = None,
        ttl: float = CacheTTL.HEALTH_SCORE,
    ):
        self.repository = repository
        self.accounts = accounts
        self.cache = cache
        self.engine = engine or ScoringEngine()
        self.ttl = ttl

    @staticmethod
    def cache_key(account_id: str) -> str:
        return build_cache_key(CacheNamespace.DASHBOARD, account_id, "health-score")

    async def get_health_score(self, account_id: str) -> HealthScore:
        return await self.cache.get_or_set(
            self.cache_key(account_id),
            lambda: self.compute(account_id),
            ttl=self.ttl,
        )

    async def compute(self, account_id: str) -> HealthScore:
        """Посчитать без кэша."""
        account = await self.accounts.get_account(account_id)
        latest = await self.repository.get_latest_completed(account_id)

        if latest is None:
            health = self.engine.score(None, 0, 0, account.sitemap_present, account.metrics_connected)
        else:
            health = self.engine.score(
                latest.raw_score,
                latest.critical_issues,
                latest.high_issues,
                account.sitemap_present,
                account.metrics_connected,
            )

        logger.debug(f"Computed health score {health.score} for account {account_id}")
        return health
