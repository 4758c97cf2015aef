"""
Сборка сервисов из настроек.

Никаких глобальных синглтонов: каждый вызов build_services создаёт свой
кэш, трекер и оркестратор. Тесты получают свежий набор на каждый тест.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis

from .analytics import AnalyticsGateway, AnalyticsProvider
from .audit_service import ActivitySink, AuditService, ContentLimits, ContentProvider
from .cache import ExpiringCache
from .clock import Clock, SystemClock
from .cooldown import CooldownGuard
from .housekeeping import Housekeeper
from .invalidation import CacheInvalidator
from .redis_store import RedisAuditRepository, RedisUsageStore
from .repository import (
    AccountDirectory,
    AuditRepository,
    InMemoryAuditRepository,
    InMemoryUsageStore,
    UsageStore,
)
from .scoring import HealthScoreService, ScoringEngine
from .usage import UsageTracker
from storeaudit.checks.pipeline import CheckPipeline, default_checks
from storeaudit.config import Settings
from storeaudit.infrastructure.circuit_breaker import CircuitBreaker
from storeaudit.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    clock: Clock
    cache: ExpiringCache
    invalidator: CacheInvalidator
    repository: AuditRepository
    usage_store: UsageStore
    usage: UsageTracker
    cooldown: CooldownGuard
    pipeline: CheckPipeline
    scoring: ScoringEngine
    health: HealthScoreService
    audits: AuditService
    housekeeper: Housekeeper
    analytics: Optional[AnalyticsGateway] = None


def build_services(
    settings: Settings,
    content_provider: ContentProvider,
    accounts: AccountDirectory,
    clock: Optional[Clock] = None,
    redis_client: Optional[redis.Redis] = None,
    activity_sink: Optional[ActivitySink] = None,
    analytics_provider: Optional[AnalyticsProvider] = None,
) -> Services:
    """
    Собрать все сервисы.

    Args:
        redis_client: Если передан, аудиты и квоты хранятся в Redis,
            иначе в памяти процесса
    """
    clock = clock or SystemClock()

    cache = ExpiringCache(
        max_entries=settings.cache_max_entries,
        default_ttl=settings.cache_default_ttl_seconds,
    )
    invalidator = CacheInvalidator(cache)

    if redis_client is not None:
        repository = RedisAuditRepository(redis_client, prefix=settings.redis_prefix)
        usage_store = RedisUsageStore(redis_client, prefix=settings.redis_prefix)
        logger.info("Using Redis-backed audit repository and usage store")
    else:
        repository = InMemoryAuditRepository()
        usage_store = InMemoryUsageStore()
        logger.info("Using in-memory audit repository and usage store")

    usage = UsageTracker(usage_store, clock)
    cooldown = CooldownGuard(
        repository,
        clock,
        cooldown=settings.cooldown,
        stale_after=settings.stale_after,
    )

    limiter = None
    if settings.probe_links:
        limiter = RateLimiter(settings.link_probe_rate_per_second, per_seconds=1.0)
    pipeline = CheckPipeline(
        default_checks(
            timeout_seconds=settings.check_timeout_seconds,
            probe_links=settings.probe_links,
            probe_timeout_seconds=settings.link_probe_timeout_seconds,
            limiter=limiter,
        ),
        max_parallel=settings.max_parallel_checks,
    )

    scoring = ScoringEngine()
    audits = AuditService(
        repository=repository,
        usage=usage,
        cooldown=cooldown,
        pipeline=pipeline,
        content_provider=content_provider,
        accounts=accounts,
        cache=cache,
        invalidator=invalidator,
        scoring=scoring,
        activity_sink=activity_sink,
        clock=clock,
        content_limits=ContentLimits(
            max_products=settings.max_products,
            max_collections=settings.max_collections,
            max_pages=settings.max_pages,
        ),
        fetch_attempts=settings.content_fetch_attempts,
        fetch_retry_delay=settings.content_retry_delay_seconds,
        breaker=CircuitBreaker(
            "content",
            failure_threshold=settings.content_breaker_threshold,
            timeout=settings.content_breaker_timeout_seconds,
        ),
    )

    analytics = None
    if analytics_provider is not None:
        analytics = AnalyticsGateway(analytics_provider, accounts, usage, cache, clock)

    return Services(
        settings=settings,
        clock=clock,
        cache=cache,
        invalidator=invalidator,
        repository=repository,
        usage_store=usage_store,
        usage=usage,
        cooldown=cooldown,
        pipeline=pipeline,
        scoring=scoring,
        health=HealthScoreService(repository, accounts, cache, scoring),
        audits=audits,
        housekeeper=Housekeeper(usage, audits, cache, clock),
        analytics=analytics,
    )
