"""
Pytest configuration and fixtures.

Использование:
    pytest tests/ -v

Все сервисы получают один ManualClock: время в тестах двигается только
вручную (clock.advance), без sleep.
"""

from datetime import datetime, timedelta, timezone

import pytest

from storeaudit.checks.pipeline import CheckPipeline, default_checks
from storeaudit.core.audit_service import AuditService
from storeaudit.core.cache import ExpiringCache
from storeaudit.core.clock import ManualClock
from storeaudit.core.content_sources import StaticContentProvider
from storeaudit.core.cooldown import CooldownGuard
from storeaudit.core.invalidation import CacheInvalidator
from storeaudit.core.models import Account
from storeaudit.core.repository import (
    InMemoryAccountDirectory,
    InMemoryAuditRepository,
    InMemoryUsageStore,
)
from storeaudit.core.types import PlanTier
from storeaudit.core.usage import UsageTracker
from storeaudit.infrastructure.circuit_breaker import CircuitBreaker
from tests.factories import RecordingSink, content_with_issues


# ═══════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════

@pytest.fixture
def clock():
    return ManualClock(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def cache(clock):
    return ExpiringCache(max_entries=100, default_ttl=300, clock=lambda: clock.now().timestamp())


@pytest.fixture
def repository():
    return InMemoryAuditRepository()


@pytest.fixture
def usage_store():
    return InMemoryUsageStore()


@pytest.fixture
def usage(usage_store, clock):
    return UsageTracker(usage_store, clock)


@pytest.fixture
def cooldown(repository, clock):
    return CooldownGuard(repository, clock, cooldown=timedelta(hours=1), stale_after=timedelta(hours=2))


@pytest.fixture
def accounts():
    return InMemoryAccountDirectory([
        Account(id="acc-1", shop_domain="demo.myshop.com"),
        Account(id="acc-2", shop_domain="other.myshop.com"),
        Account(id="acc-pro", plan_tier=PlanTier.PRO, shop_domain="pro.myshop.com"),
        Account(
            id="acc-bonus",
            shop_domain="bonus.myshop.com",
            sitemap_generated_at=datetime(2024, 12, 1, tzinfo=timezone.utc),
            metrics_connected=True,
        ),
    ])


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def provider():
    return StaticContentProvider(content_with_issues())


@pytest.fixture
def make_service(repository, usage, cooldown, accounts, cache, clock, sink):
    """Фабрика AuditService с подменяемым провайдером/пайплайном."""

    def _make(content_provider=None, pipeline=None, **kwargs):
        repo = kwargs.pop("repository", repository)
        guard = cooldown
        if repo is not repository:
            # CooldownGuard и сервис должны работать с одним репозиторием, как в factory
            guard = CooldownGuard(repo, clock, cooldown=cooldown.cooldown, stale_after=cooldown.stale_after)
        return AuditService(
            repository=repo,
            usage=usage,
            cooldown=guard,
            pipeline=pipeline or CheckPipeline(default_checks(timeout_seconds=5)),
            content_provider=content_provider or StaticContentProvider(content_with_issues()),
            accounts=accounts,
            cache=cache,
            invalidator=CacheInvalidator(cache),
            activity_sink=kwargs.pop("activity_sink", sink),
            clock=clock,
            fetch_retry_delay=0,
            breaker=kwargs.pop("breaker", CircuitBreaker("content-test", failure_threshold=5, timeout=60)),
            **kwargs,
        )

    return _make


@pytest.fixture
def service(make_service):
    return make_service()
