"""
storeaudit - SEO-аудит контента магазина с квотами и кулдауном.

Основные компоненты:
- AuditService: Жизненный цикл аудита (PENDING -> RUNNING -> COMPLETED/FAILED)
- CheckPipeline: Параллельный запуск семи SEO-проверок
- ScoringEngine: Балл здоровья 0-100 и его разбивка
- ExpiringCache: In-memory кэш с TTL и LRU
- UsageTracker: Дневные квоты по тарифу
- CooldownGuard: Не чаще одного аудита в час
"""

from storeaudit.core.audit_service import AuditService
from storeaudit.checks.pipeline import CheckPipeline
from storeaudit.core.scoring import HealthScoreService, ScoringEngine
from storeaudit.core.cache import ExpiringCache
from storeaudit.core.usage import UsageTracker
from storeaudit.core.cooldown import CooldownGuard
from storeaudit.core.factory import Services, build_services

# Модели и результаты
from storeaudit.core.models import (
    Audit,
    AuditOutcome,
    AuditStarted,
    HealthScore,
    Issue,
    QuotaExceeded,
    RateLimited,
    StoreContent,
)
from storeaudit.core.types import AuditStatus, MeteredAction, PlanTier, Severity

__version__ = "1.0.0"

__all__ = [
    # Сервисы
    "AuditService",
    "CheckPipeline",
    "ScoringEngine",
    "HealthScoreService",
    "ExpiringCache",
    "UsageTracker",
    "CooldownGuard",
    "Services",
    "build_services",

    # Модели данных
    "Audit",
    "AuditOutcome",
    "AuditStarted",
    "HealthScore",
    "Issue",
    "QuotaExceeded",
    "RateLimited",
    "StoreContent",
    "AuditStatus",
    "MeteredAction",
    "PlanTier",
    "Severity",

    # Версия
    "__version__",
]
