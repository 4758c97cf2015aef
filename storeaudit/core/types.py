"""Общие перечисления и типы для storeaudit."""

from enum import Enum


class AuditStatus(Enum):
    """Жизненный цикл аудита."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (AuditStatus.PENDING, AuditStatus.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return self in (AuditStatus.COMPLETED, AuditStatus.FAILED)


class Severity(Enum):
    """Уровень серьёзности проблемы."""
    CRITICAL = "critical"  # Страница почти не видна в поиске
    HIGH = "high"          # Серьёзная проблема, требует исправления
    MEDIUM = "medium"      # Проблема средней важности
    LOW = "low"            # Стоит проверить вручную


class IssueType(Enum):
    """Тип SEO-проблемы (одна проверка = один тип)."""
    MISSING_META_TITLE = "missing-title"
    DUPLICATE_META_TITLE = "duplicate-title"
    MISSING_META_DESCRIPTION = "missing-description"
    MISSING_ALT_TEXT = "missing-alt-text"
    BROKEN_LINK = "broken-link"
    MIXED_CONTENT = "mixed-content"
    INDEXING_DIRECTIVE = "indexing-directive"


class ResourceType(Enum):
    PRODUCT = "product"
    COLLECTION = "collection"
    PAGE = "page"

    @property
    def url_segment(self) -> str:
        return {
            ResourceType.PRODUCT: "products",
            ResourceType.COLLECTION: "collections",
            ResourceType.PAGE: "pages",
        }[self]


class MeteredAction(Enum):
    """Действия, ограниченные дневной квотой."""
    AUDIT_RUNS = "audit_runs"
    BULK_EDITS = "bulk_edits"
    META_UPDATES = "meta_updates"
    ALT_UPDATES = "alt_updates"
    METRICS_CALLS = "metrics_calls"
    SITEMAP_GENERATIONS = "sitemap_generations"


class PlanTier(Enum):
    FREE = "free"
    PRO = "pro"


class HealthStatus(Enum):
    """Полосы итогового балла."""
    CRITICAL = "critical"
    NEEDS_WORK = "needs-work"
    GOOD = "good"
    EXCELLENT = "excellent"


class AuditStage(Enum):
    """Этапы выполнения для progress-callback'а."""
    FETCHING = "fetching"
    CHECKING = "checking"
    SAVING = "saving"
    COMPLETED = "completed"


class DataChangeEvent(Enum):
    """События, после которых нужно сбросить кэш."""
    PRODUCT_CHANGED = "product_changed"
    COLLECTION_CHANGED = "collection_changed"
    PAGE_CHANGED = "page_changed"
    AUDIT_COMPLETED = "audit_completed"
    META_UPDATED = "meta_updated"
    ALT_UPDATED = "alt_updated"
    METRICS_SYNCED = "metrics_synced"
    ACCOUNT_REMOVED = "account_removed"
