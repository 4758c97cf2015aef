"""
Инвалидация кэша по событиям.

TTL защищает от вечно устаревших данных, но после аудита или правки контента
кэш нужно сбрасывать явно, иначе балл и контент отстают на весь TTL.
"""

import glob
import logging

from .cache import CacheNamespace, ExpiringCache, build_cache_key
from .types import DataChangeEvent

logger = logging.getLogger(__name__)

_NAMESPACES = (
    CacheNamespace.CONTENT,
    CacheNamespace.METRICS,
    CacheNamespace.AUDIT,
    CacheNamespace.DASHBOARD,
    CacheNamespace.META,
    CacheNamespace.ALT,
)


def account_pattern(namespace: str, account_id: str) -> str:
    """Glob-шаблон всех ключей аккаунта в namespace; спецсимволы id экранируются."""
    return build_cache_key(namespace, glob.escape(account_id), "*")


class CacheInvalidator:
    """Знает, какие ключи зависят от каких событий."""

    def __init__(self, cache: ExpiringCache):
        self.cache = cache

    def invalidate_content(self, account_id: str) -> int:
        return self.cache.clear(account_pattern(CacheNamespace.CONTENT, account_id))

    def invalidate_dashboard(self, account_id: str) -> int:
        return self.cache.clear(account_pattern(CacheNamespace.DASHBOARD, account_id))

    def invalidate_health_score(self, account_id: str) -> bool:
        return self.cache.delete(build_cache_key(CacheNamespace.DASHBOARD, account_id, "health-score"))

    def invalidate_audit(self, account_id: str) -> int:
        return self.cache.clear(account_pattern(CacheNamespace.AUDIT, account_id))

    def invalidate_metrics(self, account_id: str) -> int:
        return self.cache.clear(account_pattern(CacheNamespace.METRICS, account_id))

    def invalidate_all(self, account_id: str) -> int:
        return sum(self.cache.clear(account_pattern(ns, account_id)) for ns in _NAMESPACES)

    def on_data_change(self, account_id: str, event: DataChangeEvent) -> None:
        """Сбросить всё, что зависит от события."""
        if event in (
            DataChangeEvent.PRODUCT_CHANGED,
            DataChangeEvent.COLLECTION_CHANGED,
            DataChangeEvent.PAGE_CHANGED,
        ):
            self.invalidate_content(account_id)
            self.invalidate_dashboard(account_id)
        elif event == DataChangeEvent.AUDIT_COMPLETED:
            self.invalidate_audit(account_id)
            self.invalidate_dashboard(account_id)
        elif event == DataChangeEvent.META_UPDATED:
            self.cache.clear(account_pattern(CacheNamespace.META, account_id))
            self.invalidate_health_score(account_id)
        elif event == DataChangeEvent.ALT_UPDATED:
            self.cache.clear(account_pattern(CacheNamespace.ALT, account_id))
            self.invalidate_health_score(account_id)
        elif event == DataChangeEvent.METRICS_SYNCED:
            self.invalidate_metrics(account_id)
            self.invalidate_health_score(account_id)
        elif event == DataChangeEvent.ACCOUNT_REMOVED:
            self.invalidate_all(account_id)

        logger.info(f"Invalidated cache for account {account_id} on {event.value}")
