"""
In-memory кэш с TTL и LRU-вытеснением.

Используем:
- OrderedDict как LRU-список (move_to_end на чтение и запись)
- один threading.RLock на все операции, поэтому чтение никогда не видит
  наполовину записанную запись
- get_or_set как единственный путь «проверить кэш, иначе посчитать»

Кэш однопроцессный. При горизонтальном масштабировании аккаунт нужно
закреплять за процессом либо заменить кэш общим хранилищем с тем же
интерфейсом.
"""

import asyncio
import fnmatch
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from storeaudit.infrastructure.metrics import cache_evictions, cache_hits, cache_misses

logger = logging.getLogger(__name__)

_MISSING = object()
_RETRY = object()


# TTL в секундах
class CacheTTL:
    CONTENT_PRODUCTS = 15 * 60
    CONTENT_COLLECTIONS = 15 * 60
    CONTENT_PAGES = 30 * 60
    CONTENT = 15 * 60

    METRICS = 60 * 60

    AUDIT_RESULTS = 24 * 60 * 60
    HEALTH_SCORE = 5 * 60
    ACTIVITY_LOG = 2 * 60


class CacheNamespace:
    CONTENT = "content"
    METRICS = "metrics"
    AUDIT = "audit"
    DASHBOARD = "dashboard"
    META = "meta"
    ALT = "alt"


def build_cache_key(namespace: str, *parts: Union[str, int]) -> str:
    """build_cache_key("dashboard", "acc-1", "health-score") -> "dashboard:acc-1:health-score"."""
    return ":".join([namespace, *(str(p) for p in parts)])


@dataclass
class CacheEntry:
    value: Any
    inserted_at: float
    ttl: float
    last_access: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl


class ExpiringCache:
    """
    Ключ → значение с TTL на запись и потолком на количество записей.

    Использование:
        cache = ExpiringCache(max_entries=1000, default_ttl=300)
        score = await cache.get_or_set(
            build_cache_key(CacheNamespace.DASHBOARD, account_id, "health-score"),
            lambda: compute_score(account_id),
            ttl=CacheTTL.HEALTH_SCORE,
        )
    """

    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl: float = 300.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries должен быть больше нуля")
        if default_ttl <= 0:
            raise ValueError("default_ttl должен быть больше нуля")
        self.max_entries = max_entries
        self.default_ttl = float(default_ttl)
        self._clock = clock or time.monotonic
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._inflight: Dict[str, asyncio.Future] = {}

    # ==================== Basic operations ====================

    def _lookup(self, key: str) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                cache_misses.inc()
                return _MISSING

            if entry.is_expired(now):
                del self._store[key]
                cache_misses.inc()
                return _MISSING

            entry.last_access = now
            self._store.move_to_end(key)
            cache_hits.inc()
            return entry.value

    def get(self, key: str, default: Any = None) -> Any:
        """Значение или default. Просроченная запись ведёт себя как промах и удаляется."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def has(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Записать (всегда перезаписывает)."""
        ttl = self.default_ttl if ttl is None else float(ttl)
        if ttl <= 0:
            raise ValueError("ttl должен быть больше нуля")

        now = self._clock()
        with self._lock:
            self._store[key] = CacheEntry(value=value, inserted_at=now, ttl=ttl, last_access=now)
            self._store.move_to_end(key)
            self._evict_overflow()

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def clear(self, pattern: Optional[str] = None) -> int:
        """
        Очистить всё или только ключи по glob-шаблону ("content:acc-1:*").

        Returns:
            Количество удалённых записей
        """
        with self._lock:
            if pattern is None:
                removed = len(self._store)
                self._store.clear()
                return removed

            doomed = [key for key in self._store if fnmatch.fnmatchcase(key, pattern)]
            for key in doomed:
                del self._store[key]
            return len(doomed)

    def _evict_overflow(self) -> None:
        # Вызывается под self._lock
        while len(self._store) > self.max_entries:
            key, _ = self._store.popitem(last=False)
            cache_evictions.inc()
            logger.debug(f"Evicted LRU cache entry {key}")

    # ==================== Memoization ====================

    async def get_or_set(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Вернуть значение из кэша или вызвать producer и закэшировать результат.

        Ошибка producer'а пробрасывается и ничего не кэширует. Одновременные
        вызовы с одним ключом ждут один и тот же вызов producer'а. Если
        вызывающего, который запустил producer, отменили, ждущие не
        отменяются: один из них запускает producer заново.
        """
        while True:
            value = self._lookup(key)
            if value is not _MISSING:
                return value

            pending = self._inflight.get(key)
            if pending is None:
                break
            value = await asyncio.shield(pending)
            if value is not _RETRY:
                return value

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await producer()
        except asyncio.CancelledError:
            future.set_result(_RETRY)
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Помечаем как прочитанное: вызывающему исключение уже пробрасывается
            future.exception()
            raise
        else:
            self.set(key, value, ttl)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)

    # ==================== Housekeeping ====================

    def cleanup(self) -> int:
        """Удалить все просроченные записи (для периодического вызова)."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
            for key in expired:
                del self._store[key]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        with self._lock:
            total = len(self._store)
            expired = sum(1 for entry in self._store.values() if entry.is_expired(now))
        return {
            "total_entries": total,
            "max_entries": self.max_entries,
            "expired_entries": expired,
            "utilization_percent": round(total / self.max_entries * 100),
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
