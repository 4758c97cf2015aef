"""
Периодические задачи: дневной сброс квот, уборка брошенных аудитов,
очистка просроченного кэша.

Запускаются внешним планировщиком (cron) или через CLI. Корректность
квот от них не зависит, это только уборка.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .audit_service import AuditService
from .cache import ExpiringCache
from .clock import Clock, SystemClock
from .usage import UsageTracker

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    success: bool
    message: str
    count: int
    timestamp: datetime
    duration_ms: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "count": self.count,
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
            "details": self.details,
        }


class Housekeeper:

    def __init__(
        self,
        usage: UsageTracker,
        audits: AuditService,
        cache: Optional[ExpiringCache] = None,
        clock: Optional[Clock] = None,
    ):
        self.usage = usage
        self.audits = audits
        self.cache = cache
        self.clock = clock or SystemClock()

    async def reset_daily_usage(self) -> JobResult:
        """Обнулить вчерашние счётчики всех аккаунтов."""
        start = time.perf_counter()
        logger.info(f"Starting daily usage reset at {self.clock.now().isoformat()}")
        try:
            count = await self.usage.reset_stale()
        except Exception as e:
            logger.error(f"Daily usage reset failed: {e}", exc_info=True)
            return JobResult(
                success=False,
                message=f"Reset failed: {e}",
                count=0,
                timestamp=self.clock.now(),
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Reset usage for {count} accounts in {duration_ms:.0f}ms")
        return JobResult(
            success=True,
            message=f"Reset usage for {count} accounts",
            count=count,
            timestamp=self.clock.now(),
            duration_ms=duration_ms,
        )

    async def reap_abandoned_audits(self) -> JobResult:
        start = time.perf_counter()
        try:
            reaped = await self.audits.reap_abandoned()
        except Exception as e:
            logger.error(f"Reaping abandoned audits failed: {e}", exc_info=True)
            return JobResult(
                success=False,
                message=f"Reap failed: {e}",
                count=0,
                timestamp=self.clock.now(),
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        return JobResult(
            success=True,
            message=f"Reaped {len(reaped)} abandoned audits",
            count=len(reaped),
            timestamp=self.clock.now(),
            duration_ms=(time.perf_counter() - start) * 1000,
            details={"audit_ids": [a.id for a in reaped]},
        )

    def cleanup_cache(self) -> JobResult:
        start = time.perf_counter()
        removed = self.cache.cleanup() if self.cache is not None else 0
        return JobResult(
            success=True,
            message=f"Removed {removed} expired cache entries",
            count=removed,
            timestamp=self.clock.now(),
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    async def run_all(self) -> List[JobResult]:
        return [
            await self.reset_daily_usage(),
            await self.reap_abandoned_audits(),
            self.cleanup_cache(),
        ]
