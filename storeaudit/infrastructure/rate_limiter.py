"""
Ограничение частоты проверок внешних ссылок.

BrokenLinksCheck делает HEAD/GET по каждой найденной в контенте
ссылке. Один limiter делится всеми проверками процесса, чтобы
аудиты нескольких магазинов вместе не заваливали чужие сайты
запросами.
"""

import asyncio
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket: не больше rate проверок ссылок за per_seconds.

    Пустой bucket наполняется равномерно, поэтому после всплеска
    проверки идут с шагом per_seconds / rate.
    """

    def __init__(self, rate: int, per_seconds: float):
        if rate <= 0 or per_seconds <= 0:
            raise ValueError("rate и per_seconds должны быть больше нуля")
        self.capacity = rate
        self.tokens = float(rate)
        self.per_seconds = float(per_seconds)
        self.fill_rate = float(rate) / float(per_seconds)
        self.updated_at = time.monotonic()
        self.throttled = 0
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"RateLimiter({self.capacity}/{self.per_seconds}s, tokens={self.tokens:.2f})"

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(
            self.capacity,
            self.tokens + (now - self.updated_at) * self.fill_rate,
        )
        self.updated_at = now

    async def acquire(self) -> None:
        """Дождаться разрешения на одну проверку ссылки."""
        waited = False
        while True:
            async with self._lock:
                self._refill()
                if self.tokens >= 1:
                    self.tokens -= 1
                    return

                wait_time = (1 - self.tokens) / self.fill_rate
                if not waited:
                    waited = True
                    self.throttled += 1
                    logger.debug(f"Link checks throttled, waiting {wait_time:.3f}s")

            await asyncio.sleep(wait_time)


class _RateLimitContext:
    def __init__(self, limiter: Optional[RateLimiter]):
        self._limiter = limiter

    async def __aenter__(self):
        if self._limiter:
            await self._limiter.acquire()

    async def __aexit__(self, exc_type, exc, tb):
        return False


def rate_limit(limiter: Optional[RateLimiter]) -> _RateLimitContext:
    """
    Контекст одной проверки ссылки. Без limiter проверка идёт сразу:

        async with rate_limit(self.limiter):
            response = await client.head(url)
    """
    return _RateLimitContext(limiter)
