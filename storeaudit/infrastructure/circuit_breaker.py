"""
Circuit Breaker для провайдера контента.

Состояния:
- CLOSED: всё работает, запросы проходят
- OPEN: провайдер упал, блокируем запросы (fail fast)
- HALF_OPEN: пробуем восстановить
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

from storeaudit.core.errors import CircuitBreakerOpenError
from storeaudit.infrastructure.metrics import circuit_breaker_state

logger = logging.getLogger(__name__)

_STATE_GAUGE = {"closed": 0, "open": 1, "half_open": 2}


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Использование:
        breaker = CircuitBreaker("content", failure_threshold=5)

        try:
            content = await breaker.call(provider.fetch_content, account_id)
        except CircuitBreakerOpenError:
            # Провайдер недоступен, аудит завершится FAILED
            ...
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self._clock = clock or time.time

        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None
        self.state = CircuitState.CLOSED

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """Выполнить функцию через circuit breaker"""

        if self.state == CircuitState.OPEN:
            if self._clock() - self.last_failure_time > self.timeout:
                logger.info(f"{self.name}: OPEN -> HALF_OPEN")
                self._set_state(CircuitState.HALF_OPEN)
                self.success_count = 0
            else:
                raise CircuitBreakerOpenError(
                    f"Circuit '{self.name}' is OPEN"
                )

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _set_state(self, state: CircuitState) -> None:
        self.state = state
        circuit_breaker_state.labels(service=self.name).set(_STATE_GAUGE[state.value])

    def _on_success(self):
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                logger.info(f"{self.name}: HALF_OPEN -> CLOSED")
                self._set_state(CircuitState.CLOSED)
                self.failure_count = 0
        elif self.state == CircuitState.CLOSED:
            self.failure_count = max(0, self.failure_count - 1)

    def _on_failure(self, error: Exception):
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN:
            logger.error(f"{self.name}: HALF_OPEN -> OPEN ({error})")
            self._set_state(CircuitState.OPEN)
        elif self.failure_count >= self.failure_threshold:
            logger.error(f"{self.name}: CLOSED -> OPEN ({error})")
            self._set_state(CircuitState.OPEN)

    def get_state(self) -> dict:
        """Состояние для мониторинга"""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count
        }
