"""
Повторные попытки для загрузки контента магазина.

Провайдер контента (админ-API магазина, файл-снимок) может временно
не отвечать. AuditService оборачивает fetch_content в retry_async,
а сам вызов идёт через CircuitBreaker: breaker видит только итог
всех попыток, а не каждую неудачу по отдельности.
"""

import asyncio
import logging
import random
from functools import wraps
from typing import Optional, Tuple, Type

logger = logging.getLogger(__name__)


def retry_async(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    jitter: float = 0.1,
    max_delay: Optional[float] = None,
    label: Optional[str] = None,
):
    """
    Повторять корутину с экспоненциальной задержкой.

    Отмена (CancelledError) не перехватывается: аудит, снятый
    с выполнения, не ждёт следующей попытки.

    Args:
        max_attempts: Максимум попыток, включая первую
        base_delay: Задержка перед второй попыткой, дальше удваивается
        exceptions: Какие ошибки считаются временными
        jitter: Добавочный случайный шум к задержке
        max_delay: Потолок задержки (None = без потолка)
        label: Имя операции в логах, по умолчанию имя функции
    """
    if max_attempts < 1:
        raise ValueError("max_attempts должен быть >= 1")

    def decorator(func):
        name = label or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            delay = base_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as exc:
                    if attempt >= max_attempts:
                        logger.error(f"{name} gave up after {attempt} attempts: {exc}")
                        raise

                    logger.warning(f"{name} failed (attempt {attempt}/{max_attempts}): {exc}")
                    await asyncio.sleep(delay + random.uniform(0, jitter))
                    delay = delay * 2 if max_delay is None else min(delay * 2, max_delay)

        return wrapper

    return decorator
