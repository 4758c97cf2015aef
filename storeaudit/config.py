"""Конфигурация storeaudit."""

from datetime import timedelta
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Настройки. Переменные окружения с префиксом STOREAUDIT_ или .env."""

    model_config = SettingsConfigDict(env_prefix="STOREAUDIT_", env_file=".env", extra="ignore")

    # Redis (пусто = всё в памяти процесса)
    redis_url: str = ""
    redis_prefix: str = "storeaudit"

    # Кулдаун и брошенные аудиты
    cooldown_minutes: int = Field(60, ge=0)
    stale_audit_minutes: int = Field(120, gt=0)

    # Кэш
    cache_max_entries: int = Field(1000, gt=0)
    cache_default_ttl_seconds: float = Field(300.0, gt=0)

    # Проверки
    check_timeout_seconds: float = 30.0
    max_parallel_checks: Optional[int] = None
    probe_links: bool = False
    link_probe_rate_per_second: int = 5
    link_probe_timeout_seconds: float = 5.0

    # Провайдер контента
    content_fetch_attempts: int = Field(3, ge=1)
    content_retry_delay_seconds: float = 0.5
    content_breaker_threshold: int = 5
    content_breaker_timeout_seconds: int = 60

    # Лимиты на контент одного аудита
    max_products: int = 50
    max_collections: int = 20
    max_pages: int = 20

    log_level: str = "INFO"

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.cooldown_minutes)

    @property
    def stale_after(self) -> timedelta:
        return timedelta(minutes=self.stale_audit_minutes)


@lru_cache
def get_settings() -> Settings:
    return Settings()
