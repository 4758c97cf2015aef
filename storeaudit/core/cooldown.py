"""
Кулдаун между аудитами одного аккаунта.

Правила:
- не больше одного PENDING/RUNNING аудита на аккаунт
- новый аудит не раньше, чем через cooldown после completed_at последнего
  COMPLETED/FAILED (граница включительно)
- первый аудит аккаунта разрешён всегда

can_start только отвечает на вопрос. Сама резервация (reserve) делается
одним conditional create в хранилище, поэтому два одновременных старта не
проходят оба даже из разных процессов.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from .clock import Clock, SystemClock
from .models import Audit, StartDecision
from .repository import AuditRepository
from .types import AuditStatus
from storeaudit.infrastructure.metrics import cooldown_rejections

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN = timedelta(hours=1)
DEFAULT_STALE_AFTER = timedelta(hours=2)


class CooldownGuard:

    def __init__(
        self,
        repository: AuditRepository,
        clock: Optional[Clock] = None,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
    ):
        if cooldown < timedelta(0):
            raise ValueError("cooldown не может быть отрицательным")
        if stale_after <= timedelta(0):
            raise ValueError("stale_after должен быть больше нуля")
        self.repository = repository
        self.clock = clock or SystemClock()
        self.cooldown = cooldown
        self.stale_after = stale_after

    # ==================== Abandoned audits ====================

    def abandonment_deadline(self, audit: Audit) -> datetime:
        """Момент, после которого активный аудит считается брошенным."""
        return audit.activity_since() + self.stale_after

    def is_abandoned(self, audit: Audit, now: Optional[datetime] = None) -> bool:
        now = now or self.clock.now()
        return audit.status.is_active and self.abandonment_deadline(audit) <= now

    # ==================== Gate ====================

    async def last_completed_at(self, account_id: str) -> Optional[datetime]:
        last = await self.repository.get_last_terminal(account_id)
        return last.completed_at if last else None

    async def can_start(self, account_id: str, now: Optional[datetime] = None) -> StartDecision:
        """
        Можно ли сейчас запустить аудит.

        Брошенный активный аудит не блокирует: он считается FAILED на момент
        abandonment_deadline, и кулдаун отсчитывается от этого момента.
        """
        now = now or self.clock.now()

        last_completed = await self.last_completed_at(account_id)

        active = await self.repository.get_active(account_id)
        if active is not None:
            if not self.is_abandoned(active, now):
                cooldown_rejections.inc()
                logger.info(f"Account {account_id} already has audit {active.id} ({active.status.value})")
                return StartDecision(
                    allowed=False,
                    next_allowed_at=None,
                    reason="An audit is already in progress",
                )
            deadline = self.abandonment_deadline(active)
            if last_completed is None or deadline > last_completed:
                last_completed = deadline

        if last_completed is None:
            return StartDecision(allowed=True)

        next_allowed_at = last_completed + self.cooldown
        if now >= next_allowed_at:
            return StartDecision(allowed=True)

        cooldown_rejections.inc()
        logger.info(f"Account {account_id} is in cooldown until {next_allowed_at.isoformat()}")
        return StartDecision(
            allowed=False,
            next_allowed_at=next_allowed_at,
            reason="Audit cooldown has not elapsed",
        )

    async def reserve(self, account_id: str, now: Optional[datetime] = None) -> Optional[Audit]:
        """
        Атомарно создать PENDING-аудит.

        Returns:
            Созданный аудит или None, если другой старт успел раньше
            (или кулдаун ещё не истёк)
        """
        now = now or self.clock.now()
        audit = Audit(
            id=str(uuid.uuid4()),
            account_id=account_id,
            status=AuditStatus.PENDING,
            created_at=now,
        )
        created = await self.repository.create_pending_if_idle(audit, self.cooldown)
        if created is None:
            logger.info(f"Reservation for account {account_id} lost: another audit is active or cooling down")
        return created
