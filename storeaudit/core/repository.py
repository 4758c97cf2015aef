"""
Контракты хранилищ и in-memory реализации.

Хранилище аудитов обязано уметь атомарный conditional create
(`create_pending_if_idle`) и conditional update (`transition`): именно на
них держится правило «не больше одного активного аудита на аккаунт».
Хранилище квот обязано уметь upsert с переходом суток (`increment`).

In-memory реализации годятся для одного процесса и тестов; для нескольких
процессов есть Redis-версии в redis_store.
"""

import copy
import logging
import threading
from datetime import timedelta
from typing import Dict, List, Optional, Protocol

from .errors import AccountNotFoundError
from .models import Account, Audit, Issue, UsageRecord
from .types import AuditStatus, MeteredAction

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════
# КОНТРАКТЫ
# ═══════════════════════════════════════════════════════════

class AuditRepository(Protocol):

    async def create_pending_if_idle(self, audit: Audit, cooldown: timedelta) -> Optional[Audit]:
        """
        Атомарно создать PENDING-аудит, если у аккаунта нет активного аудита
        и с completed_at последнего терминального прошло не меньше cooldown
        (считая от audit.created_at). Иначе вернуть None.
        """
        ...

    async def get(self, audit_id: str) -> Optional[Audit]: ...

    async def get_active(self, account_id: str) -> Optional[Audit]: ...

    async def get_last_terminal(self, account_id: str) -> Optional[Audit]: ...

    async def get_latest_completed(self, account_id: str) -> Optional[Audit]: ...

    async def list_for_account(self, account_id: str, limit: int = 50) -> List[Audit]: ...

    async def list_active(self) -> List[Audit]: ...

    async def transition(self, audit: Audit, expected: AuditStatus) -> bool:
        """Записать audit, только если текущий статус в хранилище == expected."""
        ...

    async def save_issues(self, audit_id: str, issues: List[Issue]) -> None: ...

    async def list_issues(self, audit_id: str) -> List[Issue]: ...

    async def set_issue_fixed(self, issue_id: str, fixed: bool) -> Optional[Issue]: ...


class UsageStore(Protocol):

    async def read(self, account_id: str) -> Optional[UsageRecord]: ...

    async def increment(self, account_id: str, day: str, action: MeteredAction, amount: int) -> UsageRecord:
        """Атомарно: если запись не за `day`, обнулить и перевести на `day`, затем прибавить."""
        ...

    async def reset(self, account_id: str, day: str) -> None: ...

    async def reset_stale(self, day: str) -> int:
        """Обнулить все записи с датой раньше `day`. Возвращает количество."""
        ...

    async def list_records(self) -> List[UsageRecord]: ...


class AccountDirectory(Protocol):

    async def get_account(self, account_id: str) -> Account: ...


# ═══════════════════════════════════════════════════════════
# IN-MEMORY
# ═══════════════════════════════════════════════════════════

class InMemoryAuditRepository:
    """Аудиты и проблемы в памяти процесса. Наружу отдаются копии."""

    def __init__(self):
        self._lock = threading.Lock()
        self._audits: Dict[str, Audit] = {}
        self._issues: Dict[str, Issue] = {}
        self._issues_by_audit: Dict[str, List[str]] = {}

    def _for_account(self, account_id: str) -> List[Audit]:
        return [a for a in self._audits.values() if a.account_id == account_id]

    def _active(self, account_id: str) -> Optional[Audit]:
        for audit in self._for_account(account_id):
            if audit.status.is_active:
                return audit
        return None

    def _last_terminal(self, account_id: str) -> Optional[Audit]:
        terminal = [
            a for a in self._for_account(account_id)
            if a.status.is_terminal and a.completed_at is not None
        ]
        return max(terminal, key=lambda a: a.completed_at, default=None)

    async def create_pending_if_idle(self, audit: Audit, cooldown: timedelta) -> Optional[Audit]:
        with self._lock:
            if self._active(audit.account_id) is not None:
                return None

            last = self._last_terminal(audit.account_id)
            if last is not None and audit.created_at < last.completed_at + cooldown:
                return None

            self._audits[audit.id] = copy.deepcopy(audit)
            return copy.deepcopy(audit)

    async def get(self, audit_id: str) -> Optional[Audit]:
        with self._lock:
            audit = self._audits.get(audit_id)
            return copy.deepcopy(audit) if audit else None

    async def get_active(self, account_id: str) -> Optional[Audit]:
        with self._lock:
            return copy.deepcopy(self._active(account_id))

    async def get_last_terminal(self, account_id: str) -> Optional[Audit]:
        with self._lock:
            return copy.deepcopy(self._last_terminal(account_id))

    async def get_latest_completed(self, account_id: str) -> Optional[Audit]:
        with self._lock:
            completed = [
                a for a in self._for_account(account_id)
                if a.status == AuditStatus.COMPLETED
            ]
            latest = max(completed, key=lambda a: a.completed_at, default=None)
            return copy.deepcopy(latest)

    async def list_for_account(self, account_id: str, limit: int = 50) -> List[Audit]:
        with self._lock:
            audits = sorted(self._for_account(account_id), key=lambda a: a.created_at, reverse=True)
            return copy.deepcopy(audits[:limit])

    async def list_active(self) -> List[Audit]:
        with self._lock:
            return copy.deepcopy([a for a in self._audits.values() if a.status.is_active])

    async def transition(self, audit: Audit, expected: AuditStatus) -> bool:
        with self._lock:
            current = self._audits.get(audit.id)
            if current is None or current.status != expected:
                return False
            self._audits[audit.id] = copy.deepcopy(audit)
            return True

    async def save_issues(self, audit_id: str, issues: List[Issue]) -> None:
        with self._lock:
            ids = self._issues_by_audit.setdefault(audit_id, [])
            for issue in issues:
                stored = copy.deepcopy(issue)
                stored.audit_id = audit_id
                self._issues[stored.id] = stored
                ids.append(stored.id)

    async def list_issues(self, audit_id: str) -> List[Issue]:
        with self._lock:
            return [copy.deepcopy(self._issues[i]) for i in self._issues_by_audit.get(audit_id, [])]

    async def set_issue_fixed(self, issue_id: str, fixed: bool) -> Optional[Issue]:
        with self._lock:
            issue = self._issues.get(issue_id)
            if issue is None:
                return None
            issue.fixed = fixed
            return copy.deepcopy(issue)


class InMemoryUsageStore:
    """Одна запись на аккаунт; дата записи говорит, за какой она день."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, UsageRecord] = {}

    async def read(self, account_id: str) -> Optional[UsageRecord]:
        with self._lock:
            record = self._records.get(account_id)
            return copy.deepcopy(record) if record else None

    async def increment(self, account_id: str, day: str, action: MeteredAction, amount: int) -> UsageRecord:
        with self._lock:
            record = self._records.get(account_id)
            if record is None or record.day != day:
                record = UsageRecord(account_id=account_id, day=day)
                self._records[account_id] = record
                logger.info(f"Started usage record for account {account_id} on {day}")
            record.counters[action] = record.get(action) + amount
            return copy.deepcopy(record)

    async def reset(self, account_id: str, day: str) -> None:
        with self._lock:
            self._records[account_id] = UsageRecord(account_id=account_id, day=day)

    async def reset_stale(self, day: str) -> int:
        with self._lock:
            stale = [acc for acc, record in self._records.items() if record.day < day]
            for account_id in stale:
                self._records[account_id] = UsageRecord(account_id=account_id, day=day)
            return len(stale)

    async def list_records(self) -> List[UsageRecord]:
        with self._lock:
            return copy.deepcopy(list(self._records.values()))


class InMemoryAccountDirectory:

    def __init__(self, accounts: Optional[List[Account]] = None):
        self._accounts: Dict[str, Account] = {a.id: a for a in accounts or []}

    def upsert(self, account: Account) -> None:
        self._accounts[account.id] = account

    async def get_account(self, account_id: str) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return copy.deepcopy(account)
