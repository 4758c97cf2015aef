"""
Исключения storeaudit.

RateLimited и QuotaExceeded сюда не входят: это обычные результаты
(см. models), вызывающий код ветвится по ним, а не ловит.
"""

from typing import Optional


class StoreAuditError(Exception):
    """Базовое исключение пакета."""
    pass


class AccountNotFoundError(StoreAuditError):
    pass


class AuditNotFoundError(StoreAuditError):
    pass


class InvalidTransitionError(StoreAuditError):
    """Переход между состояниями аудита запрещён."""

    def __init__(self, audit_id: str, current: str, target: str):
        self.audit_id = audit_id
        self.current = current
        self.target = target
        super().__init__(f"Audit {audit_id}: {current} -> {target} is not allowed")


class CheckFailure(StoreAuditError):
    """Одна проверка упала. Никогда не выходит за границу пайплайна."""

    def __init__(self, check_name: str, cause: BaseException):
        self.check_name = check_name
        self.cause = cause
        super().__init__(f"Check '{check_name}' failed: {type(cause).__name__}: {cause}")


class ContentFetchError(StoreAuditError):
    """Провайдер контента не смог отдать данные."""
    pass


class CircuitBreakerOpenError(StoreAuditError):
    """Circuit breaker открыт, запрос заблокирован"""
    pass


class PipelineFailure(StoreAuditError):
    """Фатальная ошибка аудита: контент не получен или ни одна проверка не прошла."""

    def __init__(self, message: str, stage: str, account_id: Optional[str] = None, audit_id: Optional[str] = None):
        self.stage = stage
        self.account_id = account_id
        self.audit_id = audit_id
        super().__init__(message)


class PersistenceFailure(StoreAuditError):
    """Не удалось записать аудит/проблемы/квоты."""

    def __init__(self, message: str, stage: str, account_id: Optional[str] = None, audit_id: Optional[str] = None):
        self.stage = stage
        self.account_id = account_id
        self.audit_id = audit_id
        super().__init__(message)


class MetricsNotConnectedError(StoreAuditError):
    """У аккаунта не подключена аналитика."""
    pass


class IssueNotFoundError(StoreAuditError):
    pass
