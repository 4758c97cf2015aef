"""
Base class for content checks.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import List, Optional

from storeaudit.core.errors import CheckFailure
from storeaudit.core.models import CheckResult, Issue, ResourceRef, StoreContent
from storeaudit.core.types import IssueType, ResourceType, Severity
from storeaudit.infrastructure.metrics import check_failures


class BaseCheck(ABC):
    """
    Базовый класс для всех SEO-проверок.

    Подкласс задаёт name, issue_type, severity и реализует _check().
    run() добавляет:
    - Timeout
    - Изоляцию ошибок: исключение превращается в CheckResult(success=False)
    - Логирование
    """

    name: str = "check"
    issue_type: IssueType
    severity: Severity

    def __init__(self, timeout_seconds: float = 30.0):
        """
        Args:
            timeout_seconds: Таймаут выполнения (по умолчанию 30 секунд)
        """
        self.timeout_seconds = timeout_seconds
        self.logger = logging.getLogger(f"storeaudit.checks.{self.name}")

    async def run(self, content: StoreContent) -> CheckResult:
        """
        Запустить проверку. Никогда не бросает исключений, кроме отмены.

        Returns:
            CheckResult с найденными проблемами или с ошибкой
        """
        self.logger.debug(f"Starting {self.name}...")
        start_time = time.perf_counter()

        try:
            issues = await asyncio.wait_for(self._check(content), timeout=self.timeout_seconds)

        except asyncio.TimeoutError as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.logger.error(f"{self.name} timed out after {self.timeout_seconds}s")
            return self._failed(CheckFailure(self.name, e), duration_ms)

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.logger.error(f"{self.name} failed with exception: {e}", exc_info=True)
            return self._failed(CheckFailure(self.name, e), duration_ms)

        duration_ms = (time.perf_counter() - start_time) * 1000
        self.logger.info(
            f"Completed {self.name}: found {len(issues)} issues, duration={duration_ms:.2f}ms"
        )
        return CheckResult(
            check_name=self.name,
            issue_type=self.issue_type,
            severity=self.severity,
            issues=issues,
            duration_ms=duration_ms,
        )

    def _failed(self, failure: CheckFailure, duration_ms: float) -> CheckResult:
        check_failures.labels(check=self.name).inc()
        return CheckResult(
            check_name=self.name,
            issue_type=self.issue_type,
            severity=self.severity,
            issues=[],
            success=False,
            error=str(failure),
            duration_ms=duration_ms,
        )

    @abstractmethod
    async def _check(self, content: StoreContent) -> List[Issue]:
        """
        Выполнить проверку (реализуется в подклассах).

        Returns:
            Список найденных проблем
        """
        pass

    def make_issue(
        self,
        content: StoreContent,
        resource_type: ResourceType,
        resource_id: str,
        label: str,
        handle: str,
        message: str,
        suggestion: str,
        **details,
    ) -> Issue:
        """Issue с типом и серьёзностью этой проверки."""
        return Issue(
            id=str(uuid.uuid4()),
            type=self.issue_type,
            severity=self.severity,
            resource=ResourceRef(
                type=resource_type,
                id=resource_id,
                label=label,
                handle=handle,
                url=resource_url(content.shop_domain, resource_type, handle),
            ),
            message=message,
            suggestion=suggestion,
            details=details,
        )


def resource_url(shop_domain: Optional[str], resource_type: ResourceType, handle: str) -> Optional[str]:
    if not shop_domain:
        return None
    return f"https://{shop_domain}/{resource_type.url_segment}/{handle}"


def page_label(title: Optional[str]) -> str:
    return title if title and title.strip() else "Untitled Page"
