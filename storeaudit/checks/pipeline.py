"""
Check pipeline: parallel execution of independent checks.

Features:
- Parallel execution (asyncio.gather), optional batching
- Graceful degradation: упавшая проверка даёт CheckResult(success=False),
  остальные продолжают работу
- Collect-then-aggregate: результаты сливаются одним шагом после gather
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .alt_text import MissingAltTextCheck
from .base_check import BaseCheck
from .broken_links import BrokenLinksCheck
from .indexing import IndexingDirectivesCheck
from .meta_descriptions import MissingMetaDescriptionsCheck
from .meta_titles import DuplicateMetaTitlesCheck, MissingMetaTitlesCheck
from .mixed_content import MixedContentCheck
from storeaudit.core.errors import CheckFailure
from storeaudit.core.models import CheckOutcome, CheckResult, Issue, StoreContent
from storeaudit.core.types import Severity
from storeaudit.infrastructure.metrics import check_failures
from storeaudit.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    results: List[CheckResult] = field(default_factory=list)

    @property
    def issues(self) -> List[Issue]:
        """Объединение проблем всех успешных проверок."""
        return [issue for result in self.results if result.success for issue in result.issues]

    @property
    def succeeded(self) -> List[str]:
        return [r.check_name for r in self.results if r.success]

    @property
    def failed(self) -> List[str]:
        return [r.check_name for r in self.results if not r.success]

    @property
    def any_succeeded(self) -> bool:
        return bool(self.succeeded)

    @property
    def partial(self) -> bool:
        return bool(self.failed)

    def severity_counts(self) -> Dict[Severity, int]:
        counts = {severity: 0 for severity in Severity}
        for issue in self.issues:
            counts[issue.severity] += 1
        return counts

    def outcomes(self) -> List[CheckOutcome]:
        return [
            CheckOutcome(
                check_name=r.check_name,
                success=r.success,
                issue_count=len(r.issues),
                error=r.error,
            )
            for r in self.results
        ]


class CheckPipeline:
    """Запуск набора проверок над одним снимком контента."""

    def __init__(self, checks: List[BaseCheck], max_parallel: Optional[int] = None):
        """
        Args:
            checks: Проверки для запуска
            max_parallel: Максимум одновременных проверок (None = все сразу)
        """
        self.checks = checks
        self.max_parallel = max_parallel

    async def run(self, content: StoreContent) -> PipelineResult:
        if not self.checks:
            return PipelineResult()

        logger.info(f"Running {len(self.checks)} checks over {content.total_resources} resources...")

        results: List[CheckResult] = []
        if self.max_parallel and self.max_parallel > 0:
            for i in range(0, len(self.checks), self.max_parallel):
                batch = self.checks[i:i + self.max_parallel]
                results.extend(await self._run_batch(batch, content))
        else:
            results = await self._run_batch(self.checks, content)

        pipeline_result = PipelineResult(results=results)
        logger.info(
            f"Checks finished: {len(pipeline_result.succeeded)} succeeded, "
            f"{len(pipeline_result.failed)} failed, {len(pipeline_result.issues)} issues"
        )
        return pipeline_result

    async def _run_batch(self, checks: List[BaseCheck], content: StoreContent) -> List[CheckResult]:
        """Запустить батч параллельно и собрать результаты в исходном порядке."""
        results = await asyncio.gather(
            *(check.run(content) for check in checks),
            return_exceptions=True,
        )

        processed = []
        for check, result in zip(checks, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                # BaseCheck.run сам ловит ошибки; сюда попадает только сбой вне _check
                failure = CheckFailure(check.name, result)
                logger.error(str(failure))
                check_failures.labels(check=check.name).inc()
                processed.append(CheckResult(
                    check_name=check.name,
                    issue_type=check.issue_type,
                    severity=check.severity,
                    issues=[],
                    success=False,
                    error=str(failure),
                ))
            else:
                processed.append(result)

        return processed


def default_checks(
    timeout_seconds: float = 30.0,
    probe_links: bool = False,
    probe_timeout_seconds: float = 5.0,
    limiter: Optional[RateLimiter] = None,
) -> List[BaseCheck]:
    """Стандартный набор из семи проверок."""
    return [
        MissingMetaTitlesCheck(timeout_seconds),
        DuplicateMetaTitlesCheck(timeout_seconds),
        MissingMetaDescriptionsCheck(timeout_seconds),
        MissingAltTextCheck(timeout_seconds),
        BrokenLinksCheck(
            timeout_seconds,
            probe_links=probe_links,
            probe_timeout_seconds=probe_timeout_seconds,
            limiter=limiter,
        ),
        MixedContentCheck(timeout_seconds),
        IndexingDirectivesCheck(timeout_seconds),
    ]
