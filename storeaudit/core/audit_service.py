"""
Жизненный цикл аудита.

    PENDING ──> RUNNING ──> COMPLETED
       │           │
       └───────────┴──────> FAILED

PENDING -> FAILED делает только уборщик брошенных аудитов. Из COMPLETED и
FAILED переходов нет. Каждый переход пишется conditional update'ом по
текущему статусу, поэтому гонка двух процессов не может «перескочить»
состояние.

start_audit: уборка брошенных -> кулдаун -> квота -> атомарная резервация ->
списание квоты.
run_audit: RUNNING -> контент -> проверки -> балл -> сохранение ->
COMPLETED/FAILED -> событие активности -> сброс кэша.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Set, Union

from .cache import CacheNamespace, CacheTTL, ExpiringCache, build_cache_key
from .clock import Clock, SystemClock
from .cooldown import CooldownGuard
from .errors import (
    AuditNotFoundError,
    InvalidTransitionError,
    IssueNotFoundError,
    PersistenceFailure,
    PipelineFailure,
)
from .invalidation import CacheInvalidator
from .models import (
    Account,
    ActivityEvent,
    Audit,
    AuditHistoryItem,
    AuditOutcome,
    AuditProgress,
    AuditStarted,
    Issue,
    IssueFilters,
    QuotaExceeded,
    RateLimited,
    StartAuditResult,
    StoreContent,
)
from .repository import AccountDirectory, AuditRepository
from .scoring import DEFAULT_SCORE_WEIGHTS, ScoreWeights, ScoringEngine, raw_issue_score
from .types import AuditStage, AuditStatus, DataChangeEvent, MeteredAction, Severity
from .usage import UsageTracker
from storeaudit.checks.pipeline import CheckPipeline, PipelineResult
from storeaudit.infrastructure.circuit_breaker import CircuitBreaker
from storeaudit.infrastructure.metrics import audit_duration, audits_total
from storeaudit.infrastructure.retry import retry_async

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[AuditProgress], None]

ALLOWED_TRANSITIONS: Dict[AuditStatus, Set[AuditStatus]] = {
    AuditStatus.PENDING: {AuditStatus.RUNNING, AuditStatus.FAILED},
    AuditStatus.RUNNING: {AuditStatus.COMPLETED, AuditStatus.FAILED},
    AuditStatus.COMPLETED: set(),
    AuditStatus.FAILED: set(),
}

SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


def check_transition(audit: Audit, target: AuditStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[audit.status]:
        raise InvalidTransitionError(audit.id, audit.status.value, target.value)


# ═══════════════════════════════════════════════════════════
# ВНЕШНИЕ ЗАВИСИМОСТИ
# ═══════════════════════════════════════════════════════════

class ContentProvider(Protocol):

    async def fetch_content(self, account_id: str) -> StoreContent:
        """Товары, коллекции и страницы магазина. Один вызов на аудит."""
        ...


class ActivitySink(Protocol):

    async def publish(self, event: ActivityEvent) -> None: ...


class LoggingActivitySink:
    """Пишет события в лог. Используется, когда внешний журнал не подключён."""

    async def publish(self, event: ActivityEvent) -> None:
        logger.info(f"Activity [{event.account_id}]: {event.description}")


@dataclass
class ContentLimits:
    """Сколько ресурсов каждого типа берётся в аудит."""
    max_products: int = 50
    max_collections: int = 20
    max_pages: int = 20


# ═══════════════════════════════════════════════════════════
# СЕРВИС
# ═══════════════════════════════════════════════════════════

class AuditService:
    """
    Оркестратор аудитов.

    Использование:
        service = AuditService(repository, usage, cooldown, pipeline, provider, accounts, cache)

        result = await service.start_audit("acc-1")
        if isinstance(result, AuditStarted):
            outcome = await service.run_audit(result.audit.id)
        else:
            print(result.message)
    """

    def __init__(
        self,
        repository: AuditRepository,
        usage: UsageTracker,
        cooldown: CooldownGuard,
        pipeline: CheckPipeline,
        content_provider: ContentProvider,
        accounts: AccountDirectory,
        cache: ExpiringCache,
        invalidator: Optional[CacheInvalidator] = None,
        scoring: Optional[ScoringEngine] = None,
        activity_sink: Optional[ActivitySink] = None,
        clock: Optional[Clock] = None,
        content_limits: Optional[ContentLimits] = None,
        content_ttl: float = CacheTTL.CONTENT,
        fetch_attempts: int = 3,
        fetch_retry_delay: float = 0.5,
        breaker: Optional[CircuitBreaker] = None,
        score_weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
    ):
        self.repository = repository
        self.usage = usage
        self.cooldown = cooldown
        self.pipeline = pipeline
        self.content_provider = content_provider
        self.accounts = accounts
        self.cache = cache
        self.invalidator = invalidator or CacheInvalidator(cache)
        self.scoring = scoring or ScoringEngine()
        self.activity_sink = activity_sink or LoggingActivitySink()
        self.clock = clock or SystemClock()
        self.content_limits = content_limits or ContentLimits()
        self.content_ttl = content_ttl
        self.breaker = breaker or CircuitBreaker("content", failure_threshold=5, timeout=60)
        self.score_weights = score_weights

        self._fetch_with_retry = retry_async(
            max_attempts=fetch_attempts,
            base_delay=fetch_retry_delay,
            max_delay=30.0,
            label="content fetch",
        )(self._fetch_from_provider)
        self._background: Set[asyncio.Task] = set()

    # ==================== Start ====================

    async def start_audit(self, account_id: str) -> StartAuditResult:
        """
        Попробовать зарезервировать аудит.

        Returns:
            AuditStarted с PENDING-аудитом, RateLimited или QuotaExceeded

        Raises:
            AccountNotFoundError: аккаунта нет
        """
        now = self.clock.now()
        account = await self.accounts.get_account(account_id)

        await self.reap_abandoned(account_id=account_id, now=now)

        decision = await self.cooldown.can_start(account_id, now)
        if not decision.allowed:
            return RateLimited(
                account_id=account_id,
                reason=decision.reason,
                next_allowed_at=decision.next_allowed_at,
            )

        check = await self.usage.can_perform(account_id, MeteredAction.AUDIT_RUNS, tier=account.plan_tier)
        if not check.allowed:
            return QuotaExceeded(
                account_id=account_id,
                action=MeteredAction.AUDIT_RUNS,
                used=check.used,
                limit=check.limit,
                remaining=check.remaining,
                reset_at=self.usage.reset_at(),
            )

        audit = await self.cooldown.reserve(account_id, now)
        if audit is None:
            return RateLimited(account_id=account_id, reason="An audit is already in progress")

        await self.usage.increment(account_id, MeteredAction.AUDIT_RUNS)
        self.invalidator.invalidate_audit(account_id)

        logger.info(f"Started audit {audit.id} for account {account_id}")
        return AuditStarted(audit=audit)

    # ==================== Run ====================

    async def run_audit(self, audit_id: str, on_progress: Optional[ProgressCallback] = None) -> AuditOutcome:
        """
        Выполнить PENDING-аудит до терминального состояния.

        PipelineFailure и PersistenceFailure не пробрасываются: аудит
        завершается FAILED, причина в audit.error и audit.failed_stage.

        Raises:
            AuditNotFoundError: аудита нет
            InvalidTransitionError: аудит не PENDING (уже запущен или завершён)
        """
        audit = await self.repository.get(audit_id)
        if audit is None:
            raise AuditNotFoundError(f"Audit {audit_id} not found")

        check_transition(audit, AuditStatus.RUNNING)
        now = self.clock.now()
        running = replace(audit, status=AuditStatus.RUNNING, started_at=max(now, audit.created_at))
        if not await self.repository.transition(running, expected=AuditStatus.PENDING):
            current = await self.repository.get(audit_id)
            raise InvalidTransitionError(
                audit_id, current.status.value if current else "missing", AuditStatus.RUNNING.value
            )
        audit = running
        logger.info(f"Audit {audit.id} is RUNNING for account {audit.account_id}")

        started = time.perf_counter()
        pipeline_result: Optional[PipelineResult] = None
        issues_saved = False

        try:
            self._progress(on_progress, AuditStage.FETCHING, "Fetching products, collections, and pages...", 10)
            account = await self._load_account(audit)
            content = await self._load_content(audit)
            audit.total_resources = content.total_resources

            self._progress(on_progress, AuditStage.CHECKING, "Running SEO checks...", 40)
            pipeline_result = await self.pipeline.run(content)
            if not pipeline_result.any_succeeded:
                raise PipelineFailure(
                    f"No checks succeeded ({len(pipeline_result.failed)} failed)",
                    stage=AuditStage.CHECKING.value,
                    account_id=audit.account_id,
                    audit_id=audit.id,
                )

            self._progress(on_progress, AuditStage.SAVING, "Saving audit results...", 80)
            issues = pipeline_result.issues
            await self._save_issues(audit, issues)
            issues_saved = True

            completed, health = self._completed_record(audit, account, pipeline_result)
            await self._write_terminal(completed)
            outcome = AuditOutcome(audit=completed, issues=issues, health=health)
            self._progress(on_progress, AuditStage.COMPLETED, "Audit complete", 100)

        except (PipelineFailure, PersistenceFailure) as failure:
            outcome = await self._fail(audit, failure, pipeline_result, issues_saved)

        audit_duration.observe(time.perf_counter() - started)
        await self._after_terminal(outcome.audit)
        return outcome

    async def start_and_run(
        self, account_id: str, on_progress: Optional[ProgressCallback] = None
    ) -> Union[AuditOutcome, RateLimited, QuotaExceeded]:
        result = await self.start_audit(account_id)
        if not isinstance(result, AuditStarted):
            return result
        return await self.run_audit(result.audit.id, on_progress)

    # ==================== Run steps ====================

    @staticmethod
    def _progress(callback: Optional[ProgressCallback], stage: AuditStage, message: str, percentage: int) -> None:
        if callback is None:
            return
        try:
            callback(AuditProgress(stage=stage, message=message, percentage=percentage))
        except Exception as e:
            logger.warning(f"Progress callback failed at {stage.value}: {e}")

    async def _load_account(self, audit: Audit) -> Account:
        try:
            return await self.accounts.get_account(audit.account_id)
        except Exception as e:
            raise PipelineFailure(
                f"Account lookup failed: {e}",
                stage=AuditStage.FETCHING.value,
                account_id=audit.account_id,
                audit_id=audit.id,
            ) from e

    async def _fetch_from_provider(self, account_id: str) -> StoreContent:
        return await self.content_provider.fetch_content(account_id)

    async def _load_content(self, audit: Audit) -> StoreContent:
        """Контент из кэша или от провайдера (retry внутри circuit breaker)."""
        account_id = audit.account_id
        limits = self.content_limits

        async def fetch() -> StoreContent:
            content = await self.breaker.call(self._fetch_with_retry, account_id)
            logger.info(f"Fetched {content.total_resources} resources for account {account_id}")
            return content.truncated(limits.max_products, limits.max_collections, limits.max_pages)

        try:
            return await self.cache.get_or_set(
                build_cache_key(CacheNamespace.CONTENT, account_id, "all"),
                fetch,
                ttl=self.content_ttl,
            )
        except Exception as e:
            raise PipelineFailure(
                f"Content fetch failed: {type(e).__name__}: {e}",
                stage=AuditStage.FETCHING.value,
                account_id=account_id,
                audit_id=audit.id,
            ) from e

    async def _save_issues(self, audit: Audit, issues: List[Issue]) -> None:
        try:
            await self.repository.save_issues(audit.id, issues)
        except Exception as e:
            raise PersistenceFailure(
                f"Saving issues failed: {e}",
                stage=AuditStage.SAVING.value,
                account_id=audit.account_id,
                audit_id=audit.id,
            ) from e

    def _completed_record(self, audit: Audit, account: Account, result: PipelineResult):
        counts = result.severity_counts()
        raw = raw_issue_score(
            counts[Severity.CRITICAL],
            counts[Severity.HIGH],
            counts[Severity.MEDIUM],
            counts[Severity.LOW],
            self.score_weights,
        )
        health = self.scoring.score(
            raw,
            counts[Severity.CRITICAL],
            counts[Severity.HIGH],
            account.sitemap_present,
            account.metrics_connected,
        )

        check_transition(audit, AuditStatus.COMPLETED)
        completed = replace(
            audit,
            status=AuditStatus.COMPLETED,
            completed_at=max(self.clock.now(), audit.started_at),
            score=health.score,
            raw_score=raw,
            critical_issues=counts[Severity.CRITICAL],
            high_issues=counts[Severity.HIGH],
            medium_issues=counts[Severity.MEDIUM],
            low_issues=counts[Severity.LOW],
            partial=result.partial,
            checks=result.outcomes(),
            breakdown=health.breakdown,
        )
        return completed, health

    async def _write_terminal(self, audit: Audit) -> None:
        try:
            written = await self.repository.transition(audit, expected=AuditStatus.RUNNING)
        except Exception as e:
            raise PersistenceFailure(
                f"Writing {audit.status.value} record failed: {e}",
                stage=AuditStage.SAVING.value,
                account_id=audit.account_id,
                audit_id=audit.id,
            ) from e
        if not written:
            raise PersistenceFailure(
                "Audit is no longer RUNNING",
                stage=AuditStage.SAVING.value,
                account_id=audit.account_id,
                audit_id=audit.id,
            )

    async def _fail(
        self,
        audit: Audit,
        failure: Union[PipelineFailure, PersistenceFailure],
        result: Optional[PipelineResult],
        issues_saved: bool,
    ) -> AuditOutcome:
        """Записать FAILED; собранные до ошибки проблемы сохраняются как частичный результат."""
        logger.error(
            f"Audit {audit.id} for account {audit.account_id} failed at stage {failure.stage}: {failure}"
        )

        partial_issues = result.issues if result else []
        if partial_issues and not issues_saved:
            try:
                await self.repository.save_issues(audit.id, partial_issues)
            except Exception as e:
                logger.warning(
                    f"Partial issues of audit {audit.id} (account {audit.account_id}) were not saved: {e}",
                    exc_info=True,
                )
                partial_issues = []

        counts = {s: 0 for s in Severity}
        for issue in partial_issues:
            counts[issue.severity] += 1

        failed = replace(
            audit,
            status=AuditStatus.FAILED,
            completed_at=max(self.clock.now(), audit.started_at),
            score=None,
            critical_issues=counts[Severity.CRITICAL],
            high_issues=counts[Severity.HIGH],
            medium_issues=counts[Severity.MEDIUM],
            low_issues=counts[Severity.LOW],
            partial=bool(partial_issues),
            error=str(failure),
            failed_stage=failure.stage,
            checks=result.outcomes() if result else [],
        )

        try:
            if not await self.repository.transition(failed, expected=AuditStatus.RUNNING):
                current = await self.repository.get(audit.id)
                logger.warning(
                    f"Inconsistent state: audit {audit.id} (account {audit.account_id}) could not be "
                    f"marked FAILED, current status is {current.status.value if current else 'missing'}"
                )
                if current is not None:
                    failed = current
        except Exception as e:
            logger.warning(
                f"Inconsistent state: recording FAILED for audit {audit.id} "
                f"(account {audit.account_id}) failed: {e}",
                exc_info=True,
            )

        return AuditOutcome(audit=failed, issues=partial_issues)

    async def _after_terminal(self, audit: Audit) -> None:
        audits_total.labels(status=audit.status.value).inc()
        self.invalidator.on_data_change(audit.account_id, DataChangeEvent.AUDIT_COMPLETED)
        self._publish(self._activity_event(audit))

    # ==================== Activity ====================

    @staticmethod
    def _activity_event(audit: Audit) -> ActivityEvent:
        if audit.status == AuditStatus.COMPLETED:
            description = f"SEO audit completed with score {audit.score} ({audit.total_issues} issues found)"
        elif audit.partial:
            description = f"SEO audit failed with partial results ({audit.total_issues} issues found)"
        else:
            description = "SEO audit failed"
        return ActivityEvent(
            account_id=audit.account_id,
            audit_id=audit.id,
            status=audit.status,
            description=description,
            score=audit.score,
            total_issues=audit.total_issues,
            partial=audit.partial,
        )

    def _publish(self, event: ActivityEvent) -> None:
        """Fire-and-forget: ошибки приёмника только логируются."""
        task = asyncio.get_running_loop().create_task(self._deliver(event))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deliver(self, event: ActivityEvent) -> None:
        try:
            await self.activity_sink.publish(event)
        except Exception as e:
            logger.warning(f"Activity sink rejected event for audit {event.audit_id}: {e}")

    async def wait_for_background_tasks(self) -> None:
        """Дождаться доставки событий (тесты, остановка процесса)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ==================== Abandoned audits ====================

    async def reap_abandoned(
        self, account_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> List[Audit]:
        """
        Перевести брошенные PENDING/RUNNING аудиты в FAILED.

        completed_at ставится в момент, когда аудит стал считаться брошенным,
        а не в момент уборки.

        Args:
            account_id: Только этот аккаунт (None = все)
        """
        now = now or self.clock.now()
        if account_id is not None:
            active = await self.repository.get_active(account_id)
            candidates = [active] if active else []
        else:
            candidates = await self.repository.list_active()

        reaped = []
        for audit in candidates:
            if not self.cooldown.is_abandoned(audit, now):
                continue

            check_transition(audit, AuditStatus.FAILED)
            deadline = self.cooldown.abandonment_deadline(audit)
            failed = replace(
                audit,
                status=AuditStatus.FAILED,
                completed_at=deadline,
                score=None,
                error=f"Abandoned: no progress since {audit.activity_since().isoformat()}",
                failed_stage="abandoned",
            )
            if not await self.repository.transition(failed, expected=audit.status):
                continue

            logger.warning(f"Reaped abandoned audit {audit.id} for account {audit.account_id}")
            reaped.append(failed)
            await self._after_terminal(failed)

        return reaped

    # ==================== Queries ====================

    async def get_audit(self, audit_id: str) -> Audit:
        audit = await self.repository.get(audit_id)
        if audit is None:
            raise AuditNotFoundError(f"Audit {audit_id} not found")
        return audit

    async def history(self, account_id: str, limit: int = 10) -> List[AuditHistoryItem]:
        """Последние аудиты аккаунта, новые первыми."""

        async def load() -> List[AuditHistoryItem]:
            audits = await self.repository.list_for_account(account_id, limit)
            return [
                AuditHistoryItem(
                    id=a.id,
                    created_at=a.created_at,
                    status=a.status,
                    score=a.score,
                    total_issues=a.total_issues,
                    partial=a.partial,
                    duration_seconds=a.duration_seconds,
                )
                for a in audits
            ]

        return await self.cache.get_or_set(
            build_cache_key(CacheNamespace.AUDIT, account_id, "history", limit),
            load,
            ttl=CacheTTL.ACTIVITY_LOG,
        )

    async def list_issues(self, audit_id: str, filters: Optional[IssueFilters] = None) -> List[Issue]:
        """Проблемы аудита, сначала самые серьёзные."""
        issues = await self.repository.list_issues(audit_id)
        if filters is not None:
            issues = [i for i in issues if filters.matches(i)]
        return sorted(issues, key=lambda i: SEVERITY_ORDER[i.severity])

    async def mark_issue_fixed(self, issue_id: str, fixed: bool = True) -> Issue:
        issue = await self.repository.set_issue_fixed(issue_id, fixed)
        if issue is None:
            raise IssueNotFoundError(f"Issue {issue_id} not found")
        logger.info(f"Issue {issue_id} marked {'fixed' if fixed else 'open'}")
        return issue
