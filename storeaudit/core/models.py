"""
Core data models for storeaudit.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from .types import (
    AuditStage,
    AuditStatus,
    HealthStatus,
    IssueType,
    MeteredAction,
    PlanTier,
    ResourceType,
    Severity,
)


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════
# КОНТЕНТ МАГАЗИНА
# ═══════════════════════════════════════════════════════════

@dataclass
class Image:
    id: str
    url: str
    alt_text: Optional[str] = None


@dataclass
class Product:
    id: str
    title: str
    handle: str
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    description_html: Optional[str] = None
    images: List[Image] = field(default_factory=list)


@dataclass
class Collection:
    id: str
    title: str
    handle: str
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    description_html: Optional[str] = None


@dataclass
class Page:
    id: str
    title: Optional[str]
    handle: str
    body_summary: Optional[str] = None
    body: Optional[str] = None


@dataclass
class StoreContent:
    """Контент, полученный от внешнего провайдера за один вызов."""

    products: List[Product] = field(default_factory=list)
    collections: List[Collection] = field(default_factory=list)
    pages: List[Page] = field(default_factory=list)
    shop_domain: Optional[str] = None

    @property
    def total_resources(self) -> int:
        return len(self.products) + len(self.collections) + len(self.pages)

    def truncated(self, max_products: int, max_collections: int, max_pages: int) -> "StoreContent":
        """Обрезать контент до лимитов тарифа."""
        return StoreContent(
            products=self.products[:max_products],
            collections=self.collections[:max_collections],
            pages=self.pages[:max_pages],
            shop_domain=self.shop_domain,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoreContent":
        """
        Построить из JSON в форме Admin API:
        `seo: {title, description}`, `descriptionHtml`, `images: [{id, url, altText}]`.
        """
        products = []
        for raw in data.get("products", []):
            seo = raw.get("seo") or {}
            products.append(Product(
                id=str(raw["id"]),
                title=raw.get("title", ""),
                handle=raw.get("handle", ""),
                seo_title=seo.get("title"),
                seo_description=seo.get("description"),
                description_html=raw.get("descriptionHtml"),
                images=[
                    Image(id=str(img.get("id", "")), url=img.get("url", ""), alt_text=img.get("altText"))
                    for img in raw.get("images", [])
                ],
            ))

        collections = []
        for raw in data.get("collections", []):
            seo = raw.get("seo") or {}
            collections.append(Collection(
                id=str(raw["id"]),
                title=raw.get("title", ""),
                handle=raw.get("handle", ""),
                seo_title=seo.get("title"),
                seo_description=seo.get("description"),
                description_html=raw.get("descriptionHtml"),
            ))

        pages = [
            Page(
                id=str(raw["id"]),
                title=raw.get("title"),
                handle=raw.get("handle", ""),
                body_summary=raw.get("bodySummary"),
                body=raw.get("body"),
            )
            for raw in data.get("pages", [])
        ]

        return cls(
            products=products,
            collections=collections,
            pages=pages,
            shop_domain=data.get("shopDomain"),
        )


# ═══════════════════════════════════════════════════════════
# ПРОБЛЕМЫ
# ═══════════════════════════════════════════════════════════

@dataclass
class ResourceRef:
    """Ссылка на ресурс магазина, к которому относится проблема."""
    type: ResourceType
    id: str
    label: str
    handle: str = ""
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "id": self.id,
            "label": self.label,
            "handle": self.handle,
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceRef":
        return cls(
            type=ResourceType(data["type"]),
            id=data["id"],
            label=data["label"],
            handle=data.get("handle", ""),
            url=data.get("url"),
        )


@dataclass
class Issue:
    """Проблема, найденная в ходе аудита. Изменяемо только поле `fixed`."""

    id: str
    type: IssueType
    severity: Severity
    resource: ResourceRef
    message: str
    suggestion: str
    audit_id: Optional[str] = None
    fixed: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Преобразовать в словарь для JSON."""
        return {
            "id": self.id,
            "audit_id": self.audit_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "resource": self.resource.to_dict(),
            "message": self.message,
            "suggestion": self.suggestion,
            "fixed": self.fixed,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        return cls(
            id=data["id"],
            audit_id=data.get("audit_id"),
            type=IssueType(data["type"]),
            severity=Severity(data["severity"]),
            resource=ResourceRef.from_dict(data["resource"]),
            message=data["message"],
            suggestion=data["suggestion"],
            fixed=bool(data.get("fixed", False)),
            details=data.get("details") or {},
        )


@dataclass
class IssueFilters:
    severity: Optional[Severity] = None
    type: Optional[IssueType] = None
    resource_type: Optional[ResourceType] = None
    fixed: Optional[bool] = None
    search: Optional[str] = None

    def matches(self, issue: Issue) -> bool:
        if self.severity is not None and issue.severity != self.severity:
            return False
        if self.type is not None and issue.type != self.type:
            return False
        if self.resource_type is not None and issue.resource.type != self.resource_type:
            return False
        if self.fixed is not None and issue.fixed != self.fixed:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = f"{issue.message} {issue.resource.label}".lower()
            if needle not in haystack:
                return False
        return True


# ═══════════════════════════════════════════════════════════
# РЕЗУЛЬТАТЫ ПРОВЕРОК
# ═══════════════════════════════════════════════════════════

@dataclass
class CheckResult:
    """Результат одной проверки пайплайна."""

    check_name: str
    issue_type: IssueType
    severity: Severity
    issues: List[Issue]
    success: bool = True
    error: Optional[str] = None
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Без самих issues: они хранятся отдельно."""
        return {
            "check_name": self.check_name,
            "issue_type": self.issue_type.value,
            "severity": self.severity.value,
            "issue_count": len(self.issues),
            "success": self.success,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class CheckOutcome:
    """Сохраняемая сводка по проверке (в записи аудита)."""
    check_name: str
    success: bool
    issue_count: int
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "check_name": self.check_name,
            "success": self.success,
            "issue_count": self.issue_count,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckOutcome":
        return cls(
            check_name=data["check_name"],
            success=data["success"],
            issue_count=data["issue_count"],
            error=data.get("error"),
        )


# ═══════════════════════════════════════════════════════════
# БАЛЛ
# ═══════════════════════════════════════════════════════════

@dataclass
class ScoreBreakdown:
    base_score: float
    critical_penalty: int
    high_penalty: int
    sitemap_bonus: int
    metrics_bonus: int
    raw_total: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_score": self.base_score,
            "critical_penalty": self.critical_penalty,
            "high_penalty": self.high_penalty,
            "sitemap_bonus": self.sitemap_bonus,
            "metrics_bonus": self.metrics_bonus,
            "raw_total": self.raw_total,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreBreakdown":
        return cls(**data)


@dataclass
class HealthScore:
    score: int
    status: HealthStatus
    breakdown: ScoreBreakdown

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "status": self.status.value,
            "breakdown": self.breakdown.to_dict(),
        }


# ═══════════════════════════════════════════════════════════
# АУДИТ
# ═══════════════════════════════════════════════════════════

@dataclass
class Audit:
    """Запись аудита. Меняется только через AuditService."""

    id: str
    account_id: str
    status: AuditStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    score: Optional[int] = None
    raw_score: Optional[int] = None
    critical_issues: int = 0
    high_issues: int = 0
    medium_issues: int = 0
    low_issues: int = 0
    total_resources: int = 0
    partial: bool = False
    error: Optional[str] = None
    failed_stage: Optional[str] = None
    checks: List[CheckOutcome] = field(default_factory=list)
    breakdown: Optional[ScoreBreakdown] = None

    @property
    def total_issues(self) -> int:
        return self.critical_issues + self.high_issues + self.medium_issues + self.low_issues

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def activity_since(self) -> datetime:
        """Момент, с которого аудит считается «живым» (для поиска брошенных)."""
        return self.started_at or self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "score": self.score,
            "raw_score": self.raw_score,
            "critical_issues": self.critical_issues,
            "high_issues": self.high_issues,
            "medium_issues": self.medium_issues,
            "low_issues": self.low_issues,
            "total_resources": self.total_resources,
            "partial": self.partial,
            "error": self.error,
            "failed_stage": self.failed_stage,
            "checks": [c.to_dict() for c in self.checks],
            "breakdown": self.breakdown.to_dict() if self.breakdown else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Audit":
        breakdown = data.get("breakdown")
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            status=AuditStatus(data["status"]),
            created_at=_dt(data["created_at"]),
            started_at=_dt(data.get("started_at")),
            completed_at=_dt(data.get("completed_at")),
            score=data.get("score"),
            raw_score=data.get("raw_score"),
            critical_issues=data.get("critical_issues", 0),
            high_issues=data.get("high_issues", 0),
            medium_issues=data.get("medium_issues", 0),
            low_issues=data.get("low_issues", 0),
            total_resources=data.get("total_resources", 0),
            partial=data.get("partial", False),
            error=data.get("error"),
            failed_stage=data.get("failed_stage"),
            checks=[CheckOutcome.from_dict(c) for c in data.get("checks", [])],
            breakdown=ScoreBreakdown.from_dict(breakdown) if breakdown else None,
        )


@dataclass
class AuditHistoryItem:
    id: str
    created_at: datetime
    status: AuditStatus
    score: Optional[int]
    total_issues: int
    partial: bool
    duration_seconds: Optional[float]


@dataclass
class AuditProgress:
    stage: AuditStage
    message: str
    percentage: int


@dataclass
class StartDecision:
    """Ответ CooldownGuard.can_start."""
    allowed: bool
    next_allowed_at: Optional[datetime] = None
    reason: Optional[str] = None


@dataclass
class AuditStarted:
    audit: Audit


@dataclass
class RateLimited:
    """Кулдаун не истёк или аудит уже идёт. Повторить после `next_allowed_at`."""
    account_id: str
    reason: str
    next_allowed_at: Optional[datetime] = None

    @property
    def message(self) -> str:
        if self.next_allowed_at:
            return f"{self.reason}. Try again at {self.next_allowed_at.isoformat()}"
        return self.reason


@dataclass
class QuotaExceeded:
    """Дневной лимит исчерпан. Сбрасывается в полночь UTC."""
    account_id: str
    action: MeteredAction
    used: int
    limit: Optional[int]
    remaining: Optional[int]
    reset_at: datetime

    @property
    def message(self) -> str:
        return (
            f"{self.action.value} limit reached: {self.used} of {self.limit} used today. "
            f"Resets at {self.reset_at.isoformat()}"
        )


StartAuditResult = Union[AuditStarted, RateLimited, QuotaExceeded]


@dataclass
class AuditOutcome:
    """Итог run_audit: аудит в терминальном состоянии и найденные проблемы."""
    audit: Audit
    issues: List[Issue]
    health: Optional[HealthScore] = None

    @property
    def succeeded(self) -> bool:
        return self.audit.status == AuditStatus.COMPLETED


# ═══════════════════════════════════════════════════════════
# КВОТЫ
# ═══════════════════════════════════════════════════════════

@dataclass
class UsageRecord:
    """Счётчики одного аккаунта за один день UTC."""

    account_id: str
    day: str  # YYYY-MM-DD
    counters: Dict[MeteredAction, int] = field(
        default_factory=lambda: {action: 0 for action in MeteredAction}
    )

    def get(self, action: MeteredAction) -> int:
        return self.counters.get(action, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "day": self.day,
            **{action.value: self.get(action) for action in MeteredAction},
        }


@dataclass
class UsageCheck:
    allowed: bool
    used: int
    remaining: Optional[int]  # None = без лимита
    limit: Optional[int]


@dataclass
class ActionUsage:
    used: int
    limit: Optional[int]
    remaining: Optional[int]
    percentage: int


@dataclass
class UsageStatus:
    account_id: str
    day: str
    actions: Dict[MeteredAction, ActionUsage]

    def __getitem__(self, action: MeteredAction) -> ActionUsage:
        return self.actions[action]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "day": self.day,
            "actions": {
                action.value: {
                    "used": usage.used,
                    "limit": usage.limit,
                    "remaining": usage.remaining,
                    "percentage": usage.percentage,
                }
                for action, usage in self.actions.items()
            },
        }


@dataclass
class BatchAllowance:
    """Сколько элементов пакетной операции помещается в остаток квоты."""
    action: MeteredAction
    allowed: bool
    item_count: int
    can_update: int
    used: int
    limit: Optional[int]
    remaining: Optional[int]
    reset_at: datetime

    @property
    def message(self) -> str:
        if self.allowed:
            return f"Can update all {self.item_count} items"
        return f"Can only update {self.can_update} of {self.item_count} items ({self.limit} limit)"


# ═══════════════════════════════════════════════════════════
# АККАУНТ И СОБЫТИЯ
# ═══════════════════════════════════════════════════════════

@dataclass
class Account:
    """Аккаунт (магазин). Владелец данных внешний, здесь только чтение."""
    id: str
    plan_tier: PlanTier = PlanTier.FREE
    shop_domain: Optional[str] = None
    sitemap_generated_at: Optional[datetime] = None
    metrics_connected: bool = False

    @property
    def sitemap_present(self) -> bool:
        return self.sitemap_generated_at is not None


@dataclass
class ActivityEvent:
    account_id: str
    audit_id: str
    status: AuditStatus
    description: str
    score: Optional[int] = None
    total_issues: int = 0
    partial: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "audit_id": self.audit_id,
            "status": self.status.value,
            "description": self.description,
            "score": self.score,
            "total_issues": self.total_issues,
            "partial": self.partial,
            "timestamp": self.timestamp.isoformat(),
        }
