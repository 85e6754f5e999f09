"""Data models for the audit pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
import json

from seo_audit.exceptions import ValidationError

DEFAULT_MAX_SCORE = 100


class AnalysisType(str, Enum):
    """Kinds of audit a caller can request."""
    COMPLETE_SEO_AUDIT = "complete-seo-audit"
    CONTENT_ANALYSIS = "content-analysis"
    TECHNICAL_SEO = "technical-seo"
    COMPETITOR_ANALYSIS = "competitor-analysis"
    LOCAL_SEO = "local-seo"
    CUSTOM = "custom"


class JobStatus(str, Enum):
    """Lifecycle states of an analysis job."""
    QUEUED = "queued"
    RUNNING = "running"
    PARTIAL_FAILURE = "partial_failure"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    JobStatus.PARTIAL_FAILURE,
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})

# Allowed state machine edges
JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.PARTIAL_FAILURE,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
}


class CategoryStatus(str, Enum):
    """Outcome of a single category evaluation."""
    OK = "ok"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class Severity(str, Enum):
    """Issue severity levels."""
    CRITICAL = "critical"
    WARNING = "warning"
    SUGGESTION = "suggestion"


@dataclass
class Issue:
    """A single finding reported for a category."""

    severity: Severity
    message: str
    location_hint: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "message": self.message,
            "location_hint": self.location_hint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Issue":
        return cls(
            severity=Severity(data["severity"]),
            message=data["message"],
            location_hint=data.get("location_hint"),
        )


@dataclass
class CategoryResult:
    """Score and findings for one category of one job.

    Results that are not ``ok`` carry a score of 0 and an ``error``
    explaining the outcome.
    """

    category: str
    score: float
    max_score: float = DEFAULT_MAX_SCORE
    issues: list[Issue] = field(default_factory=list)
    status: CategoryStatus = CategoryStatus.OK
    error: Optional[str] = None
    attempts: int = 0
    prompt_id: Optional[str] = None

    def __post_init__(self):
        if self.max_score <= 0:
            raise ValidationError(
                f"max_score must be positive for category {self.category!r}"
            )
        if not 0 <= self.score <= self.max_score:
            raise ValidationError(
                f"score {self.score} outside [0, {self.max_score}] "
                f"for category {self.category!r}"
            )

    @property
    def is_ok(self) -> bool:
        return self.status == CategoryStatus.OK

    @classmethod
    def failed(
        cls,
        category: str,
        error: str,
        attempts: int = 0,
        prompt_id: Optional[str] = None,
    ) -> "CategoryResult":
        return cls(
            category=category,
            score=0,
            status=CategoryStatus.FAILED,
            error=error,
            attempts=attempts,
            prompt_id=prompt_id,
        )

    @classmethod
    def timed_out(
        cls,
        category: str,
        error: str,
        prompt_id: Optional[str] = None,
    ) -> "CategoryResult":
        return cls(
            category=category,
            score=0,
            status=CategoryStatus.TIMED_OUT,
            error=error,
            prompt_id=prompt_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "score": self.score,
            "max_score": self.max_score,
            "issues": [issue.to_dict() for issue in self.issues],
            "status": self.status.value,
            "error": self.error,
            "attempts": self.attempts,
            "prompt_id": self.prompt_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CategoryResult":
        return cls(
            category=data["category"],
            score=data["score"],
            max_score=data.get("max_score", DEFAULT_MAX_SCORE),
            issues=[Issue.from_dict(i) for i in data.get("issues", [])],
            status=CategoryStatus(data.get("status", CategoryStatus.OK.value)),
            error=data.get("error"),
            attempts=data.get("attempts", 0),
            prompt_id=data.get("prompt_id"),
        )


@dataclass(frozen=True)
class PromptTemplate:
    """A stored analysis prompt tagged with the category it scores."""

    id: str
    name: str
    category: str
    body: str
    is_default: bool = False
    description: str = ""
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "body": self.body,
            "is_default": self.is_default,
            "description": self.description,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PromptTemplate":
        return cls(
            id=data["id"],
            name=data["name"],
            category=data["category"],
            body=data["body"],
            is_default=data.get("is_default", False),
            description=data.get("description", ""),
            is_active=data.get("is_active", True),
        )


@dataclass(frozen=True)
class CategoryPrompt:
    """Template id and body captured for one category when a job is accepted."""

    category: str
    template_id: str
    template_name: str
    body: str

    @classmethod
    def from_template(cls, template: PromptTemplate) -> "CategoryPrompt":
        return cls(
            category=template.category,
            template_id=template.id,
            template_name=template.name,
            body=template.body,
        )


@dataclass(frozen=True)
class PageSnapshot:
    """Structured page features extracted once per job.

    Frozen and built from tuples so that concurrent category evaluations
    can share one instance.
    """

    url: str
    final_url: str
    status_code: int
    title: str = ""
    meta_description: str = ""
    canonical_url: Optional[str] = None
    lang: Optional[str] = None
    robots: Optional[str] = None
    viewport: Optional[str] = None
    headings: tuple[tuple[int, str], ...] = ()
    internal_links: int = 0
    external_links: int = 0
    total_images: int = 0
    images_with_alt: int = 0
    word_count: int = 0
    open_graph: tuple[tuple[str, str], ...] = ()
    json_ld_count: int = 0
    load_time_ms: float = 0.0
    dom_content_loaded_ms: Optional[float] = None

    @property
    def h1_count(self) -> int:
        return sum(1 for level, _ in self.headings if level == 1)

    @property
    def alt_coverage(self) -> float:
        """Share of images with non-empty alt text (1.0 when there are none)."""
        if self.total_images == 0:
            return 1.0
        return self.images_with_alt / self.total_images

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "final_url": self.final_url,
            "status_code": self.status_code,
            "title": self.title,
            "title_length": len(self.title),
            "meta_description": self.meta_description,
            "meta_description_length": len(self.meta_description),
            "canonical_url": self.canonical_url,
            "lang": self.lang,
            "robots": self.robots,
            "viewport": self.viewport,
            "h1_count": self.h1_count,
            "headings": [{"level": level, "text": text} for level, text in self.headings],
            "internal_links": self.internal_links,
            "external_links": self.external_links,
            "total_images": self.total_images,
            "images_with_alt": self.images_with_alt,
            "alt_coverage": round(self.alt_coverage, 3),
            "word_count": self.word_count,
            "open_graph": dict(self.open_graph),
            "json_ld_count": self.json_ld_count,
            "load_time_ms": round(self.load_time_ms, 1),
            "dom_content_loaded_ms": (
                round(self.dom_content_loaded_ms, 1)
                if self.dom_content_loaded_ms is not None else None
            ),
        }

    def to_payload(self, max_chars: int) -> str:
        """Serialize for the LLM, dropping trailing headings to fit ``max_chars``."""
        data = self.to_dict()
        payload = json.dumps(data, sort_keys=True, ensure_ascii=False)
        while len(payload) > max_chars and data["headings"]:
            data["headings"] = data["headings"][:-1]
            data["headings_truncated"] = True
            payload = json.dumps(data, sort_keys=True, ensure_ascii=False)
        if len(payload) > max_chars:
            # Headings alone were not enough; fall back to a hard cut.
            payload = payload[:max_chars]
        return payload


@dataclass
class ScoreBreakdown:
    """Per-category view handed to the display layer.

    ``color`` is derived from the score ratio and is ``None`` for
    categories that did not produce a score.
    """

    category: str
    score: float
    max_score: float
    issues: list[Issue]
    color: Optional[str]
    status: CategoryStatus = CategoryStatus.OK
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "score": self.score,
            "max_score": self.max_score,
            "issues": [issue.to_dict() for issue in self.issues],
            "color": self.color,
            "status": self.status.value,
            "error": self.error,
        }


@dataclass
class AggregateResult:
    """Output of the score aggregator."""
    overall_score: Optional[float]
    breakdown: list[ScoreBreakdown]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "breakdown": [b.to_dict() for b in self.breakdown],
        }


class Priority(str, Enum):
    """Urgency of a fix in the priority list or a recommendation."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class SeoCheck:
    """Result of one rule-based check on the page snapshot (score 0-100)."""

    area: str
    score: int
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    measured: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "area": self.area,
            "score": self.score,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "measured": dict(self.measured),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SeoCheck":
        return cls(
            area=data["area"],
            score=data["score"],
            issues=list(data.get("issues", [])),
            recommendations=list(data.get("recommendations", [])),
            measured=dict(data.get("measured", {})),
        )


@dataclass
class PriorityItem:
    """A weak check area, ranked for fixing."""

    area: str
    priority: Priority
    score: int
    impact: str
    effort: str
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "area": self.area,
            "priority": self.priority.value,
            "score": self.score,
            "impact": self.impact,
            "effort": self.effort,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriorityItem":
        return cls(
            area=data["area"],
            priority=Priority(data["priority"]),
            score=data["score"],
            impact=data["impact"],
            effort=data["effort"],
            issues=list(data.get("issues", [])),
            recommendations=list(data.get("recommendations", [])),
        )


@dataclass
class SeoValidation:
    """Rule-based checks for one page and the fix list derived from them."""

    checks: list[SeoCheck]
    overall_score: int
    priorities: list[PriorityItem] = field(default_factory=list)

    def check_for(self, area: str) -> Optional[SeoCheck]:
        for check in self.checks:
            if check.area == area:
                return check
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "checks": [c.to_dict() for c in self.checks],
            "overall_score": self.overall_score,
            "priorities": [p.to_dict() for p in self.priorities],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SeoValidation":
        return cls(
            checks=[SeoCheck.from_dict(c) for c in data.get("checks", [])],
            overall_score=data["overall_score"],
            priorities=[PriorityItem.from_dict(p) for p in data.get("priorities", [])],
        )


@dataclass
class Recommendation:
    """One AI-written recommendation for the audited page."""

    title: str
    priority: Priority = Priority.MEDIUM
    category: str = ""
    why: str = ""
    effort: str = "medium"
    impact: str = "medium"

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "priority": self.priority.value,
            "category": self.category,
            "why": self.why,
            "effort": self.effort,
            "impact": self.impact,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recommendation":
        return cls(
            title=data["title"],
            priority=Priority(data.get("priority", Priority.MEDIUM.value)),
            category=data.get("category", ""),
            why=data.get("why", ""),
            effort=data.get("effort", "medium"),
            impact=data.get("impact", "medium"),
        )


@dataclass
class AnalysisJob:
    """One end-to-end audit request and its results."""

    id: str
    url: str
    analysis_type: AnalysisType
    expected_categories: list[str]
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    categories: list[CategoryResult] = field(default_factory=list)
    overall_score: Optional[float] = None
    custom_prompt_id: Optional[str] = None
    error: Optional[str] = None
    error_reason: Optional[str] = None
    validation: Optional[SeoValidation] = None
    summary: Optional[str] = None
    recommendations: list[Recommendation] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress(self) -> int:
        """Rough completion percentage for polling clients."""
        if self.is_terminal:
            return 100
        if self.status == JobStatus.QUEUED:
            return 10
        if not self.expected_categories:
            return 50
        resolved = len(self.categories)
        return 50 + int(40 * resolved / len(self.expected_categories))

    def transition(self, new_status: JobStatus) -> None:
        """Move to ``new_status``, enforcing the job state machine."""
        allowed = JOB_TRANSITIONS.get(self.status, frozenset())
        if new_status not in allowed:
            raise ValueError(
                f"Illegal job transition {self.status.value} -> {new_status.value} "
                f"for job {self.id}"
            )
        self.status = new_status
        self.updated_at = datetime.now()

    def result_for(self, category: str) -> Optional[CategoryResult]:
        for result in self.categories:
            if result.category == category:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "analysis_type": self.analysis_type.value,
            "expected_categories": list(self.expected_categories),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "categories": [c.to_dict() for c in self.categories],
            "overall_score": self.overall_score,
            "custom_prompt_id": self.custom_prompt_id,
            "error": self.error,
            "error_reason": self.error_reason,
            "validation": self.validation.to_dict() if self.validation else None,
            "summary": self.summary,
            "recommendations": [r.to_dict() for r in self.recommendations],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisJob":
        return cls(
            id=data["id"],
            url=data["url"],
            analysis_type=AnalysisType(data["analysis_type"]),
            expected_categories=list(data.get("expected_categories", [])),
            status=JobStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            categories=[CategoryResult.from_dict(c) for c in data.get("categories", [])],
            overall_score=data.get("overall_score"),
            custom_prompt_id=data.get("custom_prompt_id"),
            error=data.get("error"),
            error_reason=data.get("error_reason"),
            validation=(
                SeoValidation.from_dict(data["validation"]) if data.get("validation") else None
            ),
            summary=data.get("summary"),
            recommendations=[
                Recommendation.from_dict(r) for r in data.get("recommendations") or []
            ],
        )
