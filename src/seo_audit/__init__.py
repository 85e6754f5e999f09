"""SEO audit pipeline: browser extraction, LLM category scoring and aggregation."""

__version__ = "0.1.0"

from seo_audit.aggregator import aggregate, score_color
from seo_audit.browser_config import BrowserConfig
from seo_audit.config import PipelineConfig, RetryPolicy
from seo_audit.database import AbstractJobStore, SqliteJobStore, get_job_store
from seo_audit.exceptions import (
    AuditError,
    BrowserLaunchError,
    ConfigurationError,
    ExtractionError,
    ExtractionReason,
    JobNotFoundError,
    PersistenceError,
    TransientLLMError,
    ValidationError,
    WorkerAcquireTimeout,
)
from seo_audit.extractor import FeatureExtractor, build_snapshot
from seo_audit.infrastructure import BrowserPool, WorkerHandle
from seo_audit.llm import ScoringClient, create_provider
from seo_audit.models import (
    AggregateResult,
    AnalysisJob,
    AnalysisType,
    CategoryPrompt,
    CategoryResult,
    CategoryStatus,
    Issue,
    JobStatus,
    PageSnapshot,
    Priority,
    PriorityItem,
    PromptTemplate,
    Recommendation,
    ScoreBreakdown,
    SeoCheck,
    SeoValidation,
    Severity,
)
from seo_audit.orchestrator import JobOrchestrator, SubmitOptions
from seo_audit.prompts import PromptCatalog
from seo_audit.seo_checks import priority_matrix, validate_snapshot

__all__ = [
    # Pipeline
    "JobOrchestrator",
    "SubmitOptions",
    "BrowserPool",
    "WorkerHandle",
    "FeatureExtractor",
    "build_snapshot",
    "PromptCatalog",
    "ScoringClient",
    "create_provider",
    "aggregate",
    "score_color",
    "validate_snapshot",
    "priority_matrix",
    "AbstractJobStore",
    "SqliteJobStore",
    "get_job_store",
    # Configuration
    "PipelineConfig",
    "RetryPolicy",
    "BrowserConfig",
    # Models
    "AggregateResult",
    "AnalysisJob",
    "AnalysisType",
    "CategoryPrompt",
    "CategoryResult",
    "CategoryStatus",
    "Issue",
    "JobStatus",
    "PageSnapshot",
    "Priority",
    "PriorityItem",
    "PromptTemplate",
    "Recommendation",
    "ScoreBreakdown",
    "SeoCheck",
    "SeoValidation",
    "Severity",
    # Errors
    "AuditError",
    "BrowserLaunchError",
    "ConfigurationError",
    "ExtractionError",
    "ExtractionReason",
    "JobNotFoundError",
    "PersistenceError",
    "TransientLLMError",
    "ValidationError",
    "WorkerAcquireTimeout",
]
