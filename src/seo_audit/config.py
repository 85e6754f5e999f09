from dotenv import load_dotenv
from dataclasses import dataclass, field
from typing import Optional
import os

from seo_audit.exceptions import ConfigurationError

load_dotenv()  # Loads variables from .env file

SUPPORTED_PROVIDERS = ("anthropic", "openai")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    return _env_float(name, 0.0)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RetryPolicy:
    """Exponential backoff policy for transient failures."""
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.5

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based), without jitter."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    def backoff_budget(self) -> float:
        """Longest total sleep between the attempts of one retry sequence."""
        return sum(self.delay_for(a) + self.jitter for a in range(1, self.max_attempts))


@dataclass
class PipelineConfig:
    """Configuration for the analysis pipeline."""
    database_url: Optional[str] = None
    llm_api_key: Optional[str] = None
    llm_provider: str = "anthropic"
    llm_model: str = "claude-3-haiku-20240307"
    llm_max_tokens: int = 1024
    llm_max_context_chars: int = 12000
    llm_max_reply_chars: int = 20000
    llm_retry: RetryPolicy = field(default_factory=RetryPolicy)
    # None derives the per-call timeout from category_timeout
    llm_request_timeout: Optional[float] = None

    browser_pool_size: int = 2
    scoring_concurrency: int = 4
    browser_headless: bool = True
    browser_no_sandbox: bool = False
    user_agent: str = "SEO-Audit-Bot/1.0"

    # Stage timeouts (seconds)
    worker_acquire_timeout: float = 30.0
    navigation_timeout: float = 30.0
    category_timeout: float = 90.0
    job_timeout: float = 300.0
    persist_timeout: float = 10.0
    persist_max_attempts: int = 3

    # AI-written summary and recommendations after scoring
    llm_summary: bool = True

    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Load configuration from environment variables.

        Returns:
            PipelineConfig with values from environment

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            llm_api_key=os.getenv("LLM_API_KEY"),
            llm_provider=os.getenv("LLM_PROVIDER", "anthropic").lower(),
            llm_model=os.getenv("LLM_MODEL", "claude-3-haiku-20240307"),
            llm_max_tokens=_env_int("LLM_MAX_TOKENS", 1024),
            llm_max_context_chars=_env_int("LLM_MAX_CONTEXT_CHARS", 12000),
            llm_max_reply_chars=_env_int("LLM_MAX_REPLY_CHARS", 20000),
            llm_retry=RetryPolicy(
                max_attempts=_env_int("LLM_MAX_ATTEMPTS", 3),
                base_delay=_env_float("LLM_RETRY_BASE_DELAY", 1.0),
                multiplier=_env_float("LLM_RETRY_MULTIPLIER", 2.0),
                max_delay=_env_float("LLM_RETRY_MAX_DELAY", 30.0),
                jitter=_env_float("LLM_RETRY_JITTER", 0.5),
            ),
            llm_request_timeout=_env_optional_float("LLM_REQUEST_TIMEOUT"),
            browser_pool_size=_env_int("BROWSER_POOL_SIZE", 2),
            scoring_concurrency=_env_int("SCORING_CONCURRENCY", 4),
            browser_headless=_env_bool("BROWSER_HEADLESS", True),
            browser_no_sandbox=_env_bool("BROWSER_NO_SANDBOX", False),
            user_agent=os.getenv("USER_AGENT", "SEO-Audit-Bot/1.0"),
            worker_acquire_timeout=_env_float("WORKER_ACQUIRE_TIMEOUT", 30.0),
            navigation_timeout=_env_float("NAVIGATION_TIMEOUT", 30.0),
            category_timeout=_env_float("CATEGORY_TIMEOUT", 90.0),
            job_timeout=_env_float("JOB_TIMEOUT", 300.0),
            persist_timeout=_env_float("PERSIST_TIMEOUT", 10.0),
            persist_max_attempts=_env_int("PERSIST_MAX_ATTEMPTS", 3),
            llm_summary=_env_bool("LLM_SUMMARY", True),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE") or None,
        )

    @property
    def request_timeout(self) -> float:
        """Seconds allowed for a single LLM call.

        Unless LLM_REQUEST_TIMEOUT is set, the category budget left after
        the worst-case backoff sleeps is split into ``max_attempts + 1``
        calls, which leaves room for the first call of a corrective retry.
        """
        if self.llm_request_timeout is not None:
            return self.llm_request_timeout
        budget = self.category_timeout - self.llm_retry.backoff_budget()
        if budget <= 0:
            # validate() rejects this combination
            budget = self.category_timeout
        return budget / (self.llm_retry.max_attempts + 1)

    def validate(self) -> "PipelineConfig":
        """Fail fast on missing credentials or out-of-range values.

        Raises:
            ConfigurationError: On the first problem found
        """
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL is required")
        if not self.llm_api_key:
            raise ConfigurationError("LLM_API_KEY is required")
        if self.llm_provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                f"Unsupported LLM_PROVIDER {self.llm_provider!r}; "
                f"expected one of {', '.join(SUPPORTED_PROVIDERS)}"
            )

        positive = {
            "LLM_MAX_TOKENS": self.llm_max_tokens,
            "LLM_MAX_CONTEXT_CHARS": self.llm_max_context_chars,
            "LLM_MAX_REPLY_CHARS": self.llm_max_reply_chars,
            "LLM_MAX_ATTEMPTS": self.llm_retry.max_attempts,
            "BROWSER_POOL_SIZE": self.browser_pool_size,
            "SCORING_CONCURRENCY": self.scoring_concurrency,
            "WORKER_ACQUIRE_TIMEOUT": self.worker_acquire_timeout,
            "NAVIGATION_TIMEOUT": self.navigation_timeout,
            "CATEGORY_TIMEOUT": self.category_timeout,
            "JOB_TIMEOUT": self.job_timeout,
            "PERSIST_TIMEOUT": self.persist_timeout,
            "PERSIST_MAX_ATTEMPTS": self.persist_max_attempts,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")

        non_negative = {
            "LLM_RETRY_BASE_DELAY": self.llm_retry.base_delay,
            "LLM_RETRY_MAX_DELAY": self.llm_retry.max_delay,
            "LLM_RETRY_JITTER": self.llm_retry.jitter,
        }
        for name, value in non_negative.items():
            if value < 0:
                raise ConfigurationError(f"{name} must not be negative, got {value}")
        if self.llm_retry.multiplier < 1:
            raise ConfigurationError("LLM_RETRY_MULTIPLIER must be at least 1")

        if self.llm_request_timeout is not None and self.llm_request_timeout <= 0:
            raise ConfigurationError(
                f"LLM_REQUEST_TIMEOUT must be positive, got {self.llm_request_timeout}"
            )
        worst_case = (
            self.llm_retry.max_attempts * self.request_timeout
            + self.llm_retry.backoff_budget()
        )
        if worst_case > self.category_timeout:
            raise ConfigurationError(
                f"CATEGORY_TIMEOUT ({self.category_timeout}s) is shorter than one full "
                f"LLM retry sequence ({worst_case:.1f}s for {self.llm_retry.max_attempts} "
                f"attempts of {self.request_timeout:.1f}s plus backoff); raise "
                "CATEGORY_TIMEOUT or lower LLM_REQUEST_TIMEOUT, LLM_MAX_ATTEMPTS "
                "or the retry delays"
            )

        return self
