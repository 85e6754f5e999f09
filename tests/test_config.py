"""Tests for pipeline configuration."""

import pytest

from seo_audit.config import PipelineConfig, RetryPolicy
from seo_audit.exceptions import ConfigurationError

ENV_VARS = (
    "DATABASE_URL", "LLM_API_KEY", "LLM_PROVIDER", "LLM_MODEL", "LLM_MAX_TOKENS",
    "LLM_MAX_CONTEXT_CHARS", "LLM_MAX_REPLY_CHARS", "LLM_MAX_ATTEMPTS",
    "LLM_RETRY_BASE_DELAY", "LLM_RETRY_MULTIPLIER", "LLM_RETRY_MAX_DELAY",
    "LLM_RETRY_JITTER", "BROWSER_POOL_SIZE", "SCORING_CONCURRENCY",
    "BROWSER_HEADLESS", "BROWSER_NO_SANDBOX", "USER_AGENT",
    "WORKER_ACQUIRE_TIMEOUT", "NAVIGATION_TIMEOUT", "CATEGORY_TIMEOUT",
    "JOB_TIMEOUT", "PERSIST_TIMEOUT", "PERSIST_MAX_ATTEMPTS", "LOG_LEVEL", "LOG_FILE",
    "LLM_REQUEST_TIMEOUT", "LLM_SUMMARY",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestPipelineConfig:
    """Test cases for PipelineConfig."""

    def test_defaults(self, clean_env):
        config = PipelineConfig.from_env()

        assert config.database_url is None
        assert config.llm_provider == "anthropic"
        assert config.browser_pool_size == 2
        assert config.scoring_concurrency == 4
        assert config.job_timeout == 300.0
        assert config.browser_no_sandbox is False
        assert config.llm_retry == RetryPolicy()
        assert config.llm_request_timeout is None
        assert config.llm_summary is True

    def test_from_env(self, clean_env):
        clean_env.setenv("DATABASE_URL", "sqlite:///audit.db")
        clean_env.setenv("LLM_API_KEY", "sk-test")
        clean_env.setenv("LLM_PROVIDER", "OpenAI")
        clean_env.setenv("BROWSER_POOL_SIZE", "5")
        clean_env.setenv("SCORING_CONCURRENCY", "8")
        clean_env.setenv("BROWSER_NO_SANDBOX", "true")
        clean_env.setenv("LLM_MAX_ATTEMPTS", "5")
        clean_env.setenv("CATEGORY_TIMEOUT", "45.5")

        config = PipelineConfig.from_env().validate()

        assert config.database_url == "sqlite:///audit.db"
        assert config.llm_provider == "openai"
        assert config.browser_pool_size == 5
        assert config.scoring_concurrency == 8
        assert config.browser_no_sandbox is True
        assert config.llm_retry.max_attempts == 5
        assert config.category_timeout == 45.5

    def test_unparseable_number(self, clean_env):
        clean_env.setenv("BROWSER_POOL_SIZE", "two")
        with pytest.raises(ConfigurationError, match="BROWSER_POOL_SIZE"):
            PipelineConfig.from_env()

    def test_missing_database_url(self):
        with pytest.raises(ConfigurationError, match="DATABASE_URL"):
            PipelineConfig(llm_api_key="k").validate()

    def test_missing_api_key(self):
        with pytest.raises(ConfigurationError, match="LLM_API_KEY"):
            PipelineConfig(database_url="sqlite:///a.db").validate()

    def test_unsupported_provider(self):
        config = PipelineConfig(database_url="sqlite:///a.db", llm_api_key="k", llm_provider="bard")
        with pytest.raises(ConfigurationError, match="LLM_PROVIDER"):
            config.validate()

    @pytest.mark.parametrize("field,value,name", [
        ("browser_pool_size", 0, "BROWSER_POOL_SIZE"),
        ("scoring_concurrency", -1, "SCORING_CONCURRENCY"),
        ("job_timeout", 0, "JOB_TIMEOUT"),
        ("persist_max_attempts", 0, "PERSIST_MAX_ATTEMPTS"),
    ])
    def test_non_positive_values(self, field, value, name):
        config = PipelineConfig(database_url="sqlite:///a.db", llm_api_key="k", **{field: value})
        with pytest.raises(ConfigurationError, match=name):
            config.validate()

    def test_invalid_retry_policy(self):
        config = PipelineConfig(
            database_url="sqlite:///a.db",
            llm_api_key="k",
            llm_retry=RetryPolicy(multiplier=0.5),
        )
        with pytest.raises(ConfigurationError, match="MULTIPLIER"):
            config.validate()

    def test_validate_returns_self(self):
        config = PipelineConfig(database_url="sqlite:///a.db", llm_api_key="k")
        assert config.validate() is config

    def test_request_timeout_derived_from_category_timeout(self):
        config = PipelineConfig(category_timeout=90.0)
        # 4s of worst-case backoff, the rest split over 3 attempts plus a spare call
        assert config.request_timeout == 21.5

    def test_request_timeout_from_env(self, clean_env):
        clean_env.setenv("DATABASE_URL", "sqlite:///audit.db")
        clean_env.setenv("LLM_API_KEY", "sk-test")
        clean_env.setenv("LLM_REQUEST_TIMEOUT", "20")
        clean_env.setenv("LLM_SUMMARY", "off")

        config = PipelineConfig.from_env().validate()

        assert config.request_timeout == 20.0
        assert config.llm_summary is False

    def test_retry_sequence_must_fit_category_timeout(self):
        config = PipelineConfig(
            database_url="sqlite:///a.db",
            llm_api_key="k",
            category_timeout=60.0,
            llm_request_timeout=30.0,
        )
        with pytest.raises(ConfigurationError, match="CATEGORY_TIMEOUT"):
            config.validate()

    def test_backoff_longer_than_category_timeout(self):
        config = PipelineConfig(database_url="sqlite:///a.db", llm_api_key="k", category_timeout=3.0)
        with pytest.raises(ConfigurationError, match="retry sequence"):
            config.validate()

    def test_non_positive_request_timeout(self):
        config = PipelineConfig(database_url="sqlite:///a.db", llm_api_key="k", llm_request_timeout=0)
        with pytest.raises(ConfigurationError, match="LLM_REQUEST_TIMEOUT"):
            config.validate()
