"""LLM client: per-category SEO scoring plus audit summaries and recommendations."""

from typing import Any, Literal, Optional, Union
import asyncio
import json
import logging
import math
import random
import re

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as SchemaError

from seo_audit.config import PipelineConfig, RetryPolicy
from seo_audit.exceptions import TransientLLMError, ValidationError
from seo_audit.models import (
    CategoryPrompt,
    CategoryResult,
    Issue,
    PageSnapshot,
    Priority,
    Recommendation,
    SeoValidation,
    Severity,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert SEO analyst reviewing a web page audit. "
    "Answer exactly in the response format you are given."
)

REPLY_INSTRUCTIONS = """Respond with ONE JSON object and no other text, using exactly this shape:
{"score": <number between 0 and max_score>,
 "max_score": 100,
 "issues": [{"severity": "critical" | "warning" | "suggestion",
             "message": "<what is wrong and how to fix it, citing measured values>",
             "location": "<optional element or section>"}]}
Return an empty issues list if nothing needs fixing."""

CORRECTIVE_INSTRUCTIONS = (
    "Your previous reply could not be used: {error}\n"
    "Reply again with only the JSON object described above. "
    "Do not add explanations or markdown."
)

SUMMARY_INSTRUCTIONS = """Write a short executive summary of the SEO audit below for a site owner who is new to SEO.
Use plain language and explain why each action helps. Structure it as:
YOUR SEO SITUATION: one or two sentences on the page's overall SEO health.
QUICK WINS: up to three small tasks that take minutes.
IMPORTANT FIXES: up to three fixes for this week and their impact.
Base it only on the audit results given."""

RECOMMENDATIONS_INSTRUCTIONS = """Based only on the SEO audit results below, give 3 to 8 prioritized recommendations.
Respond with ONE JSON array and no other text. Each element has this shape:
{"title": "<what to do>",
 "priority": "high" | "medium" | "low",
 "category": "<audit category it belongs to>",
 "why": "<why it helps, in plain language>",
 "effort": "low" | "medium" | "high",
 "impact": "high" | "medium" | "low"}"""

MAX_RECOMMENDATIONS = 10

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

Number = Union[StrictInt, StrictFloat]


class IssueReply(BaseModel):
    """One issue as the model reports it."""
    model_config = ConfigDict(extra="forbid")

    severity: Literal["critical", "warning", "suggestion"] = "warning"
    message: str = Field(min_length=1)
    location: Optional[str] = None


class ScoreReply(BaseModel):
    """Schema every scoring reply must satisfy."""
    model_config = ConfigDict(extra="forbid")

    score: Number
    max_score: Number
    issues: list[IssueReply]

    @field_validator("issues", mode="before")
    @classmethod
    def _promote_plain_strings(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [
            {"message": item} if isinstance(item, str) else item
            for item in value
        ]

    @model_validator(mode="after")
    def _check_range(self) -> "ScoreReply":
        if not (math.isfinite(self.score) and math.isfinite(self.max_score)):
            raise ValueError("score and max_score must be finite numbers")
        if self.max_score <= 0:
            raise ValueError(f"max_score must be positive, got {self.max_score}")
        if not 0 <= self.score <= self.max_score:
            raise ValueError(f"score {self.score} outside [0, {self.max_score}]")
        return self


def _strip_fence(text: str) -> str:
    body = text.strip()
    fenced = _FENCE_RE.match(body)
    return fenced.group(1) if fenced else body


def parse_reply(text: str, max_chars: int) -> ScoreReply:
    """Validate a raw model reply against the reply grammar.

    Args:
        text: Raw reply text
        max_chars: Replies longer than this are rejected

    Returns:
        Validated ScoreReply

    Raises:
        ValidationError: If the reply does not satisfy the grammar
    """
    if text is None or not text.strip():
        raise ValidationError("Reply was empty")
    if len(text) > max_chars:
        raise ValidationError(f"Reply is {len(text)} characters, limit is {max_chars}")

    try:
        data = json.loads(_strip_fence(text))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Reply is not valid JSON: {e.msg}")
    if not isinstance(data, dict):
        raise ValidationError("Reply must be a JSON object")

    try:
        return ScoreReply.model_validate(data)
    except SchemaError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'reply'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Reply failed schema validation: {details}")


class RecommendationReply(BaseModel):
    """One recommendation as the model reports it. Unknown keys are dropped."""
    title: str = Field(min_length=1)
    priority: Literal["critical", "high", "medium", "low"] = "medium"
    category: str = ""
    why: str = ""
    effort: Literal["low", "medium", "high"] = "medium"
    impact: Literal["low", "medium", "high"] = "medium"


_RECOMMENDATIONS = TypeAdapter(list[RecommendationReply])


def parse_recommendations(text: str) -> list[Recommendation]:
    """Parse a recommendations reply (a JSON array).

    Raises:
        ValidationError: If the reply is not a valid recommendations array
    """
    try:
        data = json.loads(_strip_fence(text or ""))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Recommendations reply is not valid JSON: {e.msg}")
    try:
        items = _RECOMMENDATIONS.validate_python(data)
    except SchemaError as e:
        raise ValidationError(f"Recommendations reply failed schema validation: {e.error_count()} errors")
    return [
        Recommendation(
            title=item.title,
            priority=Priority(item.priority),
            category=item.category,
            why=item.why,
            effort=item.effort,
            impact=item.impact,
        )
        for item in items[:MAX_RECOMMENDATIONS]
    ]


class LLMProvider:
    """Base class for chat-completion providers."""

    name = "base"

    def __init__(self, model: str):
        self.model = model

    async def complete(self, messages: list[dict[str, str]], max_tokens: int) -> str:
        raise NotImplementedError

    def is_transient(self, error: BaseException) -> bool:
        """Whether ``error`` is worth retrying (timeouts, connection, 429, 5xx)."""
        if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
            return True
        status = getattr(error, "status_code", None)
        return isinstance(status, int) and (status in (408, 429) or status >= 500)


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API."""

    name = "anthropic"

    def __init__(self, api_key: str, model: str):
        super().__init__(model)
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic package not installed. Install with: pip install anthropic"
            )
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._transient = (
            anthropic.APIConnectionError,
            anthropic.RateLimitError,
            anthropic.InternalServerError,
        )

    async def complete(self, messages: list[dict[str, str]], max_tokens: int) -> str:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=SYSTEM_PROMPT,
            messages=messages,
            temperature=0.2,
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

    def is_transient(self, error: BaseException) -> bool:
        return isinstance(error, self._transient) or super().is_transient(error)


class OpenAIProvider(LLMProvider):
    """OpenAI Chat Completions API."""

    name = "openai"

    def __init__(self, api_key: str, model: str):
        super().__init__(model)
        try:
            import openai
        except ImportError:
            raise ImportError(
                "openai package not installed. Install with: pip install openai"
            )
        self._client = openai.AsyncOpenAI(api_key=api_key)
        self._transient = (
            openai.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
        )

    async def complete(self, messages: list[dict[str, str]], max_tokens: int) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "system", "content": SYSTEM_PROMPT}, *messages],
            temperature=0.2,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content or ""

    def is_transient(self, error: BaseException) -> bool:
        return isinstance(error, self._transient) or super().is_transient(error)


def create_provider(config: PipelineConfig) -> LLMProvider:
    """Build the provider named in the configuration."""
    if config.llm_provider == "anthropic":
        return AnthropicProvider(api_key=config.llm_api_key, model=config.llm_model)
    if config.llm_provider == "openai":
        return OpenAIProvider(api_key=config.llm_api_key, model=config.llm_model)
    raise ValueError(f"Unsupported provider: {config.llm_provider}")


class ScoringClient:
    """Scores one category prompt against a page snapshot.

    Transport failures are retried with exponential backoff and jitter.
    A reply that fails validation gets one corrective retry. Either kind
    of exhausted budget yields a failed CategoryResult rather than an
    exception, so sibling categories are unaffected.
    """

    def __init__(
        self,
        provider: LLMProvider,
        retry_policy: Optional[RetryPolicy] = None,
        max_tokens: int = 1024,
        max_context_chars: int = 12000,
        max_reply_chars: int = 20000,
        request_timeout: Optional[float] = 60.0,
    ):
        """Initialize the scoring client.

        Args:
            provider: LLM provider to call
            retry_policy: Backoff policy for transient failures
            max_tokens: Maximum output tokens per call
            max_context_chars: Bound on the serialized snapshot
            max_reply_chars: Replies longer than this are invalid
            request_timeout: Seconds before a single call counts as a transient timeout
        """
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_tokens = max_tokens
        self.max_context_chars = max_context_chars
        self.max_reply_chars = max_reply_chars
        self.request_timeout = request_timeout

    @classmethod
    def from_config(cls, config: PipelineConfig, provider: Optional[LLMProvider] = None) -> "ScoringClient":
        return cls(
            provider=provider or create_provider(config),
            retry_policy=config.llm_retry,
            max_tokens=config.llm_max_tokens,
            max_context_chars=config.llm_max_context_chars,
            max_reply_chars=config.llm_max_reply_chars,
            request_timeout=config.request_timeout,
        )

    def build_prompt(self, prompt: CategoryPrompt, snapshot: PageSnapshot) -> str:
        """Assemble the user message for one category."""
        payload = snapshot.to_payload(self.max_context_chars)
        return (
            f"{prompt.body}\n\n"
            f"Category: {prompt.category}\n"
            f"URL: {snapshot.url}\n\n"
            f"Page data (JSON):\n{payload}\n\n"
            f"{REPLY_INSTRUCTIONS}"
        )

    async def score(self, prompt: CategoryPrompt, snapshot: PageSnapshot) -> CategoryResult:
        """Evaluate one category. Never raises for stage-local failures."""
        messages = [{"role": "user", "content": self.build_prompt(prompt, snapshot)}]
        attempts = 0

        for parse_round in range(2):
            try:
                reply, used = await self._call_with_retry(messages)
                attempts += used
            except TransientLLMError as e:
                attempts += e.attempts
                logger.warning(f"Category {prompt.category!r} failed: {e}")
                return CategoryResult.failed(
                    prompt.category, str(e), attempts=attempts, prompt_id=prompt.template_id
                )
            except Exception as e:
                attempts += 1
                logger.error(f"Non-retryable LLM error for {prompt.category!r}: {e}")
                return CategoryResult.failed(
                    prompt.category,
                    f"{type(e).__name__}: {e}",
                    attempts=attempts,
                    prompt_id=prompt.template_id,
                )

            try:
                parsed = parse_reply(reply, self.max_reply_chars)
            except ValidationError as e:
                if parse_round == 0:
                    logger.warning(
                        f"Invalid reply for {prompt.category!r}, sending corrective retry: {e}"
                    )
                    messages = messages + [
                        {"role": "assistant", "content": reply[: self.max_reply_chars]},
                        {"role": "user", "content": CORRECTIVE_INSTRUCTIONS.format(error=e)},
                    ]
                    continue
                logger.warning(f"Invalid reply for {prompt.category!r} after corrective retry: {e}")
                return CategoryResult.failed(
                    prompt.category,
                    f"ValidationError: {e}",
                    attempts=attempts,
                    prompt_id=prompt.template_id,
                )

            return CategoryResult(
                category=prompt.category,
                score=parsed.score,
                max_score=parsed.max_score,
                issues=[
                    Issue(
                        severity=Severity(item.severity),
                        message=item.message,
                        location_hint=item.location,
                    )
                    for item in parsed.issues
                ],
                attempts=attempts,
                prompt_id=prompt.template_id,
            )

        # Unreachable: the loop returns on every path of the second round
        raise AssertionError("scoring loop exited without a result")

    def build_review_prompt(
        self,
        instructions: str,
        snapshot: PageSnapshot,
        results: list[CategoryResult],
        validation: Optional[SeoValidation] = None,
    ) -> str:
        """User message for the summary and recommendation calls."""
        audit = {
            "url": snapshot.url,
            "categories": [
                {
                    "category": r.category,
                    "score": r.score,
                    "max_score": r.max_score,
                    "issues": [f"{i.severity.value}: {i.message}" for i in r.issues],
                }
                for r in results
                if r.is_ok
            ],
        }
        if validation is not None:
            audit["rule_checks"] = [
                {"area": c.area, "score": c.score, "issues": c.issues}
                for c in validation.checks
            ]
        payload = json.dumps(audit, ensure_ascii=False)[: self.max_context_chars]
        return f"{instructions}\n\nAudit results (JSON):\n{payload}"

    async def summarize(
        self,
        snapshot: PageSnapshot,
        results: list[CategoryResult],
        validation: Optional[SeoValidation] = None,
    ) -> Optional[str]:
        """Executive summary of a finished audit, or None if it could not be written."""
        prompt = self.build_review_prompt(SUMMARY_INSTRUCTIONS, snapshot, results, validation)
        try:
            reply, _ = await self._call_with_retry([{"role": "user", "content": prompt}])
        except Exception as e:
            logger.warning(f"Summary generation failed for {snapshot.url}: {e}")
            return None
        text = (reply or "").strip()
        return text[: self.max_reply_chars] or None

    async def recommend(
        self,
        snapshot: PageSnapshot,
        results: list[CategoryResult],
        validation: Optional[SeoValidation] = None,
    ) -> list[Recommendation]:
        """Prioritized recommendations; an empty list if none could be produced."""
        prompt = self.build_review_prompt(
            RECOMMENDATIONS_INSTRUCTIONS, snapshot, results, validation
        )
        try:
            reply, _ = await self._call_with_retry([{"role": "user", "content": prompt}])
            return parse_recommendations(reply)
        except Exception as e:
            logger.warning(f"Recommendations generation failed for {snapshot.url}: {e}")
            return []

    async def _call_with_retry(self, messages: list[dict[str, str]]) -> tuple[str, int]:
        """Call the provider, retrying transient failures.

        Returns:
            Tuple of (reply text, attempts used)

        Raises:
            TransientLLMError: If every attempt failed transiently
            Exception: Non-transient provider errors, unchanged
        """
        policy = self.retry_policy
        last_error: Optional[BaseException] = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                reply = await asyncio.wait_for(
                    self.provider.complete(messages, self.max_tokens),
                    timeout=self.request_timeout,
                )
                return reply, attempt
            except Exception as e:
                if not self.provider.is_transient(e):
                    raise
                last_error = e
                if attempt < policy.max_attempts:
                    delay = policy.delay_for(attempt) + random.uniform(0, policy.jitter)
                    logger.warning(
                        f"LLM call failed (attempt {attempt}/{policy.max_attempts}): "
                        f"{type(e).__name__}: {e}. Retrying in {delay:.1f}s..."
                    )
                    await asyncio.sleep(delay)

        raise TransientLLMError(
            f"LLM call failed after {policy.max_attempts} attempts: "
            f"{type(last_error).__name__}: {last_error}",
            attempts=policy.max_attempts,
        )
