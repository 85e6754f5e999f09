"""
Job orchestration.

Drives an analysis job from intake to a terminal state:

    queued -> running -> completed | partial_failure | failed
    queued | running -> cancelled

One page snapshot is extracted per job on a pooled browser handle, which
is released as soon as extraction ends. Category scoring then fans out
under a concurrency limit independent of the pool size. The job waits for
every category (or the job timeout) before aggregating.

Rule-based checks run on the snapshot as soon as it exists. Once scoring
ends, an AI summary and recommendations are attached when enabled; a
failure there never changes the job status.
"""

import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional, Union
from urllib.parse import urlparse

from seo_audit.aggregator import aggregate
from seo_audit.config import PipelineConfig
from seo_audit.database import AbstractJobStore
from seo_audit.exceptions import (
    BrowserLaunchError,
    ExtractionError,
    JobNotFoundError,
    PersistenceError,
    ValidationError,
    WorkerAcquireTimeout,
)
from seo_audit.extractor import FeatureExtractor
from seo_audit.infrastructure.browser_pool import BrowserPool, WorkerHandle
from seo_audit.llm import ScoringClient
from seo_audit.models import (
    AnalysisJob,
    AnalysisType,
    CategoryPrompt,
    CategoryResult,
    JobStatus,
    PageSnapshot,
)
from seo_audit.prompts import PromptCatalog
from seo_audit.seo_checks import validate_snapshot

logger = logging.getLogger(__name__)

# Extra time allowed beyond the navigation timeout for reading the DOM
EXTRACTION_GRACE_SECONDS = 15.0


@dataclass
class SubmitOptions:
    """Optional per-job settings."""
    custom_prompt_id: Optional[str] = None
    job_timeout: Optional[float] = None


@dataclass
class _JobRun:
    job: AnalysisJob
    prompts: list[CategoryPrompt]
    job_timeout: float
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None


def validate_url(url: str) -> str:
    """Return ``url`` stripped, or raise ValidationError if it is not http(s)."""
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("URL is required")
    url = url.strip()
    if any(ch.isspace() for ch in url):
        raise ValidationError(f"URL must not contain whitespace: {url!r}")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValidationError(f"URL scheme must be http or https: {url!r}")
    if not parsed.hostname:
        raise ValidationError(f"URL has no host: {url!r}")
    try:
        parsed.port
    except ValueError:
        raise ValidationError(f"URL has an invalid port: {url!r}")
    return url


def parse_analysis_type(
    value: Union[str, AnalysisType],
    custom_prompt_id: Optional[str] = None,
) -> AnalysisType:
    """Resolve the requested analysis type.

    An unrecognised type is accepted only when a custom prompt id is given,
    in which case the job runs as ``custom``.
    """
    if isinstance(value, AnalysisType):
        return value
    try:
        return AnalysisType(value)
    except ValueError:
        if custom_prompt_id:
            logger.info(f"Unknown analysis type {value!r}; running as custom prompt {custom_prompt_id}")
            return AnalysisType.CUSTOM
        valid = ", ".join(t.value for t in AnalysisType)
        raise ValidationError(f"Unknown analysis type {value!r}; expected one of {valid}")


class JobOrchestrator:
    """Runs analysis jobs against shared pool, scorer and store instances."""

    def __init__(
        self,
        pool: BrowserPool,
        extractor: FeatureExtractor,
        catalog: PromptCatalog,
        scorer: ScoringClient,
        store: AbstractJobStore,
        config: Optional[PipelineConfig] = None,
    ):
        self.pool = pool
        self.extractor = extractor
        self.catalog = catalog
        self.scorer = scorer
        self.store = store
        self.config = config or PipelineConfig()
        self._runs: dict[str, _JobRun] = {}

    async def submit(
        self,
        url: str,
        analysis_type: Union[str, AnalysisType],
        options: Optional[SubmitOptions] = None,
    ) -> str:
        """
        Validate a request and start the job in the background.

        Returns:
            The new job id

        Raises:
            ValidationError: On a malformed URL, unknown analysis type, or a
                missing/inactive custom prompt. The job is never created.
        """
        options = options or SubmitOptions()
        url = validate_url(url)
        atype = parse_analysis_type(analysis_type, options.custom_prompt_id)
        prompts = self.catalog.resolve_prompts(atype, options.custom_prompt_id)

        job = AnalysisJob(
            id=str(uuid.uuid4()),
            url=url,
            analysis_type=atype,
            expected_categories=[p.category for p in prompts],
            custom_prompt_id=options.custom_prompt_id if atype == AnalysisType.CUSTOM else None,
        )
        run = _JobRun(
            job=job,
            prompts=prompts,
            job_timeout=options.job_timeout or self.config.job_timeout,
        )
        self._runs[job.id] = run

        await self._persist(job)
        run.task = asyncio.create_task(self._run(run), name=f"audit-job-{job.id}")
        logger.info(
            f"Accepted job {job.id} for {url} "
            f"(type={atype.value}, categories={','.join(job.expected_categories)})"
        )
        return job.id

    async def get_status(self, job_id: str) -> AnalysisJob:
        """
        Current state of a job.

        Raises:
            JobNotFoundError: If the job is neither running nor persisted
            PersistenceError: If the store read exceeds the persist timeout
        """
        run = self._runs.get(job_id)
        if run is not None:
            return copy.deepcopy(run.job)

        try:
            job = await asyncio.wait_for(
                asyncio.to_thread(self.store.get_job, job_id),
                timeout=self.config.persist_timeout,
            )
        except asyncio.TimeoutError:
            raise PersistenceError(
                f"Reading job {job_id} exceeded {self.config.persist_timeout}s"
            )
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    async def cancel(self, job_id: str) -> bool:
        """
        Request cooperative cancellation.

        In-flight categories may finish or hit their own timeout; no new
        categories start.

        Returns:
            True if the request was registered, False if the job already ended

        Raises:
            JobNotFoundError: If the job is unknown
        """
        run = self._runs.get(job_id)
        if run is None:
            await self.get_status(job_id)
            return False
        if run.job.is_terminal:
            return False
        run.cancel_event.set()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> AnalysisJob:
        """Wait for a job to reach a terminal state and return it."""
        run = self._runs.get(job_id)
        if run is not None and run.task is not None:
            await asyncio.wait_for(asyncio.shield(run.task), timeout=timeout)
        return await self.get_status(job_id)

    async def analyze(
        self,
        url: str,
        analysis_type: Union[str, AnalysisType],
        options: Optional[SubmitOptions] = None,
    ) -> AnalysisJob:
        """Submit a job and wait for its terminal state."""
        job_id = await self.submit(url, analysis_type, options)
        return await self.wait(job_id)

    async def shutdown(self) -> None:
        """Cancel every active job and wait for them to settle."""
        tasks = []
        for run in list(self._runs.values()):
            run.cancel_event.set()
            if run.task is not None:
                tasks.append(run.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, run: _JobRun) -> None:
        job = run.job
        try:
            await self._execute(run)
        except Exception as e:
            logger.exception(f"Job {job.id} crashed: {e}")
            if not job.is_terminal:
                if job.status == JobStatus.QUEUED:
                    job.transition(JobStatus.RUNNING)
                self._fail(job, type(e).__name__, str(e))

        persisted = await self._persist(job, attempts=self.config.persist_max_attempts)
        if persisted:
            self._runs.pop(job.id, None)
        else:
            logger.error(
                f"Job {job.id} reached {job.status.value} but could not be persisted; "
                "keeping it in memory"
            )

    async def _execute(self, run: _JobRun) -> None:
        job = run.job
        loop = asyncio.get_running_loop()

        if run.cancel_event.is_set():
            self._finish(run, {}, reason="Job cancelled before it started")
            return

        job.transition(JobStatus.RUNNING)
        deadline = loop.time() + run.job_timeout
        logger.info(f"Job {job.id} running")
        await self._persist(job)

        snapshot = await self._extract_snapshot(run, deadline)
        if snapshot is None:
            return
        job.validation = validate_snapshot(snapshot)

        if run.cancel_event.is_set():
            self._finish(run, {}, reason="Job cancelled before scoring started")
            return

        semaphore = asyncio.Semaphore(self.config.scoring_concurrency)
        tasks = {
            asyncio.create_task(
                self._score_category(run, prompt, snapshot, semaphore),
                name=f"audit-job-{job.id}-{prompt.category}",
            ): prompt
            for prompt in run.prompts
        }

        remaining = max(0.0, deadline - loop.time())
        done, pending = await asyncio.wait(tasks, timeout=remaining)

        results: dict[str, CategoryResult] = {}
        for task in done:
            result = task.result()
            if result is not None:
                results[result.category] = result

        for task in pending:
            task.cancel()
            prompt = tasks[task]
            results[prompt.category] = CategoryResult.timed_out(
                prompt.category,
                f"Job timeout of {run.job_timeout}s elapsed before the category finished",
                prompt_id=prompt.template_id,
            )
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Job {job.id} timed out with {len(pending)} categories pending")

        if self.config.llm_summary and not run.cancel_event.is_set():
            await self._review(run, snapshot, results, deadline)

        self._finish(run, results, reason="Job cancelled before the category started")

    async def _extract_snapshot(self, run: _JobRun, deadline: float) -> Optional[PageSnapshot]:
        """Borrow a worker, extract, release. Returns None after failing the job.

        The whole stage, worker acquisition included, ends at the job deadline.
        """
        job = run.job
        loop = asyncio.get_running_loop()
        navigation_timeout = self.config.navigation_timeout
        extraction_limit = navigation_timeout + EXTRACTION_GRACE_SECONDS
        extraction_timed_out = False

        async def extract(handle: WorkerHandle) -> PageSnapshot:
            nonlocal extraction_timed_out
            try:
                return await asyncio.wait_for(
                    self.extractor.extract(handle, job.url, navigation_timeout),
                    timeout=extraction_limit,
                )
            except asyncio.TimeoutError:
                extraction_timed_out = True
                raise

        try:
            return await asyncio.wait_for(
                self.pool.with_worker(extract, timeout=self.config.worker_acquire_timeout),
                timeout=max(0.0, deadline - loop.time()),
            )
        except ExtractionError as e:
            self._fail(job, f"ExtractionError:{e.reason.value}", str(e))
        except WorkerAcquireTimeout as e:
            self._fail(job, "TimeoutError:worker_acquire", str(e))
        except BrowserLaunchError as e:
            self._fail(job, "ConnectionError:browser_launch", str(e))
        except asyncio.TimeoutError:
            if extraction_timed_out:
                self._fail(
                    job,
                    "TimeoutError:extraction",
                    f"Extraction of {job.url} did not finish within {extraction_limit}s",
                )
            else:
                self._fail(
                    job,
                    "TimeoutError:job_timeout",
                    f"Job timeout of {run.job_timeout}s elapsed during extraction of {job.url}",
                )
        return None

    async def _review(
        self,
        run: _JobRun,
        snapshot: PageSnapshot,
        results: dict[str, CategoryResult],
        deadline: float,
    ) -> None:
        """Attach the AI summary and recommendations. Failures leave them empty."""
        job = run.job
        scored = [results[c] for c in job.expected_categories if c in results and results[c].is_ok]
        if not scored:
            return
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            logger.warning(f"Job {job.id}: no time left for summary and recommendations")
            return

        timeout = min(self.config.category_timeout, remaining)
        job.summary, job.recommendations = await asyncio.gather(
            self._soft_call(
                job, "summary", self.scorer.summarize(snapshot, scored, job.validation), timeout, None
            ),
            self._soft_call(
                job, "recommendations", self.scorer.recommend(snapshot, scored, job.validation), timeout, []
            ),
        )

    @staticmethod
    async def _soft_call(job: AnalysisJob, label: str, coro, timeout: float, default):
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Job {job.id}: {label} exceeded {timeout:.1f}s")
        except Exception as e:
            logger.warning(f"Job {job.id}: {label} failed: {e}")
        return default

    async def _score_category(
        self,
        run: _JobRun,
        prompt: CategoryPrompt,
        snapshot: PageSnapshot,
        semaphore: asyncio.Semaphore,
    ) -> Optional[CategoryResult]:
        """Score one category. Returns None if the job was cancelled first."""
        async with semaphore:
            if run.cancel_event.is_set():
                return None
            timeout = self.config.category_timeout
            try:
                result = await asyncio.wait_for(
                    self.scorer.score(prompt, snapshot),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Job {run.job.id}: category {prompt.category!r} exceeded {timeout}s")
                result = CategoryResult.timed_out(
                    prompt.category,
                    f"Category evaluation exceeded {timeout}s",
                    prompt_id=prompt.template_id,
                )
            except Exception as e:
                logger.exception(f"Job {run.job.id}: category {prompt.category!r} raised {e}")
                result = CategoryResult.failed(
                    prompt.category,
                    f"{type(e).__name__}: {e}",
                    prompt_id=prompt.template_id,
                )

        run.job.categories.append(result)
        return result

    def _finish(
        self,
        run: _JobRun,
        results: dict[str, CategoryResult],
        reason: str,
    ) -> None:
        """Fill unresolved categories, aggregate and pick the terminal status."""
        job = run.job
        prompt_ids = {p.category: p.template_id for p in run.prompts}
        ordered = []
        for category in job.expected_categories:
            result = results.get(category)
            if result is None:
                result = CategoryResult.timed_out(
                    category, reason, prompt_id=prompt_ids.get(category)
                )
            ordered.append(result)

        job.categories = ordered
        job.overall_score = aggregate(ordered, job.expected_categories).overall_score

        not_ok = [r for r in ordered if not r.is_ok]
        if run.cancel_event.is_set():
            status = JobStatus.CANCELLED
            job.error_reason = "Cancelled"
            job.error = "Job cancelled by request"
        elif not not_ok:
            status = JobStatus.COMPLETED
        elif len(not_ok) < len(ordered):
            status = JobStatus.PARTIAL_FAILURE
            job.error_reason = "PartialFailure"
            job.error = self._summarize(not_ok, len(ordered))
        else:
            status = JobStatus.FAILED
            job.error_reason = "AllCategoriesFailed"
            job.error = self._summarize(not_ok, len(ordered))

        job.transition(status)
        log = logger.info if status == JobStatus.COMPLETED else logger.warning
        log(
            f"Job {job.id} finished {status.value} "
            f"(overall={job.overall_score}, ok={len(ordered) - len(not_ok)}/{len(ordered)})"
        )

    def _fail(self, job: AnalysisJob, reason: str, message: str) -> None:
        """Terminal failure before any category could run."""
        job.error_reason = reason
        job.error = message
        job.overall_score = None
        job.transition(JobStatus.FAILED)
        logger.error(f"Job {job.id} failed ({reason}): {message}")

    @staticmethod
    def _summarize(not_ok: list[CategoryResult], total: int) -> str:
        details = ", ".join(f"{r.category} ({r.status.value})" for r in not_ok)
        return f"{len(not_ok)} of {total} categories did not produce a score: {details}"

    async def _persist(self, job: AnalysisJob, attempts: int = 1) -> bool:
        """Upsert a copy of ``job``. Returns False if every attempt failed."""
        snapshot = copy.deepcopy(job)
        for attempt in range(1, attempts + 1):
            try:
                await asyncio.wait_for(
                    asyncio.to_thread(self.store.upsert_job, snapshot),
                    timeout=self.config.persist_timeout,
                )
                return True
            except asyncio.TimeoutError:
                logger.warning(
                    f"Persisting job {job.id} timed out after {self.config.persist_timeout}s "
                    f"(attempt {attempt}/{attempts})"
                )
            except Exception as e:
                logger.warning(
                    f"Persisting job {job.id} failed (attempt {attempt}/{attempts}): {e}"
                )
            if attempt < attempts:
                await asyncio.sleep(min(0.5 * 2 ** (attempt - 1), 5.0))
        return False
