"""Tests for infrastructure components.

Tests for the browser worker pool and browser configuration. The pool
runs against in-memory fake contexts so no browser is launched.
"""

import asyncio
from datetime import datetime

import pytest
from pydantic import ValidationError as PydanticValidationError

from seo_audit.browser_config import BrowserConfig
from seo_audit.config import PipelineConfig
from seo_audit.exceptions import (
    BrowserLaunchError,
    ExtractionError,
    ExtractionReason,
    WorkerAcquireTimeout,
)
from seo_audit.infrastructure.browser_pool import (
    BrowserHealth,
    BrowserPool,
    HandleStats,
    PoolStatus,
)


class FakePage:
    def __init__(self, context):
        self.context = context
        self.closed = False

    async def close(self):
        self.closed = True
        self.context.pages.remove(self)


class FakeContext:
    def __init__(self, fail_reset: bool = False):
        self.pages = []
        self.closed = False
        self.cookies_cleared = 0
        self.fail_reset = fail_reset

    async def new_page(self):
        page = FakePage(self)
        self.pages.append(page)
        return page

    async def clear_cookies(self):
        if self.fail_reset:
            raise RuntimeError("Target page, context or browser has been closed")
        self.cookies_cleared += 1

    async def close(self):
        self.closed = True


class FakeBrowserPool(BrowserPool):
    """BrowserPool whose contexts are FakeContext instances."""

    def __init__(self, max_size: int = 2, fail_create: bool = False, fail_reset: bool = False):
        super().__init__(BrowserConfig(), max_size=max_size)
        self.fail_create = fail_create
        self.fail_reset = fail_reset
        self.contexts = []

    async def _launch_browser(self) -> None:
        pass

    async def _create_context(self):
        if self.fail_create:
            raise RuntimeError("browser process exited")
        context = FakeContext(fail_reset=self.fail_reset)
        self.contexts.append(context)
        return context


# =============================================================================
# BrowserPool Tests
# =============================================================================

class TestBrowserPool:
    """Test cases for BrowserPool."""

    def test_pool_initialization_defaults(self):
        """Test pool initializes with correct defaults."""
        pool = BrowserPool()
        assert pool.max_size == 2
        assert pool.config.headless is True
        assert pool.config.navigation_timeout_ms == 30000
        assert pool.is_started is False

    def test_pool_rejects_zero_capacity(self):
        with pytest.raises(ValueError, match="at least 1"):
            BrowserPool(max_size=0)

    @pytest.mark.asyncio
    async def test_pool_not_started_raises_error(self):
        """Test acquiring from unstarted pool raises error."""
        pool = BrowserPool()

        with pytest.raises(RuntimeError, match="not started"):
            await pool.acquire()

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        async with FakeBrowserPool() as pool:
            assert pool.is_started
        assert not pool.is_started

    @pytest.mark.asyncio
    async def test_handles_created_lazily_and_reused(self):
        async with FakeBrowserPool(max_size=2) as pool:
            assert pool.get_status().live_handles == 0

            handle = await pool.acquire(timeout=1)
            await pool.release(handle)
            again = await pool.acquire(timeout=1)

            assert again is handle
            assert len(pool.contexts) == 1
            assert handle.context.cookies_cleared == 1
            await pool.release(again)

    @pytest.mark.asyncio
    async def test_acquire_times_out_when_exhausted(self):
        async with FakeBrowserPool(max_size=1) as pool:
            handle = await pool.acquire(timeout=1)

            with pytest.raises(WorkerAcquireTimeout):
                await pool.acquire(timeout=0.05)

            await pool.release(handle)

    @pytest.mark.asyncio
    async def test_waiting_acquirer_resumes_on_release(self):
        async with FakeBrowserPool(max_size=1) as pool:
            handle = await pool.acquire(timeout=1)
            waiter = asyncio.create_task(pool.acquire(timeout=1))
            await asyncio.sleep(0.01)
            assert not waiter.done()

            await pool.release(handle)
            resumed = await waiter

            assert resumed is handle
            await pool.release(resumed)

    @pytest.mark.asyncio
    async def test_failed_handle_discarded_and_replaced(self):
        """Test a crashed handle is closed and a new context is created next time."""
        async with FakeBrowserPool(max_size=1) as pool:
            handle = await pool.acquire(timeout=1)
            await pool.release(handle, failed=True)

            assert handle.context.closed
            status = pool.get_status()
            assert status.live_handles == 0
            assert status.total_discarded == 1

            replacement = await pool.acquire(timeout=1)
            assert replacement is not handle
            assert len(pool.contexts) == 2
            await pool.release(replacement)

    @pytest.mark.asyncio
    async def test_double_release_ignored(self):
        """Test releasing twice does not free an extra slot."""
        async with FakeBrowserPool(max_size=1) as pool:
            handle = await pool.acquire(timeout=1)
            await pool.release(handle)
            await pool.release(handle)

            first = await pool.acquire(timeout=1)
            with pytest.raises(WorkerAcquireTimeout):
                await pool.acquire(timeout=0.05)
            await pool.release(first)

    @pytest.mark.asyncio
    async def test_worker_keeps_handle_after_page_error(self):
        async with FakeBrowserPool(max_size=1) as pool:
            with pytest.raises(ExtractionError):
                async with pool.worker(timeout=1) as handle:
                    raise ExtractionError(ExtractionReason.HTTP_STATUS, "404", status_code=404)

            status = pool.get_status()
            assert status.idle == 1
            assert status.total_discarded == 0
            assert handle.stats.page_failures == 1
            assert handle.stats.crashed is False

    @pytest.mark.asyncio
    async def test_worker_discards_handle_after_crash(self):
        async with FakeBrowserPool(max_size=1) as pool:
            with pytest.raises(RuntimeError):
                async with pool.worker(timeout=1) as handle:
                    raise RuntimeError("Target page, context or browser has been closed")

            assert handle.context.closed
            assert pool.get_status().live_handles == 0
            # Slot was returned
            replacement = await pool.acquire(timeout=0.1)
            await pool.release(replacement)

    @pytest.mark.asyncio
    async def test_worker_releases_on_cancellation(self):
        async with FakeBrowserPool(max_size=1) as pool:
            async def hold():
                async with pool.worker(timeout=1):
                    await asyncio.sleep(10)

            task = asyncio.create_task(hold())
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            handle = await pool.acquire(timeout=0.1)
            await pool.release(handle)
            assert pool.get_status().total_discarded == 1

    @pytest.mark.asyncio
    async def test_with_worker_returns_value(self):
        async with FakeBrowserPool() as pool:
            async def open_page(handle):
                page = await handle.new_page()
                return len(handle.context.pages), page

            count, page = await pool.with_worker(open_page, timeout=1)

            assert count == 1
            # Leftover pages are closed before the handle is reused
            assert page.closed
            assert pool.get_status().in_use == 0

    @pytest.mark.asyncio
    async def test_context_creation_failure_frees_slot(self):
        async with FakeBrowserPool(max_size=1, fail_create=True) as pool:
            with pytest.raises(BrowserLaunchError, match="browser process exited"):
                await pool.acquire(timeout=1)

            pool.fail_create = False
            handle = await pool.acquire(timeout=0.1)
            await pool.release(handle)

    @pytest.mark.asyncio
    async def test_reset_failure_discards_handle(self):
        async with FakeBrowserPool(max_size=1, fail_reset=True) as pool:
            handle = await pool.acquire(timeout=1)
            await pool.release(handle)

            assert handle.context.closed
            assert pool.get_status().total_discarded == 1

    @pytest.mark.asyncio
    async def test_launch_failure_leaves_pool_stopped(self):
        class BrokenPool(BrowserPool):
            async def _launch_browser(self):
                raise BrowserLaunchError("Failed to launch chromium: executable missing")

        pool = BrokenPool()
        with pytest.raises(BrowserLaunchError):
            await pool.start()
        assert not pool.is_started

    @pytest.mark.asyncio
    async def test_stop_closes_idle_contexts(self):
        pool = FakeBrowserPool(max_size=2)
        await pool.start()
        first = await pool.acquire(timeout=1)
        second = await pool.acquire(timeout=1)
        await pool.release(first)
        await pool.release(second)

        await pool.stop()

        assert all(context.closed for context in pool.contexts)
        assert pool.get_status().live_handles == 0

    @pytest.mark.asyncio
    async def test_get_status(self):
        async with FakeBrowserPool(max_size=3) as pool:
            handle = await pool.acquire(timeout=1)
            status = pool.get_status()

            assert isinstance(status, PoolStatus)
            assert status.capacity == 3
            assert status.live_handles == 1
            assert status.in_use == 1
            assert status.idle == 0
            assert status.total_acquired == 1
            await pool.release(handle)


class TestHandleStats:
    """Test cases for HandleStats."""

    def test_initial_health(self):
        stats = HandleStats(context_id=1, created_at=datetime.now())
        assert stats.uses == 0
        assert stats.last_used is None
        assert stats.health(max_uses=10) == BrowserHealth.HEALTHY

    def test_expires_after_max_uses(self):
        stats = HandleStats(context_id=1, created_at=datetime.now())
        for _ in range(3):
            stats.record_use()

        assert stats.health(max_uses=4) == BrowserHealth.HEALTHY
        stats.record_use()
        assert stats.health(max_uses=4) == BrowserHealth.EXPIRED

    def test_page_failures_do_not_change_health(self):
        stats = HandleStats(context_id=1, created_at=datetime.now())
        stats.record_use(page_failed=True)
        stats.record_use(page_failed=True)

        assert stats.page_failures == 2
        assert stats.health(max_uses=10) == BrowserHealth.HEALTHY

    def test_crash_wins_over_expiry(self):
        stats = HandleStats(context_id=1, created_at=datetime.now())
        stats.record_use(crashed=True)

        assert stats.crashed
        assert stats.health(max_uses=1) == BrowserHealth.CRASHED

    @pytest.mark.asyncio
    async def test_expired_handle_discarded_on_release(self):
        async with FakeBrowserPool(max_size=1) as pool:
            handle = await pool.acquire(timeout=1)
            handle.stats.uses = BrowserPool.MAX_USES_PER_CONTEXT
            await pool.release(handle)

            assert handle.context.closed
            assert pool.get_status().total_discarded == 1


# =============================================================================
# BrowserConfig Tests
# =============================================================================

class TestBrowserConfig:
    """Test cases for BrowserConfig."""

    def test_sandbox_enabled_by_default(self):
        config = BrowserConfig()
        assert "--no-sandbox" not in config.launch_args

    def test_no_sandbox_opt_in(self):
        config = BrowserConfig(no_sandbox=True)
        assert "--no-sandbox" in config.launch_args
        assert "--disable-setuid-sandbox" in config.launch_args

    def test_timeout_bounds_validated(self):
        with pytest.raises(PydanticValidationError):
            BrowserConfig(navigation_timeout_ms=10)

    def test_from_pipeline_config(self):
        pipeline = PipelineConfig(
            navigation_timeout=12.5,
            browser_headless=False,
            browser_no_sandbox=True,
            user_agent="AuditBot/2.0",
        )

        config = BrowserConfig.from_pipeline_config(pipeline)

        assert config.navigation_timeout_ms == 12500
        assert config.headless is False
        assert config.no_sandbox is True
        assert config.user_agent == "AuditBot/2.0"
