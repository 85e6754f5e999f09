"""
Browser Worker Pool.

Owns a bounded set of Playwright browser contexts and lends them to
callers. Acquisition suspends until a slot frees up or the timeout
elapses. A handle that fails during use is closed and dropped; the pool
creates a replacement lazily on the next acquire.
"""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from seo_audit.browser_config import BrowserConfig
from seo_audit.exceptions import (
    BrowserLaunchError,
    ExtractionError,
    WorkerAcquireTimeout,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BrowserHealth(Enum):
    """Whether a context may be lent out again."""
    HEALTHY = "healthy"
    CRASHED = "crashed"
    EXPIRED = "expired"


@dataclass
class PoolStatus:
    """Current status of the browser pool."""
    capacity: int
    live_handles: int
    idle: int
    in_use: int
    total_acquired: int
    total_discarded: int
    uptime_seconds: float


@dataclass
class HandleStats:
    """Usage counters for one browser context.

    A page that fails to load says nothing about the context, so page
    failures are counted but never affect health.
    """
    context_id: int
    created_at: datetime
    uses: int = 0
    page_failures: int = 0
    crashed: bool = False
    last_used: datetime | None = None

    def record_use(self, page_failed: bool = False, crashed: bool = False) -> None:
        self.uses += 1
        self.last_used = datetime.now()
        if page_failed:
            self.page_failures += 1
        if crashed:
            self.crashed = True

    def health(self, max_uses: int) -> BrowserHealth:
        if self.crashed:
            return BrowserHealth.CRASHED
        if self.uses >= max_uses:
            return BrowserHealth.EXPIRED
        return BrowserHealth.HEALTHY


class WorkerHandle:
    """A browser context on loan from the pool."""

    def __init__(self, context_id: int, context: Any):
        self.context_id = context_id
        self.context = context
        self.stats = HandleStats(context_id=context_id, created_at=datetime.now())
        self.in_use = False

    async def new_page(self) -> Any:
        """Open a fresh page in this handle's context."""
        return await self.context.new_page()

    def __repr__(self) -> str:
        return f"WorkerHandle(id={self.context_id}, uses={self.stats.uses}, in_use={self.in_use})"


class BrowserPool:
    """
    Bounded pool of browser contexts.

    Usage:
        async with BrowserPool(config, max_size=2) as pool:
            async with pool.worker(timeout=30) as handle:
                page = await handle.new_page()
    """

    # Uses before a context is closed and replaced
    MAX_USES_PER_CONTEXT = 100

    def __init__(self, config: Optional[BrowserConfig] = None, max_size: int = 2):
        """
        Initialize browser pool.

        Args:
            config: Browser settings (defaults to BrowserConfig())
            max_size: Maximum number of handles lent out at once
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.config = config or BrowserConfig()
        self.max_size = max_size

        self._playwright = None
        self._browser = None
        self._slots = asyncio.Semaphore(max_size)
        self._idle: deque[WorkerHandle] = deque()
        self._live: dict[int, WorkerHandle] = {}
        self._started = False
        self._start_time: datetime | None = None
        self._next_context_id = 0
        self._total_acquired = 0
        self._total_discarded = 0

    async def __aenter__(self) -> "BrowserPool":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """
        Launch the browser runtime.

        Raises:
            BrowserLaunchError: If Playwright or the browser binary is unavailable
        """
        if self._started:
            return

        await self._launch_browser()
        self._start_time = datetime.now()
        self._started = True
        logger.info(
            f"Browser pool started (capacity={self.max_size}, "
            f"browser={self.config.browser_type}, headless={self.config.headless})"
        )

    async def _launch_browser(self) -> None:
        """Start Playwright and launch the configured browser."""
        try:
            from playwright.async_api import async_playwright
        except ImportError as e:
            raise BrowserLaunchError(
                "playwright package not installed. "
                "Install with: pip install playwright && playwright install chromium"
            ) from e

        try:
            self._playwright = await async_playwright().start()
            launcher = getattr(self._playwright, self.config.browser_type)
            launch_options: dict[str, Any] = {"headless": self.config.headless}
            if self.config.browser_type == "chromium":
                launch_options["args"] = self.config.launch_args
            self._browser = await launcher.launch(**launch_options)
        except Exception as e:
            await self._stop_playwright()
            raise BrowserLaunchError(f"Failed to launch {self.config.browser_type}: {e}") from e

    async def stop(self) -> None:
        """
        Shutdown browser pool gracefully.

        Closes all contexts and the browser instance.
        """
        if not self._started:
            return

        for handle in list(self._live.values()):
            await self._close_handle(handle)
        self._live.clear()
        self._idle.clear()

        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None

        await self._stop_playwright()
        self._started = False
        logger.info("Browser pool stopped")

    async def _stop_playwright(self) -> None:
        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None

    async def _create_context(self) -> Any:
        """Create a Playwright browser context."""
        context = await self._browser.new_context(
            user_agent=self.config.user_agent,
            viewport={
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            },
            ignore_https_errors=True,
        )
        context.set_default_navigation_timeout(self.config.navigation_timeout_ms)
        return context

    async def _new_handle(self) -> WorkerHandle:
        try:
            context = await self._create_context()
        except Exception as e:
            raise BrowserLaunchError(f"Failed to create browser context: {e}") from e

        handle = WorkerHandle(self._next_context_id, context)
        self._next_context_id += 1
        self._live[handle.context_id] = handle
        logger.debug(f"Created browser context {handle.context_id}")
        return handle

    async def _close_handle(self, handle: WorkerHandle) -> None:
        self._live.pop(handle.context_id, None)
        try:
            await handle.context.close()
        except Exception as e:
            logger.warning(f"Error closing context {handle.context_id}: {e}")

    async def _reset_handle(self, handle: WorkerHandle) -> None:
        """Clear cookies and close leftover pages before the next borrower."""
        await handle.context.clear_cookies()
        for page in list(handle.context.pages):
            await page.close()

    async def acquire(self, timeout: Optional[float] = None) -> WorkerHandle:
        """
        Borrow a handle, suspending until one is free.

        Args:
            timeout: Seconds to wait for a free slot (None waits forever)

        Returns:
            A WorkerHandle that must be passed back to release()

        Raises:
            RuntimeError: If the pool has not been started
            WorkerAcquireTimeout: If no slot frees up in time
            BrowserLaunchError: If a replacement context cannot be created
        """
        if not self._started:
            raise RuntimeError("Browser pool not started. Call start() first.")

        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            raise WorkerAcquireTimeout(
                f"No browser worker available within {timeout}s "
                f"(capacity={self.max_size})"
            )

        try:
            handle = self._idle.popleft() if self._idle else await self._new_handle()
        except BaseException:
            self._slots.release()
            raise

        handle.in_use = True
        self._total_acquired += 1
        return handle

    async def release(self, handle: WorkerHandle, failed: bool = False) -> None:
        """
        Return a handle to the pool.

        Args:
            handle: Handle obtained from acquire()
            failed: The handle crashed during use and must not be reused
        """
        if not handle.in_use:
            logger.warning(f"Ignoring double release of context {handle.context_id}")
            return
        handle.in_use = False

        try:
            if failed:
                handle.stats.crashed = True
            health = handle.stats.health(self.MAX_USES_PER_CONTEXT)
            if health == BrowserHealth.HEALTHY:
                try:
                    await self._reset_handle(handle)
                except Exception as e:
                    logger.warning(f"Error clearing context {handle.context_id}: {e}")
                    health = BrowserHealth.CRASHED

            if health == BrowserHealth.HEALTHY:
                self._idle.append(handle)
            else:
                self._total_discarded += 1
                await self._close_handle(handle)
                logger.info(f"Discarded browser context {handle.context_id} ({health.value})")
        finally:
            self._slots.release()

    @asynccontextmanager
    async def worker(self, timeout: Optional[float] = None):
        """
        Scoped acquisition that releases on every exit path.

        Page-level failures (ExtractionError) return the handle to the pool
        and do not count against its health. Any other exception, including
        cancellation, discards it.
        """
        handle = await self.acquire(timeout)
        failed = False
        try:
            yield handle
            handle.stats.record_use()
        except ExtractionError:
            handle.stats.record_use(page_failed=True)
            raise
        except BaseException:
            handle.stats.record_use(crashed=True)
            failed = True
            raise
        finally:
            await asyncio.shield(self.release(handle, failed=failed))

    async def with_worker(
        self,
        fn: Callable[[WorkerHandle], Awaitable[T]],
        timeout: Optional[float] = None,
    ) -> T:
        """Run ``fn`` with a borrowed handle and release it afterwards."""
        async with self.worker(timeout) as handle:
            return await fn(handle)

    def get_status(self) -> PoolStatus:
        """Get current pool status."""
        uptime = 0.0
        if self._start_time:
            uptime = (datetime.now() - self._start_time).total_seconds()

        in_use = sum(1 for h in self._live.values() if h.in_use)
        return PoolStatus(
            capacity=self.max_size,
            live_handles=len(self._live),
            idle=len(self._idle),
            in_use=in_use,
            total_acquired=self._total_acquired,
            total_discarded=self._total_discarded,
            uptime_seconds=uptime,
        )

    @property
    def is_started(self) -> bool:
        """Whether pool has been started."""
        return self._started
