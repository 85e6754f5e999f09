"""
Feature extraction from a rendered page.

The extractor performs one navigation with a bounded timeout on a pooled
browser handle and turns the rendered DOM into an immutable PageSnapshot.
HTML parsing is a pure function (build_snapshot) so it can be exercised
without a browser.
"""

import logging
import time
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from seo_audit.exceptions import ExtractionError, ExtractionReason
from seo_audit.infrastructure.browser_pool import WorkerHandle
from seo_audit.models import PageSnapshot

logger = logging.getLogger(__name__)

# Substrings of Playwright errors that mean the browser itself is gone,
# as opposed to the target page failing to load.
BROWSER_CRASH_MARKERS = (
    "target page, context or browser has been closed",
    "browser has been closed",
    "page crashed",
    "browser closed",
)

DNS_FAILURE_MARKERS = (
    "err_name_not_resolved",
    "ns_error_unknown_host",
    "could not resolve host",
)

MAX_HEADINGS = 50
MAX_HEADING_CHARS = 200

TIMING_SCRIPT = """
() => {
    const nav = performance.getEntriesByType('navigation')[0];
    if (!nav) {
        return null;
    }
    return {
        dom_content_loaded: nav.domContentLoadedEventEnd,
        load_event: nav.loadEventEnd,
    };
}
"""


def is_browser_crash(error: BaseException) -> bool:
    """Whether a Playwright error indicates a dead browser or context."""
    message = str(error).lower()
    return any(marker in message for marker in BROWSER_CRASH_MARKERS)


def build_snapshot(
    url: str,
    final_url: str,
    status_code: int,
    html: str,
    load_time_ms: float,
    dom_content_loaded_ms: Optional[float] = None,
) -> PageSnapshot:
    """Parse rendered HTML into a PageSnapshot.

    Args:
        url: URL the job asked for
        final_url: URL after redirects
        status_code: Final HTTP status
        html: Rendered document
        load_time_ms: Load timing in milliseconds
        dom_content_loaded_ms: DOMContentLoaded timing, if measured

    Returns:
        PageSnapshot with deterministic field ordering

    Raises:
        ExtractionError: If the document is empty
    """
    if not html or not html.strip():
        raise ExtractionError(
            ExtractionReason.EMPTY_DOCUMENT,
            f"Page {final_url} rendered an empty document",
            status_code=status_code,
        )

    soup = BeautifulSoup(html, "html.parser")
    base_domain = urlparse(final_url).netloc.lower()

    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""

    description_tag = soup.find("meta", attrs={"name": "description"})
    meta_description = (description_tag.get("content") or "").strip() if description_tag else ""

    canonical_tag = soup.find("link", attrs={"rel": "canonical"})
    canonical_url = canonical_tag.get("href") if canonical_tag else None

    robots_tag = soup.find("meta", attrs={"name": "robots"})
    robots = robots_tag.get("content") if robots_tag else None

    viewport_tag = soup.find("meta", attrs={"name": "viewport"})
    viewport = viewport_tag.get("content") if viewport_tag else None

    html_tag = soup.find("html")
    lang = html_tag.get("lang") if html_tag else None

    # Heading hierarchy in document order
    headings = []
    for tag in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
        text = tag.get_text(" ", strip=True)[:MAX_HEADING_CHARS]
        headings.append((int(tag.name[1]), text))
        if len(headings) >= MAX_HEADINGS:
            break

    internal_links = 0
    external_links = 0
    for link in soup.find_all("a", href=True):
        absolute = urlparse(urljoin(final_url, link["href"]))
        if absolute.scheme not in ("http", "https"):
            continue
        if absolute.netloc.lower() == base_domain:
            internal_links += 1
        else:
            external_links += 1

    images = soup.find_all("img")
    images_with_alt = sum(1 for img in images if (img.get("alt") or "").strip())

    open_graph = {}
    for meta in soup.find_all("meta", property=True):
        prop = meta.get("property", "")
        if prop.startswith("og:"):
            open_graph[prop] = meta.get("content", "")

    json_ld_count = len(soup.find_all("script", type="application/ld+json"))

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    word_count = len(soup.get_text(separator=" ", strip=True).split())

    return PageSnapshot(
        url=url,
        final_url=final_url,
        status_code=status_code,
        title=title,
        meta_description=meta_description,
        canonical_url=canonical_url,
        lang=lang,
        robots=robots,
        viewport=viewport,
        headings=tuple(headings),
        internal_links=internal_links,
        external_links=external_links,
        total_images=len(images),
        images_with_alt=images_with_alt,
        word_count=word_count,
        open_graph=tuple(sorted(open_graph.items())),
        json_ld_count=json_ld_count,
        load_time_ms=load_time_ms,
        dom_content_loaded_ms=dom_content_loaded_ms,
    )


class FeatureExtractor:
    """Loads a page on a borrowed browser handle and snapshots it."""

    def __init__(self, wait_until: str = "load"):
        self.wait_until = wait_until

    async def extract(
        self,
        handle: WorkerHandle,
        url: str,
        navigation_timeout: float,
    ) -> PageSnapshot:
        """
        Navigate once and build a snapshot.

        Args:
            handle: Browser handle from the worker pool
            url: URL to load
            navigation_timeout: Navigation timeout in seconds

        Returns:
            PageSnapshot of the rendered page

        Raises:
            ExtractionError: On DNS failure, navigation timeout, or a final
                status outside 2xx/3xx
            Exception: Playwright errors that indicate a browser crash are
                re-raised unchanged so the pool discards the handle
        """
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        page = await handle.new_page()
        start = time.monotonic()
        try:
            try:
                response = await page.goto(
                    url,
                    wait_until=self.wait_until,
                    timeout=navigation_timeout * 1000,
                )
            except PlaywrightTimeoutError as e:
                raise ExtractionError(
                    ExtractionReason.NAVIGATION_TIMEOUT,
                    f"Navigation to {url} exceeded {navigation_timeout}s",
                ) from e
            except PlaywrightError as e:
                if is_browser_crash(e):
                    raise
                message = str(e).lower()
                if any(marker in message for marker in DNS_FAILURE_MARKERS):
                    raise ExtractionError(
                        ExtractionReason.DNS_FAILURE,
                        f"Could not resolve host for {url}",
                    ) from e
                raise ExtractionError(
                    ExtractionReason.NAVIGATION_FAILED,
                    f"Failed to load {url}: {e}",
                ) from e

            load_time_ms = (time.monotonic() - start) * 1000
            status_code = response.status if response else 0
            if not 200 <= status_code < 400:
                raise ExtractionError(
                    ExtractionReason.HTTP_STATUS,
                    f"{url} returned HTTP {status_code}",
                    status_code=status_code,
                )

            html = await page.content()
            timing = await self._navigation_timing(page)
            final_url = page.url or url

            snapshot = build_snapshot(
                url=url,
                final_url=final_url,
                status_code=status_code,
                html=html,
                load_time_ms=timing.get("load_event") or load_time_ms,
                dom_content_loaded_ms=timing.get("dom_content_loaded"),
            )
            logger.info(
                f"Extracted snapshot for {url} (status={status_code}, "
                f"words={snapshot.word_count}, headings={len(snapshot.headings)})"
            )
            return snapshot
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"Error closing page for {url}: {e}")

    async def _navigation_timing(self, page: Any) -> dict[str, float]:
        """Read navigation timing entries; empty when unavailable."""
        try:
            timing = await page.evaluate(TIMING_SCRIPT)
        except Exception as e:
            logger.warning(f"Failed to read navigation timing: {e}")
            return {}
        if not timing:
            return {}
        return {key: float(value) for key, value in timing.items() if value}
