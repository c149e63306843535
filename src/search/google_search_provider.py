"""
Browser-based Google Search Provider for GuestLens.

Drives a headless browser against Google, which actively fights automated
access. Each search runs a bounded number of attempts; every attempt
presents its own identity (proxy, user agent, fingerprint). An attempt that
hits a challenge it cannot clear, or fails in any other way, quarantines
its proxy, releases the browser and hands over to the next attempt.

Design Philosophy:
- Expected failures never raise; an empty list means "nothing found"
- One browser session and one pacing gate per provider instance
- A challenge that comes back after a successful solve means the identity
  is flagged; it is rotated, never re-solved
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from src.crawler.browser_session import SessionController, TimeoutProfile, navigate
from src.crawler.challenge_solver import ChallengeSolver, SitekeyCapture
from src.crawler.page_content import clean_page_text, parse_linkedin_headline
from src.crawler.proxy_pool import ProxyEndpoint, ProxyPool, parse_proxy_url
from src.crawler.solving_service import TwoCaptchaClient
from src.crawler.stealth import Identity, build_identity
from src.search.guest_query import (
    LINKEDIN_PROFILE_MARKER,
    GuestSearchSummary,
    build_guest_query,
    summarize_guest_results,
)
from src.search.pacing import PacingGate
from src.search.parsers.google import RESULTS_SELECTOR, GoogleParser, build_search_url
from src.search.provider import (
    BaseSearchProvider,
    HealthState,
    HealthStatus,
    ResultRecord,
)
from src.utils.config import Settings, get_settings
from src.utils.logging import LogContext, get_logger
from src.utils.secure_logging import sanitize_error

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = get_logger(__name__)


CONSENT_LABELS = ("Accept all", "Alles accepteren", "Ik ga akkoord", "I agree")

_CONSENT_JS = """
(labels) => {
    const buttons = Array.from(document.querySelectorAll('button, [role="button"]'));
    const match = buttons.find((b) => labels.some((label) => (b.textContent || '').includes(label)));
    if (!match) return false;
    match.click();
    return true;
}
"""


# =============================================================================
# Attempt Bookkeeping
# =============================================================================


class AttemptOutcome(str, Enum):
    """How one attempt ended."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    EXHAUSTED = "exhausted"


@dataclass
class SearchAttempt:
    """One attempt of a logical search. Never persisted.

    Attributes:
        query: Search query.
        attempt: Zero-based attempt index.
        proxy: Proxy the attempt egressed through.
        outcome: How the attempt ended.
        reason: Failure reason for non-successful attempts.
        results: Records found by a successful attempt.
    """

    query: str
    attempt: int
    proxy: ProxyEndpoint | None = None
    outcome: AttemptOutcome | None = None
    reason: str | None = None
    results: list[ResultRecord] = field(default_factory=list)


class IdentityFlaggedError(Exception):
    """The current identity cannot get past a challenge."""


# =============================================================================
# Google Search Provider
# =============================================================================


class GoogleSearchProvider(BaseSearchProvider):
    """
    Resilient Google search through a rotating headless browser.

    Example:
        provider = GoogleSearchProvider()
        results = await provider.search('"Jane Doe" "Acme"', max_results=10)
        for record in results:
            print(record.title, record.link)
        await provider.close()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        pool: ProxyPool | None = None,
        controller: SessionController | None = None,
        solver: ChallengeSolver | None = None,
        pacing: PacingGate | None = None,
        parser: GoogleParser | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize provider. Collaborators default to instances built from settings.

        Raises:
            ProxyParseError: If a configured proxy URL is invalid.
        """
        super().__init__("google_browser")

        self._settings = settings or get_settings()
        acquisition = self._settings.acquisition
        proxy_config = self._settings.proxy

        self._timeouts = (
            controller.timeouts
            if controller is not None
            else TimeoutProfile.for_environment(acquisition.resource_constrained)
        )
        self._pool = pool or ProxyPool.from_urls(
            proxy_config.pool, quarantine_seconds=proxy_config.quarantine_seconds
        )
        self._controller = controller or SessionController(
            self._pool,
            fallback_proxy=(
                parse_proxy_url(proxy_config.fallback_url) if proxy_config.fallback_url else None
            ),
            timeouts=self._timeouts,
            headless=self._settings.browser.headless,
            timezone_id=self._settings.browser.timezone_id,
        )
        self._solver = solver or build_solver(self._settings)
        self._pacing = pacing or PacingGate(acquisition.min_interval_seconds)
        self._parser = parser or GoogleParser()
        self._sleep = sleep

        self._max_retries = acquisition.max_retries
        self._identity_seed = 0
        self._last_attempts: list[SearchAttempt] = []

        # Health metrics
        self._success_count = 0
        self._failure_count = 0
        self._captcha_count = 0
        self._solved_count = 0
        self._rotation_count = 0
        self._total_latency = 0.0
        self._last_error: str | None = None

    @property
    def last_attempts(self) -> list[SearchAttempt]:
        """Attempts of the most recent logical search."""
        return list(self._last_attempts)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def search(
        self,
        query: str,
        max_results: int = 10,
        retry_count: int = 0,
        *,
        timeout: float | None = None,
    ) -> list[ResultRecord]:
        """
        Search Google.

        Args:
            query: Search query.
            max_results: Upper bound on returned records.
            retry_count: Attempts already spent on this query.
            timeout: Overall deadline in seconds for the whole call.

        Returns:
            Result records; empty when nothing was found, retries ran out
            or the deadline passed.

        Raises:
            ValueError: If retry_count is negative.
            RuntimeError: If the provider is closed.
            asyncio.CancelledError: If the caller cancels (session released first).
        """
        self._check_closed()
        if retry_count < 0:
            raise ValueError(f"retry_count must be >= 0, got {retry_count}")
        self._identity_seed += 1

        async def run() -> list[ResultRecord]:
            return await self._search_with_retries(query, max_results, retry_count)

        with LogContext.for_search(query):
            return await self._run_bounded(run, timeout, query)

    async def deep_search(
        self,
        query: str,
        total_results: int = 100,
        *,
        timeout: float | None = None,
    ) -> list[ResultRecord]:
        """
        Collect results over several result pages.

        Pages are fetched in order until total_results are collected, a page
        comes back empty, or the page limit is reached. Every page gets the
        full retry budget.

        Args:
            query: Search query.
            total_results: Number of records wanted.
            timeout: Overall deadline in seconds for all pages.

        Returns:
            Records across pages without duplicate links, at most total_results.
        """
        self._check_closed()
        self._identity_seed += 1

        acquisition = self._settings.acquisition
        page_size = acquisition.page_size
        page_count = min(math.ceil(max(total_results, 0) / page_size), acquisition.max_pages)

        async def run() -> list[ResultRecord]:
            collected: list[ResultRecord] = []
            seen: set[str] = set()

            for page_index in range(page_count):
                if page_index > 0:
                    await self._sleep(acquisition.inter_page_delay_seconds)

                page_results = await self._search_with_retries(
                    query, page_size, 0, start=page_index * page_size
                )
                if not page_results:
                    logger.info("Result page empty, stopping", page=page_index + 1)
                    break

                for record in page_results:
                    if record.link not in seen:
                        seen.add(record.link)
                        collected.append(record)

                logger.info(
                    "Result page collected",
                    page=page_index + 1,
                    page_results=len(page_results),
                    total=len(collected),
                )
                if len(collected) >= total_results:
                    break

            return collected[:total_results]

        with LogContext.for_search(query, mode="deep"):
            return await self._run_bounded(run, timeout, query)

    async def search_guest(
        self,
        full_name: str,
        company: str | None = None,
        country: str | None = None,
        max_results: int = 10,
    ) -> GuestSearchSummary:
        """
        Look a guest up and summarize what was found.

        Returns:
            Summary with LinkedIn profile, job title guess and notable snippets.
        """
        query = build_guest_query(full_name, company, country)
        results = await self.search(query, max_results)
        return summarize_guest_results(query, results, company)

    async def fetch_page_content(self, url: str, max_chars: int | None = None) -> str | None:
        """
        Visible text of a page, loaded through the provider's browser.

        Returns:
            Whitespace-collapsed text, or None for unreachable or near-empty pages.
        """
        if not url:
            return None
        html = await self._fetch_html(url)
        if html is None:
            return None
        return clean_page_text(html, max_chars or self._settings.browser.content_max_chars)

    async def scrape_linkedin_headline(self, url: str) -> str | None:
        """
        Headline of a public LinkedIn profile.

        Returns:
            Headline, or None for non-profile URLs and pages without one.
        """
        if not url or LINKEDIN_PROFILE_MARKER not in url:
            return None
        html = await self._fetch_html(url)
        if html is None:
            return None
        headline = parse_linkedin_headline(html)
        logger.info("LinkedIn headline scraped", found=headline is not None)
        return headline

    # -------------------------------------------------------------------------
    # Retry Loop
    # -------------------------------------------------------------------------

    async def _run_bounded(
        self,
        run: Callable[[], Awaitable[list[ResultRecord]]],
        timeout: float | None,
        query: str,
    ) -> list[ResultRecord]:
        """Run a search under an optional deadline, releasing the session on abort."""
        started = time.monotonic()
        try:
            async with asyncio.timeout(timeout):
                results = await run()
        except TimeoutError:
            logger.warning("Search deadline exceeded", query=query[:80], timeout=timeout)
            await self._controller.release()
            self._record_failure("deadline exceeded")
            return []
        except asyncio.CancelledError:
            logger.info("Search cancelled", query=query[:80])
            await self._controller.release()
            raise

        self._total_latency += (time.monotonic() - started) * 1000
        return results

    async def _search_with_retries(
        self,
        query: str,
        max_results: int,
        first_attempt: int,
        start: int = 0,
    ) -> list[ResultRecord]:
        """Explicit bounded retry loop over attempts first_attempt..max_retries-1."""
        self._last_attempts = []

        for attempt in range(first_attempt, self._max_retries):
            record = await self._attempt(query, max_results, attempt, start)
            self._last_attempts.append(record)

            if record.outcome == AttemptOutcome.SUCCESS:
                self._success_count += 1
                logger.info(
                    "Search completed",
                    query=query[:80],
                    attempt=attempt + 1,
                    result_count=len(record.results),
                )
                return record.results

            if attempt + 1 >= self._max_retries:
                record.outcome = AttemptOutcome.EXHAUSTED

        self._record_failure(
            self._last_attempts[-1].reason if self._last_attempts else "retry budget spent"
        )
        logger.warning(
            "Search retries exhausted",
            query=query[:80],
            attempts=len(self._last_attempts),
            max_retries=self._max_retries,
        )
        return []

    async def _attempt(
        self,
        query: str,
        max_results: int,
        attempt: int,
        start: int,
    ) -> SearchAttempt:
        """Run one attempt under one identity."""
        acquisition = self._settings.acquisition
        identity = self._identity_for(attempt)
        record = SearchAttempt(query=query, attempt=attempt)
        url = build_search_url(
            query,
            num=max_results,
            start=start,
            hl=acquisition.interface_language,
            domain=acquisition.search_domain,
        )

        page: Page | None = None
        try:
            await self._pacing.wait_turn()
            session = await self._controller.acquire(identity)
            record.proxy = session.proxy

            page = await self._controller.new_page(identity)
            await session.clear_cookies()
            capture = self._solver.attach(page)

            logger.debug("Navigating", attempt=attempt + 1, start=start)
            await navigate(page, url, self._timeouts.navigation_ms)
            await self._dismiss_consent(page)
            await self._sleep(acquisition.post_load_delay_seconds)

            if await self._solver.detect(page):
                await self._clear_challenge(page, url, capture, session.proxy)

            if not await self._wait_for_results(page) and await self._solver.detect(page):
                logger.info("Challenge appeared after load")
                await self._clear_challenge(page, url, capture, session.proxy)

            html = await page.content()
            record.results = self._parser.parse(html, base_url=page.url, max_results=max_results)
            record.outcome = AttemptOutcome.SUCCESS
            return record

        except IdentityFlaggedError as e:
            record.reason = str(e)
            logger.info("Identity flagged", attempt=attempt + 1, reason=record.reason)
        except Exception as e:
            record.reason = sanitize_error(e)
            logger.warning("Search attempt failed", attempt=attempt + 1, error=record.reason)
        finally:
            if page is not None:
                await _close_page(page)

        if record.proxy is None:
            record.proxy = self._controller.proxy
        return await self._rotate(record)

    async def _rotate(self, record: SearchAttempt) -> SearchAttempt:
        """Quarantine the attempt's proxy and release the session."""
        self._pool.mark_failed(record.proxy)
        await self._controller.release()
        self._rotation_count += 1
        record.outcome = AttemptOutcome.RETRYABLE
        return record

    # -------------------------------------------------------------------------
    # Page Steps
    # -------------------------------------------------------------------------

    async def _clear_challenge(
        self,
        page: Page,
        url: str,
        capture: SitekeyCapture,
        proxy: ProxyEndpoint | None,
    ) -> None:
        """Solve, load the search URL again and re-check.

        A reload would stay on the block page the challenge was served on,
        so the search URL is requested anew and consent handled again.

        Raises:
            IdentityFlaggedError: If the challenge cannot be solved or comes back.
        """
        acquisition = self._settings.acquisition
        self._captcha_count += 1

        outcome = await self._solver.solve(page, capture, proxy)
        if not outcome.solved:
            raise IdentityFlaggedError(f"challenge not solved: {outcome.error}")

        await self._sleep(acquisition.post_solve_delay_seconds)
        await navigate(page, url, self._timeouts.navigation_ms)
        await self._dismiss_consent(page)
        await self._sleep(acquisition.post_reload_delay_seconds)

        if await self._solver.detect(page):
            raise IdentityFlaggedError("challenge reappeared after solve")

        self._solved_count += 1
        logger.info("Challenge cleared")

    async def _dismiss_consent(self, page: Page) -> bool:
        """Click through the cookie consent dialog if one is shown."""
        acquisition = self._settings.acquisition
        try:
            await page.wait_for_selector(
                "button", timeout=int(acquisition.consent_wait_seconds * 1000)
            )
        except PlaywrightTimeoutError:
            return False

        clicked = bool(await page.evaluate(_CONSENT_JS, list(CONSENT_LABELS)))
        if clicked:
            logger.debug("Consent dialog dismissed")
            await self._sleep(acquisition.post_consent_delay_seconds)
        return clicked

    async def _wait_for_results(self, page: Page) -> bool:
        """Wait for the results container. A timeout is not an error."""
        try:
            await page.wait_for_selector(RESULTS_SELECTOR, timeout=self._timeouts.selector_ms)
            return True
        except PlaywrightTimeoutError:
            logger.info("Results container did not appear", url=page.url[:120])
            return False

    async def _fetch_html(self, url: str) -> str | None:
        """Load a page in the shared session; failures return None."""
        self._check_closed()
        identity = self._identity_for(0)
        timeout_ms = int(self._settings.browser.content_timeout_seconds * 1000)

        page: Page | None = None
        try:
            await self._controller.acquire(identity)
            page = await self._controller.new_page(identity)
            await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            return await page.content()
        except Exception as e:
            logger.warning("Page fetch failed", url=url[:120], error=sanitize_error(e))
            return None
        finally:
            if page is not None:
                await _close_page(page)

    def _identity_for(self, attempt: int) -> Identity:
        browser = self._settings.browser
        return build_identity(
            self._identity_seed + attempt,
            user_agents=browser.user_agents or None,
            accept_language=browser.accept_language,
            locale=browser.locale,
            viewport_width=browser.viewport_width,
            viewport_height=browser.viewport_height,
        )

    def _record_failure(self, reason: str | None) -> None:
        self._failure_count += 1
        self._last_error = reason

    # -------------------------------------------------------------------------
    # Health & Lifecycle
    # -------------------------------------------------------------------------

    async def get_health(self) -> HealthStatus:
        """
        Get current health status.

        Returns:
            HealthStatus based on recent metrics.
        """
        if self._is_closed:
            return HealthStatus.unhealthy("Provider closed")

        total = self._success_count + self._failure_count
        if total == 0:
            return HealthStatus(state=HealthState.UNKNOWN, message="No searches made yet")

        success_rate = self._success_count / total
        captcha_rate = self._captcha_count / total

        if success_rate >= 0.9 and captcha_rate < 0.1:
            return HealthStatus.healthy(latency_ms=self._total_latency / total)
        elif success_rate >= 0.5:
            message = self._last_error
            if captcha_rate >= 0.2:
                message = f"High CAPTCHA rate: {captcha_rate:.0%}"
            return HealthStatus.degraded(success_rate=success_rate, message=message)
        else:
            return HealthStatus.unhealthy(message=self._last_error)

    def get_stats(self) -> dict[str, Any]:
        """Get provider statistics."""
        total = self._success_count + self._failure_count
        return {
            "provider": self.name,
            "success_count": self._success_count,
            "failure_count": self._failure_count,
            "captcha_count": self._captcha_count,
            "solved_count": self._solved_count,
            "rotation_count": self._rotation_count,
            "success_rate": self._success_count / total if total > 0 else 0,
            "avg_latency_ms": self._total_latency / total if total > 0 else 0,
            "proxy_pool_size": len(self._pool),
            "quarantined_proxies": self._pool.quarantined_count(),
            "solver_configured": self._solver.is_configured,
            "last_error": self._last_error,
        }

    def reset_metrics(self) -> None:
        """Reset health metrics. For testing purposes."""
        self._success_count = 0
        self._failure_count = 0
        self._captcha_count = 0
        self._solved_count = 0
        self._rotation_count = 0
        self._total_latency = 0.0
        self._last_error = None

    async def close(self) -> None:
        """Close browser and solving client."""
        try:
            await self._controller.release()
            await self._solver.close()
        except Exception as e:
            logger.warning("Error during provider cleanup", error=str(e))
        await super().close()


async def _close_page(page: Page) -> None:
    try:
        await page.close()
    except Exception as e:
        logger.debug("Error closing page", error=str(e))


def build_solver(settings: Settings) -> ChallengeSolver:
    """Challenge solver from settings; unconfigured when no API key is set."""
    solver_config = settings.solver
    client = (
        TwoCaptchaClient(
            solver_config.api_key,
            base_url=solver_config.base_url,
            timeout=solver_config.request_timeout_seconds,
        )
        if solver_config.api_key
        else None
    )
    # Widgets render slowly on constrained hosts too
    widget_wait = solver_config.widget_wait_seconds
    if settings.acquisition.resource_constrained:
        widget_wait *= 2

    return ChallengeSolver(
        client,
        poll_interval=solver_config.poll_interval_seconds,
        max_polls=solver_config.max_polls,
        extraction_attempts=solver_config.extraction_attempts,
        extraction_retry_delay=solver_config.extraction_retry_delay_seconds,
        widget_wait_ms=int(widget_wait * 1000),
        widget_settle=solver_config.widget_settle_seconds,
        post_inject_delay=solver_config.post_inject_delay_seconds,
    )


# =============================================================================
# Factory Functions
# =============================================================================


_default_provider: GoogleSearchProvider | None = None


def get_google_search_provider() -> GoogleSearchProvider:
    """
    Get or create the default GoogleSearchProvider instance.

    Returns:
        GoogleSearchProvider singleton instance.
    """
    global _default_provider
    if _default_provider is None:
        _default_provider = GoogleSearchProvider()
    return _default_provider


async def cleanup_google_search_provider() -> None:
    """
    Close and cleanup the default GoogleSearchProvider.

    Used for testing cleanup and graceful shutdown.
    """
    global _default_provider
    if _default_provider is not None:
        await _default_provider.close()
        _default_provider = None


def reset_google_search_provider() -> None:
    """
    Reset the default provider. For testing purposes only.
    """
    global _default_provider
    _default_provider = None
