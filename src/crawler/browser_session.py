"""
Headless browser session control for GuestLens.

One SessionController owns at most one live browser session. The session is
launched lazily through the proxy pool, reused while it stays healthy, and
released (context, browser and driver closed) before every identity rotation.

Proxy credentials are bound at launch, so pages authenticate against the
proxy without a separate step.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from src.crawler.proxy_pool import ProxyEndpoint, ProxyPool
from src.crawler.stealth import Identity, apply_identity, get_stealth_args
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright

logger = get_logger(__name__)


# =============================================================================
# Timeouts
# =============================================================================


@dataclass(frozen=True)
class TimeoutProfile:
    """Timeouts (milliseconds) applied to pages of a session.

    Attributes:
        navigation_ms: page.goto / reload timeout.
        default_ms: Timeout for every other page operation.
        selector_ms: Results-container wait.
    """

    navigation_ms: int = 30_000
    default_ms: int = 30_000
    selector_ms: int = 10_000

    @classmethod
    def for_environment(cls, resource_constrained: bool) -> TimeoutProfile:
        """Pick timeouts for the host.

        Memory-limited hosts render slowly, so they get twice the budget.
        """
        if resource_constrained:
            return cls(navigation_ms=60_000, default_ms=60_000, selector_ms=20_000)
        return cls()


# =============================================================================
# Session
# =============================================================================


@dataclass
class BrowserSession:
    """A launched browser egressing through one proxy.

    Attributes:
        playwright: Playwright driver handle.
        browser: Chromium browser.
        context: Browser context holding cookies for this session.
        proxy: Proxy the browser egresses through (None for a direct connection).
    """

    playwright: Playwright
    browser: Browser
    context: BrowserContext
    proxy: ProxyEndpoint | None = None

    @property
    def is_live(self) -> bool:
        try:
            return bool(self.browser.is_connected())
        except Exception:
            return False

    async def clear_cookies(self) -> None:
        await self.context.clear_cookies()


class SessionController:
    """
    Single-flight owner of the browser session.

    acquire() returns the live session or launches a new one; concurrent
    callers share one launch. release() tears the session down and is safe
    to call any number of times.

    Example:
        controller = SessionController(pool, timeouts=TimeoutProfile())
        session = await controller.acquire(identity)
        page = await controller.new_page(identity)
        ...
        await controller.release()
    """

    def __init__(
        self,
        pool: ProxyPool,
        fallback_proxy: ProxyEndpoint | None = None,
        timeouts: TimeoutProfile | None = None,
        headless: bool = True,
        timezone_id: str = "Europe/Amsterdam",
    ) -> None:
        self._pool = pool
        self._fallback_proxy = fallback_proxy
        self._timeouts = timeouts or TimeoutProfile()
        self._headless = headless
        self._timezone_id = timezone_id

        self._session: BrowserSession | None = None
        self._last_proxy: ProxyEndpoint | None = None
        self._lock = asyncio.Lock()

        self._launch_count = 0

    @property
    def timeouts(self) -> TimeoutProfile:
        return self._timeouts

    @property
    def session(self) -> BrowserSession | None:
        return self._session

    @property
    def proxy(self) -> ProxyEndpoint | None:
        """Proxy of the live session, or of the most recent launch attempt."""
        if self._session is not None:
            return self._session.proxy
        return self._last_proxy

    @property
    def launch_count(self) -> int:
        return self._launch_count

    async def acquire(self, identity: Identity) -> BrowserSession:
        """Return the live session, launching one if needed.

        Args:
            identity: Identity used for the context of a newly launched session.

        Returns:
            Live browser session.

        Raises:
            Exception: Playwright launch errors propagate after partial cleanup.
        """
        async with self._lock:
            if self._session is not None and self._session.is_live:
                return self._session

            if self._session is not None:
                logger.info("Browser session lost, relaunching")
                await self._close_session()

            self._session = await self._launch(identity)
            return self._session

    async def _launch(self, identity: Identity) -> BrowserSession:
        from playwright.async_api import async_playwright

        proxy = self._pool.next() or self._fallback_proxy
        self._last_proxy = proxy

        playwright = await async_playwright().start()
        browser = None
        try:
            launch_options: dict[str, Any] = {
                "headless": self._headless,
                "args": get_stealth_args(identity.viewport_width, identity.viewport_height),
                "ignore_default_args": ["--enable-automation"],
            }
            if proxy is not None:
                launch_options["proxy"] = proxy.to_playwright_proxy()

            browser = await playwright.chromium.launch(**launch_options)
            context = await browser.new_context(
                user_agent=identity.user_agent,
                locale=identity.locale,
                timezone_id=self._timezone_id,
                viewport=identity.viewport,
            )
        except Exception:
            if browser is not None:
                await _close_quietly(browser.close(), "browser")
            await _close_quietly(playwright.stop(), "playwright")
            raise

        self._launch_count += 1
        logger.info(
            "Browser session launched",
            proxy=proxy.masked if proxy else None,
            headless=self._headless,
        )
        return BrowserSession(playwright=playwright, browser=browser, context=context, proxy=proxy)

    async def new_page(self, identity: Identity) -> Page:
        """Open a page on the live session with timeouts and identity applied.

        Raises:
            RuntimeError: If no session has been acquired.
        """
        if self._session is None:
            raise RuntimeError("No browser session acquired")

        page = await self._session.context.new_page()
        page.set_default_navigation_timeout(self._timeouts.navigation_ms)
        page.set_default_timeout(self._timeouts.default_ms)
        await apply_identity(page, identity)
        return page

    async def release(self) -> None:
        """Close the session (context, browser, driver). Idempotent."""
        async with self._lock:
            await self._close_session()

    async def _close_session(self) -> None:
        """Close without taking the lock (caller must hold it)."""
        session = self._session
        self._session = None
        if session is None:
            return

        await _close_quietly(session.context.close(), "context")
        await _close_quietly(session.browser.close(), "browser")
        await _close_quietly(session.playwright.stop(), "playwright")
        logger.debug(
            "Browser session released",
            proxy=session.proxy.masked if session.proxy else None,
        )


async def _close_quietly(closing: Any, what: str) -> None:
    """Await a close coroutine; teardown errors are logged, not raised."""
    try:
        await closing
    except Exception as e:
        logger.debug("Error during browser cleanup", resource=what, error=str(e))


# =============================================================================
# Navigation
# =============================================================================


async def navigate(page: Page, url: str, timeout_ms: int | None = None) -> None:
    """Navigate, retrying once immediately on a navigation timeout.

    A second timeout propagates to the caller, which treats it as an
    identity failure.

    Args:
        page: Page to navigate.
        url: Target URL.
        timeout_ms: Navigation timeout. Uses the page default if None.
    """
    options: dict[str, Any] = {"wait_until": "domcontentloaded"}
    if timeout_ms is not None:
        options["timeout"] = timeout_ms

    try:
        await page.goto(url, **options)
    except PlaywrightTimeoutError:
        logger.info("Navigation timed out, retrying once", url=url[:120])
        await page.goto(url, **options)
