"""
Challenge solving for search result pages.

A solve runs through a small state machine:

    NONE -> DETECTED -> SITEKEY_EXTRACTED -> SUBMITTED -> SOLVED | FAILED

Detection is done by the caller (detect()); solve() takes a detected page
through extraction, submission, polling and token injection. Solving does
not guarantee passage: the caller loads the search URL again and re-checks.

Usage:
    solver = ChallengeSolver(TwoCaptchaClient(api_key))
    capture = solver.attach(page)          # before navigation
    await page.goto(url)
    if await solver.detect(page):
        outcome = await solver.solve(page, capture, proxy=session.proxy)
        if outcome.solved:
            await page.goto(url)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from src.crawler.challenge_detector import detect_challenge
from src.crawler.proxy_pool import ProxyEndpoint
from src.crawler.sitekey import extract_sitekey, sitekey_from_url
from src.crawler.solving_service import SolveTask, SolvingServiceError, TwoCaptchaClient
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Page, Request

logger = get_logger(__name__)

WIDGET_SELECTOR = 'iframe[src*="recaptcha"], .g-recaptcha, [data-sitekey]'


class ChallengeState(str, Enum):
    """Solve progress."""

    NONE = "none"
    DETECTED = "detected"
    SITEKEY_EXTRACTED = "sitekey_extracted"
    SUBMITTED = "submitted"
    SOLVED = "solved"
    FAILED = "failed"


@dataclass(frozen=True)
class Challenge:
    """A challenge ready for submission.

    Attributes:
        site_key: Widget sitekey.
        page_url: URL of the page showing the widget.
        source: Extraction strategy that found the key.
    """

    site_key: str
    page_url: str
    source: str = "unknown"


@dataclass
class SolveOutcome:
    """Result of one solve() call.

    Attributes:
        state: Final state (SOLVED or FAILED).
        challenge: Extracted challenge, if extraction got that far.
        task: Submitted task, if submission got that far.
        error: Why the solve failed.
        history: Every state entered, in order.
    """

    state: ChallengeState = ChallengeState.NONE
    challenge: Challenge | None = None
    task: SolveTask | None = None
    error: str | None = None
    history: list[ChallengeState] = field(default_factory=list)

    @property
    def solved(self) -> bool:
        return self.state == ChallengeState.SOLVED

    def advance(self, state: ChallengeState) -> None:
        self.state = state
        self.history.append(state)

    def fail(self, error: str) -> SolveOutcome:
        self.error = error
        self.advance(ChallengeState.FAILED)
        return self


class SitekeyCapture:
    """Records sitekeys seen in outgoing requests of a page.

    Attach before navigation so requests made while the challenge widget
    loads are observed.
    """

    def __init__(self) -> None:
        self.site_key: str | None = None

    def attach(self, page: Page) -> SitekeyCapture:
        page.on("request", self._on_request)
        return self

    def _on_request(self, request: Request) -> None:
        if self.site_key is not None:
            return
        key = sitekey_from_url(request.url)
        if key:
            self.site_key = key
            logger.debug("Sitekey captured from network request", key_prefix=key[:8])


# Writes the token, fires any registered callback, and submits the form on
# the next tick so evaluate() returns before the page navigates away.
_INJECT_JS = """
(token) => {
    const fields = document.querySelectorAll(
        '#g-recaptcha-response, textarea[name="g-recaptcha-response"]'
    );
    fields.forEach((f) => {
        f.innerHTML = token;
        f.value = token;
    });

    let callbackFired = false;
    const fire = (cb) => {
        const fn = typeof cb === 'function' ? cb : window[cb];
        if (typeof fn !== 'function') return false;
        try { fn(token); return true; } catch (e) { return false; }
    };

    const widget = document.querySelector('[data-callback]');
    if (widget) {
        callbackFired = fire(widget.getAttribute('data-callback'));
    }

    const cfg = window.___grecaptcha_cfg;
    if (!callbackFired && cfg && cfg.clients) {
        const visit = (obj, depth) => {
            if (!obj || typeof obj !== 'object' || depth > 5 || callbackFired) return;
            for (const key of Object.keys(obj)) {
                const value = obj[key];
                if (!value || typeof value !== 'object') continue;
                if ('callback' in value && fire(value.callback)) {
                    callbackFired = true;
                    return;
                }
                visit(value, depth + 1);
            }
        };
        Object.values(cfg.clients).forEach((client) => visit(client, 0));
    }

    const form = (fields.length && fields[0].closest('form'))
        || document.querySelector('#captcha-form')
        || document.querySelector('form');
    if (form) {
        setTimeout(() => form.submit(), 0);
    }

    return { fields: fields.length, callback: callbackFired, submitted: Boolean(form) };
}
"""


class ChallengeSolver:
    """
    Solves reCAPTCHA challenges through the solving service.

    Without a client (no credentials configured) every solve fails
    immediately and the caller rotates identity instead.
    """

    def __init__(
        self,
        client: TwoCaptchaClient | None = None,
        poll_interval: float = 5.0,
        max_polls: int = 40,
        extraction_attempts: int = 3,
        extraction_retry_delay: float = 2.0,
        widget_wait_ms: int = 5_000,
        widget_settle: float = 2.0,
        post_inject_delay: float = 3.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._extraction_attempts = max(1, extraction_attempts)
        self._extraction_retry_delay = extraction_retry_delay
        self._widget_wait_ms = widget_wait_ms
        self._widget_settle = widget_settle
        self._post_inject_delay = post_inject_delay
        self._sleep = sleep

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    def attach(self, page: Page) -> SitekeyCapture:
        """Start capturing sitekeys from the page's requests."""
        return SitekeyCapture().attach(page)

    async def detect(self, page: Page) -> bool:
        return await detect_challenge(page)

    async def solve(
        self,
        page: Page,
        capture: SitekeyCapture | None = None,
        proxy: ProxyEndpoint | None = None,
    ) -> SolveOutcome:
        """Take a detected challenge through to an injected token.

        Args:
            page: Page showing the challenge.
            capture: Network capture attached before navigation.
            proxy: Proxy the browser egresses through; the task is bound to it.

        Returns:
            Outcome in state SOLVED or FAILED. Never raises for service errors.
        """
        outcome = SolveOutcome()
        outcome.advance(ChallengeState.DETECTED)

        if self._client is None:
            logger.warning("Challenge detected but no solving credentials configured")
            return outcome.fail("solver not configured")

        challenge = await self.extract_challenge(page, capture)
        if challenge is None:
            logger.warning("Sitekey extraction failed", attempts=self._extraction_attempts)
            return outcome.fail("sitekey not found")
        outcome.challenge = challenge
        outcome.advance(ChallengeState.SITEKEY_EXTRACTED)

        try:
            task = await self._client.create_task(challenge.site_key, challenge.page_url, proxy)
        except SolvingServiceError as e:
            return outcome.fail(f"submission failed: {e}")
        outcome.task = task
        outcome.advance(ChallengeState.SUBMITTED)

        try:
            token = await self._poll(task)
        except SolvingServiceError as e:
            return outcome.fail(f"polling failed: {e}")
        if token is None:
            logger.warning("Solving service did not return a token in time", task_id=task.task_id)
            return outcome.fail("solve timed out")

        try:
            await self.inject(page, token)
        except Exception as e:
            return outcome.fail(f"injection failed: {e}")
        outcome.advance(ChallengeState.SOLVED)
        logger.info("Challenge solved", task_id=task.task_id, source=challenge.source)
        return outcome

    async def extract_challenge(
        self,
        page: Page,
        capture: SitekeyCapture | None = None,
    ) -> Challenge | None:
        """Find the sitekey, retrying while the widget renders.

        Returns:
            Challenge, or None after all attempts.
        """
        try:
            await page.wait_for_selector(WIDGET_SELECTOR, timeout=self._widget_wait_ms)
            await self._sleep(self._widget_settle)
        except Exception as e:
            logger.debug("Challenge widget did not appear", error=str(e))

        for attempt in range(self._extraction_attempts):
            if capture is not None and capture.site_key:
                return Challenge(capture.site_key, page.url, source="network")

            try:
                html = await page.content()
            except Exception as e:
                logger.debug("Could not read page for sitekey", attempt=attempt + 1, error=str(e))
                html = ""

            found = extract_sitekey(html)
            if found is not None:
                site_key, source = found
                logger.debug("Sitekey extracted", source=source, attempt=attempt + 1)
                return Challenge(site_key, page.url, source=source)

            if attempt + 1 < self._extraction_attempts:
                await self._sleep(self._extraction_retry_delay)

        return None

    async def _poll(self, task: SolveTask) -> str | None:
        """Poll until ready, at most max_polls times."""
        assert self._client is not None  # Checked by solve()
        for poll in range(self._max_polls):
            await self._sleep(self._poll_interval)
            result = await self._client.get_task_result(task)
            if result.ready:
                logger.debug("Solve task ready", task_id=task.task_id, polls=poll + 1)
                return result.token
        return None

    async def inject(self, page: Page, token: str) -> dict[str, Any]:
        """Write the token into the page and trigger submission.

        Returns:
            What the page script did: fields filled, callback fired, form submitted.
        """
        result = await page.evaluate(_INJECT_JS, token)
        logger.debug("Solution token injected", result=result)
        await self._sleep(self._post_inject_delay)
        return result if isinstance(result, dict) else {}

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
