"""Challenge page detection for search result pages.

Any one of four signals marks a page as a challenge: a known challenge
widget in the DOM, a block/challenge phrase in the page content, a block
path in the URL, or a block indicator in the title.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from src.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = get_logger(__name__)

# Widget selectors, checked against the live DOM
CHALLENGE_SELECTORS = (
    'iframe[src*="recaptcha"]',
    "#captcha-form",
    ".g-recaptcha",
    "#recaptcha",
    ".captcha-container",
)

# Same widgets as they appear in raw HTML
_WIDGET_MARKUP = (
    'id="captcha-form"',
    'class="g-recaptcha"',
    'id="recaptcha"',
    'class="captcha-container"',
    "google.com/recaptcha/api2/anchor",
    "recaptcha/api2/bframe",
)

# Bare "captcha"/"recaptcha" are left out: result snippets mention them
# and the widgets are already covered above.
CHALLENGE_PHRASES = (
    "unusual traffic",
    "unusual traffic from your computer",
    "not a robot",
    "i'm not a robot",
    "verify you are human",
    "verify you're human",
    "automated queries",
    "sorry...we're sorry",
    "g-recaptcha",
    "/sorry/index",
    "ipv4.google.com/sorry",
    # Dutch
    "onze systemen hebben ongebruikelijk verkeer",
    "ongewoon verkeer",
    "bent geen robot",
)

URL_MARKERS = ("/sorry", "captcha", "recaptcha")

TITLE_MARKERS = ("sorry", "captcha", "blocked")

# "<query> - Google Zoeken", "<query> - Google Search": the title echoes the query
_RESULTS_TITLE = re.compile(r"\s[-–]\s*Google(\s+\w+)?\s*$", re.IGNORECASE)


def challenge_signal(html: str, url: str = "", title: str = "") -> str | None:
    """Name the first challenge signal found in a page snapshot.

    Args:
        html: Page HTML.
        url: Current page URL.
        title: Page title.

    Returns:
        "widget", "phrase", "url" or "title", or None for an ordinary page.
    """
    content_lower = html.lower()

    if any(marker.lower() in content_lower for marker in _WIDGET_MARKUP):
        return "widget"

    if any(phrase in content_lower for phrase in CHALLENGE_PHRASES):
        return "phrase"

    location = _location(url)
    if location and any(marker in location for marker in URL_MARKERS):
        return "url"

    if _title_has_marker(title):
        return "title"

    return None


def _location(url: str) -> str:
    """Host and path of a URL; the query string carries the search terms."""
    parts = urlsplit(url)
    return f"{parts.netloc}{parts.path}".lower()


def _title_has_marker(title: str) -> bool:
    """Check a page title for block indicators.

    Result page titles carry the query and are never a signal. The block
    page's title is often its own URL, which is matched on host and path.
    """
    title = title.strip()
    if not title or _RESULTS_TITLE.search(title):
        return False

    text = _location(title) if title.lower().startswith(("http://", "https://")) else title.lower()
    return any(marker in text for marker in TITLE_MARKERS)


def is_challenge_page(html: str, url: str = "", title: str = "") -> bool:
    """Check if a page snapshot is a challenge/block page.

    Args:
        html: Page HTML.
        url: Current page URL.
        title: Page title.

    Returns:
        True if any challenge signal is present.
    """
    return challenge_signal(html, url, title) is not None


async def detect_challenge(page: Page) -> bool:
    """Check a live page for a challenge.

    Widget selectors are checked against the DOM first, then the page
    snapshot goes through is_challenge_page(). Errors reading the page are
    logged and count as no challenge; the results wait that follows will
    surface a broken page.

    Args:
        page: Playwright page after navigation.

    Returns:
        True if a challenge is present.
    """
    try:
        for selector in CHALLENGE_SELECTORS:
            if await page.query_selector(selector) is not None:
                logger.info("Challenge detected", signal="selector", selector=selector)
                return True

        html = await page.content()
        title = await page.title()
        signal = challenge_signal(html, page.url, title)
    except Exception as e:
        logger.warning("Challenge detection failed", error=str(e))
        return False

    if signal is not None:
        logger.info("Challenge detected", signal=signal, url=page.url[:120])
        return True
    return False
