"""
Sitekey extraction for reCAPTCHA challenges.

The sitekey identifies the challenge widget to the solving service. It can
show up in several places depending on how far the widget has rendered, so
extraction runs an ordered list of strategies over the page HTML and the
first key found wins:

1. iframe src query parameter (k= / sitekey=)
2. widget attribute (data-sitekey / data-site-key)
3. inline script assignments
4. raw HTML patterns

Keys captured from outgoing network requests are handled by the caller
(see ChallengeSolver); sitekey_from_url() parses those URLs.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from urllib.parse import parse_qs, urlsplit

from bs4 import BeautifulSoup

# Real keys are 40 chars; anything this short is a fragment or placeholder
MIN_SITEKEY_LENGTH = 21

_KEY_CHARS = re.compile(r"^[A-Za-z0-9_-]+$")

_SCRIPT_PATTERNS = (
    re.compile(r"""sitekey['"]?\s*[:=]\s*['"]([^'"]+)['"]""", re.IGNORECASE),
    re.compile(r"""data-sitekey['"]?\s*[:=]\s*['"]([^'"]+)['"]""", re.IGNORECASE),
    re.compile(r"""grecaptcha\.render\([^,]+,\s*\{[^}]*sitekey['"]?\s*:\s*['"]([^'"]+)['"]"""),
)

_HTML_PATTERNS = (
    re.compile(r"""data-sitekey=["']([^"']+)["']"""),
    re.compile(r"/recaptcha/api2/anchor\?k=([A-Za-z0-9_-]+)"),
    re.compile(r"/recaptcha/(?:api|enterprise)\.js\?render=([A-Za-z0-9_-]+)"),
)

_WIDGET_SELECTOR = ".g-recaptcha, [data-sitekey], div[class*=recaptcha], div[id*=recaptcha]"


def is_plausible_sitekey(value: str | None) -> bool:
    """Check length and character set of a candidate key."""
    return bool(value) and len(value) >= MIN_SITEKEY_LENGTH and bool(_KEY_CHARS.match(value))


def sitekey_from_url(url: str) -> str | None:
    """Extract a sitekey from a challenge asset or iframe URL.

    Looks at the ``k`` and ``sitekey`` query parameters.

    Args:
        url: Request or iframe URL.

    Returns:
        Sitekey, or None if the URL carries none.
    """
    if "recaptcha" not in url.lower():
        return None
    try:
        query = parse_qs(urlsplit(url).query)
    except ValueError:
        return None
    for param in ("k", "sitekey", "render"):
        for value in query.get(param, []):
            if is_plausible_sitekey(value):
                return value
    return None


def from_iframe_src(soup: BeautifulSoup, html: str) -> str | None:
    for iframe in soup.find_all("iframe"):
        src = iframe.get("src") or ""
        key = sitekey_from_url(src)
        if key:
            return key
    return None


def from_widget_attribute(soup: BeautifulSoup, html: str) -> str | None:
    for element in soup.select(_WIDGET_SELECTOR):
        for attribute in ("data-sitekey", "data-site-key"):
            value = element.get(attribute)
            if isinstance(value, str) and is_plausible_sitekey(value.strip()):
                return value.strip()
    return None


def from_inline_scripts(soup: BeautifulSoup, html: str) -> str | None:
    for script in soup.find_all("script"):
        text = script.string or script.get_text() or ""
        for pattern in _SCRIPT_PATTERNS:
            for match in pattern.finditer(text):
                if is_plausible_sitekey(match.group(1)):
                    return match.group(1)
    return None


def from_raw_html(soup: BeautifulSoup, html: str) -> str | None:
    for pattern in _HTML_PATTERNS:
        for match in pattern.finditer(html):
            if is_plausible_sitekey(match.group(1)):
                return match.group(1)
    return None


SitekeyStrategy = Callable[[BeautifulSoup, str], str | None]

SITEKEY_STRATEGIES: tuple[tuple[str, SitekeyStrategy], ...] = (
    ("iframe_src", from_iframe_src),
    ("widget_attribute", from_widget_attribute),
    ("inline_script", from_inline_scripts),
    ("raw_html", from_raw_html),
)


def extract_sitekey(html: str) -> tuple[str, str] | None:
    """Run the HTML strategies in order.

    Args:
        html: Page HTML.

    Returns:
        (sitekey, strategy name) for the first strategy that finds a key,
        or None.
    """
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    for name, strategy in SITEKEY_STRATEGIES:
        key = strategy(soup, html)
        if key:
            return key, name
    return None
