"""
Text extraction from fetched pages.

Used to pull readable text from a result page and the headline from a
LinkedIn profile once a search has produced the links.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

MIN_CONTENT_CHARS = 100
MIN_HEADLINE_CHARS = 10

_NON_CONTENT_TAGS = ("script", "style", "noscript", "iframe", "template", "svg")
_WHITESPACE = re.compile(r"\s+")
_HEADLINE_SEPARATOR = re.compile(r"[|-]")


def clean_page_text(html: str, max_chars: int = 8000) -> str | None:
    """Visible text of a page with whitespace collapsed.

    Args:
        html: Page HTML.
        max_chars: Truncate the text to this length.

    Returns:
        Text, or None when less than MIN_CONTENT_CHARS remain (blank,
        blocked or script-only pages).
    """
    if not html:
        return None

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_NON_CONTENT_TAGS):
        tag.decompose()

    root = soup.body or soup
    text = _WHITESPACE.sub(" ", root.get_text(" ")).strip()
    if len(text) < MIN_CONTENT_CHARS:
        return None
    return text[:max_chars]


def parse_linkedin_headline(html: str) -> str | None:
    """Headline from a LinkedIn profile's og:description.

    The description reads "Name | Headline" or "Name - Headline"; everything
    after the first separator is the headline. A description without a
    separator is returned whole.

    Returns:
        Headline, or None unless it is longer than MIN_HEADLINE_CHARS.
    """
    if not html:
        return None

    soup = BeautifulSoup(html, "html.parser")
    meta = soup.find("meta", attrs={"property": "og:description"})
    if meta is None:
        return None

    description = _WHITESPACE.sub(" ", str(meta.get("content") or "")).strip()
    parts = _HEADLINE_SEPARATOR.split(description)
    headline = "-".join(parts[1:]).strip() if len(parts) >= 2 else description

    if len(headline) <= MIN_HEADLINE_CHARS:
        return None
    return headline
