"""
Google Search Result Parser.
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlencode, urlparse

from src.search.parsers.base import BaseSearchParser, ExtractionStrategy

_TITLE = "h3, h2, .LC20lb, .DKV0Md"
_LINK = "a[href]"
_SNIPPET = "div[data-sncf], .VwiC3b, .yXK7lf, .s, .IsZvec"

# Tried in order; the first selector with any match wins
GOOGLE_STRATEGIES: tuple[ExtractionStrategy, ...] = tuple(
    ExtractionStrategy(container=selector, title=_TITLE, link=_LINK, snippet=_SNIPPET)
    for selector in (
        "div.g",
        "div[data-hveid] > div",
        "div.tF2Cxc",
        "div[data-ved]",
        ".yuRUbf",
        "div[jscontroller]",
    )
)

# Container that only exists once the results have rendered
RESULTS_SELECTOR = "#search, #rso, #topstuff, .g"


def build_search_url(
    query: str,
    num: int = 10,
    start: int = 0,
    hl: str = "nl",
    domain: str = "www.google.nl",
) -> str:
    """Build a Google search URL.

    Args:
        query: Search query (URL-encoded here).
        num: Results per page.
        start: Zero-based result offset (page * num).
        hl: Interface language.
        domain: Google host.

    Returns:
        Complete search URL.
    """
    params: dict[str, str | int] = {"q": query, "hl": hl, "num": num}
    if start > 0:
        params["start"] = start
    return f"https://{domain}/search?{urlencode(params)}"


class GoogleParser(BaseSearchParser):
    """Parser for Google search results (high block risk)."""

    strategies = GOOGLE_STRATEGIES

    def __init__(self) -> None:
        super().__init__("google")

    def _unwrap_redirect(self, url: str) -> str:
        """Clean Google redirect URL to get actual destination."""
        if "/url?" in url:
            params = parse_qs(urlparse(url).query)
            for key in ("q", "url"):
                if params.get(key):
                    return params[key][0]
        return url

    def _is_internal_url(self, url: str) -> bool:
        """Check if URL points back into Google search."""
        parsed = urlparse(url)
        host = parsed.netloc.lower()
        if host.endswith(("gstatic.com", "googleapis.com")):
            return True
        is_google_host = (
            ".google." in f".{host}" and not host.endswith(".googleusercontent.com")
        )
        if not is_google_host:
            return False
        # Search, redirect and account pages, not product pages like maps/docs
        return parsed.path.startswith(("/search", "/url", "/sorry", "/preferences", "/setprefs")) or (
            host.startswith(("accounts.", "support.", "policies."))
        )
