"""
Base Search Parser Classes and Utilities.

A parser holds an ordered list of extraction strategies. Each strategy names
a result-container selector; the first strategy whose selector matches
anything on the page is used and the rest are ignored. Markup drifts, so
several generations of container selectors are kept side by side.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from src.search.provider import ResultRecord
from src.utils.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Strategies
# =============================================================================


@dataclass(frozen=True)
class ExtractionStrategy:
    """Where to find results and their fields.

    Attributes:
        container: Selector for one result block.
        title: Selector for the title inside a block.
        link: Selector for the link inside a block.
        snippet: Selector for the snippet inside a block.
    """

    container: str
    title: str = "h3, h2"
    link: str = "a[href]"
    snippet: str = ""

    def find_containers(self, soup: BeautifulSoup) -> list[Tag] | None:
        """Result blocks for this strategy, or None when the selector matches nothing."""
        try:
            containers = soup.select(self.container)
        except Exception as e:
            logger.warning("Selector failed", selector=self.container, error=str(e))
            return None
        return containers or None


# =============================================================================
# Base Parser
# =============================================================================


class BaseSearchParser(ABC):
    """
    Base class for search result parsers.

    Subclasses provide the strategies and the engine-specific URL rules.
    parse() is pure: the same HTML always yields the same records.
    """

    strategies: tuple[ExtractionStrategy, ...] = ()

    def __init__(self, engine_name: str):
        self.engine_name = engine_name

    def parse(self, html: str, base_url: str = "", max_results: int | None = None) -> list[ResultRecord]:
        """
        Parse search results from HTML.

        Args:
            html: HTML content of a results page.
            base_url: URL the page was loaded from (resolves relative links).
            max_results: Stop after this many records.

        Returns:
            Records in page order, without duplicate links. Empty when no
            strategy matches; that is not an error.
        """
        if not html:
            return []

        soup = BeautifulSoup(html, "html.parser")

        for strategy in self.strategies:
            containers = strategy.find_containers(soup)
            if containers is None:
                continue

            records = self._extract(containers, strategy, base_url, max_results)
            logger.debug(
                "Parsed search results",
                engine=self.engine_name,
                selector=strategy.container,
                containers=len(containers),
                result_count=len(records),
            )
            return records

        logger.info("No result containers matched", engine=self.engine_name)
        return []

    def _extract(
        self,
        containers: list[Tag],
        strategy: ExtractionStrategy,
        base_url: str,
        max_results: int | None,
    ) -> list[ResultRecord]:
        records: list[ResultRecord] = []
        seen: set[str] = set()

        for container in containers:
            if max_results is not None and len(records) >= max_results:
                break

            title = self._extract_text(container.select_one(strategy.title))
            link = self._resolve_link(self._extract_href(container.select_one(strategy.link)), base_url)
            if not title or not link or link in seen:
                continue

            snippet_elem = container.select_one(strategy.snippet) if strategy.snippet else None
            seen.add(link)
            records.append(
                ResultRecord(title=title, link=link, snippet=self._extract_text(snippet_elem))
            )

        return records

    def _resolve_link(self, href: str | None, base_url: str) -> str | None:
        url = self._unwrap_redirect(href) if href else None
        url = self._normalize_url(url, base_url)
        if url is None or self._is_internal_url(url):
            return None
        return url

    def _extract_text(self, element: Tag | None, default: str = "") -> str:
        """Safely extract text from element."""
        if element is None:
            return default
        return element.get_text(" ", strip=True) or default

    def _extract_href(self, element: Tag | None) -> str | None:
        """Safely extract href from element."""
        if element is None:
            return None
        href = element.get("href")
        return href if isinstance(href, str) and href else None

    def _normalize_url(self, url: str | None, base_url: str = "") -> str | None:
        """Make a URL absolute, dropping non-http links."""
        if not url:
            return None

        if url.startswith(("javascript:", "mailto:", "#")):
            return None

        if not url.startswith(("http://", "https://")):
            if not base_url:
                return None
            url = urljoin(base_url, url)

        if urlparse(url).scheme not in ("http", "https"):
            return None
        return url

    def _unwrap_redirect(self, url: str) -> str:
        """Return the destination of an engine redirect link (override in subclass)."""
        return url

    @abstractmethod
    def _is_internal_url(self, url: str) -> bool:
        """Check if an absolute URL points back into the search engine."""
        pass
