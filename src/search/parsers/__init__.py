"""
Search Result Parsers for Direct Browser Search.

Parses search engine result pages (SERPs) into ResultRecord lists using
ordered, pure extraction strategies.
"""

from src.search.parsers.base import BaseSearchParser, ExtractionStrategy
from src.search.parsers.google import (
    GOOGLE_STRATEGIES,
    RESULTS_SELECTOR,
    GoogleParser,
    build_search_url,
)

__all__ = [
    "BaseSearchParser",
    "ExtractionStrategy",
    "GoogleParser",
    "GOOGLE_STRATEGIES",
    "RESULTS_SELECTOR",
    "build_search_url",
]
