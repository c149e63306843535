"""
GuestLens search module.

Main entry point:
    GoogleSearchProvider - Resilient browser-driven Google search
    get_google_search_provider() - Process-wide default instance

Provider system:
    SearchProvider - Protocol for search providers
    SearchProviderRegistry - Ordered providers with fallback
    ResultRecord - {title, link, snippet}
"""

from src.search.google_search_provider import (
    AttemptOutcome,
    GoogleSearchProvider,
    SearchAttempt,
    cleanup_google_search_provider,
    get_google_search_provider,
    reset_google_search_provider,
)
from src.search.guest_query import GuestSearchSummary, build_guest_query, extract_job_title
from src.search.pacing import PacingGate
from src.search.provider import (
    BaseSearchProvider,
    HealthState,
    HealthStatus,
    ResultRecord,
    SearchProvider,
    SearchProviderRegistry,
)

__all__ = [
    # Google search provider
    "GoogleSearchProvider",
    "AttemptOutcome",
    "SearchAttempt",
    "get_google_search_provider",
    "cleanup_google_search_provider",
    "reset_google_search_provider",
    # Provider abstraction
    "SearchProvider",
    "BaseSearchProvider",
    "ResultRecord",
    "HealthStatus",
    "HealthState",
    "SearchProviderRegistry",
    # Pacing
    "PacingGate",
    # Guest lookup
    "GuestSearchSummary",
    "build_guest_query",
    "extract_job_title",
]
