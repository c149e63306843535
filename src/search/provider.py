"""
Search provider abstraction layer for GuestLens.

Every provider answers search(query, max_results) with a list of
ResultRecord. An empty list means "no results"; providers never signal
partial failure any other way. The registry chains providers so a fast
API-backed provider can be tried before the browser engine.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from src.utils.logging import get_logger

logger = get_logger(__name__)


# ============================================================================
# Result Record
# ============================================================================


class ResultRecord(BaseModel):
    """One organic search result."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str = Field(..., description="Result title")
    link: str = Field(..., description="Absolute result URL")
    snippet: str = Field(default="", description="Text snippet under the result")

    def to_dict(self) -> dict[str, str]:
        """Convert to the plain {title, link, snippet} shape callers consume."""
        return {"title": self.title, "link": self.link, "snippet": self.snippet}


# ============================================================================
# Health Status
# ============================================================================


class HealthState(str, Enum):
    """Provider health states."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class HealthStatus(BaseModel):
    """
    Health status of a search provider.
    """

    model_config = ConfigDict(frozen=False)

    state: HealthState = Field(..., description="Current health state")
    success_rate: float = Field(default=1.0, ge=0.0, le=1.0, description="Recent success rate")
    latency_ms: float = Field(default=0.0, ge=0.0, description="Average latency in milliseconds")
    last_check: datetime | None = Field(default=None, description="Last health check time")
    message: str | None = Field(default=None, description="Optional status message")

    @classmethod
    def healthy(cls, latency_ms: float = 0.0) -> "HealthStatus":
        return cls(
            state=HealthState.HEALTHY,
            success_rate=1.0,
            latency_ms=latency_ms,
            last_check=datetime.now(UTC),
        )

    @classmethod
    def degraded(cls, success_rate: float, message: str | None = None) -> "HealthStatus":
        return cls(
            state=HealthState.DEGRADED,
            success_rate=success_rate,
            message=message,
            last_check=datetime.now(UTC),
        )

    @classmethod
    def unhealthy(cls, message: str | None = None) -> "HealthStatus":
        return cls(
            state=HealthState.UNHEALTHY,
            success_rate=0.0,
            message=message,
            last_check=datetime.now(UTC),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "state": self.state.value,
            "success_rate": self.success_rate,
            "latency_ms": self.latency_ms,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "message": self.message,
        }


# ============================================================================
# Search Provider Protocol
# ============================================================================


@runtime_checkable
class SearchProvider(Protocol):
    """
    Protocol for search providers.

    Uses structural subtyping, so an external API client only needs these
    four members to take part in fallback chains.
    """

    @property
    def name(self) -> str:
        """Unique name of the provider."""
        ...

    async def search(self, query: str, max_results: int = 10) -> list[ResultRecord]:
        """
        Execute a search query.

        Args:
            query: Search query text.
            max_results: Upper bound on returned records.

        Returns:
            Result records; empty when nothing was found or acquisition failed.
        """
        ...

    async def get_health(self) -> HealthStatus:
        ...

    async def close(self) -> None:
        ...


class BaseSearchProvider(ABC):
    """
    Abstract base class for search providers.

    Provides closed-state handling; subclasses implement search and health.
    """

    def __init__(self, provider_name: str):
        self._name = provider_name
        self._is_closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_closed(self) -> bool:
        return self._is_closed

    @abstractmethod
    async def search(self, query: str, max_results: int = 10) -> list[ResultRecord]:
        """Execute a search query."""
        pass

    @abstractmethod
    async def get_health(self) -> HealthStatus:
        """Get current health status."""
        pass

    async def close(self) -> None:
        """Close and cleanup provider resources."""
        self._is_closed = True
        logger.debug("Search provider closed", provider=self._name)

    def _check_closed(self) -> None:
        """Raise error if provider is closed."""
        if self._is_closed:
            raise RuntimeError(f"Provider '{self._name}' is closed")


# ============================================================================
# Provider Registry
# ============================================================================


class SearchProviderRegistry:
    """
    Ordered set of search providers with fallback.

    Example usage:
        registry = SearchProviderRegistry()
        registry.register(api_provider)
        registry.register(GoogleSearchProvider())

        results = await registry.search_with_fallback("jane doe acme")
    """

    def __init__(self) -> None:
        self._providers: dict[str, SearchProvider] = {}

    def register(self, provider: SearchProvider) -> None:
        """
        Register a search provider at the end of the fallback order.

        Raises:
            ValueError: If provider with same name already registered.
        """
        name = provider.name
        if name in self._providers:
            raise ValueError(f"Provider '{name}' already registered")
        self._providers[name] = provider
        logger.info("Search provider registered", provider=name, position=len(self._providers))

    def unregister(self, name: str) -> SearchProvider | None:
        provider = self._providers.pop(name, None)
        if provider is not None:
            logger.info("Search provider unregistered", provider=name)
        return provider

    def get(self, name: str) -> SearchProvider | None:
        return self._providers.get(name)

    def list_providers(self) -> list[str]:
        return list(self._providers.keys())

    async def search_with_fallback(
        self,
        query: str,
        max_results: int = 10,
        provider_order: list[str] | None = None,
    ) -> list[ResultRecord]:
        """
        Search providers in order, returning the first non-empty result list.

        Unhealthy providers are skipped. A provider that raises is logged and
        skipped.

        Args:
            query: Search query.
            max_results: Upper bound on returned records.
            provider_order: Names to try (default: registration order).

        Returns:
            Results of the first provider that found any, else an empty list.

        Raises:
            RuntimeError: If no providers are registered.
        """
        if not self._providers:
            raise RuntimeError("No search providers registered")

        for name in provider_order or list(self._providers):
            provider = self._providers.get(name)
            if provider is None:
                continue

            try:
                health = await provider.get_health()
                if health.state == HealthState.UNHEALTHY:
                    logger.debug("Skipping unhealthy provider", provider=name, message=health.message)
                    continue

                results = await provider.search(query, max_results)
            except Exception as e:
                logger.error("Search provider failed", provider=name, error=str(e))
                continue

            if results:
                return results
            logger.info("Search provider found nothing, trying next", provider=name)

        return []

    async def close_all(self) -> None:
        """Close all registered providers."""
        for name, provider in self._providers.items():
            try:
                await provider.close()
            except Exception as e:
                logger.error("Failed to close provider", provider=name, error=str(e))

        self._providers.clear()
        logger.info("All search providers closed")
