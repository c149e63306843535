"""
Pytest fixtures and configuration for GuestLens tests.

=============================================================================
Test Classification
=============================================================================

Primary Markers:
- @pytest.mark.unit: Single class/function, no external dependencies
  - Fast (<1s per test)
  - Playwright, the solving service and the clock are mocked
  - DEFAULT: Tests without marker are auto-classified as unit

- @pytest.mark.integration: Multiple components, mocked external dependencies
  - Component integration verified (orchestrator + pool + solver state machine)
  - Can run anywhere

- @pytest.mark.e2e: Real browser against the real search engine
  - Requires Playwright browsers, network access, optionally proxies and a
    solving-service key
  - DEFAULT EXCLUDED: Must use `pytest -m e2e` to run
  - Risk of IP pollution, rate limiting

=============================================================================
Mock Strategy
=============================================================================

- Playwright: pages are MagicMock objects with AsyncMock coroutine methods
  (see make_mock_page); sync page methods (on, set_default_timeout) stay MagicMock
- Solving service: httpx.AsyncClient replaced by an AsyncMock session
- Time: injected clock/sleep callables instead of real waiting
- Network: Prohibited in unit tests
"""

import os
from collections.abc import Callable, Generator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment before importing anything else
os.environ["GUESTLENS_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")
os.environ["GUESTLENS_GENERAL__LOG_LEVEL"] = "DEBUG"

from src.utils.config import (  # noqa: E402
    AcquisitionConfig,
    Settings,
    SolverConfig,
    get_settings,
)

# Deployment variables that would leak host configuration into tests
_DEPLOYMENT_ENV = ("TWO_CAPTCHA_API_KEY", "PROXY_URL", "GOOGLE_SEARCH_DELAY")


# =============================================================================
# Pytest Hooks for Test Classification
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line(
        "markers", "unit: Unit tests with no external dependencies (fast, <1s/test)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests with mocked external dependencies (<5s/test)"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests requiring real environment (excluded by default)"
    )


def pytest_collection_modifyitems(config, items):
    """
    Auto-apply markers.

    Tests without explicit markers are assumed to be unit tests.
    """
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop deployment variables and cached singletons around every test."""
    from src.search.google_search_provider import reset_google_search_provider

    for name in _DEPLOYMENT_ENV:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    reset_google_search_provider()

    yield

    get_settings.cache_clear()
    reset_google_search_provider()


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with pacing and settle delays zeroed."""
    return Settings(
        acquisition=AcquisitionConfig(
            min_interval_seconds=0,
            post_load_delay_seconds=0,
            post_solve_delay_seconds=0,
            post_reload_delay_seconds=0,
            consent_wait_seconds=0.1,
            post_consent_delay_seconds=0,
            inter_page_delay_seconds=3.0,
        ),
        solver=SolverConfig(api_key=None),
    )


# =============================================================================
# Playwright Mocks
# =============================================================================


@pytest.fixture
def make_mock_page() -> Callable[..., MagicMock]:
    """Factory for mock Playwright pages.

    Example:
        page = make_mock_page(html=serp_html, url="https://www.google.nl/search?q=x")
    """

    def _make(
        html: str = "<html><body></body></html>",
        url: str = "https://www.google.nl/search?q=test",
        title: str = "Google",
    ) -> MagicMock:
        page = MagicMock()
        page.url = url
        page.goto = AsyncMock(return_value=None)
        page.reload = AsyncMock(return_value=None)
        page.content = AsyncMock(return_value=html)
        page.title = AsyncMock(return_value=title)
        page.wait_for_selector = AsyncMock(return_value=MagicMock())
        page.evaluate = AsyncMock(return_value=False)
        page.query_selector = AsyncMock(return_value=None)
        page.close = AsyncMock()
        page.set_viewport_size = AsyncMock()
        page.set_extra_http_headers = AsyncMock()
        page.add_init_script = AsyncMock()
        # Sync in Playwright
        page.on = MagicMock()
        page.set_default_timeout = MagicMock()
        page.set_default_navigation_timeout = MagicMock()
        return page

    return _make


# =============================================================================
# Sample Pages
# =============================================================================


@pytest.fixture
def make_serp_html() -> Callable[..., str]:
    """Factory for Google result pages in the div.g layout.

    Args (of the returned callable):
        results: (title, link, snippet) tuples.
    """

    def _make(results: list[tuple[str, str, str]]) -> str:
        blocks = "\n".join(
            f"""
            <div class="g">
              <div class="yuRUbf"><a href="{link}"><h3 class="LC20lb">{title}</h3></a></div>
              <div class="VwiC3b">{snippet}</div>
            </div>"""
            for title, link, snippet in results
        )
        return f"""<!DOCTYPE html>
<html>
<head><title>test - Google Zoeken</title></head>
<body>
  <div id="search"><div id="rso">{blocks}
  </div></div>
</body>
</html>"""

    return _make


@pytest.fixture
def challenge_html() -> str:
    """Google's "unusual traffic" interstitial."""
    return """<!DOCTYPE html>
<html>
<head><title>https://www.google.nl/search?q=test</title></head>
<body>
  <div id="infoDiv">
    Our systems have detected unusual traffic from your computer network.
    This page checks to see if it's really you sending the requests, and not a robot.
  </div>
  <form id="captcha-form" action="index" method="post">
    <script src="https://www.google.com/recaptcha/api.js" async defer></script>
    <div id="recaptcha" class="g-recaptcha"
         data-sitekey="6LfwuyUTAAAAAOAmoS0fdqijC2PbbdH4kjq62Y1b"
         data-callback="submitCallback"></div>
    <input type="hidden" name="q" value="EgQ">
  </form>
</body>
</html>"""


def sample_results(count: int, prefix: str = "r") -> list[tuple[str, str, str]]:
    """(title, link, snippet) tuples with distinct links."""
    return [
        (f"Result {prefix}{i}", f"https://example.com/{prefix}{i}", f"Snippet {prefix}{i}")
        for i in range(count)
    ]


@pytest.fixture
def results_factory() -> Callable[..., list[tuple[str, str, str]]]:
    return sample_results