"""
Tests for browser identities and stealth measures.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-ID-N-01 | Attempts 0..3 | Equivalence – normal | UA rotates, wraps | Rotation |
| TC-ID-N-02 | Consecutive attempts | Equivalence – normal | Different UA | Retry identity |
| TC-ID-N-03 | Custom UA list | Equivalence – normal | Custom list used | Config |
| TC-ID-N-04 | Accept-Language with q-values | Equivalence – normal | navigator.languages | Derivation |
| TC-ID-N-05 | Mac / Windows UA | Equivalence – normal | Platform matches | Consistency |
| TC-EH-N-01 | Chrome UA | Equivalence – normal | Client hints present | Headers |
| TC-EH-N-02 | Firefox UA | Equivalence – normal | No client hints | Headers |
| TC-SS-N-01 | Stealth script | Equivalence – normal | Identity values embedded | Init script |
| TC-AI-N-01 | apply_identity | Equivalence – normal | Viewport, headers, script applied | Page |
| TC-AI-A-01 | add_init_script raises | Abnormal – error | Propagates | Page |
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

# All tests in this module are unit tests (no external dependencies)
pytestmark = pytest.mark.unit

from src.crawler.stealth import (
    DEFAULT_ACCEPT_LANGUAGE,
    USER_AGENTS,
    Identity,
    apply_identity,
    build_extra_headers,
    build_identity,
    build_stealth_script,
    get_stealth_args,
)

CHROME_UA = USER_AGENTS[0]
SAFARI_UA = USER_AGENTS[1]
FIREFOX_UA = USER_AGENTS[2]


class TestBuildIdentity:
    """Tests for build_identity()."""

    def test_rotation_wraps(self) -> None:
        """TC-ID-N-01: The UA is picked by attempt index modulo list length."""
        # When: Building identities for four attempts
        agents = [build_identity(i).user_agent for i in range(4)]

        # Then: Rotation wraps after the third
        assert agents == [CHROME_UA, SAFARI_UA, FIREFOX_UA, CHROME_UA]

    def test_consecutive_attempts_differ(self) -> None:
        """TC-ID-N-02: Retries never reuse the previous identity's UA."""
        for attempt in range(10):
            assert build_identity(attempt) != build_identity(attempt + 1)

    def test_custom_user_agents(self) -> None:
        """TC-ID-N-03: Configured agents replace the defaults."""
        identity = build_identity(3, user_agents=["ua-a", "ua-b"])
        assert identity.user_agent == "ua-b"

    def test_defaults(self) -> None:
        """Defaults describe a Dutch desktop browser."""
        identity = build_identity(0)
        assert identity.accept_language == DEFAULT_ACCEPT_LANGUAGE
        assert identity.locale == "nl-NL"
        assert identity.viewport == {"width": 1920, "height": 1080}


class TestIdentityTraits:
    """Tests for derived identity traits."""

    def test_languages_from_accept_language(self) -> None:
        """TC-ID-N-04: q-values are dropped."""
        identity = Identity(user_agent=CHROME_UA)
        assert identity.languages == ["nl-NL", "nl", "en-US", "en"]

    @pytest.mark.parametrize(
        ("user_agent", "platform", "is_chromium"),
        [
            (CHROME_UA, "Win32", True),
            (SAFARI_UA, "MacIntel", False),
            (FIREFOX_UA, "Win32", False),
        ],
    )
    def test_platform_matches_user_agent(
        self, user_agent: str, platform: str, is_chromium: bool
    ) -> None:
        """TC-ID-N-05: Platform and engine follow the UA."""
        identity = Identity(user_agent=user_agent)
        assert identity.platform == platform
        assert identity.is_chromium is is_chromium


class TestExtraHeaders:
    """Tests for build_extra_headers()."""

    def test_chrome_sends_client_hints(self) -> None:
        """TC-EH-N-01: Chromium identities carry Sec-Ch-Ua headers."""
        headers = build_extra_headers(Identity(user_agent=CHROME_UA))
        assert headers["User-Agent"] == CHROME_UA
        assert headers["Accept-Language"] == DEFAULT_ACCEPT_LANGUAGE
        assert headers["Sec-Ch-Ua-Platform"] == '"Windows"'
        assert "Sec-Ch-Ua" in headers

    def test_firefox_omits_client_hints(self) -> None:
        """TC-EH-N-02: Non-Chromium identities never send client hints."""
        headers = build_extra_headers(Identity(user_agent=FIREFOX_UA))
        assert not any(name.startswith("Sec-Ch-Ua") for name in headers)


class TestStealthScript:
    """Tests for build_stealth_script() and launch args."""

    def test_identity_embedded(self) -> None:
        """TC-SS-N-01: The script presents the identity's traits."""
        # Given: A Safari identity
        identity = Identity(user_agent=SAFARI_UA)

        # When: Rendering the script
        script = build_stealth_script(identity)

        # Then: Values are embedded as JSON literals, no placeholders remain
        assert json.dumps(SAFARI_UA) in script
        assert '"MacIntel"' in script
        assert json.dumps(identity.languages) in script
        assert "__" + "USER_AGENT__" not in script
        assert "'webdriver'" in script

    def test_launch_args(self) -> None:
        """Launch args disable the automation flag and size the window."""
        args = get_stealth_args(1280, 720)
        assert "--disable-blink-features=AutomationControlled" in args
        assert "--window-size=1280,720" in args


class TestApplyIdentity:
    """Tests for apply_identity()."""

    @pytest.mark.asyncio
    async def test_applies_all_traits(self) -> None:
        """TC-AI-N-01: Viewport, headers and init script are set on the page."""
        # Given: A mock page
        page = MagicMock()
        page.set_viewport_size = AsyncMock()
        page.set_extra_http_headers = AsyncMock()
        page.add_init_script = AsyncMock()
        identity = build_identity(1)

        # When: Applying the identity
        await apply_identity(page, identity)

        # Then: Every trait is applied
        page.set_viewport_size.assert_awaited_once_with({"width": 1920, "height": 1080})
        headers = page.set_extra_http_headers.await_args.args[0]
        assert headers["User-Agent"] == SAFARI_UA
        page.add_init_script.assert_awaited_once_with(build_stealth_script(identity))

    @pytest.mark.asyncio
    async def test_errors_propagate(self) -> None:
        """TC-AI-A-01: A page that could not take the identity is not usable."""
        # Given: A page whose init script registration fails
        page = MagicMock()
        page.set_viewport_size = AsyncMock()
        page.set_extra_http_headers = AsyncMock()
        page.add_init_script = AsyncMock(side_effect=RuntimeError("Target closed"))

        # When/Then: The error reaches the caller
        with pytest.raises(RuntimeError, match="Target closed"):
            await apply_identity(page, build_identity(0))
