"""
Browser identities and stealth measures for GuestLens.

An identity is the set of client-visible traits one search attempt presents:
user agent, languages, platform and viewport. Identities rotate per attempt
so consecutive retries never look like the same client.

The init script runs before any page script and removes the usual
automation tells (navigator.webdriver, empty plugin list, missing
window.chrome, driver markers) while presenting a consistent desktop
profile for the chosen identity.
"""

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = get_logger(__name__)


# =============================================================================
# User Agents
# =============================================================================

USER_AGENTS: tuple[str, ...] = (
    # Chrome 120 on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    # Safari 17 on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    # Firefox 121 on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
)

DEFAULT_ACCEPT_LANGUAGE = "nl-NL,nl;q=0.9,en-US;q=0.8,en;q=0.7"


# =============================================================================
# Identity
# =============================================================================


@dataclass(frozen=True)
class Identity:
    """Client traits presented by one attempt.

    Attributes:
        user_agent: User-Agent string.
        accept_language: Accept-Language header value.
        locale: Browser locale (e.g. nl-NL).
        viewport_width: Viewport width in pixels.
        viewport_height: Viewport height in pixels.
    """

    user_agent: str
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    locale: str = "nl-NL"
    viewport_width: int = 1920
    viewport_height: int = 1080

    @property
    def viewport(self) -> dict[str, int]:
        return {"width": self.viewport_width, "height": self.viewport_height}

    @property
    def languages(self) -> list[str]:
        """navigator.languages derived from Accept-Language (q-values dropped)."""
        languages = [part.split(";")[0].strip() for part in self.accept_language.split(",")]
        return [lang for lang in languages if lang]

    @property
    def platform(self) -> str:
        if "Macintosh" in self.user_agent:
            return "MacIntel"
        if "Linux" in self.user_agent:
            return "Linux x86_64"
        return "Win32"

    @property
    def is_chromium(self) -> bool:
        return "Chrome/" in self.user_agent

    @property
    def platform_hint(self) -> str:
        """sec-ch-ua-platform value (quoted as browsers send it)."""
        return '"macOS"' if self.platform == "MacIntel" else '"Windows"'


def build_identity(
    attempt: int,
    user_agents: tuple[str, ...] | list[str] | None = None,
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE,
    locale: str = "nl-NL",
    viewport_width: int = 1920,
    viewport_height: int = 1080,
) -> Identity:
    """Build the identity for an attempt.

    The user agent is chosen by attempt index, so it is stable within one
    attempt and differs between consecutive attempts.

    Args:
        attempt: Zero-based attempt index.
        user_agents: Rotation list. Defaults to USER_AGENTS.

    Returns:
        Identity for this attempt.
    """
    agents = tuple(user_agents) if user_agents else USER_AGENTS
    return Identity(
        user_agent=agents[attempt % len(agents)],
        accept_language=accept_language,
        locale=locale,
        viewport_width=viewport_width,
        viewport_height=viewport_height,
    )


def build_extra_headers(identity: Identity) -> dict[str, str]:
    """HTTP headers a real desktop browser sends on a top-level navigation."""
    headers = {
        "Accept-Language": identity.accept_language,
        "Accept": (
            "text/html,application/xhtml+xml,application/xml;q=0.9,"
            "image/avif,image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Encoding": "gzip, deflate, br",
        "Cache-Control": "max-age=0",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "User-Agent": identity.user_agent,
    }
    # Client hints are only sent by Chromium-based browsers
    if identity.is_chromium:
        headers["Sec-Ch-Ua"] = (
            '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"'
        )
        headers["Sec-Ch-Ua-Mobile"] = "?0"
        headers["Sec-Ch-Ua-Platform"] = identity.platform_hint
    return headers


# =============================================================================
# Stealth JavaScript
# =============================================================================

_STEALTH_JS_TEMPLATE = """
(() => {
    const define = (target, prop, value) => {
        try {
            Object.defineProperty(target, prop, { get: () => value, configurable: true });
        } catch (e) {}
    };

    define(navigator, 'webdriver', undefined);

    const plugins = [
        { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
        { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai', description: '' },
        { name: 'Native Client', filename: 'internal-nacl-plugin', description: '' }
    ];
    plugins.item = (i) => plugins[i];
    plugins.namedItem = (name) => plugins.find(p => p.name === name);
    plugins.refresh = () => {};
    define(navigator, 'plugins', plugins);

    define(navigator, 'languages', __LANGUAGES__);
    define(navigator, 'platform', __PLATFORM__);
    define(navigator, 'userAgent', __USER_AGENT__);
    define(navigator, 'hardwareConcurrency', 8);
    define(navigator, 'deviceMemory', 8);
    define(navigator, 'connection', {
        effectiveType: '4g',
        rtt: 50,
        downlink: 10,
        saveData: false
    });

    const originalQuery = navigator.permissions?.query?.bind(navigator.permissions);
    if (originalQuery) {
        navigator.permissions.query = (parameters) => (
            parameters.name === 'notifications'
                ? Promise.resolve({ state: Notification.permission })
                : originalQuery(parameters)
        );
    }

    window.chrome = window.chrome || {};
    window.chrome.runtime = window.chrome.runtime || {};

    for (const key of Object.keys(window)) {
        if (key.startsWith('cdc_')) {
            try { delete window[key]; } catch (e) {}
        }
    }
    delete window.__playwright;
    delete window.__pwInitScripts;
})();
"""


def build_stealth_script(identity: Identity) -> str:
    """Render the init script for an identity."""
    return (
        _STEALTH_JS_TEMPLATE.replace("__LANGUAGES__", json.dumps(identity.languages))
        .replace("__PLATFORM__", json.dumps(identity.platform))
        .replace("__USER_AGENT__", json.dumps(identity.user_agent))
    )


def get_stealth_args(viewport_width: int = 1920, viewport_height: int = 1080) -> list[str]:
    """Chromium launch arguments that reduce automation detection.

    Returns:
        List of command-line arguments.
    """
    return [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-blink-features=AutomationControlled",
        "--disable-infobars",
        "--disable-dev-shm-usage",
        "--disable-gpu",
        "--disable-web-security",
        "--disable-features=IsolateOrigins,site-per-process",
        f"--window-size={viewport_width},{viewport_height}",
    ]


# =============================================================================
# Page Application
# =============================================================================


async def apply_identity(page: "Page", identity: Identity) -> None:
    """Apply an identity to a page before its first navigation.

    Sets viewport and extra headers and registers the stealth init script.
    Errors propagate: a page without its identity must not be used.

    Args:
        page: Playwright page object.
        identity: Identity for the current attempt.
    """
    await page.set_viewport_size(identity.viewport)
    await page.set_extra_http_headers(build_extra_headers(identity))
    await page.add_init_script(build_stealth_script(identity))

    logger.debug(
        "Identity applied to page",
        user_agent=identity.user_agent[:60],
        platform=identity.platform,
    )
