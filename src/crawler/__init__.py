"""
GuestLens Crawler Module.

Provides the browser side of web acquisition: proxy rotation, browser
sessions with rotating identities, and challenge detection and solving.
"""

from src.crawler.browser_session import (
    BrowserSession,
    SessionController,
    TimeoutProfile,
    navigate,
)
from src.crawler.challenge_detector import (
    challenge_signal,
    detect_challenge,
    is_challenge_page,
)
from src.crawler.challenge_solver import (
    Challenge,
    ChallengeSolver,
    ChallengeState,
    SitekeyCapture,
    SolveOutcome,
)
from src.crawler.proxy_pool import (
    ProxyEndpoint,
    ProxyParseError,
    ProxyPool,
    parse_proxy_url,
)
from src.crawler.solving_service import (
    SolveTask,
    SolvingServiceError,
    TwoCaptchaClient,
)
from src.crawler.stealth import (
    USER_AGENTS,
    Identity,
    apply_identity,
    build_identity,
)

__all__ = [
    # Proxy pool
    "ProxyEndpoint",
    "ProxyParseError",
    "ProxyPool",
    "parse_proxy_url",
    # Identity / stealth
    "Identity",
    "USER_AGENTS",
    "build_identity",
    "apply_identity",
    # Browser session
    "BrowserSession",
    "SessionController",
    "TimeoutProfile",
    "navigate",
    # Challenge detection and solving
    "is_challenge_page",
    "challenge_signal",
    "detect_challenge",
    "Challenge",
    "ChallengeSolver",
    "ChallengeState",
    "SitekeyCapture",
    "SolveOutcome",
    "SolveTask",
    "SolvingServiceError",
    "TwoCaptchaClient",
]
