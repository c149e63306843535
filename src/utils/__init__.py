"""
GuestLens utilities module.
"""

from src.utils.config import get_project_root, get_settings
from src.utils.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)
from src.utils.secure_logging import (
    mask_proxy_url,
    mask_secret,
    redact_url_credentials,
    sanitize_error,
)

__all__ = [
    # Config
    "get_settings",
    "get_project_root",
    # Logging
    "get_logger",
    "configure_logging",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
    # Secure logging
    "mask_secret",
    "mask_proxy_url",
    "redact_url_credentials",
    "sanitize_error",
]
