"""Utility modules: logging and the guarded HTTP executor."""

from egress_guard.utils.logging import setup_logging, get_logger
from egress_guard.utils.http import (
    GuardedRequestExecutor,
    create_http_client,
    effective_timeout,
    fetch_with_auth_token,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "GuardedRequestExecutor",
    "create_http_client",
    "effective_timeout",
    "fetch_with_auth_token",
]
