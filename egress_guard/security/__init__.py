"""Security modules: bearer tokens and SSRF protection."""

from egress_guard.security.auth import BearerTokenProvider, StaticTokenProvider, get_bearer_token
from egress_guard.security.ssrf import check_endpoint, normalize_endpoint

__all__ = [
    "BearerTokenProvider",
    "StaticTokenProvider",
    "get_bearer_token",
    "check_endpoint",
    "normalize_endpoint",
]
