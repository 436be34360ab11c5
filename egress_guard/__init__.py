"""Egress request guard: SSRF-safe, authenticated, deadline-bound outbound HTTP calls."""

from egress_guard.errors import EgressError, ErrorKind
from egress_guard.models import (
    EgressConfig,
    EndpointRequest,
    Rejection,
    TenantContext,
    TrustedOrigin,
    ValidatedURL,
)

__version__ = "1.0.0"

__all__ = [
    "EgressError",
    "ErrorKind",
    "EgressConfig",
    "EndpointRequest",
    "Rejection",
    "TenantContext",
    "TrustedOrigin",
    "ValidatedURL",
]
