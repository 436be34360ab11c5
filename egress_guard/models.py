"""Pydantic models for the egress guard data types."""

import math
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from egress_guard.errors import ErrorKind
from egress_guard.networks import is_private_hostname, normalize_hostname

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]

# Methods that carry a JSON body
BODY_METHODS = ("POST", "PUT")


# =============================================================================
# Configuration Models
# =============================================================================


class TrustedOrigin(BaseModel):
    """The https origin that relative endpoints resolve against."""

    model_config = ConfigDict(frozen=True)

    scheme: str = "https"
    hostname: str
    port: int | None = None

    @field_validator("scheme")
    @classmethod
    def _require_https(cls, value: str) -> str:
        if value.lower() != "https":
            raise ValueError(f"Trusted origin must use https, got {value!r}")
        return value.lower()

    @field_validator("hostname")
    @classmethod
    def _require_public_hostname(cls, value: str) -> str:
        hostname = normalize_hostname(value)
        if not hostname:
            raise ValueError("Trusted origin has no hostname")
        if is_private_hostname(hostname):
            raise ValueError(f"Trusted origin must not be a private host: {hostname}")
        return hostname

    @classmethod
    def from_url(cls, url: str) -> "TrustedOrigin":
        """Build an origin from a base URL such as ``https://api.example.com``."""
        parsed = urlparse(url.strip())
        return cls(scheme=parsed.scheme, hostname=parsed.hostname or "", port=parsed.port)

    @property
    def url(self) -> str:
        """The origin as a URL string, without a trailing slash."""
        host = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        if self.port is not None:
            return f"{self.scheme}://{host}:{self.port}"
        return f"{self.scheme}://{host}"


class EgressConfig(BaseModel):
    """Immutable configuration handed to the validator and the executor."""

    model_config = ConfigDict(frozen=True)

    trusted_origin: TrustedOrigin
    extra_allowed_hostnames: frozenset[str] = frozenset()
    default_timeout_ms: float = 30_000
    max_timeout_ms: float = 60_000

    @field_validator("extra_allowed_hostnames")
    @classmethod
    def _normalize_hostnames(cls, value: frozenset[str]) -> frozenset[str]:
        return frozenset(normalize_hostname(h) for h in value if h.strip())

    @model_validator(mode="after")
    def _check_timeouts(self) -> "EgressConfig":
        for name in ("default_timeout_ms", "max_timeout_ms"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ValueError(f"{name} must be a positive number")
        if self.default_timeout_ms > self.max_timeout_ms:
            raise ValueError("default_timeout_ms must not exceed max_timeout_ms")
        return self

    def allowed_hostnames(self) -> frozenset[str]:
        """Derive the allow-list fresh from the current trusted origin."""
        return frozenset({normalize_hostname(self.trusted_origin.hostname)}) | self.extra_allowed_hostnames


# =============================================================================
# Request Models
# =============================================================================


class TenantContext(BaseModel):
    """Caller-scoped identifiers sent as headers. Opaque and never logged."""

    model_config = ConfigDict(frozen=True)

    team_id: str = Field(..., repr=False)
    client_key: str = Field(..., repr=False)


class EndpointRequest(BaseModel):
    """A single outbound call requested by a caller."""

    endpoint: str
    method: HttpMethod = "GET"
    body: dict[str, Any] | None = None
    timeout: float | None = None  # milliseconds

    @model_validator(mode="after")
    def _check_body(self) -> "EndpointRequest":
        if self.method in BODY_METHODS and self.body is None:
            raise ValueError(f"{self.method} requests require a body")
        if self.method not in BODY_METHODS and self.body is not None:
            raise ValueError(f"{self.method} requests must not have a body")
        return self


# =============================================================================
# Validation Results
# =============================================================================


class ValidatedURL(BaseModel):
    """A URL that passed every egress check when it was built."""

    model_config = ConfigDict(frozen=True)

    url: str
    hostname: str

    def __str__(self) -> str:
        return self.url


class Rejection(BaseModel):
    """Why an endpoint was refused."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    reason: str


ValidationResult = ValidatedURL | Rejection
