"""SSRF (Server-Side Request Forgery) protection for outbound endpoints.

Every endpoint is validated from scratch on each call. Checks are purely
lexical: the hostname in the URL is judged by its text, never by what a DNS
lookup might return.
"""

import logging
from urllib.parse import ParseResult, unquote, urljoin, urlparse, urlunparse

from egress_guard.errors import EgressError, ErrorKind
from egress_guard.models import (
    EgressConfig,
    Rejection,
    TrustedOrigin,
    ValidatedURL,
    ValidationResult,
)
from egress_guard.networks import is_private_hostname, normalize_hostname

logger = logging.getLogger(__name__)

ALLOWED_SCHEME = "https"
DEFAULT_PORT = 443


def _origin_and_allow_list(
    config: EgressConfig | TrustedOrigin,
) -> tuple[TrustedOrigin, frozenset[str]]:
    """Get the trusted origin and a freshly derived allow-list."""
    if isinstance(config, TrustedOrigin):
        return config, frozenset({normalize_hostname(config.hostname)})
    return config.trusted_origin, config.allowed_hostnames()


def _parse_absolute(endpoint: str) -> ParseResult | None:
    """Parse a fully-qualified URL, or return None if it is not one."""
    try:
        parsed = urlparse(endpoint)
        parsed.port  # raises ValueError on a malformed port
    except ValueError:
        return None
    if not parsed.scheme:
        return None
    return parsed


def _canonicalize(parsed: ParseResult, hostname: str) -> str:
    """Rebuild a URL with a lowercase host, no userinfo and no default port."""
    netloc = f"[{hostname}]" if ":" in hostname else hostname
    if parsed.port is not None and parsed.port != DEFAULT_PORT:
        netloc = f"{netloc}:{parsed.port}"
    return urlunparse((
        parsed.scheme,
        netloc,
        parsed.path or "/",
        parsed.params,
        parsed.query,
        parsed.fragment,
    ))


def check_url(parsed: ParseResult, allowed_hostnames: frozenset[str]) -> ValidationResult:
    """Apply the scheme, private-network and allow-list checks to a parsed URL."""
    if parsed.scheme != ALLOWED_SCHEME:
        return Rejection(
            kind=ErrorKind.SCHEME_NOT_ALLOWED,
            reason=f"Invalid scheme: {parsed.scheme}. Only https allowed.",
        )

    hostname = normalize_hostname(parsed.hostname or "")
    if hostname and is_private_hostname(hostname):
        return Rejection(
            kind=ErrorKind.PRIVATE_NETWORK_BLOCKED,
            reason=f"Blocked private or loopback host: {hostname}",
        )

    if not hostname or hostname not in allowed_hostnames:
        return Rejection(
            kind=ErrorKind.HOSTNAME_NOT_ALLOWED,
            reason=f"Hostname not in allow-list: {hostname or '<none>'}",
        )

    return ValidatedURL(url=_canonicalize(parsed, hostname), hostname=hostname)


def check_trusted_origin(origin: TrustedOrigin) -> Rejection | None:
    """Re-check the configured origin before resolving a path against it."""
    if origin.scheme != ALLOWED_SCHEME:
        return Rejection(
            kind=ErrorKind.SCHEME_NOT_ALLOWED,
            reason=f"Trusted origin uses {origin.scheme}, not https",
        )
    hostname = normalize_hostname(origin.hostname)
    if not hostname:
        return Rejection(
            kind=ErrorKind.HOSTNAME_NOT_ALLOWED,
            reason="Trusted origin has no hostname",
        )
    if is_private_hostname(hostname):
        return Rejection(
            kind=ErrorKind.PRIVATE_NETWORK_BLOCKED,
            reason=f"Trusted origin is a private or loopback host: {hostname}",
        )
    return None


def _check_relative(
    endpoint: str, origin: TrustedOrigin, allowed_hostnames: frozenset[str]
) -> ValidationResult:
    if not endpoint.startswith("/"):
        return Rejection(
            kind=ErrorKind.INVALID_PATH,
            reason="Relative endpoints must start with '/'",
        )
    # Coarse on purpose: any "..", raw or percent-encoded, is refused
    if ".." in endpoint or ".." in unquote(endpoint):
        return Rejection(
            kind=ErrorKind.PATH_TRAVERSAL,
            reason="Path traversal is not allowed in endpoint",
        )

    origin_rejection = check_trusted_origin(origin)
    if origin_rejection is not None:
        return origin_rejection

    # "//host/path" resolves to another host; the re-check below catches it
    try:
        resolved = _parse_absolute(urljoin(origin.url, endpoint))
    except ValueError:
        resolved = None
    if resolved is None:
        return Rejection(
            kind=ErrorKind.INVALID_PATH,
            reason="Endpoint does not resolve to a valid URL",
        )
    return check_url(resolved, allowed_hostnames)


def check_endpoint(endpoint: str, config: EgressConfig | TrustedOrigin) -> ValidationResult:
    """
    Validate an endpoint without raising.

    Args:
        endpoint: Absolute URL or path starting with '/'.
        config: Egress configuration, or a bare trusted origin whose
            hostname is then the only allowed host.

    Returns:
        A ValidatedURL on success, otherwise a Rejection naming the kind.
    """
    origin, allowed_hostnames = _origin_and_allow_list(config)

    parsed = _parse_absolute(endpoint)
    if parsed is not None:
        return check_url(parsed, allowed_hostnames)

    return _check_relative(endpoint, origin, allowed_hostnames)


def normalize_endpoint(endpoint: str, config: EgressConfig | TrustedOrigin) -> ValidatedURL:
    """
    Validate an endpoint, raising EgressError if it is not allowed.

    Args:
        endpoint: Absolute URL or path starting with '/'.
        config: Egress configuration or trusted origin.

    Returns:
        The fully-qualified validated URL.

    Raises:
        EgressError: With the rejection kind if the endpoint is refused.
    """
    result = check_endpoint(endpoint, config)
    if isinstance(result, Rejection):
        logger.warning(f"Egress blocked endpoint: {endpoint} - {result.kind.value}: {result.reason}")
        raise EgressError(result.kind)
    return result
