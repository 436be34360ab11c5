"""HTTP client utilities and the guarded request executor."""

import asyncio
import math

import httpx

from egress_guard.config.loader import build_egress_config, get_settings
from egress_guard.errors import VALIDATION_KINDS, EgressError, ErrorKind
from egress_guard.models import EgressConfig, EndpointRequest, TenantContext, ValidatedURL
from egress_guard.security.auth import BearerTokenProvider, get_bearer_token
from egress_guard.security.ssrf import normalize_endpoint
from egress_guard.utils.logging import get_logger

logger = get_logger(__name__)

GATEWAY_TIMEOUT = 504


# =============================================================================
# Connection Pooling - Shared HTTP Client
# =============================================================================

_shared_client: httpx.AsyncClient | None = None
_client_lock = asyncio.Lock()


def create_http_client(
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Create an async HTTP client for egress calls.

    Redirects are never followed: a redirect target has not been validated.

    Args:
        timeout: Request timeout in milliseconds. Uses default from settings if None.
        transport: Optional transport override (tests use httpx.MockTransport).

    Returns:
        Configured httpx.AsyncClient instance.
    """
    settings = get_settings()

    if timeout is None:
        timeout = settings.default_timeout_ms

    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout / 1000),
        follow_redirects=False,
        transport=transport,
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_keepalive_connections=10,
            max_connections=20,
            keepalive_expiry=30.0,
        ),
    )


async def get_shared_client() -> httpx.AsyncClient:
    """Get a shared HTTP client with connection pooling."""
    global _shared_client

    if _shared_client is None or _shared_client.is_closed:
        async with _client_lock:
            # Double-check after acquiring lock
            if _shared_client is None or _shared_client.is_closed:
                _shared_client = create_http_client()
                logger.debug("Created shared HTTP client with connection pooling")

    return _shared_client


async def close_shared_client() -> None:
    """Close the shared HTTP client (call on shutdown)."""
    global _shared_client
    if _shared_client is not None:
        await _shared_client.aclose()
        _shared_client = None
        logger.debug("Closed shared HTTP client")


# =============================================================================
# Request Shaping
# =============================================================================

def effective_timeout(timeout: float | None, default_ms: float, max_ms: float) -> float:
    """
    Clamp a caller timeout (milliseconds) into (0, max_ms].

    Missing, non-finite, zero and negative values fall back to default_ms.
    """
    if timeout is None or not math.isfinite(timeout) or timeout <= 0:
        return min(default_ms, max_ms)
    return min(timeout, max_ms)


def build_headers(token: str, tenant: TenantContext) -> dict[str, str]:
    """Headers sent with every egress call."""
    return {
        "Accept": "application/json",
        "Authorization": f"Bearer {token}",
        "x-team-id": tenant.team_id,
        "x-client-id": tenant.client_key,
        "Content-Type": "application/json",
    }


# =============================================================================
# Guarded Request Executor
# =============================================================================

class GuardedRequestExecutor:
    """Issues authenticated, validated, deadline-bound outbound calls."""

    def __init__(
        self,
        config: EgressConfig,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_shared_client()

    async def _send(
        self,
        request: EndpointRequest,
        url: ValidatedURL,
        headers: dict[str, str],
        deadline: float,
    ) -> httpx.Response:
        """Send one request, cancelling it when the deadline (seconds) passes."""
        client = await self._get_client()
        try:
            outbound = client.build_request(
                request.method,
                url.url,
                json=request.body,
                headers=headers,
                timeout=deadline,
            )
        except (UnicodeEncodeError, ValueError, TypeError) as e:
            # Header values must be ASCII and the body JSON-serializable
            logger.warning("Egress request not encodable", method=request.method, host=url.hostname, error=type(e).__name__)
            raise EgressError(
                ErrorKind.UPSTREAM_ERROR,
                message=f"Request could not be encoded: {type(e).__name__}",
            ) from e

        try:
            async with asyncio.timeout(deadline):
                return await client.send(outbound, follow_redirects=False)
        except (TimeoutError, httpx.TimeoutException) as e:
            logger.warning("Egress call timed out", method=request.method, host=url.hostname, timeout_s=deadline)
            raise EgressError(ErrorKind.TIMEOUT) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Egress transport failure", method=request.method, host=url.hostname, error=type(e).__name__)
            raise EgressError(
                ErrorKind.UPSTREAM_ERROR,
                message=f"Transport error: {type(e).__name__}",
            ) from e

    async def execute(
        self,
        request: EndpointRequest,
        tenant: TenantContext,
        auth: BearerTokenProvider,
    ) -> httpx.Response:
        """
        Perform a guarded outbound call.

        Args:
            request: Endpoint, method, optional body and timeout (ms).
            tenant: Team and client identifiers sent as headers.
            auth: Source of the bearer token.

        Returns:
            The successful (2xx) response, body unparsed.

        Raises:
            EgressError: Unauthenticated, a validation kind, Timeout or UpstreamError.
        """
        timeout_ms = effective_timeout(
            request.timeout,
            self.config.default_timeout_ms,
            self.config.max_timeout_ms,
        )

        token = await get_bearer_token(auth)
        if token is None:
            raise EgressError(ErrorKind.UNAUTHENTICATED)

        try:
            url = normalize_endpoint(request.endpoint, self.config)
        except EgressError as e:
            if e.kind in VALIDATION_KINDS:
                logger.warning("Egress endpoint rejected before I/O", method=request.method, kind=e.kind.value)
            raise

        headers = build_headers(token, tenant)

        logger.debug("Egress call", method=request.method, host=url.hostname, timeout_ms=timeout_ms)
        response = await self._send(request, url, headers, timeout_ms / 1000)

        if response.is_success:
            return response

        if response.status_code == GATEWAY_TIMEOUT:
            logger.warning("Upstream gateway timeout", method=request.method, host=url.hostname)
            raise EgressError(ErrorKind.TIMEOUT, status_code=GATEWAY_TIMEOUT)

        logger.warning(
            "Upstream error",
            method=request.method,
            host=url.hostname,
            status_code=response.status_code,
        )
        raise EgressError(
            ErrorKind.UPSTREAM_ERROR,
            message=f"HTTP error! status: {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )


async def fetch_with_auth_token(
    request: EndpointRequest,
    tenant: TenantContext,
    auth: BearerTokenProvider,
    config: EgressConfig | None = None,
    client: httpx.AsyncClient | None = None,
) -> httpx.Response:
    """
    One-shot guarded call using settings-derived configuration.

    Uses shared HTTP client with connection pooling unless one is given.
    """
    if config is None:
        config = build_egress_config()
    executor = GuardedRequestExecutor(config, client=client)
    return await executor.execute(request, tenant, auth)
