"""Tests for the guarded request executor."""

import asyncio
import json
import math

import httpx
import pytest
from pydantic import ValidationError
from structlog.testing import capture_logs

from egress_guard.errors import EgressError, ErrorKind
from egress_guard.models import EndpointRequest, TenantContext
from egress_guard.security.auth import CallableTokenProvider
from egress_guard.utils.http import (
    build_headers,
    close_shared_client,
    create_http_client,
    effective_timeout,
    fetch_with_auth_token,
    get_shared_client,
)

from tests.conftest import TransportSpy


class TestEffectiveTimeout:
    """Tests for timeout clamping."""

    @pytest.mark.parametrize("timeout", [-5, 0, math.nan, math.inf, -math.inf, None])
    def test_invalid_timeout_falls_back_to_default(self, timeout):
        assert effective_timeout(timeout, 30_000, 60_000) == 30_000

    def test_large_timeout_clamped_to_maximum(self):
        assert effective_timeout(999_999, 30_000, 60_000) == 60_000

    def test_valid_timeout_kept(self):
        assert effective_timeout(5_000, 30_000, 60_000) == 5_000
        assert effective_timeout(60_000, 30_000, 60_000) == 60_000


class TestEndpointRequest:
    """Tests for request shape validation."""

    def test_post_requires_body(self):
        with pytest.raises(ValidationError):
            EndpointRequest(endpoint="/v1/x", method="POST")

    def test_get_forbids_body(self):
        with pytest.raises(ValidationError):
            EndpointRequest(endpoint="/v1/x", method="GET", body={"a": 1})

    def test_unknown_method_rejected(self):
        with pytest.raises(ValidationError):
            EndpointRequest(endpoint="/v1/x", method="PATCH")

    def test_nan_timeout_accepted(self):
        """Test that odd timeouts are left for the executor to clamp."""
        request = EndpointRequest(endpoint="/v1/x", timeout=math.nan)
        assert math.isnan(request.timeout)


class TestExecuteSuccess:
    """Tests for successful guarded calls."""

    @pytest.mark.asyncio
    async def test_get_returns_body_unmodified(self, make_executor, tenant, auth):
        """Test the end-to-end GET against the trusted origin."""
        spy = TransportSpy(200, text='{"result":[]}')
        executor = make_executor(spy)

        response = await executor.execute(
            EndpointRequest(endpoint="/v1/teams/abc/projects", method="GET"), tenant, auth
        )

        assert response.status_code == 200
        assert response.text == '{"result":[]}'
        assert response.json() == {"result": []}
        assert spy.call_count == 1
        assert str(spy.requests[0].url) == "https://api.example.com/v1/teams/abc/projects"

    @pytest.mark.asyncio
    async def test_headers_attached(self, make_executor, tenant, auth):
        spy = TransportSpy(200)
        executor = make_executor(spy)

        await executor.execute(EndpointRequest(endpoint="/v1/me"), tenant, auth)

        sent = spy.requests[0]
        assert sent.method == "GET"
        assert sent.headers["Accept"] == "application/json"
        assert sent.headers["Authorization"] == "Bearer secret-token"
        assert sent.headers["x-team-id"] == "team_123"
        assert sent.headers["x-client-id"] == "pk_live_abc"
        assert sent.headers["Content-Type"] == "application/json"
        assert sent.content == b""

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self, make_executor, tenant, auth):
        spy = TransportSpy(201, json={"ok": True})
        executor = make_executor(spy)

        response = await executor.execute(
            EndpointRequest(endpoint="/v1/teams/abc/invites", method="POST", body={"inviteEmail": "a@b.co"}),
            tenant,
            auth,
        )

        assert response.status_code == 201
        sent = spy.requests[0]
        assert sent.method == "POST"
        assert json.loads(sent.content) == {"inviteEmail": "a@b.co"}

    @pytest.mark.asyncio
    async def test_absolute_trusted_url_allowed(self, make_executor, tenant, auth):
        spy = TransportSpy(200)
        executor = make_executor(spy)

        await executor.execute(EndpointRequest(endpoint="https://api.example.com/v1/x", method="DELETE"), tenant, auth)

        assert spy.requests[0].method == "DELETE"

    @pytest.mark.asyncio
    async def test_clamped_timeout_threaded_to_transport(self, make_executor, tenant, auth):
        """Test that the transport sees the clamped deadline in seconds."""
        spy = TransportSpy(200)
        executor = make_executor(spy)

        await executor.execute(EndpointRequest(endpoint="/a", timeout=5_000), tenant, auth)
        await executor.execute(EndpointRequest(endpoint="/b", timeout=999_999), tenant, auth)
        await executor.execute(EndpointRequest(endpoint="/c", timeout=-5), tenant, auth)

        assert spy.requests[0].extensions["timeout"]["read"] == 5.0
        assert spy.requests[1].extensions["timeout"]["read"] == 60.0
        assert spy.requests[2].extensions["timeout"]["read"] == 30.0


class TestExecuteRejections:
    """Tests for calls refused before any network I/O."""

    @pytest.mark.asyncio
    async def test_unlisted_host_never_reaches_transport(self, make_executor, tenant, auth):
        spy = TransportSpy(200)
        executor = make_executor(spy)

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint="https://evil.com/steal"), tenant, auth)

        assert exc_info.value.kind == ErrorKind.HOSTNAME_NOT_ALLOWED
        assert spy.call_count == 0

    @pytest.mark.asyncio
    async def test_cloud_metadata_fails_closed(self, make_executor, tenant, auth):
        spy = TransportSpy(200)
        executor = make_executor(spy)

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(
                EndpointRequest(endpoint="http://169.254.169.254/latest/meta-data/"), tenant, auth
            )

        assert exc_info.value.kind in (ErrorKind.PRIVATE_NETWORK_BLOCKED, ErrorKind.SCHEME_NOT_ALLOWED)
        assert spy.call_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("endpoint,kind", [
        ("foo/bar", ErrorKind.INVALID_PATH),
        ("/a/../b", ErrorKind.PATH_TRAVERSAL),
        ("https://10.0.0.1/", ErrorKind.PRIVATE_NETWORK_BLOCKED),
        ("http://api.example.com/", ErrorKind.SCHEME_NOT_ALLOWED),
    ])
    async def test_validation_kind_propagated_unchanged(self, make_executor, tenant, auth, endpoint, kind):
        spy = TransportSpy(200)
        executor = make_executor(spy)

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint=endpoint), tenant, auth)

        assert exc_info.value.kind == kind
        assert spy.call_count == 0

    @pytest.mark.asyncio
    async def test_missing_token_unauthenticated(self, make_executor, tenant, no_auth):
        spy = TransportSpy(200)
        executor = make_executor(spy)

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint="/v1/me"), tenant, no_auth)

        assert exc_info.value.kind == ErrorKind.UNAUTHENTICATED
        assert spy.call_count == 0

    @pytest.mark.asyncio
    async def test_token_checked_before_endpoint(self, make_executor, tenant, no_auth):
        """Test that a missing token is reported even for a bad endpoint."""
        executor = make_executor(TransportSpy(200))

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint="https://evil.com/"), tenant, no_auth)

        assert exc_info.value.kind == ErrorKind.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_blank_token_unauthenticated(self, make_executor, tenant):
        executor = make_executor(TransportSpy(200))

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint="/v1/me"), tenant, CallableTokenProvider(lambda: "   "))

        assert exc_info.value.kind == ErrorKind.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_rejection_logged_with_kind(self, make_executor, tenant, auth):
        executor = make_executor(TransportSpy(200))

        with capture_logs() as logs:
            with pytest.raises(EgressError):
                await executor.execute(EndpointRequest(endpoint="/a/../b"), tenant, auth)

        rejected = [entry for entry in logs if entry["event"] == "Egress endpoint rejected before I/O"]
        assert len(rejected) == 1
        assert rejected[0]["kind"] == ErrorKind.PATH_TRAVERSAL.value
        assert rejected[0]["log_level"] == "warning"


class TestExecuteFailures:
    """Tests for upstream and transport failures."""

    @pytest.mark.asyncio
    async def test_gateway_timeout_maps_to_timeout(self, make_executor, tenant, auth):
        executor = make_executor(TransportSpy(504, text="gateway timeout"))

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint="/v1/teams/abc/projects"), tenant, auth)

        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert exc_info.value.is_retryable is True

    @pytest.mark.asyncio
    async def test_error_status_carries_status_and_body(self, make_executor, tenant, auth):
        executor = make_executor(TransportSpy(500, text="boom"))

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint="/v1/x"), tenant, auth)

        error = exc_info.value
        assert error.kind == ErrorKind.UPSTREAM_ERROR
        assert error.status_code == 500
        assert error.body == "boom"
        assert "boom" not in error.user_message

    @pytest.mark.asyncio
    async def test_redirect_not_followed(self, make_executor, tenant, auth):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(302, headers={"Location": "http://169.254.169.254/"})

        executor = make_executor(handler)

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint="/v1/x"), tenant, auth)

        assert exc_info.value.kind == ErrorKind.UPSTREAM_ERROR
        assert exc_info.value.status_code == 302
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_deadline_cancels_slow_call(self, make_executor, tenant, auth):
        """Test that a call outliving its deadline surfaces as Timeout."""
        cancelled = asyncio.Event()

        async def slow_handler(request: httpx.Request) -> httpx.Response:
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return httpx.Response(200)

        executor = make_executor(slow_handler)

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint="/v1/slow", timeout=20), tenant, auth)

        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_transport_timeout_maps_to_timeout(self, make_executor, tenant, auth):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        executor = make_executor(handler)

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint="/v1/x"), tenant, auth)

        assert exc_info.value.kind == ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_transport_error_normalized(self, make_executor, tenant, auth):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        executor = make_executor(handler)

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint="/v1/x"), tenant, auth)

        assert exc_info.value.kind == ErrorKind.UPSTREAM_ERROR
        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("team_id,client_key", [("équipe", "pk"), ("team_1", "clé")])
    async def test_non_ascii_tenant_values_normalized(self, make_executor, auth, team_id, client_key):
        """Test that unencodable header values surface as EgressError, not a raw exception."""
        spy = TransportSpy(200)
        executor = make_executor(spy)
        tenant = TenantContext(team_id=team_id, client_key=client_key)

        with pytest.raises(EgressError) as exc_info:
            await executor.execute(EndpointRequest(endpoint="/v1/x"), tenant, auth)

        assert exc_info.value.kind == ErrorKind.UPSTREAM_ERROR
        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, UnicodeEncodeError)
        assert spy.call_count == 0


class TestBuildHeaders:
    def test_headers(self, tenant):
        headers = build_headers("tok", tenant)
        assert headers == {
            "Accept": "application/json",
            "Authorization": "Bearer tok",
            "x-team-id": "team_123",
            "x-client-id": "pk_live_abc",
            "Content-Type": "application/json",
        }


class TestFetchWithAuthToken:
    """Tests for the settings-driven helper."""

    @pytest.mark.asyncio
    async def test_uses_configured_base_url(self, monkeypatch, tenant, auth):
        monkeypatch.setenv("API_BASE_URL", "https://api.other.com")
        spy = TransportSpy(200, json={"result": []})
        client = httpx.AsyncClient(transport=httpx.MockTransport(spy))

        response = await fetch_with_auth_token(EndpointRequest(endpoint="/v1/x"), tenant, auth, client=client)

        assert response.status_code == 200
        assert spy.requests[0].url.host == "api.other.com"


class TestHttpClients:
    """Tests for client construction."""

    def test_client_never_follows_redirects(self):
        client = create_http_client(timeout=5_000)
        assert client.follow_redirects is False
        assert client.timeout.read == 5.0
        assert client.headers["User-Agent"] == "egress-guard/1.0.0"

    @pytest.mark.asyncio
    async def test_shared_client_reused_and_closed(self):
        first = await get_shared_client()
        second = await get_shared_client()
        assert first is second
        await close_shared_client()
        assert first.is_closed
