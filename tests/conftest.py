"""Pytest configuration and fixtures."""

import httpx
import pytest

from egress_guard.config.loader import get_settings
from egress_guard.models import EgressConfig, TenantContext, TrustedOrigin
from egress_guard.security.auth import StaticTokenProvider
from egress_guard.utils.http import GuardedRequestExecutor

TRUSTED_BASE_URL = "https://api.example.com"


class TransportSpy:
    """Mock transport handler that records every request it receives."""

    def __init__(self, status_code: int = 200, json: object = None, text: str | None = None):
        self.status_code = status_code
        self.json = json
        self.text = text
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.json if self.json is not None else {})

    @property
    def call_count(self) -> int:
        return len(self.requests)


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Make every test read settings from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def egress_config():
    """Egress configuration trusting api.example.com only."""
    return EgressConfig(trusted_origin=TrustedOrigin.from_url(TRUSTED_BASE_URL))


@pytest.fixture
def tenant():
    """Sample tenant context."""
    return TenantContext(team_id="team_123", client_key="pk_live_abc")


@pytest.fixture
def auth():
    """Token provider with a valid token."""
    return StaticTokenProvider("secret-token")


@pytest.fixture
def no_auth():
    """Token provider with no token."""
    return StaticTokenProvider("")


@pytest.fixture
def make_executor(egress_config):
    """Factory building an executor wired to a mock transport handler."""
    def _make(handler, config: EgressConfig | None = None) -> GuardedRequestExecutor:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return GuardedRequestExecutor(config or egress_config, client=client)
    return _make
