"""Bearer token collaborators for outbound calls."""

import inspect
import logging
from typing import Awaitable, Callable, Protocol, runtime_checkable

from egress_guard.config.loader import get_settings

logger = logging.getLogger(__name__)


@runtime_checkable
class BearerTokenProvider(Protocol):
    """Supplies the bearer token for the current caller, if any."""

    async def get_token(self) -> str | None:
        ...


class StaticTokenProvider:
    """Token provider returning a fixed token (from settings by default)."""

    def __init__(self, token: str | None = None):
        if token is None:
            token = get_settings().egress_auth_token
        self._token = token or None

    async def get_token(self) -> str | None:
        return self._token


class CallableTokenProvider:
    """Adapts a plain sync or async callable to BearerTokenProvider."""

    def __init__(self, func: Callable[[], str | None | Awaitable[str | None]]):
        self._func = func

    async def get_token(self) -> str | None:
        token = self._func()
        if inspect.isawaitable(token):
            token = await token
        return token


async def get_bearer_token(provider: BearerTokenProvider) -> str | None:
    """Fetch a token, treating empty or whitespace-only values as missing."""
    token = await provider.get_token()
    if token is None or not token.strip():
        logger.debug("No bearer token available")
        return None
    return token.strip()
