"""Egress error kinds and the exception raised across the guard boundary."""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure kinds reported by the validator and the executor."""

    SCHEME_NOT_ALLOWED = "SchemeNotAllowed"
    PRIVATE_NETWORK_BLOCKED = "PrivateNetworkBlocked"
    HOSTNAME_NOT_ALLOWED = "HostnameNotAllowed"
    INVALID_PATH = "InvalidPath"
    PATH_TRAVERSAL = "PathTraversal"
    UNAUTHENTICATED = "Unauthenticated"
    TIMEOUT = "Timeout"
    UPSTREAM_ERROR = "UpstreamError"


# Kinds detected before any network I/O happens
VALIDATION_KINDS = frozenset({
    ErrorKind.SCHEME_NOT_ALLOWED,
    ErrorKind.PRIVATE_NETWORK_BLOCKED,
    ErrorKind.HOSTNAME_NOT_ALLOWED,
    ErrorKind.INVALID_PATH,
    ErrorKind.PATH_TRAVERSAL,
})


def error_message(kind: ErrorKind) -> str:
    """Get the short, user-safe message for an error kind."""
    messages = {
        ErrorKind.SCHEME_NOT_ALLOWED: "Only HTTPS is allowed for outgoing requests.",
        ErrorKind.PRIVATE_NETWORK_BLOCKED: "Requests to private networks are not allowed.",
        ErrorKind.HOSTNAME_NOT_ALLOWED: "Hostname is not allowed for outgoing requests.",
        ErrorKind.INVALID_PATH: "Relative endpoints must start with '/'.",
        ErrorKind.PATH_TRAVERSAL: "Path traversal is not allowed in endpoint.",
        ErrorKind.UNAUTHENTICATED: "You are not authorized to perform this action.",
        ErrorKind.TIMEOUT: "Request timed out. Please try again.",
        ErrorKind.UPSTREAM_ERROR: "The upstream service returned an error.",
    }
    return messages.get(kind, "Unknown error")


class EgressError(Exception):
    """Raised when an outbound call is rejected or fails.

    ``status_code`` and ``body`` are only set for upstream failures and are
    meant for diagnostics, never for echoing back to end users.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ):
        self.kind = kind
        self.message = message or error_message(kind)
        self.status_code = status_code
        self.body = body
        super().__init__(self.message)

    @property
    def is_retryable(self) -> bool:
        """Whether a caller may reasonably retry (with its own backoff)."""
        return self.kind is ErrorKind.TIMEOUT

    @property
    def user_message(self) -> str:
        """Non-sensitive message suitable for end users."""
        return error_message(self.kind)

    def __repr__(self) -> str:
        return f"EgressError(kind={self.kind.value!r}, status_code={self.status_code!r})"
