"""
OAuth2-specific exceptions.

Every failure surfaced by the client derives from OAuth2Error and carries an
ErrorCategory so callers can decide between retrying, re-authenticating and
giving up.
"""

from enum import Enum

from spid_client.types import ErrorCategory


class OAuth2Error(Exception):
    """
    Base exception for OAuth2 operations.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class ExchangeFailureKind(Enum):
    """Why a token exchange failed, as reported by the transport."""

    NETWORK = "network"
    INVALID_CREDENTIAL = "invalid_credential"
    SERVER_REJECTED = "server_rejected"


class NotAuthorizedError(OAuth2Error):
    """No token is available and there is no path to obtain one."""

    category = ErrorCategory.AUTH


class TokenRefreshError(OAuth2Error):
    """
    A token exchange (code, refresh or client credentials) failed.

    NETWORK failures are transient: the token state returns to unauthorized
    but the refresh credential is kept, so a later call can start over.
    Any other kind means the server rejected the exchange and the caller has
    to log in again.
    """

    def __init__(
        self,
        message: str,
        kind: ExchangeFailureKind = ExchangeFailureKind.NETWORK,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.kind = kind

    @property
    def transient(self) -> bool:
        return self.kind is ExchangeFailureKind.NETWORK

    @property
    def category(self) -> ErrorCategory:  # type: ignore[override]
        return ErrorCategory.TRANSIENT if self.transient else ErrorCategory.AUTH


class LoginFailedError(OAuth2Error):
    """The browser login, signup or logout flow came back with an error."""

    category = ErrorCategory.AUTH

    def __init__(self, error_code: str, description: str | None = None):
        self.error_code = error_code
        self.description = description
        message = f"Login failed: {error_code}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message, context={"error_code": error_code})


class InvalidConfigurationError(OAuth2Error):
    """Client configuration is missing required values."""

    category = ErrorCategory.PERMANENT


class PendingQueueFullError(OAuth2Error):
    """Too many operations are already waiting for a token."""

    category = ErrorCategory.TRANSIENT


class TokenStoreError(OAuth2Error):
    """The secure store could not save, load or remove the token."""

    category = ErrorCategory.TRANSIENT


class ApiError(OAuth2Error):
    """An authorized API call returned an error response."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        error_code: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause, {"status": status, "error_code": error_code})
        self.status = status
        self.error_code = error_code

    @property
    def category(self) -> ErrorCategory:  # type: ignore[override]
        if self.status is None:
            return ErrorCategory.TRANSIENT
        return classify_http_status(self.status)

    @property
    def is_token_rejected(self) -> bool:
        """True when the server says the access token itself is no longer valid."""
        return self.status == 401 and self.error_code in TOKEN_REJECTED_CODES


# Error codes the server uses when an access token has expired or was revoked
TOKEN_REJECTED_CODES = frozenset({"invalid_token", "expired_token", "token_expired"})


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify HTTP status code into error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 401:
        return ErrorCategory.AUTH

    if status_code == 429:
        return ErrorCategory.TRANSIENT  # Rate limited

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


__all__ = [
    "OAuth2Error",
    "ExchangeFailureKind",
    "NotAuthorizedError",
    "TokenRefreshError",
    "LoginFailedError",
    "InvalidConfigurationError",
    "PendingQueueFullError",
    "TokenStoreError",
    "ApiError",
    "TOKEN_REJECTED_CODES",
    "classify_http_status",
]
