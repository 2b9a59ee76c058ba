"""OAuth2 data models: tokens, token subjects, lifecycle state and queue entries."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

T = TypeVar("T")

# Token lifetime assumed when the server omits expires_in
DEFAULT_EXPIRES_IN_SECONDS = 3600

# Values the server uses for "no user" on client-credentials tokens
_NO_USER_VALUES = {"", "0", "false", "none", "null"}


@dataclass(frozen=True)
class UserSubject:
    """Token issued on behalf of a signed-in user."""

    user_id: str

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("UserSubject requires a non-empty user_id")


@dataclass(frozen=True)
class ClientSubject:
    """Token issued to the application itself (client credentials)."""


TokenSubject = UserSubject | ClientSubject


class LifecycleState(Enum):
    """Where the token lifecycle manager currently stands."""

    UNAUTHORIZED = "unauthorized"
    AUTHORIZED = "authorized"
    EXPIRED = "expired"
    REFRESHING = "refreshing"


class GrantType(Enum):
    """Token endpoint grant types used by the client."""

    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"
    CLIENT_CREDENTIALS = "client_credentials"


def normalize_user_id(value: Any) -> str | None:
    """Map the server's user_id field to a user id, or None for client tokens."""
    if value is None or value is False:
        return None
    text = str(value).strip()
    if text.lower() in _NO_USER_VALUES:
        return None
    return text


@dataclass(frozen=True)
class AccessToken:
    """
    Access token with expiration tracking.

    Tokens are never edited in place; a refresh installs a new instance.

    Attributes:
        access_token: The opaque access token string
        expires_at: UTC timestamp when the token expires
        subject: UserSubject for user tokens, ClientSubject for app tokens
        refresh_token: Optional refresh credential for token renewal
        token_type: Token type (typically "Bearer")
        scope: Space-separated scopes granted
    """

    access_token: str
    expires_at: datetime
    subject: TokenSubject = field(default_factory=ClientSubject)
    refresh_token: str | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    @classmethod
    def from_response(
        cls,
        response: dict,
        now: datetime | None = None,
    ) -> "AccessToken":
        """
        Create token from a token endpoint response.

        Args:
            response: Token response dict
            now: Reference time for expires_in (default: current UTC time)

        Returns:
            AccessToken instance
        """
        now = now or datetime.now(UTC)
        expires_in = response.get("expires_in")
        if expires_in is None:
            expires_in = DEFAULT_EXPIRES_IN_SECONDS
        user_id = normalize_user_id(response.get("user_id"))

        return cls(
            access_token=response["access_token"],
            expires_at=now + timedelta(seconds=int(expires_in)),
            subject=UserSubject(user_id) if user_id else ClientSubject(),
            refresh_token=response.get("refresh_token") or None,
            token_type=response.get("token_type") or "Bearer",
            scope=response.get("scope"),
        )

    @property
    def user_id(self) -> str | None:
        if isinstance(self.subject, UserSubject):
            return self.subject.user_id
        return None

    @property
    def is_client_token(self) -> bool:
        return isinstance(self.subject, ClientSubject)

    def is_expired(self, buffer_seconds: float = 0, now: datetime | None = None) -> bool:
        """
        Check if token is expired or within buffer_seconds of expiry.

        Args:
            buffer_seconds: Clock-skew margin subtracted from the expiry
            now: Reference time (default: current UTC time)

        Returns:
            True if token should be refreshed before use
        """
        now = now or datetime.now(UTC)
        return now >= self.expires_at - timedelta(seconds=buffer_seconds)

    @property
    def remaining_lifetime(self) -> timedelta:
        """Get remaining time before token expires."""
        return self.expires_at - datetime.now(UTC)

    def carry_over(self, previous: "AccessToken") -> "AccessToken":
        """
        Fill in what a refresh response left out from the token it replaces.

        Refresh responses may omit the refresh credential or the user id; the
        new token keeps the previous values in that case.
        """
        updated = self
        if updated.refresh_token is None and previous.refresh_token:
            updated = replace(updated, refresh_token=previous.refresh_token)
        if updated.is_client_token and not previous.is_client_token:
            updated = replace(updated, subject=previous.subject)
        return updated

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the secure store."""
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at.isoformat(),
            "refresh_token": self.refresh_token,
            "user_id": self.user_id,
            "is_client_token": self.is_client_token,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccessToken":
        """Rebuild a token persisted with to_dict()."""
        expires_at = datetime.fromisoformat(data["expires_at"])
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)

        user_id = data.get("user_id")
        if data.get("is_client_token") or not user_id:
            subject: TokenSubject = ClientSubject()
        else:
            subject = UserSubject(str(user_id))

        return cls(
            access_token=data["access_token"],
            expires_at=expires_at,
            subject=subject,
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope"),
        )

    def __repr__(self) -> str:
        return (
            f"AccessToken(subject={self.subject!r}, "
            f"expires_at={self.expires_at.isoformat()}, "
            f"refreshable={self.refresh_token is not None})"
        )


class TokenResponse(BaseModel):
    """Schema for the token endpoint's JSON payload."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    expires_in: int = Field(default=DEFAULT_EXPIRES_IN_SECONDS, ge=0)
    refresh_token: str | None = None
    token_type: str = "Bearer"
    scope: str | None = None
    user_id: str | None = None

    @field_validator("user_id", mode="before")
    @classmethod
    def _normalize_user_id(cls, value: Any) -> str | None:
        return normalize_user_id(value)

    def to_token(self, now: datetime | None = None) -> AccessToken:
        return AccessToken.from_response(self.model_dump(), now=now)


@dataclass
class PendingOperation(Generic[T]):
    """
    An authorized call waiting for a usable token.

    Attributes:
        operation: Coroutine function receiving the token to use
        future: Completion channel handed back to the caller
        enqueued_at: Time the call arrived, from the manager clock
    """

    operation: Callable[[AccessToken], Awaitable[T]]
    future: asyncio.Future
    enqueued_at: datetime


__all__ = [
    "AccessToken",
    "TokenSubject",
    "UserSubject",
    "ClientSubject",
    "LifecycleState",
    "GrantType",
    "TokenResponse",
    "PendingOperation",
    "normalize_user_id",
    "DEFAULT_EXPIRES_IN_SECONDS",
]
