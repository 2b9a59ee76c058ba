"""Base authorization transport interface."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from spid_client.oauth2.models import AccessToken, GrantType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExchangeRequest:
    """
    A prepared token endpoint call.

    Attributes:
        grant_type: Which grant is being exchanged
        url: Token endpoint URL
        params: Form fields, already signed when signing is enabled
    """

    grant_type: GrantType
    url: str
    params: dict[str, str] = field(default_factory=dict)

    def __repr__(self) -> str:
        # Form fields carry secrets; keep them out of logs and tracebacks
        return f"ExchangeRequest(grant_type={self.grant_type.value}, url={self.url})"


@dataclass(frozen=True)
class RevokeRequest:
    """Server-side logout of an access token."""

    url: str
    access_token: str

    def __repr__(self) -> str:
        return f"RevokeRequest(url={self.url})"


@dataclass
class ApiResponse:
    """
    Result of an authorized API call.

    Attributes:
        status: HTTP status code
        data: The response's "data" member (or the whole body when absent)
        error: Error code reported by the server, if any
        raw: Full decoded body
    """

    status: int
    data: Any = None
    error: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300 and self.error is None


class AuthorizationTransport(ABC):
    """
    Abstract base class for the HTTP side of the client.

    Implementations perform token exchanges, revocation and authorized API
    calls. Exchange failures are reported by raising TokenRefreshError with
    an ExchangeFailureKind; timeouts are enforced by the caller as well.
    """

    @abstractmethod
    async def exchange(self, request: ExchangeRequest) -> AccessToken:
        """
        Perform a token exchange.

        Args:
            request: Prepared exchange request

        Returns:
            The newly issued AccessToken

        Raises:
            TokenRefreshError: If the exchange fails
        """
        pass

    @abstractmethod
    async def revoke(self, request: RevokeRequest) -> None:
        """
        Revoke an access token server-side.

        Raises:
            ApiError: If the server could not be reached or refused
        """
        pass

    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        token: AccessToken,
        params: dict[str, str] | None = None,
    ) -> ApiResponse:
        """
        Perform an API call authorized with token.

        Raises:
            ApiError: On network failure
        """
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None


__all__ = ["AuthorizationTransport", "ExchangeRequest", "RevokeRequest", "ApiResponse"]
