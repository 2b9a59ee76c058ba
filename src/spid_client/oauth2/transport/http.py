"""aiohttp-based authorization transport for the identity server."""

import asyncio
import logging
from typing import Any

import aiohttp
from pydantic import ValidationError

from spid_client.oauth2.exceptions import (
    ApiError,
    ExchangeFailureKind,
    TokenRefreshError,
)
from spid_client.oauth2.models import AccessToken, TokenResponse
from spid_client.oauth2.transport.base import (
    ApiResponse,
    AuthorizationTransport,
    ExchangeRequest,
    RevokeRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

# OAuth2 error codes meaning the presented credential is no good
INVALID_CREDENTIAL_ERRORS = frozenset(
    {
        "invalid_grant",
        "invalid_token",
        "invalid_client",
        "expired_token",
        "unauthorized_client",
    }
)


def classify_exchange_failure(status: int, error_code: str | None) -> ExchangeFailureKind:
    """
    Map a failed token endpoint response to an ExchangeFailureKind.

    Server-side trouble (5xx, 429) is treated like a network failure so the
    caller may retry later; a rejected credential or malformed request is not.
    """
    if status >= 500 or status == 429:
        return ExchangeFailureKind.NETWORK
    if error_code in INVALID_CREDENTIAL_ERRORS or status == 401:
        return ExchangeFailureKind.INVALID_CREDENTIAL
    return ExchangeFailureKind.SERVER_REJECTED


def _error_code(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("type") or error.get("code")
    return error


class HttpAuthorizationTransport(AuthorizationTransport):
    """
    Authorization transport over HTTP using a shared aiohttp session.

    Token responses are validated with the TokenResponse schema; failures
    are classified into NETWORK, INVALID_CREDENTIAL and SERVER_REJECTED.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        """
        Initialize transport.

        Args:
            timeout_seconds: Total timeout for a single HTTP call
        """
        self.timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP client session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    @property
    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout_seconds)

    async def exchange(self, request: ExchangeRequest) -> AccessToken:
        """
        Post an exchange request to the token endpoint.

        Returns:
            AccessToken built from the response

        Raises:
            TokenRefreshError: With the classified failure kind
        """
        session = await self._ensure_session()
        grant = request.grant_type.value

        try:
            async with session.post(
                request.url,
                data=request.params,
                timeout=self._timeout,
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    body = await self._safe_json(response)
                    error_code = _error_code(body)
                    kind = classify_exchange_failure(response.status, error_code)
                    logger.warning(
                        f"Token exchange ({grant}) failed: HTTP {response.status}",
                        extra={
                            "http_status": response.status,
                            "error_code": error_code,
                            "error_kind": kind.value,
                            "grant_type": grant,
                        },
                    )
                    raise TokenRefreshError(
                        f"HTTP {response.status}: {error_text[:200]}",
                        kind=kind,
                        context={"status": response.status, "error_code": error_code},
                    )

                try:
                    payload = await response.json(content_type=None)
                except ValueError as e:
                    # HTML maintenance pages and captive portals answer 200 too
                    logger.error(
                        f"Token response for {grant} is not JSON",
                        extra={"http_status": response.status, "grant_type": grant},
                    )
                    raise TokenRefreshError(
                        "Malformed token response",
                        ExchangeFailureKind.SERVER_REJECTED,
                        cause=e,
                    ) from e

        except TokenRefreshError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"HTTP error during token exchange ({grant}): {e}")
            raise TokenRefreshError(f"HTTP error: {e}", ExchangeFailureKind.NETWORK, cause=e) from e

        try:
            token = TokenResponse.model_validate(payload).to_token()
        except ValidationError as e:
            logger.error(f"Malformed token response for {grant}: {e.error_count()} errors")
            raise TokenRefreshError(
                "Malformed token response",
                ExchangeFailureKind.SERVER_REJECTED,
                cause=e,
            ) from e

        logger.debug(
            f"Exchanged {grant} for token",
            extra={"grant_type": grant, "expires_at": token.expires_at.isoformat()},
        )
        return token

    async def revoke(self, request: RevokeRequest) -> None:
        """Call the logout endpoint for the token."""
        session = await self._ensure_session()

        try:
            async with session.get(
                request.url,
                params={"oauth_token": request.access_token},
                timeout=self._timeout,
                allow_redirects=False,
            ) as response:
                # The endpoint answers with a redirect back to the app
                if response.status >= 400:
                    body = await self._safe_json(response)
                    raise ApiError(
                        f"Token revoke failed: HTTP {response.status}",
                        status=response.status,
                        error_code=_error_code(body),
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ApiError(f"HTTP error during revoke: {e}", cause=e) from e

        logger.debug("Revoked access token")

    async def request(
        self,
        method: str,
        url: str,
        token: AccessToken,
        params: dict[str, str] | None = None,
    ) -> ApiResponse:
        """
        Perform an authorized API call.

        Non-2xx responses are returned as ApiResponse with error set; only
        network failures raise.
        """
        session = await self._ensure_session()
        headers = {"Authorization": f"{token.token_type} {token.access_token}"}
        method = method.upper()
        request_kwargs: dict[str, Any] = {"headers": headers, "timeout": self._timeout}
        if method == "GET":
            request_kwargs["params"] = params
        else:
            request_kwargs["data"] = params

        try:
            async with session.request(method, url, **request_kwargs) as response:
                body = await self._safe_json(response)
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"HTTP error during API call {method} {url}: {e}")
            raise ApiError(f"HTTP error: {e}", cause=e) from e

        body = body if isinstance(body, dict) else {}
        error = _error_code(body)
        if error is None and status >= 400:
            error = f"http_{status}"

        logger.debug(
            f"API call {method} {url} returned {status}",
            extra={"http_status": status, "http_method": method, "http_url": url},
        )
        return ApiResponse(status=status, data=body.get("data", body), error=error, raw=body)

    @staticmethod
    async def _safe_json(response: aiohttp.ClientResponse) -> Any:
        try:
            return await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return None

    async def close(self) -> None:
        """Close HTTP client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)


__all__ = [
    "HttpAuthorizationTransport",
    "classify_exchange_failure",
    "INVALID_CREDENTIAL_ERRORS",
    "DEFAULT_TIMEOUT_SECONDS",
]
