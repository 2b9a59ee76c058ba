"""
Client facade: one object per signed-in identity.

SPiDClient wires the URL builder, transport, token store, lifecycle manager
and request queue together and exposes the browser flows, token queries and
user API calls. It is an explicit object; create one per identity and pass it
around.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from spid_client.config import ClientConfig
from spid_client.logging.context import LogContext
from spid_client.oauth2.coordinator import RequestQueueCoordinator
from spid_client.oauth2.exceptions import (
    ApiError,
    LoginFailedError,
    NotAuthorizedError,
    OAuth2Error,
)
from spid_client.oauth2.manager import TokenLifecycleManager
from spid_client.oauth2.models import AccessToken
from spid_client.oauth2.redirect import RedirectKind, RedirectResult, parse_redirect
from spid_client.oauth2.transport import (
    AuthorizationTransport,
    HttpAuthorizationTransport,
    RevokeRequest,
)
from spid_client.oauth2.urls import URLBuilder
from spid_client.store import FileTokenStore, KeyringTokenStore
from spid_client.types import TokenPersistence

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RedirectFlow:
    """
    A browser flow waiting for its redirect.

    Attributes:
        kind: Flow the redirect will complete
        url: URL the application should open in a browser
        result: Resolves with the installed token (login/signup) or None
            (logout); fails with LoginFailedError or TokenRefreshError
    """

    kind: RedirectKind
    url: str
    result: asyncio.Future = field(repr=False)


class SPiDClient:
    """
    OAuth2 client for a single identity against the identity server.

    Usage:
        config = load_config()
        async with SPiDClient(config) as client:
            flow = client.begin_authorization()
            open_browser(flow.url)
            # ... the app is opened with myapp://spid/login?code=...
            client.handle_redirect(url)
            await flow.result

            me = await client.get_me()
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: AuthorizationTransport | None = None,
        store: TokenPersistence | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize client.

        Args:
            config: Client configuration
            transport: HTTP transport (default: HttpAuthorizationTransport)
            store: Token store (default: the system keyring, or a FileTokenStore
                when token_store_path is set; none when save_to_store is off)
            clock: Returns the current UTC time; for tests
        """
        self.config = config
        self.urls = URLBuilder(config)

        self._owns_transport = transport is None
        self.transport = transport or HttpAuthorizationTransport(
            timeout_seconds=config.exchange_timeout_seconds
        )

        if store is None and config.save_to_store:
            if config.token_store_path:
                store = FileTokenStore(config.token_store_path)
            else:
                store = KeyringTokenStore(config.keyring_service)
        self.store = store

        self.manager = TokenLifecycleManager(
            self.urls,
            self.transport,
            store,
            clock_skew_seconds=config.clock_skew_seconds,
            exchange_timeout_seconds=config.exchange_timeout_seconds,
            proactive_refresh=config.proactive_refresh,
            save_to_store=config.save_to_store,
            clock=clock,
        )
        self.coordinator = RequestQueueCoordinator(
            self.manager, max_pending=config.max_pending_operations
        )

        self._flows: dict[RedirectKind, RedirectFlow] = {}
        self._tasks: set[asyncio.Task] = set()

    async def __aenter__(self) -> "SPiDClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _log_context(self, flow: str) -> LogContext:
        return LogContext(client_id=self.config.client_id, flow=flow)

    # ------------------------------------------------------------------
    # Token queries
    # ------------------------------------------------------------------

    def current_token(self) -> AccessToken:
        return self.manager.current_token()

    def is_authorized(self) -> bool:
        return self.manager.is_authorized()

    def has_expired(self) -> bool:
        return self.manager.has_expired()

    def has_token_expired(self) -> bool:
        return self.manager.has_expired()

    def token_expires_at(self) -> datetime | None:
        return self.manager.token_expires_at()

    def current_user_id(self) -> str | None:
        return self.manager.current_user_id()

    def is_client_token(self) -> bool:
        return self.manager.is_client_token()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run_authorized(self, operation: Callable[[AccessToken], Awaitable[T]]) -> asyncio.Future:
        """Run operation with a valid token, queueing it while one is obtained."""
        return self.coordinator.run_authorized(operation)

    async def login(self, code: str, redirect_uri: str | None = None) -> AccessToken:
        """Exchange an authorization code for a user token."""
        with self._log_context("login"):
            return await self.manager.exchange_authorization_code(code, redirect_uri)

    async def refresh(self) -> AccessToken:
        with self._log_context("refresh"):
            return await self.manager.refresh()

    async def authenticate_client(self) -> AccessToken:
        """Obtain a client token using client credentials."""
        with self._log_context("client_credentials"):
            return await self.manager.exchange_client_credentials()

    async def logout(self, revoke: bool = True) -> None:
        """
        Log out locally, then revoke the token server-side.

        The local state is cleared first and unconditionally. Revocation is
        best-effort; its failures are logged.
        """
        with self._log_context("logout"):
            try:
                token = self.manager.current_token()
            except NotAuthorizedError:
                token = None

            self.manager.invalidate("logout")

            if not revoke or token is None:
                return
            try:
                await self.transport.revoke(
                    RevokeRequest(url=self.urls.logout_endpoint, access_token=token.access_token)
                )
            except ApiError as e:
                logger.warning(f"Token revoke failed after logout: {e}")

    # ------------------------------------------------------------------
    # Browser flows
    # ------------------------------------------------------------------

    def authorization_url(self) -> str:
        return self.urls.authorization_url()

    def signup_url(self) -> str:
        return self.urls.signup_url()

    def forgot_password_url(self) -> str:
        return self.urls.forgot_password_url()

    def logout_url(self) -> str:
        """Browser logout URL for the current token."""
        return self.urls.logout_url(self.manager.current_token().access_token)

    def _new_flow(self, kind: RedirectKind, url: str) -> RedirectFlow:
        previous = self._flows.pop(kind, None)
        if previous is not None and not previous.result.done():
            previous.result.cancel()

        future = asyncio.get_running_loop().create_future()
        flow = RedirectFlow(kind=kind, url=url, result=future)
        self._flows[kind] = flow
        logger.debug(f"Started {kind.value} browser flow", extra={"redirect_kind": kind.value})
        return flow

    def begin_authorization(self) -> RedirectFlow:
        """Start a browser login. Authorized calls made meanwhile wait for it."""
        url = self.urls.authorization_url()
        self.manager.begin_login()
        return self._new_flow(RedirectKind.LOGIN, url)

    def begin_signup(self) -> RedirectFlow:
        """Start a browser signup. Authorized calls made meanwhile wait for it."""
        url = self.urls.signup_url()
        self.manager.begin_login()
        return self._new_flow(RedirectKind.SIGNUP, url)

    def begin_logout(self) -> RedirectFlow:
        """
        Start a browser logout for the current token and log out locally.

        Raises:
            NotAuthorizedError: If there is no token to log out
        """
        url = self.logout_url()
        self.manager.invalidate("logout")
        return self._new_flow(RedirectKind.LOGOUT, url)

    def handle_redirect(self, url: str) -> bool:
        """
        Complete a browser flow from the URL the application was opened with.

        Must be called from the event loop thread.

        Returns:
            True if the URL was one of ours, False otherwise
        """
        result = parse_redirect(url, self.config.redirect_base)
        if result is None:
            return False

        logger.info(
            f"Handling {result.kind.value} redirect",
            extra={"redirect_kind": result.kind.value},
        )

        if result.kind is RedirectKind.LOGOUT:
            self._finish_logout(result)
        elif result.kind is RedirectKind.LOGIN_FAILURE or not result.succeeded:
            self._fail_login(result)
        else:
            self._schedule_code_exchange(result)
        return True

    def _pop_login_flow(self, kind: RedirectKind) -> RedirectFlow | None:
        flow = self._flows.pop(kind, None)
        if flow is None and kind is RedirectKind.LOGIN_FAILURE:
            flow = self._flows.pop(RedirectKind.LOGIN, None) or self._flows.pop(
                RedirectKind.SIGNUP, None
            )
        return flow

    def _fail_login(self, result: RedirectResult) -> None:
        error = LoginFailedError(result.error or "login_failed", result.error_description)
        self.manager.abort_login(error)
        flow = self._pop_login_flow(result.kind)
        if flow is not None and not flow.result.done():
            flow.result.set_exception(error)
        logger.warning(f"Browser {result.kind.value} flow failed: {error}")

    def _finish_logout(self, result: RedirectResult) -> None:
        flow = self._flows.pop(RedirectKind.LOGOUT, None)
        if flow is None or flow.result.done():
            return
        if result.error:
            flow.result.set_exception(LoginFailedError(result.error, result.error_description))
        else:
            flow.result.set_result(None)

    def _schedule_code_exchange(self, result: RedirectResult) -> None:
        flow = self._pop_login_flow(result.kind)
        redirect_uri = self.urls.redirect_uri(result.kind.value)
        with self._log_context(result.kind.value):
            task = asyncio.get_running_loop().create_task(
                self._complete_login(result.code, redirect_uri, flow)
            )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _complete_login(
        self, code: str, redirect_uri: str, flow: RedirectFlow | None
    ) -> None:
        try:
            token = await self.manager.exchange_authorization_code(code, redirect_uri)
        except OAuth2Error as e:
            logger.warning(f"Authorization code exchange failed: {e}")
            if flow is not None and not flow.result.done():
                flow.result.set_exception(e)
            return
        if flow is not None and not flow.result.done():
            flow.result.set_result(token)

    # ------------------------------------------------------------------
    # User API
    # ------------------------------------------------------------------

    async def _api_call(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        *,
        require_user: bool = False,
    ) -> Any:
        """
        Perform an API call through the request queue.

        A response saying the token itself was rejected marks it expired and
        the call is queued once more, behind anything already waiting.
        """
        url = self.urls.api_url(path)

        async def operation(token: AccessToken) -> Any:
            if require_user and token.is_client_token:
                raise NotAuthorizedError(f"{path} requires a user token")
            response = await self.transport.request(method, url, token, params)
            if not response.ok:
                error = ApiError(
                    f"{method} {path} failed: HTTP {response.status} ({response.error})",
                    status=response.status,
                    error_code=response.error,
                )
                if error.is_token_rejected:
                    self.manager.mark_expired(token)
                raise error
            return response.data

        try:
            return await self.run_authorized(operation)
        except ApiError as e:
            if not e.is_token_rejected:
                raise
            logger.info(f"Retrying {method} {path} after token rejection")
            return await self.run_authorized(operation)

    async def get_me(self) -> Any:
        """
        Fetch the signed-in user's object.

        The user session is shorter than the token's lifetime; call this right
        after login and keep the user id.
        """
        return await self._api_call("GET", "me")

    async def get_user(self, user_id: str) -> Any:
        return await self._api_call("GET", f"user/{user_id}")

    async def get_current_user(self) -> Any:
        """Fetch the user object for the user the current token belongs to."""
        user_id = self.manager.current_user_id()
        if user_id is None:
            raise NotAuthorizedError("No user is signed in")
        return await self.get_user(user_id)

    async def get_user_logins(self, user_id: str) -> Any:
        return await self._api_call("GET", f"user/{user_id}/logins")

    async def get_one_time_code(self) -> str | None:
        """
        Request a one-time code for use by the application's server.

        The code is issued to the server client id, not this client's id.

        Raises:
            NotAuthorizedError: If the current token is not a user token
        """
        data = await self._api_call(
            "POST", "oauth/exchange", self.urls.one_time_code_params(), require_user=True
        )
        if isinstance(data, dict):
            return data.get("code")
        return data

    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Fail pending work, stop background tasks and close the transport."""
        for flow in self._flows.values():
            if not flow.result.done():
                flow.result.cancel()
        self._flows.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.coordinator.close()
        await self.manager.close()
        if self._owns_transport:
            await self.transport.close()
        logger.debug("SPiDClient closed")


__all__ = ["SPiDClient", "RedirectFlow"]
