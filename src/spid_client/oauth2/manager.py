"""Token lifecycle manager: single source of truth for the current access token."""

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from spid_client.oauth2.exceptions import (
    ExchangeFailureKind,
    NotAuthorizedError,
    OAuth2Error,
    TokenRefreshError,
    TokenStoreError,
)
from spid_client.oauth2.models import AccessToken, GrantType, LifecycleState
from spid_client.oauth2.transport.base import AuthorizationTransport, ExchangeRequest
from spid_client.oauth2.urls import URLBuilder
from spid_client.types import TokenPersistence

logger = logging.getLogger(__name__)

# Margin before expiry at which a token counts as expired
DEFAULT_CLOCK_SKEW_SECONDS = 60
DEFAULT_EXCHANGE_TIMEOUT_SECONDS = 30.0

# Listener signature: (installed token, failure); exactly one of them is set
TokenListener = Callable[[AccessToken | None, OAuth2Error | None], None]


def _consume_exception(future: asyncio.Future) -> None:
    # Flights are often settled with nobody awaiting them directly
    if not future.cancelled():
        future.exception()


def _chain(source: asyncio.Future, target: asyncio.Future) -> None:
    """Resolve target with whatever source resolves with."""

    def _transfer(done: asyncio.Future) -> None:
        if target.done():
            return
        if done.cancelled():
            target.cancel()
        elif done.exception() is not None:
            target.set_exception(done.exception())
        else:
            target.set_result(done.result())

    source.add_done_callback(_transfer)


class TokenLifecycleManager:
    """
    Owns the current access token and every exchange that replaces it.

    At most one exchange (a "flight") runs at a time; concurrent callers of
    refresh(), exchange_client_credentials() and start_recovery() share it, so
    the transport sees a single call per episode. Each flight settles under
    the lock: the token is installed and persisted (or dropped), listeners are
    notified, then the flight future resolves.

    Logout via invalidate() always wins: a flight result arriving after it is
    discarded by an identity check under the same lock.

    The lock is a threading.RLock shared with the RequestQueueCoordinator. It
    is never held across an await. Exchanges must be started from the event
    loop thread.

    Usage:
        manager = TokenLifecycleManager(URLBuilder(config), HttpAuthorizationTransport())
        token = await manager.exchange_authorization_code("authcode123")
        ...
        token = await manager.refresh()
    """

    def __init__(
        self,
        urls: URLBuilder,
        transport: AuthorizationTransport,
        store: TokenPersistence | None = None,
        *,
        clock_skew_seconds: float = DEFAULT_CLOCK_SKEW_SECONDS,
        exchange_timeout_seconds: float = DEFAULT_EXCHANGE_TIMEOUT_SECONDS,
        proactive_refresh: bool = False,
        save_to_store: bool = True,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize token manager.

        Args:
            urls: Builds token endpoint requests
            transport: Performs the exchanges
            store: Secure store for the persisted token (optional)
            clock_skew_seconds: Margin before expiry at which a token counts as expired
            exchange_timeout_seconds: Upper bound for a single exchange
            proactive_refresh: Refresh on a timer before expiry instead of on next use
            save_to_store: Persist installed tokens to the store
            clock: Returns the current UTC time (default: datetime.now(UTC))
        """
        self.urls = urls
        self.transport = transport
        self.store = store
        self.clock_skew_seconds = clock_skew_seconds
        self.exchange_timeout_seconds = exchange_timeout_seconds
        self.proactive_refresh = proactive_refresh
        self.save_to_store = save_to_store
        self._clock = clock or (lambda: datetime.now(UTC))

        self.lock = threading.RLock()
        self._token: AccessToken | None = None
        # Last token dropped after a transient failure; still holds the refresh credential
        self._retained: AccessToken | None = None
        self._flight: asyncio.Future | None = None
        self._flight_task: asyncio.Task | None = None
        self._flight_grant: GrantType | None = None
        self._awaiting_login = False
        self._listeners: list[TokenListener] = []
        self._refresh_timer: asyncio.TimerHandle | None = None

        self._load_persisted()

        logger.debug(
            f"Initialized TokenLifecycleManager with {clock_skew_seconds}s clock skew",
            extra={"lifecycle_state": self.state.value},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return self._clock()

    def _state_locked(self) -> LifecycleState:
        if self._flight is not None:
            return LifecycleState.REFRESHING
        if self._token is None:
            return LifecycleState.UNAUTHORIZED
        if self._token.is_expired(self.clock_skew_seconds, now=self._now()):
            return LifecycleState.EXPIRED
        return LifecycleState.AUTHORIZED

    @property
    def state(self) -> LifecycleState:
        with self.lock:
            return self._state_locked()

    def is_authorized(self) -> bool:
        """True if a token is held and it is either still valid or renewable."""
        with self.lock:
            token = self._token
            if token is None:
                return False
            if not token.is_expired(self.clock_skew_seconds, now=self._now()):
                return True
            return token.refresh_token is not None or token.is_client_token

    def has_expired(self) -> bool:
        """True when now >= expiry - clock skew, or when there is no token."""
        with self.lock:
            if self._token is None:
                return True
            return self._token.is_expired(self.clock_skew_seconds, now=self._now())

    def current_token(self) -> AccessToken:
        """
        Get the current token, expired or not.

        Raises:
            NotAuthorizedError: If no token is held
        """
        with self.lock:
            if self._token is None:
                raise NotAuthorizedError("No access token available")
            return self._token

    def token_expires_at(self) -> datetime | None:
        with self.lock:
            return self._token.expires_at if self._token else None

    def current_user_id(self) -> str | None:
        with self.lock:
            return self._token.user_id if self._token else None

    def is_client_token(self) -> bool:
        with self.lock:
            return self._token is not None and self._token.is_client_token

    @property
    def is_refreshing(self) -> bool:
        with self.lock:
            return self._flight is not None

    @property
    def awaiting_login(self) -> bool:
        with self.lock:
            return self._awaiting_login

    def subscribe(self, listener: TokenListener) -> Callable[[], None]:
        """
        Register a listener called under the lock whenever an exchange settles
        or the token is invalidated.

        Returns:
            Callable that removes the listener
        """
        with self.lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self.lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Exchanges
    # ------------------------------------------------------------------

    async def exchange_authorization_code(
        self, code: str, redirect_uri: str | None = None
    ) -> AccessToken:
        """
        Exchange an authorization code from the login redirect for a user token.

        A login supersedes a refresh that is already running; callers waiting
        on that refresh receive the login's outcome.

        Raises:
            TokenRefreshError: If the exchange fails
            InvalidConfigurationError: If client_secret is not configured
        """
        params = self.urls.token_request_params(
            GrantType.AUTHORIZATION_CODE, code=code, redirect_uri=redirect_uri
        )
        request = ExchangeRequest(GrantType.AUTHORIZATION_CODE, self.urls.token_endpoint, params)
        with self.lock:
            supersede = self._flight_grant is not GrantType.AUTHORIZATION_CODE
            flight = self._begin_flight(request, supersede=supersede)
        return await asyncio.shield(flight)

    async def exchange_client_credentials(self) -> AccessToken:
        """Obtain a client token for the application itself."""
        params = self.urls.token_request_params(GrantType.CLIENT_CREDENTIALS)
        request = ExchangeRequest(GrantType.CLIENT_CREDENTIALS, self.urls.token_endpoint, params)
        with self.lock:
            flight = self._begin_flight(request)
        return await asyncio.shield(flight)

    async def refresh(self) -> AccessToken:
        """
        Renew the current token, or join the exchange already running.

        Raises:
            NotAuthorizedError: If there is no refresh credential and no client token
            TokenRefreshError: If the exchange fails
        """
        flight = self.start_recovery()
        if flight is None:
            raise NotAuthorizedError("No refresh credential available; log in again")
        return await asyncio.shield(flight)

    def start_recovery(self) -> asyncio.Future | None:
        """
        Start (or join) the exchange that would make a token available.

        Returns:
            The flight future, or None when there is no way to get a token
        """
        with self.lock:
            if self._flight is not None:
                return self._flight
            request = self._recovery_request_locked()
            if request is None:
                return None
            return self._begin_flight(request)

    def _recovery_request_locked(self) -> ExchangeRequest | None:
        basis = self._token or self._retained
        if basis is None:
            return None
        if basis.refresh_token:
            params = self.urls.token_request_params(
                GrantType.REFRESH_TOKEN, refresh_token=basis.refresh_token
            )
            return ExchangeRequest(GrantType.REFRESH_TOKEN, self.urls.token_endpoint, params)
        if basis.is_client_token:
            params = self.urls.token_request_params(GrantType.CLIENT_CREDENTIALS)
            return ExchangeRequest(GrantType.CLIENT_CREDENTIALS, self.urls.token_endpoint, params)
        return None

    def _begin_flight(self, request: ExchangeRequest, supersede: bool = False) -> asyncio.Future:
        # Caller holds the lock
        if self._flight is not None and not supersede:
            logger.debug(
                f"Joining in-flight {self._flight_grant.value} exchange",
                extra={"grant_type": request.grant_type.value},
            )
            return self._flight

        loop = asyncio.get_running_loop()
        previous, previous_task = self._flight, self._flight_task

        flight = loop.create_future()
        flight.add_done_callback(_consume_exception)
        self._flight = flight
        self._flight_grant = request.grant_type
        self._cancel_refresh_timer()
        self._flight_task = loop.create_task(self._run_flight(flight, request))

        if previous is not None:
            logger.info(
                f"Superseding in-flight exchange with {request.grant_type.value}",
                extra={"grant_type": request.grant_type.value},
            )
            if previous_task is not None:
                previous_task.cancel()
            _chain(flight, previous)

        logger.debug(
            f"Started {request.grant_type.value} exchange",
            extra={"grant_type": request.grant_type.value, "lifecycle_state": "refreshing"},
        )
        return flight

    async def _run_flight(self, flight: asyncio.Future, request: ExchangeRequest) -> None:
        grant = request.grant_type.value
        try:
            token = await asyncio.wait_for(
                self.transport.exchange(request), timeout=self.exchange_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            error = TokenRefreshError(
                f"Token exchange ({grant}) timed out after {self.exchange_timeout_seconds}s",
                ExchangeFailureKind.NETWORK,
                cause=e,
            )
        except TokenRefreshError as e:
            error = e
        except Exception as e:
            error = TokenRefreshError(
                f"Token exchange ({grant}) failed: {e}", ExchangeFailureKind.NETWORK, cause=e
            )
        else:
            self._settle_success(flight, request, token)
            return

        self._settle_failure(flight, request, error)

    def _settle_success(
        self, flight: asyncio.Future, request: ExchangeRequest, token: AccessToken
    ) -> None:
        with self.lock:
            if flight is not self._flight:
                logger.info(
                    f"Discarding {request.grant_type.value} result after invalidation",
                    extra={"grant_type": request.grant_type.value},
                )
                return

            basis = self._token or self._retained
            if request.grant_type is GrantType.REFRESH_TOKEN and basis is not None:
                token = token.carry_over(basis)

            self._token = token
            self._retained = None
            self._flight = None
            self._flight_task = None
            self._flight_grant = None
            self._awaiting_login = False

            self._persist(token)
            self._schedule_refresh(token)
            self._notify(token, None)
            flight.set_result(token)

        logger.info(
            f"Token installed via {request.grant_type.value}, valid until "
            f"{token.expires_at.isoformat()}",
            extra={"grant_type": request.grant_type.value, "lifecycle_state": "authorized"},
        )

    def _settle_failure(
        self, flight: asyncio.Future, request: ExchangeRequest, error: TokenRefreshError
    ) -> None:
        with self.lock:
            if flight is not self._flight:
                return

            self._flight = None
            self._flight_task = None
            self._flight_grant = None

            if error.transient:
                if self._token is not None:
                    self._retained = self._token
                self._token = None
            else:
                self._token = None
                self._retained = None
                self._remove_persisted()

            if request.grant_type is GrantType.AUTHORIZATION_CODE:
                self._awaiting_login = False

            self._notify(None, error)
            flight.set_exception(error)

        logger.warning(
            f"Token exchange ({request.grant_type.value}) failed "
            f"[{error.kind.value}]: {error}",
            extra={
                "grant_type": request.grant_type.value,
                "error_kind": error.kind.value,
                "lifecycle_state": "unauthorized",
            },
        )

    # ------------------------------------------------------------------
    # Logout and login coordination
    # ------------------------------------------------------------------

    def invalidate(self, reason: str = "logged out") -> None:
        """
        Drop the token unconditionally, even while an exchange is running.

        The stored record is removed, the running exchange is cancelled and its
        waiters fail with NotAuthorizedError. Anything the exchange produces
        afterwards is discarded.
        """
        error = NotAuthorizedError(f"Authorization revoked: {reason}")
        with self.lock:
            flight, task = self._flight, self._flight_task
            self._flight = None
            self._flight_task = None
            self._flight_grant = None
            self._token = None
            self._retained = None
            self._awaiting_login = False
            self._cancel_refresh_timer()
            self._remove_persisted()

            if task is not None:
                task.cancel()
            self._notify(None, error)
            if flight is not None and not flight.done():
                flight.set_exception(error)

        logger.info(f"Token invalidated: {reason}", extra={"lifecycle_state": "unauthorized"})

    def begin_login(self) -> None:
        """Mark a browser login as in progress; authorized calls wait for it."""
        with self.lock:
            self._awaiting_login = True
        logger.debug("Browser login started")

    def abort_login(self, error: OAuth2Error) -> None:
        """End a browser login that failed, failing the calls waiting for it."""
        with self.lock:
            if not self._awaiting_login:
                return
            self._awaiting_login = False
            # A running exchange settles the waiters itself
            if self._flight is None:
                self._notify(None, error)
        logger.info(f"Browser login aborted: {error}")

    def mark_expired(self, token: AccessToken) -> None:
        """
        Treat token as expired after the server rejected it.

        Has no effect when token is no longer the current one.
        """
        with self.lock:
            current = self._token
            if current is None or current.access_token != token.access_token:
                return
            expired_at = self._now() - timedelta(seconds=1)
            self._token = replace(current, expires_at=expired_at)
            self._cancel_refresh_timer()
        logger.info("Access token rejected by server; marked expired")

    # ------------------------------------------------------------------
    # Persistence and notification (caller holds the lock)
    # ------------------------------------------------------------------

    def _load_persisted(self) -> None:
        if self.store is None:
            return
        try:
            token = self.store.load()
        except (TokenStoreError, OSError) as e:
            logger.warning(f"Could not load persisted token: {e}")
            return
        if token is not None:
            self._token = token
            self._schedule_refresh(token)
            logger.debug(f"Loaded persisted token (expires {token.expires_at.isoformat()})")

    def _persist(self, token: AccessToken) -> None:
        if self.store is None or not self.save_to_store:
            return
        try:
            self.store.save(token)
        except (TokenStoreError, OSError) as e:
            logger.warning(f"Could not persist token: {e}")

    def _remove_persisted(self) -> None:
        if self.store is None:
            return
        try:
            self.store.remove()
        except (TokenStoreError, OSError) as e:
            logger.warning(f"Could not remove persisted token: {e}")

    def _notify(self, token: AccessToken | None, error: OAuth2Error | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(token, error)
            except Exception:
                logger.exception("Token listener raised")

    # ------------------------------------------------------------------
    # Proactive refresh
    # ------------------------------------------------------------------

    def _schedule_refresh(self, token: AccessToken) -> None:
        self._cancel_refresh_timer()
        if not self.proactive_refresh:
            return
        if token.refresh_token is None and not token.is_client_token:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Loaded outside the loop; refresh happens on first use instead
            return

        refresh_at = token.expires_at - timedelta(seconds=self.clock_skew_seconds)
        delay = max((refresh_at - self._now()).total_seconds(), 0.0)
        self._refresh_timer = loop.call_later(delay, self._on_refresh_timer)
        logger.debug(f"Scheduled proactive refresh in {delay:.0f}s")

    def _cancel_refresh_timer(self) -> None:
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None

    def _on_refresh_timer(self) -> None:
        with self.lock:
            self._refresh_timer = None
            if self._flight is not None or self._token is None:
                return
            try:
                request = self._recovery_request_locked()
            except OAuth2Error as e:
                logger.warning(f"Proactive refresh skipped: {e}")
                return
            if request is not None:
                logger.info("Starting proactive token refresh")
                self._begin_flight(request)

    async def close(self) -> None:
        """Cancel timers and any running exchange. The token itself is kept."""
        error = NotAuthorizedError("Token manager closed")
        with self.lock:
            self._cancel_refresh_timer()
            flight, task = self._flight, self._flight_task
            self._flight = None
            self._flight_task = None
            self._flight_grant = None
            if task is not None:
                task.cancel()
            if flight is not None:
                self._notify(None, error)
                if not flight.done():
                    flight.set_exception(error)

        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        logger.debug("TokenLifecycleManager closed")


__all__ = [
    "TokenLifecycleManager",
    "TokenListener",
    "DEFAULT_CLOCK_SKEW_SECONDS",
    "DEFAULT_EXCHANGE_TIMEOUT_SECONDS",
]
