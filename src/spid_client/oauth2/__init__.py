"""
OAuth2 token lifecycle and request queueing.

This package holds the pieces behind SPiDClient: the token model, URL
building and signing, redirect parsing, the HTTP transport, the lifecycle
manager that owns the token, and the coordinator that queues authorized
calls while a token is being obtained.

Basic Usage:
    from spid_client.config import load_config
    from spid_client.oauth2 import (
        HttpAuthorizationTransport,
        RequestQueueCoordinator,
        TokenLifecycleManager,
        URLBuilder,
    )

    config = load_config()
    manager = TokenLifecycleManager(URLBuilder(config), HttpAuthorizationTransport())
    coordinator = RequestQueueCoordinator(manager)

    # Exchange the code from the login redirect
    token = await manager.exchange_authorization_code(code)

    # Run a call with a valid token; queued while a refresh is running
    result = await coordinator.run_authorized(fetch_profile)

Error Handling:
    from spid_client.oauth2 import TokenRefreshError

    try:
        await manager.refresh()
    except TokenRefreshError as e:
        if e.transient:
            ...  # network trouble, try again later
        else:
            ...  # refresh credential rejected, log in again
"""

from spid_client.oauth2.coordinator import RequestQueueCoordinator
from spid_client.oauth2.exceptions import (
    ApiError,
    ExchangeFailureKind,
    InvalidConfigurationError,
    LoginFailedError,
    NotAuthorizedError,
    OAuth2Error,
    PendingQueueFullError,
    TokenRefreshError,
    TokenStoreError,
)
from spid_client.oauth2.manager import (
    DEFAULT_CLOCK_SKEW_SECONDS,
    DEFAULT_EXCHANGE_TIMEOUT_SECONDS,
    TokenLifecycleManager,
)
from spid_client.oauth2.models import (
    AccessToken,
    ClientSubject,
    GrantType,
    LifecycleState,
    PendingOperation,
    TokenResponse,
    TokenSubject,
    UserSubject,
)
from spid_client.oauth2.redirect import RedirectKind, RedirectResult, parse_redirect
from spid_client.oauth2.transport import (
    ApiResponse,
    AuthorizationTransport,
    ExchangeRequest,
    HttpAuthorizationTransport,
    RevokeRequest,
)
from spid_client.oauth2.urls import URLBuilder, sign_params, verify_signature

__all__ = [
    # Manager and queue
    "TokenLifecycleManager",
    "RequestQueueCoordinator",
    "DEFAULT_CLOCK_SKEW_SECONDS",
    "DEFAULT_EXCHANGE_TIMEOUT_SECONDS",
    # Transport
    "AuthorizationTransport",
    "HttpAuthorizationTransport",
    "ExchangeRequest",
    "RevokeRequest",
    "ApiResponse",
    # URLs and redirects
    "URLBuilder",
    "sign_params",
    "verify_signature",
    "RedirectKind",
    "RedirectResult",
    "parse_redirect",
    # Models
    "AccessToken",
    "TokenSubject",
    "UserSubject",
    "ClientSubject",
    "GrantType",
    "LifecycleState",
    "PendingOperation",
    "TokenResponse",
    # Exceptions
    "OAuth2Error",
    "ExchangeFailureKind",
    "NotAuthorizedError",
    "TokenRefreshError",
    "LoginFailedError",
    "InvalidConfigurationError",
    "PendingQueueFullError",
    "TokenStoreError",
    "ApiError",
]
