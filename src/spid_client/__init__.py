"""spid-client: OAuth2 token lifecycle and request queueing for the SPiD identity server."""

__version__ = "0.1.0"

from spid_client.oauth2 import (
    AccessToken,
    ApiError,
    LifecycleState,
    LoginFailedError,
    NotAuthorizedError,
    OAuth2Error,
    TokenRefreshError,
)
from spid_client.config import ClientConfig, load_config
from spid_client.client import RedirectFlow, SPiDClient
from spid_client.store import FileTokenStore, MemoryTokenStore, TokenStore
from spid_client.types import ErrorCategory

__all__ = [
    "__version__",
    "SPiDClient",
    "RedirectFlow",
    "ClientConfig",
    "load_config",
    "AccessToken",
    "LifecycleState",
    "TokenStore",
    "FileTokenStore",
    "MemoryTokenStore",
    "ErrorCategory",
    "OAuth2Error",
    "NotAuthorizedError",
    "TokenRefreshError",
    "LoginFailedError",
    "ApiError",
]
