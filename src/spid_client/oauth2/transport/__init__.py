from spid_client.oauth2.transport.base import (
    ApiResponse,
    AuthorizationTransport,
    ExchangeRequest,
    RevokeRequest,
)
from spid_client.oauth2.transport.http import HttpAuthorizationTransport

__all__ = [
    "AuthorizationTransport",
    "HttpAuthorizationTransport",
    "ExchangeRequest",
    "RevokeRequest",
    "ApiResponse",
]
