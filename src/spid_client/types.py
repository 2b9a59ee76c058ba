"""
Core types and protocols used across modules.

This module provides base types, enums, and protocol definitions that are
shared across the client library to keep error handling and token storage
consistent between the lifecycle manager, the transport and the facade.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional, Protocol

if TYPE_CHECKING:
    from spid_client.oauth2.models import AccessToken


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures; the caller may retry the whole flow
                   (e.g., network timeouts, 429/503 errors)
        AUTH: Authorization failures requiring a fresh login or refresh
              (e.g., 401 errors, revoked refresh credentials)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., bad configuration, 404)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class TokenPersistence(Protocol):
    """
    Protocol for the secure store holding the current token.

    Implementations only need "last call wins" semantics; the lifecycle
    manager treats every failure as non-fatal.
    """

    def save(self, token: "AccessToken") -> None:
        ...

    def load(self) -> Optional["AccessToken"]:
        ...

    def remove(self) -> None:
        ...


__all__ = [
    "ErrorCategory",
    "TokenPersistence",
]
