"""Secure store interface for the persisted access token."""

from abc import ABC, abstractmethod

from spid_client.oauth2.models import AccessToken


class TokenStore(ABC):
    """
    Abstract base class for token persistence.

    A store holds at most one token record under a fixed identifier. There is
    no transactional guarantee beyond "last call wins". Implementations raise
    TokenStoreError on failure; the lifecycle manager logs those and carries
    on with its in-memory token.
    """

    @abstractmethod
    def save(self, token: AccessToken) -> None:
        """Persist token, replacing any previous record."""
        pass

    @abstractmethod
    def load(self) -> AccessToken | None:
        """Load the persisted token, or None when no record exists."""
        pass

    @abstractmethod
    def remove(self) -> None:
        """Delete the persisted record. Removing a missing record is not an error."""
        pass


__all__ = ["TokenStore"]
