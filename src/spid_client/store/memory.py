"""In-process token store."""

import threading

from spid_client.oauth2.models import AccessToken
from spid_client.store.base import TokenStore


class MemoryTokenStore(TokenStore):
    """Keeps the token record in memory. Useful for tests and short-lived tools."""

    def __init__(self, token: AccessToken | None = None):
        self._token = token
        self._lock = threading.Lock()
        self.save_count = 0
        self.remove_count = 0

    def save(self, token: AccessToken) -> None:
        with self._lock:
            self._token = token
            self.save_count += 1

    def load(self) -> AccessToken | None:
        with self._lock:
            return self._token

    def remove(self) -> None:
        with self._lock:
            self._token = None
            self.remove_count += 1


__all__ = ["MemoryTokenStore"]
