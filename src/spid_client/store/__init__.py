"""Token persistence adapters."""

from spid_client.store.base import TokenStore
from spid_client.store.file import FileTokenStore, default_store_path
from spid_client.store.keychain import KeyringTokenStore
from spid_client.store.memory import MemoryTokenStore

__all__ = [
    "TokenStore",
    "KeyringTokenStore",
    "FileTokenStore",
    "MemoryTokenStore",
    "default_store_path",
]
