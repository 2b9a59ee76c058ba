"""
System keychain token store.

The record is kept by the platform credential service through `keyring`
(macOS Keychain, Windows Credential Locker, Secret Service on Linux) as one
JSON password under a fixed user name.
"""

import json
import logging
from typing import Any

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from spid_client.oauth2.exceptions import TokenStoreError
from spid_client.oauth2.models import AccessToken
from spid_client.store.base import TokenStore
from spid_client.store.file import STORE_IDENTIFIER

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "spid-client"


class KeyringTokenStore(TokenStore):
    """Token store backed by the system keyring."""

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME, backend: Any = None):
        """
        Initialize the keyring store.

        Args:
            service_name: Keyring service the record is filed under
            backend: keyring backend instance (default: the active system keyring)
        """
        self.service_name = service_name
        self._keyring = backend if backend is not None else keyring
        logger.debug(f"KeyringTokenStore initialized: service={service_name}")

    def save(self, token: AccessToken) -> None:
        value = json.dumps(token.to_dict())
        try:
            self._keyring.set_password(self.service_name, STORE_IDENTIFIER, value)
        except KeyringError as e:
            raise TokenStoreError(
                f"Could not save token to keyring service '{self.service_name}'", cause=e
            ) from e
        logger.debug(f"Stored token in keyring service '{self.service_name}'")

    def load(self) -> AccessToken | None:
        try:
            value = self._keyring.get_password(self.service_name, STORE_IDENTIFIER)
        except KeyringError as e:
            raise TokenStoreError(
                f"Could not read token from keyring service '{self.service_name}'", cause=e
            ) from e

        if value is None:
            return None
        try:
            return AccessToken.from_dict(json.loads(value))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise TokenStoreError(
                f"Corrupt token record in keyring service '{self.service_name}'", cause=e
            ) from e

    def remove(self) -> None:
        try:
            self._keyring.delete_password(self.service_name, STORE_IDENTIFIER)
        except PasswordDeleteError:
            # Nothing stored
            return
        except KeyringError as e:
            raise TokenStoreError(
                f"Could not remove token from keyring service '{self.service_name}'", cause=e
            ) from e
        logger.debug(f"Removed token from keyring service '{self.service_name}'")


__all__ = ["KeyringTokenStore", "DEFAULT_SERVICE_NAME"]
