"""
JSON file token store.

The record lives in a single file readable only by the current user. Writes
go through a temporary file in the same directory followed by os.replace, so
a crash never leaves a half-written record behind.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

from spid_client.oauth2.exceptions import TokenStoreError
from spid_client.oauth2.models import AccessToken
from spid_client.store.base import TokenStore

logger = logging.getLogger(__name__)

# Fixed identifier of the token record
STORE_IDENTIFIER = "AccessToken"
FILE_MODE = 0o600


def default_store_path() -> Path:
    """~/.config/spid-client/AccessToken.json, or under $SPID_CONFIG_DIR when set."""
    env_dir = os.getenv("SPID_CONFIG_DIR")
    if env_dir:
        base_dir = Path(env_dir)
    else:
        base_dir = Path(os.path.expanduser("~")) / ".config" / "spid-client"
    return base_dir / f"{STORE_IDENTIFIER}.json"


class FileTokenStore(TokenStore):
    """Token store backed by a local JSON file."""

    def __init__(self, path: str | Path | None = None):
        """
        Initialize the file store.

        Args:
            path: Record file. If None, uses default_store_path()
        """
        self.path = Path(path) if path is not None else default_store_path()
        logger.debug(f"FileTokenStore initialized: {self.path}")

    def save(self, token: AccessToken) -> None:
        """Write the token record atomically with owner-only permissions."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{STORE_IDENTIFIER}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(token.to_dict(), f, indent=2)
                os.chmod(tmp_path, FILE_MODE)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            raise TokenStoreError(f"Could not save token to {self.path}", cause=e) from e

        logger.debug(f"Stored token at {self.path}")

    def load(self) -> AccessToken | None:
        """Read the token record. A missing file means no token."""
        if not self.path.exists():
            logger.debug(f"No token record at {self.path}")
            return None

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            return AccessToken.from_dict(data)
        except OSError as e:
            raise TokenStoreError(f"Could not read token from {self.path}", cause=e) from e
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise TokenStoreError(f"Corrupt token record at {self.path}", cause=e) from e

    def remove(self) -> None:
        """Delete the token record if present."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise TokenStoreError(f"Could not remove token at {self.path}", cause=e) from e

        logger.debug(f"Removed token record {self.path}")


__all__ = ["FileTokenStore", "default_store_path", "STORE_IDENTIFIER"]
