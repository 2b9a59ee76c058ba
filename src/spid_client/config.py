"""Client configuration from YAML file and environment.

Loads the `spid:` section of a YAML file, with all client settings in one place:
- Client identity (client id, secrets, server client id)
- Server and app redirect URLs
- Token lifecycle policy (clock skew, exchange timeout, proactive refresh)
- Token store location

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files,
and SPID_* variables override file values.
"""

import logging
import os
import re
import types
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union, get_args, get_origin

import yaml
from dotenv import load_dotenv

from spid_client.oauth2.exceptions import InvalidConfigurationError
from spid_client.oauth2.manager import (
    DEFAULT_CLOCK_SKEW_SECONDS,
    DEFAULT_EXCHANGE_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2"
DEFAULT_CONFIG_FILE = Path("config") / "spid.yaml"
ENV_PREFIX = "SPID_"

# Host used in the app's redirect URI: <scheme>://spid/<flow>
REDIRECT_HOST = "spid"


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ClientConfig:
    """Client configuration.

    Configuration structure (YAML):
        spid:
          client_id: ...
          client_secret: ${SPID_CLIENT_SECRET}
          app_url_scheme: myapp
          server_url: https://identity.example.com
          sign_secret: ...
          clock_skew_seconds: 60

    Required values are checked on first use by validate(), not at
    construction, so a partially configured client can still be built.
    """

    # =========================================================================
    # CLIENT IDENTITY
    # =========================================================================
    client_id: str = ""
    server_url: str = ""
    app_url_scheme: str = ""
    client_secret: Optional[str] = None
    server_client_id: Optional[str] = None  # Used for one-time codes
    sign_secret: Optional[str] = None

    # =========================================================================
    # URL OVERRIDES (derived from server_url / app_url_scheme when unset)
    # =========================================================================
    redirect_uri: Optional[str] = None
    authorization_url: Optional[str] = None
    signup_url: Optional[str] = None
    forgot_password_url: Optional[str] = None
    logout_url: Optional[str] = None
    token_url: Optional[str] = None
    api_version: str = DEFAULT_API_VERSION
    use_mobile_web: bool = True
    locale: Optional[str] = None

    # =========================================================================
    # TOKEN LIFECYCLE
    # =========================================================================
    save_to_store: bool = True
    token_store_path: Optional[str] = None  # Plain JSON file store instead of the keyring
    keyring_service: str = "spid-client"
    clock_skew_seconds: float = DEFAULT_CLOCK_SKEW_SECONDS
    exchange_timeout_seconds: float = DEFAULT_EXCHANGE_TIMEOUT_SECONDS
    proactive_refresh: bool = False
    max_pending_operations: Optional[int] = None

    @property
    def effective_server_client_id(self) -> str:
        return self.server_client_id or self.client_id

    @property
    def server_base(self) -> str:
        return self.server_url.rstrip("/")

    @property
    def redirect_base(self) -> str:
        """Base of the app redirect URIs, e.g. myapp://spid."""
        if self.redirect_uri:
            return self.redirect_uri.rstrip("/")
        scheme = self.app_url_scheme.split("://")[0]
        return f"{scheme}://{REDIRECT_HOST}"

    def missing_fields(self, require_secret: bool = False) -> List[str]:
        missing = []
        if not self.client_id:
            missing.append("client_id")
        if not self.server_url:
            missing.append("server_url")
        if not self.app_url_scheme and not self.redirect_uri:
            missing.append("app_url_scheme")
        if require_secret and not self.client_secret:
            missing.append("client_secret")
        return missing

    def validate(self, require_secret: bool = False) -> None:
        """
        Check that required settings are present.

        Args:
            require_secret: Also require client_secret (token endpoint calls)

        Raises:
            InvalidConfigurationError: Listing every missing setting
        """
        missing = self.missing_fields(require_secret=require_secret)
        if missing:
            raise InvalidConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                context={"missing": missing},
            )
        if self.clock_skew_seconds < 0:
            raise InvalidConfigurationError("clock_skew_seconds must be non-negative")
        if self.exchange_timeout_seconds <= 0:
            raise InvalidConfigurationError("exchange_timeout_seconds must be positive")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Build from a plain dict, ignoring unknown keys."""
        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown client config key '{key}'")
                continue
            kwargs[key] = _coerce(known[key].type, value)
        return cls(**kwargs)

    @classmethod
    def from_env(cls, base: Optional[Dict[str, Any]] = None) -> "ClientConfig":
        """Build from SPID_* environment variables layered over base."""
        data = dict(base or {})
        for f in fields(cls):
            env_value = os.getenv(f"{ENV_PREFIX}{f.name.upper()}")
            if env_value is not None:
                data[f.name] = env_value
        return cls.from_dict(data)

    def summary(self) -> Dict[str, Any]:
        """Configuration summary for diagnostics (excluding secrets)."""
        return {
            "client_id": self.client_id,
            "server_url": self.server_url,
            "redirect_base": self.redirect_base if (self.app_url_scheme or self.redirect_uri) else None,
            "server_client_id": self.effective_server_client_id,
            "client_secret_configured": bool(self.client_secret),
            "signing_enabled": bool(self.sign_secret),
            "clock_skew_seconds": self.clock_skew_seconds,
            "exchange_timeout_seconds": self.exchange_timeout_seconds,
            "proactive_refresh": self.proactive_refresh,
            "save_to_store": self.save_to_store,
            "token_store": self.token_store_path or f"keyring:{self.keyring_service}",
        }


def _base_type(field_type: Any) -> Any:
    """Unwrap Optional[X] / X | None to X."""
    if get_origin(field_type) in (Union, types.UnionType):
        args = [arg for arg in get_args(field_type) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return field_type


def _coerce(field_type: Any, value: Any) -> Any:
    """Convert string values (env vars, expanded YAML) to the field's type."""
    if value is None or not isinstance(value, str):
        return value
    base = _base_type(field_type)
    if base is bool:
        return _parse_bool(value)
    if base is int:
        return int(value) if value.strip() else None
    if base is float:
        return float(value)
    return value


def load_config(
    config_path: Optional[Path] = None,
    env_file: Optional[Path] = None,
) -> ClientConfig:
    """
    Load client configuration.

    Priority (highest to lowest):
    1. SPID_* environment variables (including those from env_file)
    2. `spid:` section of the YAML file (with ${VAR} expansion)
    3. Dataclass defaults

    Args:
        config_path: YAML file (default: config/spid.yaml)
        env_file: Optional .env file loaded before reading the environment

    Returns:
        ClientConfig instance
    """
    if env_file is not None:
        load_dotenv(env_file)

    path = config_path or DEFAULT_CONFIG_FILE
    raw = load_yaml(path)
    section = _expand_env_vars(raw.get("spid", raw))

    if raw:
        logger.debug(f"Loaded client configuration from {path}")

    return ClientConfig.from_env(section)


__all__ = [
    "ClientConfig",
    "load_config",
    "load_yaml",
    "DEFAULT_API_VERSION",
    "DEFAULT_CLOCK_SKEW_SECONDS",
    "DEFAULT_EXCHANGE_TIMEOUT_SECONDS",
    "REDIRECT_HOST",
]
