"""
URL construction for the browser flows and the token endpoint.

Everything here is a pure function of the client configuration and the
arguments: no network access and no state. When a signing secret is
configured, URLs and requests carry a `sig` parameter the server recomputes
from the same inputs.
"""

import base64
import hashlib
import hmac
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from spid_client.oauth2.exceptions import InvalidConfigurationError
from spid_client.oauth2.models import GrantType

if TYPE_CHECKING:
    from spid_client.config import ClientConfig

SIGNATURE_PARAM = "sig"

# Never part of the signing input
_UNSIGNED_PARAMS = frozenset({SIGNATURE_PARAM, "client_secret"})

# Redirect path suffixes under the app's redirect base
LOGIN_PATH = "login"
SIGNUP_PATH = "signup"
LOGOUT_PATH = "logout"
FAILURE_PATH = "failure"


def sign_params(params: dict[str, str], secret: str) -> str:
    """
    Compute the request signature for params.

    The signing input is the concatenation of the parameter values in
    key-sorted order, skipping client_secret and any existing signature.
    The digest is HMAC-SHA256 keyed by the signing secret, encoded as
    URL-safe base64 without padding.

    Args:
        params: Request parameters
        secret: Signing secret shared with the server

    Returns:
        Signature string
    """
    payload = "".join(
        str(params[key]) for key in sorted(params) if key not in _UNSIGNED_PARAMS
    )
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def verify_signature(params: dict[str, str], secret: str) -> bool:
    """Check the sig parameter of params against a fresh signature."""
    provided = params.get(SIGNATURE_PARAM)
    if not provided:
        return False
    return hmac.compare_digest(provided, sign_params(params, secret))


class URLBuilder:
    """
    Builds the authorization, signup, forgot-password, logout, token and API
    URLs from a ClientConfig.

    Configuration is validated on first use, so a misconfigured client fails
    with InvalidConfigurationError when it first needs a URL rather than at
    construction.
    """

    def __init__(self, config: "ClientConfig"):
        self.config = config

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def _endpoint(self, override: str | None, path: str) -> str:
        self.config.validate()
        if override:
            return override
        return f"{self.config.server_base}/{path}"

    @property
    def authorization_endpoint(self) -> str:
        return self._endpoint(self.config.authorization_url, "auth/login")

    @property
    def signup_endpoint(self) -> str:
        return self._endpoint(self.config.signup_url, "auth/signup")

    @property
    def forgot_password_endpoint(self) -> str:
        return self._endpoint(self.config.forgot_password_url, "auth/forgotpassword")

    @property
    def logout_endpoint(self) -> str:
        return self._endpoint(self.config.logout_url, "logout")

    @property
    def token_endpoint(self) -> str:
        return self._endpoint(self.config.token_url, "oauth/token")

    def api_url(self, path: str) -> str:
        """Absolute URL of an API resource, e.g. api_url("me")."""
        return self._endpoint(None, f"api/{self.config.api_version}/{path.lstrip('/')}")

    def redirect_uri(self, path: str = LOGIN_PATH) -> str:
        self.config.validate()
        return f"{self.config.redirect_base}/{path}"

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def _signed(self, params: dict[str, str]) -> dict[str, str]:
        if self.config.sign_secret:
            params[SIGNATURE_PARAM] = sign_params(params, self.config.sign_secret)
        return params

    def _with_query(self, endpoint: str, params: dict[str, str]) -> str:
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(self._signed(params))}"

    def _browser_params(self, redirect_path: str) -> dict[str, str]:
        params = {
            "client_id": self.config.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri(redirect_path),
        }
        if self.config.use_mobile_web:
            params["platform"] = "mobile"
            params["force"] = "1"
        if self.config.locale:
            params["locale"] = self.config.locale
        return params

    def authorization_url(self) -> str:
        """Login page URL; the server redirects back to <base>/login."""
        return self._with_query(self.authorization_endpoint, self._browser_params(LOGIN_PATH))

    def signup_url(self) -> str:
        """Signup page URL; the server redirects back to <base>/signup."""
        return self._with_query(self.signup_endpoint, self._browser_params(SIGNUP_PATH))

    def forgot_password_url(self) -> str:
        """Forgot-password page URL; a completed reset lands on the login redirect."""
        params = {
            "client_id": self.config.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri(LOGIN_PATH),
        }
        return self._with_query(self.forgot_password_endpoint, params)

    def logout_url(self, access_token: str) -> str:
        """Browser logout URL for the given access token."""
        params = {
            "redirect_uri": self.redirect_uri(LOGOUT_PATH),
            "oauth_token": access_token,
        }
        return self._with_query(self.logout_endpoint, params)

    def token_request_params(
        self,
        grant_type: GrantType,
        *,
        code: str | None = None,
        refresh_token: str | None = None,
        redirect_uri: str | None = None,
    ) -> dict[str, str]:
        """
        Form fields for a token endpoint call.

        Raises:
            InvalidConfigurationError: If client_secret is not configured
            ValueError: If the grant's credential argument is missing
        """
        self.config.validate(require_secret=True)

        params = {
            "grant_type": grant_type.value,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret or "",
        }

        if grant_type is GrantType.AUTHORIZATION_CODE:
            if not code:
                raise ValueError("authorization_code grant requires a code")
            params["code"] = code
            params["redirect_uri"] = redirect_uri or self.redirect_uri(LOGIN_PATH)
        elif grant_type is GrantType.REFRESH_TOKEN:
            if not refresh_token:
                raise ValueError("refresh_token grant requires a refresh token")
            params["refresh_token"] = refresh_token

        return self._signed(params)

    def one_time_code_params(self) -> dict[str, str]:
        """Parameters for a one-time code, issued to the server client id."""
        self.config.validate()
        if not self.config.effective_server_client_id:
            raise InvalidConfigurationError("server_client_id or client_id is required")
        return self._signed(
            {
                "clientId": self.config.effective_server_client_id,
                "type": "code",
            }
        )


__all__ = [
    "URLBuilder",
    "sign_params",
    "verify_signature",
    "SIGNATURE_PARAM",
    "LOGIN_PATH",
    "SIGNUP_PATH",
    "LOGOUT_PATH",
    "FAILURE_PATH",
]
