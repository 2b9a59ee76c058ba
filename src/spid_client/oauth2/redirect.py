"""Parsing of app redirect URLs coming back from the browser flows."""

import logging
from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qs, urlparse

from spid_client.oauth2.urls import FAILURE_PATH, LOGIN_PATH, LOGOUT_PATH, SIGNUP_PATH

logger = logging.getLogger(__name__)


class RedirectKind(Enum):
    LOGIN = "login"
    SIGNUP = "signup"
    LOGIN_FAILURE = "failure"
    LOGOUT = "logout"


_PATH_KINDS = {
    LOGIN_PATH: RedirectKind.LOGIN,
    SIGNUP_PATH: RedirectKind.SIGNUP,
    FAILURE_PATH: RedirectKind.LOGIN_FAILURE,
    LOGOUT_PATH: RedirectKind.LOGOUT,
}


@dataclass(frozen=True)
class RedirectResult:
    """
    A recognised redirect.

    Attributes:
        kind: Which flow the redirect completes
        code: Authorization code (login/signup success)
        error: Error code reported by the server
        error_description: Optional human-readable error text
    """

    kind: RedirectKind
    code: str | None = None
    error: str | None = None
    error_description: str | None = None

    @property
    def succeeded(self) -> bool:
        if self.error or self.kind is RedirectKind.LOGIN_FAILURE:
            return False
        if self.kind in (RedirectKind.LOGIN, RedirectKind.SIGNUP):
            return self.code is not None
        return True


def _first(query: dict[str, list[str]], key: str) -> str | None:
    values = query.get(key)
    if not values or not values[0]:
        return None
    return values[0]


def parse_redirect(url: str, redirect_base: str) -> RedirectResult | None:
    """
    Recognise a redirect URL under redirect_base.

    Args:
        url: The URL the application was opened with
        redirect_base: Configured redirect base, e.g. "myapp://spid"

    Returns:
        RedirectResult, or None when the URL is not one of ours
    """
    if not url:
        return None

    parsed = urlparse(url)
    base = urlparse(redirect_base)

    if parsed.scheme.lower() != base.scheme.lower():
        return None
    if parsed.netloc.lower() != base.netloc.lower():
        return None

    base_path = base.path.rstrip("/")
    path = parsed.path.rstrip("/")
    if base_path and not path.lower().startswith(base_path.lower()):
        return None

    suffix = path[len(base_path):].strip("/").lower()
    kind = _PATH_KINDS.get(suffix)
    if kind is None:
        logger.debug(f"Unrecognized redirect path '{parsed.path}'")
        return None

    query = parse_qs(parsed.query)
    return RedirectResult(
        kind=kind,
        code=_first(query, "code"),
        error=_first(query, "error"),
        error_description=_first(query, "error_description"),
    )


__all__ = ["RedirectKind", "RedirectResult", "parse_redirect"]
