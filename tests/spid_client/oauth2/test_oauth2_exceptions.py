"""Tests for the OAuth2 error taxonomy."""

import pytest

from spid_client.oauth2.exceptions import (
    ApiError,
    ExchangeFailureKind,
    InvalidConfigurationError,
    LoginFailedError,
    NotAuthorizedError,
    OAuth2Error,
    PendingQueueFullError,
    TokenRefreshError,
    classify_http_status,
)
from spid_client.types import ErrorCategory


class TestOAuth2Error:
    def test_str_includes_cause(self):
        error = OAuth2Error("exchange failed", cause=ValueError("bad json"))
        assert str(error) == "exchange failed | Caused by: bad json"

    def test_context_defaults_to_empty(self):
        assert OAuth2Error("x").context == {}

    def test_categories(self):
        assert NotAuthorizedError("x").category is ErrorCategory.AUTH
        assert InvalidConfigurationError("x").category is ErrorCategory.PERMANENT
        assert PendingQueueFullError("x").is_retryable


class TestTokenRefreshError:
    def test_network_failure_is_transient(self):
        error = TokenRefreshError("timeout", ExchangeFailureKind.NETWORK)

        assert error.transient
        assert error.is_retryable
        assert error.category is ErrorCategory.TRANSIENT

    @pytest.mark.parametrize(
        "kind", [ExchangeFailureKind.INVALID_CREDENTIAL, ExchangeFailureKind.SERVER_REJECTED]
    )
    def test_rejection_requires_login(self, kind):
        error = TokenRefreshError("rejected", kind)

        assert not error.transient
        assert error.category is ErrorCategory.AUTH


class TestLoginFailedError:
    def test_message(self):
        error = LoginFailedError("access_denied", "User cancelled")

        assert error.error_code == "access_denied"
        assert "access_denied" in str(error)
        assert "User cancelled" in str(error)


class TestApiError:
    def test_token_rejected(self):
        assert ApiError("x", status=401, error_code="invalid_token").is_token_rejected
        assert not ApiError("x", status=401, error_code="access_denied").is_token_rejected
        assert not ApiError("x", status=403, error_code="invalid_token").is_token_rejected

    def test_network_failure_is_transient(self):
        assert ApiError("x").category is ErrorCategory.TRANSIENT

    def test_category_from_status(self):
        assert ApiError("x", status=404).category is ErrorCategory.PERMANENT


class TestClassifyHttpStatus:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (401, ErrorCategory.AUTH),
            (429, ErrorCategory.TRANSIENT),
            (400, ErrorCategory.PERMANENT),
            (404, ErrorCategory.PERMANENT),
            (500, ErrorCategory.TRANSIENT),
            (503, ErrorCategory.TRANSIENT),
        ],
    )
    def test_classification(self, status, expected):
        assert classify_http_status(status) is expected
