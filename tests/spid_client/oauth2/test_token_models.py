"""Tests for AccessToken, TokenResponse and the token subjects."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from spid_client.oauth2.models import (
    DEFAULT_EXPIRES_IN_SECONDS,
    AccessToken,
    ClientSubject,
    TokenResponse,
    UserSubject,
    normalize_user_id,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


class TestTokenSubjects:
    def test_user_subject_requires_id(self):
        """An empty user id is rejected at construction."""
        with pytest.raises(ValueError, match="user_id"):
            UserSubject("")

    def test_subjects_are_distinct(self):
        assert UserSubject("u42") != ClientSubject()
        assert ClientSubject() == ClientSubject()

    @pytest.mark.parametrize("value", [None, "", "0", 0, False, "false", "null"])
    def test_no_user_values(self, value):
        """Values the server sends for client tokens normalize to None."""
        assert normalize_user_id(value) is None

    def test_user_id_is_stringified(self):
        assert normalize_user_id(42) == "42"


class TestAccessTokenFromResponse:
    def test_user_token(self):
        """Should build a user token with absolute expiry."""
        token = AccessToken.from_response(
            {
                "access_token": "tok1",
                "expires_in": 3600,
                "refresh_token": "ref1",
                "user_id": "u42",
            },
            now=NOW,
        )

        assert token.access_token == "tok1"
        assert token.expires_at == NOW + timedelta(hours=1)
        assert token.user_id == "u42"
        assert token.refresh_token == "ref1"
        assert token.token_type == "Bearer"
        assert not token.is_client_token

    def test_client_token(self):
        """user_id of 0 marks a client token."""
        token = AccessToken.from_response({"access_token": "c1", "user_id": "0"}, now=NOW)

        assert token.is_client_token
        assert token.user_id is None

    def test_default_expiry(self):
        token = AccessToken.from_response({"access_token": "tok1"}, now=NOW)
        assert token.expires_at == NOW + timedelta(seconds=DEFAULT_EXPIRES_IN_SECONDS)

    def test_zero_expiry_is_kept(self):
        """expires_in of 0 is an immediately expired token, not the default."""
        token = AccessToken.from_response({"access_token": "tok1", "expires_in": 0}, now=NOW)
        assert token.expires_at == NOW


class TestAccessTokenExpiry:
    def test_skew_boundary(self):
        """Expired exactly when now >= expires_at - buffer."""
        token = AccessToken(access_token="t", expires_at=NOW + timedelta(seconds=100))

        assert not token.is_expired(60, now=NOW + timedelta(seconds=39))
        assert token.is_expired(60, now=NOW + timedelta(seconds=40))
        assert token.is_expired(60, now=NOW + timedelta(seconds=41))

    def test_no_buffer(self):
        token = AccessToken(access_token="t", expires_at=NOW)
        assert token.is_expired(now=NOW)
        assert not token.is_expired(now=NOW - timedelta(seconds=1))


class TestAccessTokenCarryOver:
    def test_keeps_previous_refresh_token_and_user(self):
        """A refresh response without refresh_token or user_id keeps the old ones."""
        previous = AccessToken("old", NOW, UserSubject("u42"), refresh_token="ref1")
        refreshed = AccessToken("new", NOW + timedelta(hours=1))

        merged = refreshed.carry_over(previous)

        assert merged.access_token == "new"
        assert merged.refresh_token == "ref1"
        assert merged.user_id == "u42"

    def test_new_values_win(self):
        previous = AccessToken("old", NOW, UserSubject("u1"), refresh_token="ref1")
        refreshed = AccessToken("new", NOW, UserSubject("u2"), refresh_token="ref2")

        merged = refreshed.carry_over(previous)

        assert merged.refresh_token == "ref2"
        assert merged.user_id == "u2"


class TestAccessTokenPersistence:
    def test_round_trip(self):
        """Persisted layout preserves access value, type, expiry and user id."""
        token = AccessToken(
            "tok1", NOW, UserSubject("u42"), refresh_token="ref1", token_type="Bearer"
        )

        restored = AccessToken.from_dict(token.to_dict())

        assert restored == token

    def test_round_trip_client_token(self):
        token = AccessToken("c1", NOW, ClientSubject())
        assert AccessToken.from_dict(token.to_dict()).is_client_token

    def test_naive_expiry_treated_as_utc(self):
        data = AccessToken("tok1", NOW).to_dict()
        data["expires_at"] = "2026-03-01T12:00:00"

        assert AccessToken.from_dict(data).expires_at == NOW

    def test_repr_hides_secrets(self):
        token = AccessToken("secret-access", NOW, refresh_token="secret-refresh")
        assert "secret" not in repr(token)


class TestTokenResponse:
    def test_parses_payload(self):
        response = TokenResponse.model_validate(
            {"access_token": "tok1", "expires_in": "120", "user_id": 42, "extra": "x"}
        )

        token = response.to_token(now=NOW)

        assert token.user_id == "42"
        assert token.expires_at == NOW + timedelta(seconds=120)

    def test_rejects_missing_access_token(self):
        with pytest.raises(ValidationError):
            TokenResponse.model_validate({"expires_in": 3600})

    def test_rejects_negative_expiry(self):
        with pytest.raises(ValidationError):
            TokenResponse.model_validate({"access_token": "t", "expires_in": -1})
