"""Tests for the SPiDClient facade: browser flows, queued API calls and logout."""

import asyncio
import dataclasses
from datetime import timedelta
from unittest.mock import AsyncMock

import keyring
import pytest

from spid_client import SPiDClient
from spid_client.oauth2.exceptions import (
    ApiError,
    LoginFailedError,
    NotAuthorizedError,
    TokenRefreshError,
)
from spid_client.oauth2.models import AccessToken, ClientSubject, GrantType, LifecycleState
from spid_client.oauth2.transport.base import ApiResponse
from spid_client.store import FileTokenStore, KeyringTokenStore, MemoryTokenStore


@pytest.fixture
def make_client(config, transport, store, clock):
    def _make(token=None, **overrides):
        if token is not None:
            store.save(token)
        return SPiDClient(dataclasses.replace(config, **overrides), transport, store, clock=clock)

    return _make


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_installs_user_token(self, make_client, transport, store):
        """Exchanging an authorization code authorizes the client."""
        client = make_client()

        token = await client.login("authcode123")

        assert token.access_token == "tok1"
        assert client.current_user_id() == "u42"
        assert client.is_authorized()
        assert not client.has_expired()
        assert store.load().access_token == "tok1"

        request = transport.exchange_requests[0]
        assert request.grant_type is GrantType.AUTHORIZATION_CODE
        assert request.params["code"] == "authcode123"
        await client.close()

    @pytest.mark.asyncio
    async def test_unauthorized_before_login(self, make_client):
        client = make_client()

        assert not client.is_authorized()
        assert client.has_token_expired()
        assert client.token_expires_at() is None
        with pytest.raises(NotAuthorizedError):
            client.current_token()
        await client.close()

    @pytest.mark.asyncio
    async def test_client_credentials(self, make_client, transport, clock):
        transport.outcomes = [
            AccessToken("c1", clock() + timedelta(hours=1), ClientSubject())
        ]
        client = make_client()

        await client.authenticate_client()

        assert client.is_client_token()
        assert client.current_user_id() is None
        await client.close()


class TestQueuedApiCalls:
    @pytest.mark.asyncio
    async def test_three_calls_share_one_refresh(self, make_client, make_token, transport):
        """Calls made on an expired token wait for a single exchange, then run in order."""
        client = make_client(make_token(expires_in=-10))
        transport.gate = asyncio.Event()

        calls = asyncio.gather(
            client.get_user("a"), client.get_user("b"), client.get_user("c")
        )
        await asyncio.sleep(0.01)
        assert client.manager.state is LifecycleState.REFRESHING
        assert transport.api_requests == []

        transport.gate.set()
        await calls

        assert transport.exchange_count == 1
        assert transport.exchange_requests[0].grant_type is GrantType.REFRESH_TOKEN
        assert [r[1].rsplit("/", 1)[-1] for r in transport.api_requests] == ["a", "b", "c"]
        assert {r[2] for r in transport.api_requests} == {"tok1"}
        await client.close()

    @pytest.mark.asyncio
    async def test_refresh_timeout_fails_queue(self, make_client, make_token, transport):
        """A hung exchange times out, every waiter fails, and the next call tries again."""
        client = make_client(make_token(expires_in=-10), exchange_timeout_seconds=0.05)
        transport.gate = asyncio.Event()

        results = await asyncio.gather(
            client.get_me(), client.get_me(), client.get_me(), return_exceptions=True
        )

        assert all(isinstance(r, TokenRefreshError) for r in results)
        assert all(r.transient for r in results)
        assert client.manager.state is LifecycleState.UNAUTHORIZED
        assert transport.api_requests == []

        transport.gate = None
        data = await client.get_me()

        assert data == {"userId": "u42"}
        assert transport.exchange_count == 2
        assert client.current_token().access_token == "tok2"
        await client.close()

    @pytest.mark.asyncio
    async def test_rejected_token_is_refreshed_and_retried(self, make_client, transport):
        """A 401 invalid_token response triggers one refresh and one retry."""
        client = make_client()
        await client.login("authcode123")
        transport.api_outcomes = [ApiResponse(401, error="invalid_token")]

        data = await client.get_me()

        assert data == {"userId": "u42"}
        assert transport.exchange_count == 2
        assert [r[2] for r in transport.api_requests] == ["tok1", "tok2"]
        await client.close()

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, make_client, transport):
        client = make_client()
        await client.login("authcode123")
        transport.api_outcomes = [ApiResponse(403, error="forbidden")]

        with pytest.raises(ApiError) as exc_info:
            await client.get_me()

        assert exc_info.value.status == 403
        assert transport.exchange_count == 1
        assert len(transport.api_requests) == 1
        await client.close()


class TestUserApi:
    @pytest.mark.asyncio
    async def test_endpoints(self, make_client, transport):
        client = make_client()
        await client.login("authcode123")

        await client.get_me()
        await client.get_current_user()
        await client.get_user_logins("u42")

        urls = [r[1] for r in transport.api_requests]
        assert urls == [
            "https://identity.example.com/api/2/me",
            "https://identity.example.com/api/2/user/u42",
            "https://identity.example.com/api/2/user/u42/logins",
        ]
        await client.close()

    @pytest.mark.asyncio
    async def test_current_user_requires_login(self, make_client):
        client = make_client()

        with pytest.raises(NotAuthorizedError):
            await client.get_current_user()
        await client.close()

    @pytest.mark.asyncio
    async def test_one_time_code(self, make_client, transport):
        client = make_client(server_client_id="server456")
        await client.login("authcode123")
        transport.api_outcomes = [ApiResponse(200, data={"code": "otc123"})]

        code = await client.get_one_time_code()

        assert code == "otc123"
        method, url, _, params = transport.api_requests[-1]
        assert method == "POST"
        assert url.endswith("/api/2/oauth/exchange")
        assert params["clientId"] == "server456"
        await client.close()

    @pytest.mark.asyncio
    async def test_one_time_code_needs_user_token(self, make_client, transport, clock):
        transport.outcomes = [
            AccessToken("c1", clock() + timedelta(hours=1), ClientSubject())
        ]
        client = make_client()
        await client.authenticate_client()

        with pytest.raises(NotAuthorizedError):
            await client.get_one_time_code()
        assert transport.api_requests == []
        await client.close()


class TestBrowserFlows:
    @pytest.mark.asyncio
    async def test_login_redirect(self, make_client, transport):
        client = make_client()

        flow = client.begin_authorization()
        assert flow.url.startswith("https://identity.example.com/auth/login?")
        assert client.manager.awaiting_login

        assert client.handle_redirect("myapp://spid/login?code=authcode123")
        token = await flow.result

        assert token.access_token == "tok1"
        assert transport.exchange_requests[0].params["redirect_uri"] == "myapp://spid/login"
        assert not client.manager.awaiting_login
        await client.close()

    @pytest.mark.asyncio
    async def test_signup_redirect(self, make_client, transport):
        client = make_client()

        flow = client.begin_signup()
        client.handle_redirect("myapp://spid/signup?code=signupcode")
        await flow.result

        assert transport.exchange_requests[0].params["redirect_uri"] == "myapp://spid/signup"
        await client.close()

    @pytest.mark.asyncio
    async def test_calls_wait_for_login(self, make_client, transport):
        """Calls made during a browser login run once the login completes."""
        client = make_client()
        flow = client.begin_authorization()

        call = asyncio.ensure_future(client.get_me())
        await asyncio.sleep(0.01)
        assert not call.done()
        assert client.coordinator.pending_count == 1

        client.handle_redirect("myapp://spid/login?code=authcode123")

        assert await call == {"userId": "u42"}
        await flow.result
        await client.close()

    @pytest.mark.asyncio
    async def test_failure_redirect(self, make_client, transport):
        """A failed login fails the flow and the calls waiting for it."""
        client = make_client()
        flow = client.begin_authorization()
        call = asyncio.ensure_future(client.get_me())
        await asyncio.sleep(0.01)

        assert client.handle_redirect("myapp://spid/failure?error=access_denied")

        with pytest.raises(LoginFailedError) as exc_info:
            await flow.result
        assert exc_info.value.error_code == "access_denied"
        with pytest.raises(LoginFailedError):
            await call
        assert transport.exchange_count == 0
        assert not client.manager.awaiting_login
        await client.close()

    @pytest.mark.asyncio
    async def test_foreign_urls_ignored(self, make_client):
        client = make_client()

        assert not client.handle_redirect("otherapp://spid/login?code=x")
        assert not client.handle_redirect("myapp://spid/unknown")
        assert not client.handle_redirect("")
        await client.close()

    @pytest.mark.asyncio
    async def test_logout_redirect(self, make_client, store):
        client = make_client()
        await client.login("authcode123")

        flow = client.begin_logout()

        assert "oauth_token=tok1" in flow.url
        assert client.manager.state is LifecycleState.UNAUTHORIZED
        assert store.load() is None

        assert client.handle_redirect("myapp://spid/logout")
        assert await flow.result is None
        await client.close()

    @pytest.mark.asyncio
    async def test_logout_without_token(self, make_client):
        client = make_client()

        with pytest.raises(NotAuthorizedError):
            client.begin_logout()
        await client.close()


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_revokes(self, make_client, transport, store):
        client = make_client()
        await client.login("authcode123")

        await client.logout()

        assert client.manager.state is LifecycleState.UNAUTHORIZED
        assert store.load() is None
        assert transport.revoke_requests[0].access_token == "tok1"
        assert transport.revoke_requests[0].url == "https://identity.example.com/logout"
        await client.close()

    @pytest.mark.asyncio
    async def test_revoke_failure_is_not_raised(self, make_client, transport):
        client = make_client()
        await client.login("authcode123")
        transport.revoke = AsyncMock(side_effect=ApiError("revoke failed", status=500))

        await client.logout()

        assert client.manager.state is LifecycleState.UNAUTHORIZED
        await client.close()

    @pytest.mark.asyncio
    async def test_logout_wins_over_running_refresh(self, make_client, make_token, transport, store):
        """Logging out while a refresh is in flight leaves the client logged out."""
        client = make_client(make_token(expires_in=-10))
        transport.gate = asyncio.Event()

        refresh = asyncio.ensure_future(client.refresh())
        await asyncio.sleep(0.01)
        assert client.manager.state is LifecycleState.REFRESHING

        await client.logout(revoke=False)
        transport.gate.set()

        with pytest.raises(NotAuthorizedError):
            await refresh
        await asyncio.sleep(0.01)

        assert client.manager.state is LifecycleState.UNAUTHORIZED
        assert store.load() is None
        await client.close()


class TestPersistence:
    @pytest.mark.asyncio
    async def test_token_survives_restart(self, config, transport, clock, tmp_path):
        """A new client on the same store picks up the saved token."""
        config = dataclasses.replace(config, token_store_path=str(tmp_path / "AccessToken.json"))

        async with SPiDClient(config, transport, clock=clock) as client:
            assert isinstance(client.store, FileTokenStore)
            await client.login("authcode123")

        async with SPiDClient(config, transport, clock=clock) as restarted:
            assert restarted.is_authorized()
            assert restarted.current_token().access_token == "tok1"
            assert restarted.current_user_id() == "u42"

    @pytest.mark.asyncio
    async def test_keyring_is_default_store(self, config, transport, clock, monkeypatch):
        """Without a token_store_path the token goes to the system keyring, not a file."""
        saved = {}
        monkeypatch.setattr(keyring, "get_password", lambda service, user: saved.get((service, user)))
        monkeypatch.setattr(
            keyring, "set_password", lambda service, user, value: saved.__setitem__((service, user), value)
        )
        config = dataclasses.replace(config, keyring_service="myapp-spid")

        async with SPiDClient(config, transport, clock=clock) as client:
            assert isinstance(client.store, KeyringTokenStore)
            await client.login("authcode123")

        assert list(saved) == [("myapp-spid", "AccessToken")]

        async with SPiDClient(config, transport, clock=clock) as restarted:
            assert restarted.current_token().access_token == "tok1"

    @pytest.mark.asyncio
    async def test_save_to_store_disabled(self, config, transport, clock):
        config = dataclasses.replace(config, save_to_store=False)

        async with SPiDClient(config, transport, clock=clock) as client:
            assert client.store is None
            await client.login("authcode123")
            assert client.is_authorized()


class TestClose:
    @pytest.mark.asyncio
    async def test_injected_transport_left_open(self, config, transport, clock):
        async with SPiDClient(config, transport, MemoryTokenStore(), clock=clock):
            pass

        assert not transport.closed

    @pytest.mark.asyncio
    async def test_owned_transport_closed(self, config, transport, clock):
        client = SPiDClient(config, store=MemoryTokenStore(), clock=clock)
        assert client._owns_transport
        client.transport = transport

        await client.close()

        assert transport.closed

    @pytest.mark.asyncio
    async def test_close_cancels_open_flows(self, make_client):
        client = make_client()
        flow = client.begin_authorization()

        await client.close()

        assert flow.result.cancelled()
