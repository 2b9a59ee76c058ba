"""
pytest configuration for spid_client tests.

Adds src directory to Python path for imports and provides the shared
fakes: a controllable clock, an in-memory transport and a client config.
"""

import asyncio
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from spid_client.config import ClientConfig  # noqa: E402
from spid_client.oauth2.models import AccessToken, ClientSubject, UserSubject  # noqa: E402
from spid_client.oauth2.transport.base import (  # noqa: E402
    ApiResponse,
    AuthorizationTransport,
    ExchangeRequest,
    RevokeRequest,
)
from spid_client.store import MemoryTokenStore  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeTransport(AuthorizationTransport):
    """
    Transport that records requests and replays scripted outcomes.

    exchange() pops the next entry from `outcomes` (an AccessToken or an
    exception to raise); with nothing scripted it issues tok1, tok2, ... for
    user u42. Setting `gate` to an asyncio.Event holds every exchange until
    the event is set.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.outcomes: list = []
        self.exchange_requests: list[ExchangeRequest] = []
        self.revoke_requests: list[RevokeRequest] = []
        self.api_requests: list[tuple] = []
        self.api_outcomes: list = []
        self.gate: asyncio.Event | None = None
        self.closed = False

    @property
    def exchange_count(self) -> int:
        return len(self.exchange_requests)

    async def exchange(self, request: ExchangeRequest) -> AccessToken:
        self.exchange_requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        else:
            n = self.exchange_count
            outcome = AccessToken(
                access_token=f"tok{n}",
                expires_at=self.clock() + timedelta(hours=1),
                subject=UserSubject("u42"),
                refresh_token=f"ref{n}",
            )
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def revoke(self, request: RevokeRequest) -> None:
        self.revoke_requests.append(request)

    async def request(self, method, url, token, params=None) -> ApiResponse:
        self.api_requests.append((method, url, token.access_token, params))
        if self.api_outcomes:
            outcome = self.api_outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return ApiResponse(status=200, data={"userId": token.user_id})

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport(clock):
    return FakeTransport(clock)


@pytest.fixture
def store():
    return MemoryTokenStore()


@pytest.fixture
def config():
    return ClientConfig(
        client_id="client123",
        client_secret="s3cret",
        server_url="https://identity.example.com",
        app_url_scheme="myapp",
        clock_skew_seconds=60,
        exchange_timeout_seconds=5.0,
    )


@pytest.fixture
def make_token(clock):
    """Factory for tokens relative to the fake clock."""

    def _make(
        access_token: str = "tok0",
        expires_in: float = 3600,
        user_id: str | None = "u42",
        refresh_token: str | None = "ref0",
    ) -> AccessToken:
        return AccessToken(
            access_token=access_token,
            expires_at=clock() + timedelta(seconds=expires_in),
            subject=UserSubject(user_id) if user_id else ClientSubject(),
            refresh_token=refresh_token,
        )

    return _make
