"""
Pytest configuration and shared fixtures for the qbkit test suite.

Provides settings/context factories, QBO response body builders, a fake
monotonic clock and a recording httpx mock transport that plays the remote
QuickBooks API.
"""

import json
from typing import Any, Callable, Optional, Union

import httpx
import pytest

from qbkit.config import Settings
from qbkit.connectors.context import QBContext
from qbkit.connectors.rate_limiter import RateLimiter

TOKEN_URL = "https://oauth.example.test/oauth2/v1/tokens/bearer"
SANDBOX_BASE = "https://sandbox-quickbooks.api.intuit.com/v3/company/123145"


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Factory for Settings isolated from the process environment and .env files."""
    defaults = dict(
        qb_environment="sandbox",
        qb_company_id="123145",
        qb_access_token="access-0",
        qb_refresh_token="",
        intuit_client_id="client-id",
        intuit_client_secret="client-secret",
        intuit_token_url=TOKEN_URL,
    )
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_limiter(
    standard_limit: int = 500,
    batch_limit: int = 40,
    window_seconds: float = 60.0,
    clock: Optional[FakeClock] = None,
) -> RateLimiter:
    return RateLimiter(
        standard_limit=standard_limit,
        batch_limit=batch_limit,
        window_seconds=window_seconds,
        clock=clock or FakeClock(),
    )


def make_context(
    refresh_token: Optional[str] = "refresh-0",
    access_token: str = "access-0",
    settings: Optional[Settings] = None,
    rate_limiter: Optional[RateLimiter] = None,
    **overrides,
) -> QBContext:
    """Factory for a sandbox QBContext with a fake-clock limiter."""
    defaults = dict(
        environment="sandbox",
        company_id="123145",
        access_token=access_token,
        refresh_token=refresh_token,
        settings=settings or make_settings(),
        rate_limiter=rate_limiter or make_limiter(),
    )
    defaults.update(overrides)
    return QBContext(**defaults)


def make_fault_body(
    message: str = "Object Not Found",
    code: str = "610",
    detail: str = "Object Not Found : Something you're trying to use has been made inactive.",
    fault_type: str = "ValidationFault",
    element: str = "",
) -> dict[str, Any]:
    """QBO business fault envelope as returned by the API."""
    return {
        "Fault": {
            "Error": [{"Message": message, "Detail": detail, "code": code, "element": element}],
            "type": fault_type,
        },
        "time": "2024-05-01T10:00:00.000-07:00",
    }


def make_entity(entity_id: str = "130", sync_token: str = "0", **fields) -> dict[str, Any]:
    return {"Id": entity_id, "SyncToken": sync_token, **fields}


def token_response(access_token: str = "access-1", refresh_token: str = "refresh-1", expires_in: int = 3600) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_in": expires_in,
            "x_refresh_token_expires_in": 8726400,
            "token_type": "bearer",
        },
    )


# ---------------------------------------------------------------------------
# Mock remote
# ---------------------------------------------------------------------------

Reply = Union[httpx.Response, Callable[[httpx.Request], httpx.Response], Exception]


class MockQBO:
    """
    Scripted remote for httpx.MockTransport.

    API calls are answered from ``api_replies`` in order, token endpoint
    calls from ``token_replies``. An unscripted request fails the test.
    Every request is recorded.
    """

    def __init__(self):
        self.api_replies: list[Reply] = []
        self.token_replies: list[Reply] = []
        self.requests: list[httpx.Request] = []
        self.token_requests: list[httpx.Request] = []

    def reply(self, *replies: Reply) -> "MockQBO":
        self.api_replies.extend(replies)
        return self

    def reply_token(self, *replies: Reply) -> "MockQBO":
        self.token_replies.extend(replies)
        return self

    @staticmethod
    def _next(queue: list[Reply], request: httpx.Request) -> httpx.Response:
        assert queue, f"unexpected request: {request.method} {request.url}"
        reply = queue.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply) and not isinstance(reply, httpx.Response):
            return reply(request)
        return reply

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url).startswith(TOKEN_URL):
            self.token_requests.append(request)
            return self._next(self.token_replies, request)
        self.requests.append(request)
        return self._next(self.api_replies, request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def authorizations(self) -> list[str]:
        return [r.headers.get("Authorization", "") for r in self.requests]

    def json_body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> MockQBO:
    return MockQBO()


@pytest.fixture
def context(clock) -> QBContext:
    return make_context(rate_limiter=make_limiter(clock=clock))
