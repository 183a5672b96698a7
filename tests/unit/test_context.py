"""
Unit tests for QBContext: construction, environment loading and token refresh.
"""

import asyncio
import base64
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from qbkit.config import get_settings
from qbkit.connectors.context import QBContext
from qbkit.errors import QBOAuthError, QBOConfigError, QBOTransportError
from qbkit.models.enums import Environment
from tests.conftest import make_context, make_settings, token_response


class TestConstruction:
    """Identifier and environment validation."""

    def test_sandbox_base_url(self):
        context = make_context()

        assert context.environment == Environment.SANDBOX
        assert context.base_url() == "https://sandbox-quickbooks.api.intuit.com/v3/company/123145"

    def test_production_base_url(self):
        context = make_context(environment=Environment.PRODUCTION)

        assert context.base_url() == "https://quickbooks.api.intuit.com/v3/company/123145"

    def test_environment_string_is_case_insensitive(self):
        assert make_context(environment="Production").environment == Environment.PRODUCTION

    def test_unknown_environment_rejected(self):
        with pytest.raises(QBOConfigError, match="staging"):
            make_context(environment="staging")

    @pytest.mark.parametrize("company_id", ["", "   ", None])
    def test_missing_company_id_rejected(self, company_id):
        with pytest.raises(QBOConfigError, match="company_id"):
            make_context(company_id=company_id)

    def test_missing_access_token_rejected(self):
        with pytest.raises(QBOConfigError, match="access_token"):
            make_context(access_token="")

    def test_auth_header(self):
        assert make_context(access_token="abc").auth_header() == {"Authorization": "Bearer abc"}

    def test_with_refresh_attaches_token(self):
        context = make_context(refresh_token=None)

        returned = context.with_refresh("refresh-9", client_id="other-client")

        assert returned is context
        assert context.refresh_token == "refresh-9"
        assert context.client_id == "other-client"
        assert context.client_secret == "client-secret"


class TestExpiry:
    """Token expiry tracking."""

    def test_unknown_expiry_is_not_expired(self):
        assert make_context(token_expiry=None).is_expired() is False

    def test_past_expiry_is_expired(self):
        context = make_context(token_expiry=datetime.now(timezone.utc) - timedelta(seconds=1))

        assert context.is_expired() is True

    def test_leeway_treats_near_expiry_as_expired(self):
        context = make_context(token_expiry=datetime.now(timezone.utc) + timedelta(seconds=120))

        assert context.is_expired() is False
        assert context.is_expired(leeway_seconds=300) is True

    def test_proactive_refresh_disabled_by_default(self):
        context = make_context(token_expiry=datetime.now(timezone.utc) - timedelta(seconds=1))

        assert context.should_refresh_proactively() is False

    def test_proactive_refresh_when_enabled(self):
        context = make_context(
            settings=make_settings(qb_proactive_refresh=True),
            token_expiry=datetime.now(timezone.utc) + timedelta(seconds=60),
        )

        assert context.should_refresh_proactively() is True


class TestFromEnv:
    """Loading credentials through the Settings layer."""

    @pytest.fixture(autouse=True)
    def clear_settings_cache(self):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_from_env_reads_variables(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("QB_COMPANY_ID", "9130")
        monkeypatch.setenv("QB_ACCESS_TOKEN", "env-access")
        monkeypatch.setenv("QB_REFRESH_TOKEN", "env-refresh")
        monkeypatch.setenv("QB_ENVIRONMENT", "PRODUCTION")

        context = QBContext.from_env()

        assert context.company_id == "9130"
        assert context.access_token == "env-access"
        assert context.refresh_token == "env-refresh"
        assert context.environment == Environment.PRODUCTION

    def test_from_env_environment_override(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("QB_COMPANY_ID", "9130")
        monkeypatch.setenv("QB_ACCESS_TOKEN", "env-access")

        context = QBContext.from_env(environment=Environment.PRODUCTION)

        assert context.environment == Environment.PRODUCTION

    def test_from_env_missing_variables(self):
        settings = make_settings(qb_company_id="", qb_access_token="")

        with pytest.raises(QBOConfigError) as exc_info:
            QBContext.from_env(settings=settings)

        assert "QB_COMPANY_ID" in exc_info.value.message
        assert "QB_ACCESS_TOKEN" in exc_info.value.message

    def test_from_env_invalid_environment(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("QB_ENVIRONMENT", "staging")

        with pytest.raises(QBOConfigError):
            QBContext.from_env()

    def test_constructor_with_invalid_environment_variable(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("QB_ENVIRONMENT", "staging")

        with pytest.raises(QBOConfigError, match="Invalid QuickBooks configuration"):
            QBContext("sandbox", "123145", "access-0")


class TestRefresh:
    """Token exchange against the OAuth2 endpoint."""

    @pytest.mark.asyncio
    async def test_refresh_rotates_tokens(self, remote):
        remote.reply_token(token_response("access-1", "refresh-1", expires_in=3600))
        context = make_context()

        async with remote.client() as client:
            refreshed = await context.refresh(client)

        assert refreshed is True
        assert context.access_token == "access-1"
        assert context.refresh_token == "refresh-1"
        assert context.refresh_count == 1
        assert context.token_expiry > datetime.now(timezone.utc) + timedelta(seconds=3500)

    @pytest.mark.asyncio
    async def test_refresh_request_shape(self, remote):
        remote.reply_token(token_response())
        context = make_context()

        async with remote.client() as client:
            await context.refresh(client)

        request = remote.token_requests[0]
        expected_basic = base64.b64encode(b"client-id:client-secret").decode()
        assert request.method == "POST"
        assert request.headers["Authorization"] == f"Basic {expected_basic}"
        form = parse_qs(request.content.decode())
        assert form == {"grant_type": ["refresh_token"], "refresh_token": ["refresh-0"]}

    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token_when_not_rotated(self, remote):
        remote.reply_token(httpx.Response(200, json={"access_token": "access-1", "expires_in": 3600}))
        context = make_context()

        async with remote.client() as client:
            await context.refresh(client)

        assert context.refresh_token == "refresh-0"

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self, remote):
        context = make_context(refresh_token=None)

        async with remote.client() as client:
            with pytest.raises(QBOAuthError):
                await context.refresh(client)

        assert remote.token_requests == []

    @pytest.mark.asyncio
    async def test_refresh_without_client_credentials(self, remote):
        context = make_context(settings=make_settings(intuit_client_id="", intuit_client_secret=""))

        async with remote.client() as client:
            with pytest.raises(QBOConfigError):
                await context.refresh(client)

    @pytest.mark.asyncio
    async def test_refresh_rejected_is_auth_error(self, remote):
        remote.reply_token(httpx.Response(400, json={"error": "invalid_grant"}))
        context = make_context()

        async with remote.client() as client:
            with pytest.raises(QBOAuthError) as exc_info:
                await context.refresh(client)

        assert exc_info.value.status_code == 400
        assert context.access_token == "access-0"

    @pytest.mark.asyncio
    async def test_refresh_endpoint_down_is_transport_error(self, remote):
        remote.reply_token(httpx.Response(503, text="unavailable"))
        context = make_context()

        async with remote.client() as client:
            with pytest.raises(QBOTransportError) as exc_info:
                await context.refresh(client)

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_refresh_network_failure_is_transport_error(self, remote):
        remote.reply_token(httpx.ConnectError("connection refused"))
        context = make_context()

        async with remote.client() as client:
            with pytest.raises(QBOTransportError) as exc_info:
                await context.refresh(client)

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_refresh_html_body_is_transport_error(self, remote):
        remote.reply_token(httpx.Response(200, text="<html>proxy login</html>"))
        context = make_context()

        async with remote.client() as client:
            with pytest.raises(QBOTransportError) as exc_info:
                await context.refresh(client)

        assert exc_info.value.status_code == 200
        assert context.access_token == "access-0"
        assert context.refresh_count == 0

    @pytest.mark.asyncio
    async def test_refresh_non_object_body_is_auth_error(self, remote):
        remote.reply_token(httpx.Response(200, json=["access-1"]))
        context = make_context()

        async with remote.client() as client:
            with pytest.raises(QBOAuthError):
                await context.refresh(client)

    @pytest.mark.asyncio
    async def test_stale_token_skips_exchange(self, remote):
        context = make_context()
        context.access_token = "access-5"

        async with remote.client() as client:
            refreshed = await context.refresh(client, stale_token="access-0")

        assert refreshed is False
        assert remote.token_requests == []

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_exchange_once(self, remote):
        remote.reply_token(token_response("access-1", "refresh-1"))
        context = make_context()

        async with remote.client() as client:
            results = await asyncio.gather(
                context.refresh(client, stale_token="access-0"),
                context.refresh(client, stale_token="access-0"),
                context.refresh(client, stale_token="access-0"),
            )

        assert sorted(results) == [False, False, True]
        assert len(remote.token_requests) == 1
        assert context.refresh_count == 1


def test_connection_status_has_no_secrets():
    context = make_context(access_token="very-secret-access", refresh_token="very-secret-refresh")
    context.rate_limiter.admit()

    status = context.connection_status()

    assert status["company_id"] == "123145"
    assert status["has_refresh_token"] is True
    assert status["rate_limit_usage"] == {"standard": 1, "batch": 0}
    assert "very-secret" not in str(status)
