"""
Authenticated context for one QuickBooks Online company.

QBContext holds the environment, company id, bearer token state and the rate
limiter shared by every request issued against the company. It is created
once per logical session and reused; token refresh mutates it in place so the
new token is visible to every caller sharing the context.

Refreshes are serialized per context. A caller that saw a token rejected passes
that token as ``stale_token``; if another caller already replaced it while this
one waited for the lock, the exchange is skipped.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

import httpx
import structlog
from pydantic import ValidationError

from qbkit.config import Settings, get_settings
from qbkit.connectors.rate_limiter import RateLimiter
from qbkit.errors import QBOAuthError, QBOConfigError, QBOTransportError
from qbkit.models.enums import Environment

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _load_settings() -> Settings:
    try:
        return get_settings()
    except ValidationError as e:
        raise QBOConfigError(f"Invalid QuickBooks configuration: {e}") from e


class QBContext:
    """
    Credential, environment and rate-limit state for one company.

    Attributes:
        environment: Sandbox or production
        company_id: QuickBooks company (realm) ID
        access_token: Current OAuth2 bearer token
        refresh_token: Refresh token, if the context can refresh itself
        token_expiry: When the access token expires, if known
        rate_limiter: Shared limiter for the standard and batch budgets
        settings: Settings the context was built with
    """

    def __init__(
        self,
        environment: Union[Environment, str],
        company_id: Optional[str],
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
        token_expiry: Optional[datetime] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """
        Initialize the context.

        Args:
            environment: Environment enum or its string value
            company_id: QuickBooks company ID (required)
            access_token: OAuth2 access token (required)
            refresh_token: Optional refresh token
            token_expiry: Optional access token expiry (timezone-aware)
            client_id: Intuit app client ID, needed only to refresh
            client_secret: Intuit app client secret, needed only to refresh
            settings: Settings for timeouts, limits and token endpoint
            rate_limiter: Limiter to use (defaults to one built from settings)

        Raises:
            QBOConfigError: If the environment is unknown, an identifier is missing,
                or the settings cannot be loaded
        """
        self.settings = settings or _load_settings()

        try:
            self.environment = Environment(str(getattr(environment, "value", environment)).lower())
        except ValueError:
            raise QBOConfigError(f"Unknown environment: {environment!r}") from None

        if not company_id or not str(company_id).strip():
            raise QBOConfigError("company_id is required")
        if not access_token or not str(access_token).strip():
            raise QBOConfigError("access_token is required")

        self.company_id = str(company_id).strip()
        self.access_token = str(access_token).strip()
        self.refresh_token = refresh_token or None
        self.token_expiry = token_expiry
        self.client_id = client_id or self.settings.intuit_client_id or None
        self.client_secret = client_secret or self.settings.intuit_client_secret or None
        self.rate_limiter = rate_limiter or RateLimiter.from_settings(self.settings)

        self.refresh_count = 0
        self._refresh_lock = asyncio.Lock()

        logger.info(
            "qbo_context_initialized",
            environment=self.environment.value,
            company_id=self.company_id,
            has_refresh_token=bool(self.refresh_token),
        )

    @classmethod
    def from_env(
        cls,
        environment: Optional[Union[Environment, str]] = None,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> "QBContext":
        """
        Build a context from environment variables.

        Reads ``QB_COMPANY_ID``, ``QB_ACCESS_TOKEN``, ``QB_REFRESH_TOKEN``,
        ``QB_ENVIRONMENT``, ``INTUIT_CLIENT_ID`` and ``INTUIT_CLIENT_SECRET``
        through the Settings layer (a ``.env`` file is honoured).

        Args:
            environment: Overrides ``QB_ENVIRONMENT`` when given
            settings: Pre-built settings (defaults to get_settings())
            rate_limiter: Optional shared limiter

        Raises:
            QBOConfigError: If settings are invalid or required values are absent
        """
        if settings is None:
            settings = _load_settings()

        missing = [
            name
            for name, value in (
                ("QB_COMPANY_ID", settings.qb_company_id),
                ("QB_ACCESS_TOKEN", settings.qb_access_token),
            )
            if not value
        ]
        if missing:
            raise QBOConfigError(f"Missing environment variables: {', '.join(missing)}")

        return cls(
            environment=environment or settings.qb_environment,
            company_id=settings.qb_company_id,
            access_token=settings.qb_access_token,
            refresh_token=settings.qb_refresh_token or None,
            settings=settings,
            rate_limiter=rate_limiter,
        )

    def with_refresh(
        self,
        refresh_token: str,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ) -> "QBContext":
        """Attach a refresh token (and optionally app credentials); returns self."""
        self.refresh_token = refresh_token
        if client_id:
            self.client_id = client_id
        if client_secret:
            self.client_secret = client_secret
        return self

    def base_url(self) -> str:
        """Company-scoped API root, e.g. ``https://.../v3/company/123``."""
        return f"{self.environment.api_host}/v3/company/{self.company_id}"

    def auth_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def is_expired(self, leeway_seconds: float = 0) -> bool:
        """Whether the access token is known to be expired (False when expiry is unknown)."""
        if self.token_expiry is None:
            return False
        return _utcnow() >= self.token_expiry - timedelta(seconds=leeway_seconds)

    def can_refresh(self) -> bool:
        """Whether a refresh token and the app credentials needed to exchange it are present."""
        return bool(self.refresh_token and self.client_id and self.client_secret)

    def should_refresh_proactively(self) -> bool:
        return (
            self.settings.qb_proactive_refresh
            and self.can_refresh()
            and self.is_expired(self.settings.qb_refresh_leeway_seconds)
        )

    async def refresh(
        self,
        http_client: httpx.AsyncClient,
        stale_token: Optional[str] = None,
    ) -> bool:
        """
        Exchange the refresh token for a new access token, updating state in place.

        Intuit rotates the refresh token on every exchange; the new one replaces
        the old. Rejections are not retried: they require new user consent.

        Args:
            http_client: Client used for the token endpoint call
            stale_token: Access token the caller saw rejected. If the context
                already holds a different token, the exchange is skipped.

        Returns:
            True if a token exchange happened, False if it was skipped

        Raises:
            QBOAuthError: If there is no refresh token or the endpoint rejects it
            QBOConfigError: If the app client id/secret are not configured
            QBOTransportError: On network failure, a 5xx, or a non-JSON body from the token endpoint
        """
        if not self.refresh_token:
            raise QBOAuthError("No refresh token available - user re-authentication required")
        if not self.client_id or not self.client_secret:
            raise QBOConfigError("intuit client_id and client_secret are required to refresh tokens")

        async with self._refresh_lock:
            if stale_token is not None and self.access_token != stale_token:
                logger.info("token_refresh_skipped", reason="already_refreshed")
                return False

            data = {
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
            }
            headers = {"Accept": "application/json", "Content-Type": "application/x-www-form-urlencoded"}

            try:
                response = await http_client.post(
                    self.settings.intuit_token_url,
                    data=data,
                    headers=headers,
                    auth=(self.client_id, self.client_secret),
                    timeout=self.settings.qb_http_timeout_seconds,
                )
            except httpx.TransportError as e:
                logger.error("token_refresh_error", error=str(e))
                raise QBOTransportError(f"Token refresh request failed: {e}") from e

            if response.status_code >= 500:
                logger.error("token_refresh_failed", status_code=response.status_code)
                raise QBOTransportError(
                    f"Token endpoint unavailable: {response.text}", status_code=response.status_code
                )
            if response.status_code != 200:
                logger.error(
                    "token_refresh_failed",
                    status_code=response.status_code,
                    error=response.text,
                )
                raise QBOAuthError(
                    f"Failed to refresh tokens: {response.text}", status_code=response.status_code
                )

            try:
                token_data: dict[str, Any] = response.json()
            except ValueError as e:
                logger.error("token_refresh_malformed", status_code=response.status_code)
                raise QBOTransportError(
                    f"Malformed token endpoint response: {e}", status_code=response.status_code
                ) from e

            if not isinstance(token_data, dict) or not token_data.get("access_token"):
                raise QBOAuthError("Token endpoint returned no access_token", status_code=response.status_code)

            self.access_token = token_data["access_token"]
            self.refresh_token = token_data.get("refresh_token") or self.refresh_token
            expires_in = token_data.get("expires_in", self.settings.qb_access_token_lifetime_seconds)
            self.token_expiry = _utcnow() + timedelta(seconds=int(expires_in))
            self.refresh_count += 1

            logger.info(
                "tokens_refreshed",
                company_id=self.company_id,
                expires_in=expires_in,
            )
            return True

    def connection_status(self) -> dict[str, Any]:
        """
        Get connection status information without exposing secrets.

        Returns:
            Dictionary with token and rate-limit state
        """
        return {
            "environment": self.environment.value,
            "company_id": self.company_id,
            "has_access_token": bool(self.access_token),
            "has_refresh_token": bool(self.refresh_token),
            "access_token_expiry": self.token_expiry.isoformat() if self.token_expiry else None,
            "is_expired": self.is_expired(),
            "refresh_count": self.refresh_count,
            "rate_limit_usage": self.rate_limiter.snapshot(),
        }
