"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from qbkit.models.enums import Environment


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Company connection
    qb_environment: str = Field(default="sandbox", description="API environment (sandbox|production)")
    qb_company_id: str = Field(default="", description="QuickBooks company (realm) ID")
    qb_access_token: str = Field(default="", description="OAuth2 bearer access token")
    qb_refresh_token: str = Field(default="", description="OAuth2 refresh token")
    qb_minor_version: Optional[str] = Field(
        default=None, description="API minorversion appended to every request"
    )

    # Intuit OAuth2 app credentials (used only for token refresh)
    intuit_client_id: str = Field(default="", description="Intuit OAuth2 client ID")
    intuit_client_secret: str = Field(default="", description="Intuit OAuth2 client secret")
    intuit_token_url: str = Field(
        default="https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer",
        description="Token exchange endpoint",
    )

    # HTTP
    qb_http_timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request network timeout")

    # Rate limiting (remote policy, enforced locally)
    qb_rate_limit_standard: int = Field(default=500, ge=1, description="Standard requests per window")
    qb_rate_limit_batch: int = Field(default=40, ge=1, description="Batch calls per window")
    qb_rate_limit_window_seconds: float = Field(default=60.0, gt=0, description="Rolling window length")
    qb_batch_max_items: int = Field(default=30, ge=1, description="Operations per batch call")
    qb_throttle_cooldown_seconds: float = Field(
        default=60.0, ge=0, description="Suggested wait after a remote 429"
    )

    # Token lifecycle
    qb_access_token_lifetime_seconds: int = Field(
        default=3600, ge=1, description="Assumed lifetime when the token endpoint omits expires_in"
    )
    qb_proactive_refresh: bool = Field(
        default=False, description="Refresh before sending when the token is about to expire"
    )
    qb_refresh_leeway_seconds: int = Field(
        default=300, ge=0, description="Proactive refresh window before expiry"
    )

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")
    dev_mode: bool = Field(default=False, description="Development mode")

    @field_validator("qb_environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Normalise and validate the environment selector."""
        normalised = v.strip().lower()
        valid = [e.value for e in Environment]
        if normalised not in valid:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid}")
        return normalised

    @property
    def api_host(self) -> str:
        """Construct QuickBooks API host for the configured environment."""
        return Environment(self.qb_environment).api_host


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
