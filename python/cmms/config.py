"""Application settings loaded from environment variables.

Environment Configuration:
    CMMS_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: PostgreSQL connection string (required)
    PORT: HTTP port for the API process (default 3000)

Session Tokens:
    JWT_SECRET: HMAC secret for app-issued session tokens (required in staging/prod)
    JWT_EXPIRES_IN_S: Session token lifetime in seconds (default 7 days)

Google Configuration (required in staging/prod):
    GOOGLE_CLIENT_ID: OAuth client ID
    GOOGLE_CLIENT_SECRET: OAuth client secret
    GOOGLE_REDIRECT_URI: OAuth callback URL
    CMMS_TOKEN_ENCRYPTION_KEY: Base64 32-byte key used to encrypt stored Google tokens

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (required for worker)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)
    SYNC_SWEEP_INTERVAL_S: Periodic watch-folder sweep interval (0 disables)
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Only usable outside staging/prod; the validator rejects it there.
DEV_JWT_SECRET = "cmms-local-dev-secret-do-not-use-in-prod"


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Validation rules:
    - DATABASE_URL is always required
    - JWT_SECRET, the Google OAuth trio and CMMS_TOKEN_ENCRYPTION_KEY are
      required in staging and prod only
    """

    cmms_env: Environment = Field(default=Environment.LOCAL, alias="CMMS_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    port: int = Field(default=3000, alias="PORT")

    # Session tokens
    jwt_secret: str = Field(default=DEV_JWT_SECRET, alias="JWT_SECRET")
    jwt_expires_in_s: int = Field(default=7 * 24 * 3600, alias="JWT_EXPIRES_IN_S")

    # Google OAuth / Workspace APIs
    google_client_id: str | None = Field(default=None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: str | None = Field(default=None, alias="GOOGLE_CLIENT_SECRET")
    google_redirect_uri: str | None = Field(default=None, alias="GOOGLE_REDIRECT_URI")
    provider_timeout_s: float = Field(default=30.0, alias="PROVIDER_TIMEOUT_S")

    # Base64-encoded 32-byte key for XSalsa20-Poly1305 token encryption.
    # Optional in local/test (a deterministic key is derived instead).
    cmms_token_encryption_key: str | None = Field(
        default=None, alias="CMMS_TOKEN_ENCRYPTION_KEY"
    )

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")
    sync_sweep_interval_s: int = Field(default=0, alias="SYNC_SWEEP_INTERVAL_S")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure deployed environments carry real secrets."""
        if self.cmms_env not in (Environment.STAGING, Environment.PROD):
            return self

        missing = []
        if not self.jwt_secret or self.jwt_secret == DEV_JWT_SECRET:
            missing.append("JWT_SECRET")
        if not self.google_client_id:
            missing.append("GOOGLE_CLIENT_ID")
        if not self.google_client_secret:
            missing.append("GOOGLE_CLIENT_SECRET")
        if not self.google_redirect_uri:
            missing.append("GOOGLE_REDIRECT_URI")
        if not self.cmms_token_encryption_key:
            missing.append("CMMS_TOKEN_ENCRYPTION_KEY")

        if missing:
            raise ValueError(
                f"Missing required settings for CMMS_ENV={self.cmms_env.value}: "
                f"{', '.join(missing)}"
            )

        return self

    @property
    def is_production(self) -> bool:
        """Whether error details must be hidden from clients."""
        return self.cmms_env == Environment.PROD

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
