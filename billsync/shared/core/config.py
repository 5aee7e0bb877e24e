from functools import lru_cache
from threading import Lock
from typing import Optional
import base64
import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        from billsync.shared.core.security import clear_fernet_cache

        clear_fernet_cache()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for the billing reconciliation service.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "billsync"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False

    # Database
    DATABASE_URL: Optional[str] = None  # Required in prod, optional in dev/test
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5

    # Secrets at rest (stored card authorizations)
    ENCRYPTION_KEY: Optional[str] = None
    # Base64-encoded random 32 bytes
    KDF_SALT: Optional[str] = None

    # Paystack
    PAYSTACK_SECRET_KEY: Optional[str] = None
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_SIGNATURE_HEADER: str = "x-paystack-signature"
    PAYSTACK_HTTP_TIMEOUT_SECONDS: float = 30.0
    # Additional attempts after the first empty subscription lookup.
    PAYSTACK_LOOKUP_MAX_RETRIES: int = 2
    PAYSTACK_LOOKUP_RETRY_DELAY_SECONDS: float = 2.0
    # Static plan code -> tier table, merged with the plan_tier_mappings rows.
    PAYSTACK_PLAN_TIERS: dict[str, str] = Field(default_factory=dict)
    PAYSTACK_CHECKOUT_CURRENCY: str = "KES"
    BILLING_BASELINE_TIER: str = "free"

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """Centralized validation orchestrator, grouped by concern."""
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )
        if self.TESTING:
            return self

        self._validate_core_secrets()
        self._validate_database_config()
        self._validate_billing_config()
        return self

    def _validate_core_secrets(self) -> None:
        """Validates encryption key material for stored authorizations."""
        if self.ENVIRONMENT not in {ENV_PRODUCTION, ENV_STAGING}:
            return

        if not self.ENCRYPTION_KEY or len(self.ENCRYPTION_KEY) < 32:
            raise ValueError("ENCRYPTION_KEY must be set to a secure value (>= 32 chars).")

        if not self.KDF_SALT:
            raise ValueError("KDF_SALT must be set (base64-encoded random 32 bytes).")
        try:
            decoded_salt = base64.b64decode(self.KDF_SALT)
        except Exception as exc:
            raise ValueError("KDF_SALT must be valid base64.") from exc
        if len(decoded_salt) != 32:
            raise ValueError("KDF_SALT must decode to exactly 32 bytes.")

    def _validate_database_config(self) -> None:
        if self.is_production and not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is required in production.")

    def _validate_billing_config(self) -> None:
        """Validates Paystack credentials and lookup bounds."""
        if self.PAYSTACK_LOOKUP_MAX_RETRIES < 0:
            raise ValueError("PAYSTACK_LOOKUP_MAX_RETRIES must be >= 0.")
        if self.PAYSTACK_LOOKUP_MAX_RETRIES > 5:
            raise ValueError("PAYSTACK_LOOKUP_MAX_RETRIES must be <= 5.")
        if self.PAYSTACK_LOOKUP_RETRY_DELAY_SECONDS < 0:
            raise ValueError("PAYSTACK_LOOKUP_RETRY_DELAY_SECONDS must be >= 0.")

        if self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            if not self.PAYSTACK_SECRET_KEY:
                raise ValueError("PAYSTACK_SECRET_KEY is required in staging/production.")
        if self.is_production and str(self.PAYSTACK_SECRET_KEY).startswith("sk_test"):
            raise ValueError(
                "PAYSTACK_SECRET_KEY must be a live key (sk_live_...) in production."
            )

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    @property
    def is_production(self) -> bool:
        """True only when ENVIRONMENT is explicitly set to 'production'."""
        return self.ENVIRONMENT == ENV_PRODUCTION
