"""Application configuration loaded from environment variables.

Settings for the database, authentication tokens, the notification broker,
and outbound email. Uses pydantic-settings for validation and .env file
support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
_INSECURE_DEFAULT_PASSWORD = "taskflow_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "taskflow"
    database_user: str = "taskflow_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # CORS
    # CRITICAL: Never set to ["*"], the refresh cookie requires credentials
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Tokens
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "taskflow"
    access_token_ttl_seconds: int = 15 * 60
    login_token_ttl_seconds: int = 15 * 60
    refresh_token_ttl_seconds: int = 7 * 24 * 60 * 60
    invitation_token_ttl_seconds: int = 24 * 60 * 60

    # Refresh cookie
    refresh_cookie_name: str = "taskflow.refresh-token"
    refresh_cookie_secure: bool = True
    refresh_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    refresh_cookie_path: str = "/api/v1/auth"

    # Notification broker
    notification_backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://localhost:6379/0"
    notification_stream: str = "email_queue"
    notification_group: str = "email_workers"
    notification_consumer_name: str = "worker-1"
    notification_dead_letter_stream: str = "email_queue.dead"
    notification_max_deliveries: int = 5
    notification_block_ms: int = 5000
    notification_consumer_enabled: bool = False

    # Email
    email_from: str = "noreply@taskflow.app"
    resend_api_key: SecretStr = SecretStr("")

    # Link targets embedded in outbound emails
    backend_url: str = "http://localhost:8000"
    magic_link_path: str = "/api/v1/auth/verify?token="
    invitation_path: str = "/api/v1/membership/add?token="

    # Invitations
    # "stateless": redemption trusts the token claims alone
    # "require_active": the stored invitation must still be valid and is consumed
    invitation_redemption_policy: Literal["stateless", "require_active"] = (
        "stateless"
    )

    # Rate Limiting
    rate_limit_magic_link: str = "5/hour"
    rate_limit_verify: str = "20/minute"
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate security and consistency requirements.

        Checks:
        - SameSite=None requires the Secure cookie flag (all environments)
        - Token lifetimes must be positive (all environments)
        - Max deliveries must be at least one (all environments)
        - CORS must not use wildcard origin (all environments)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars in production
        """
        if self.refresh_cookie_samesite == "none" and not self.refresh_cookie_secure:
            msg = (
                "REFRESH_COOKIE_SECURE must be true when "
                "REFRESH_COOKIE_SAMESITE=none. Browsers reject SameSite=None "
                "cookies without the Secure flag."
            )
            raise ValueError(msg)

        for name in (
            "access_token_ttl_seconds",
            "login_token_ttl_seconds",
            "refresh_token_ttl_seconds",
            "invitation_token_ttl_seconds",
        ):
            if getattr(self, name) <= 0:
                msg = f"{name.upper()} must be positive. Got: {getattr(self, name)}"
                raise ValueError(msg)

        if self.notification_max_deliveries < 1:
            msg = (
                "NOTIFICATION_MAX_DELIVERIES must be at least 1. "
                f"Got: {self.notification_max_deliveries}"
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials (cookies) which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            secret_value = self.auth_secret.get_secret_value()
            if not secret_value:
                msg = (
                    "AUTH_SECRET must be set in production. "
                    'Generate with: python -c "import secrets; '
                    'print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)
            if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                    "characters for adequate security."
                )
                raise ValueError(msg)

        return self


settings = Settings()
