"""Application configuration schema and validation."""

from typing import Literal

from pydantic import Field, PostgresDsn, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: Literal["dev", "staging", "prod"] = Field(
        ...,
        description="Application environment",
    )
    db_dsn: PostgresDsn = Field(
        ...,
        description="PostgreSQL database connection string",
    )
    db_pool_min: int = Field(
        default=2,
        ge=1,
        description="Minimum database connection pool size",
    )
    db_pool_max: int = Field(
        default=10,
        ge=1,
        description="Maximum database connection pool size",
    )
    whop_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Whop webhook signing secret (whsec_...)",
    )
    whop_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Whop API key used for membership cancellation",
    )
    whop_api_base_url: str = Field(
        default="https://api.whop.com/api/v1",
        description="Base URL of the Whop REST API",
    )
    supabase_url: str = Field(
        default="",
        description="Supabase project URL (https://<ref>.supabase.co)",
    )
    supabase_service_role_key: SecretStr = Field(
        default=SecretStr(""),
        description="Supabase service role key for token verification",
    )
    identity_users_table: str = Field(
        default="auth.users",
        pattern=r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$",
        description="Qualified table holding identity users (id, email)",
    )
    webhook_server_host: str = Field(
        default="0.0.0.0",
        description="Interface the HTTP server binds to",
    )
    webhook_server_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port the HTTP server listens on",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="Total timeout for outbound provider/identity HTTP calls",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("db_pool_max")
    @classmethod
    def validate_pool_max(cls, v: int, info) -> int:
        """Ensure pool_max >= pool_min."""
        if "db_pool_min" in info.data and v < info.data["db_pool_min"]:
            raise ValueError("db_pool_max must be >= db_pool_min")
        return v


_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create the singleton AppConfig instance."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config
