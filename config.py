"""Floor Monitor — Configuration Management.

Strictly-typed configuration using pydantic-settings. Each section reads
its own environment prefix (or ``.env``); the root ``Settings`` is cached
by ``get_settings()``.

    DB_*          PostgreSQL (counters, popups, alerts, preferences)
    REDIS_*       machine event bridge
    LOG_*         structlog output
    PRODUCTION_*  shift boundaries, tick and reconciliation cadence
    NOTIFY_*      SMTP, WhatsApp, SMS and push channels

Secrets (database password, SMTP password, WhatsApp token) are SecretStr
so they never end up in logs or reprs.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _section(prefix: str = "") -> SettingsConfigDict:
    return SettingsConfigDict(env_prefix=prefix, env_file=".env", env_file_encoding="utf-8", extra="ignore")


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection and pool sizing."""

    model_config = _section("DB_")

    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    name: str = "floor_monitor"
    user: str = "floor"
    password: SecretStr = SecretStr("floor")
    pool_size: int = Field(default=10, ge=1, le=100)
    max_overflow: int = Field(default=5, ge=0, le=100)

    def _dsn(self, secret: str) -> str:
        return f"postgresql+asyncpg://{self.user}:{secret}@{self.host}:{self.port}/{self.name}"

    @property
    def async_dsn(self) -> str:
        return self._dsn(self.password.get_secret_value())

    @property
    def dsn_safe(self) -> str:
        """DSN with the password masked, for logs."""
        return self._dsn("***")


class RedisSettings(BaseSettings):
    """Redis pub/sub carrying machine events from the floor gateways."""

    model_config = _section("REDIS_")

    host: str = "localhost"
    port: int = Field(default=6379, ge=1, le=65535)
    password: SecretStr | None = None
    db: int = Field(default=0, ge=0, le=15)
    ssl: bool = False
    events_channel: str = Field(default="machine_events", description="Pub/sub channel for machine events")

    def _url(self, masked: bool) -> str:
        scheme = "rediss" if self.ssl else "redis"
        auth = ""
        if self.password:
            auth = ":***@" if masked else f":{self.password.get_secret_value()}@"
        return f"{scheme}://{auth}{self.host}:{self.port}/{self.db}"

    @property
    def url(self) -> str:
        return self._url(masked=False)

    @property
    def url_safe(self) -> str:
        return self._url(masked=True)


class LogSettings(BaseSettings):
    model_config = _section("LOG_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "text"] = Field(default="json", description="json for production, text for a terminal")


class ProductionSettings(BaseSettings):
    """Production accounting configuration.

    Attributes:
        morning_shift_hour: Local hour the day shift starts.
        night_shift_hour: Local hour the night shift starts.
        shift_minutes: Shift length used for the production target.
        tick_interval_seconds: Minimum wall time between live estimates.
        reconcile_interval_seconds: Cadence of the server summary poll.
        reconcile_timeout_seconds: Timeout for one summary fetch.
        duplicate_check_timeout_seconds: Timeout for the alert duplicate query.
        snapshot_store_path: SQLite file backing the snapshot cache.
        summary_api_base_url: Base URL of the current-shift summary endpoint.
    """

    model_config = _section("PRODUCTION_")

    morning_shift_hour: int = Field(default=7, ge=0, le=23)
    night_shift_hour: int = Field(default=19, ge=0, le=23)
    shift_minutes: int = Field(default=720, ge=1, le=1440)
    tick_interval_seconds: float = Field(default=1.0, gt=0)
    reconcile_interval_seconds: float = Field(default=30.0, gt=0)
    reconcile_timeout_seconds: float = Field(default=5.0, gt=0)
    duplicate_check_timeout_seconds: float = Field(default=5.0, gt=0)
    snapshot_store_path: str = "data/production_snapshots.db"
    summary_api_base_url: str = "http://localhost:8000"

    @model_validator(mode="after")
    def validate_shift_hours(self) -> "ProductionSettings":
        if self.morning_shift_hour >= self.night_shift_hour:
            raise ValueError("morning_shift_hour must be earlier than night_shift_hour")
        return self


class NotificationSettings(BaseSettings):
    """Outbound notification channels.

    A channel whose credentials are missing is reported as failed by its
    sender instead of raising.
    """

    model_config = _section("NOTIFY_")

    smtp_host: str | None = None
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_user: str | None = None
    smtp_password: SecretStr | None = None
    smtp_sender: str = "alerts@floor-monitor.local"
    whatsapp_token: SecretStr | None = None
    whatsapp_phone_id: str | None = None
    whatsapp_api_url: str = "https://graph.facebook.com/v17.0"
    sms_webhook_url: str | None = None
    push_webhook_url: str | None = None
    send_timeout_seconds: float = Field(default=10.0, gt=0)

    @field_validator("smtp_host", "sms_webhook_url", "push_webhook_url", mode="before")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        """Treat empty environment values as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


class Settings(BaseSettings):
    """Root settings.

    Example:
        >>> get_settings().production.shift_minutes
        720
    """

    model_config = _section()

    app_name: str = "Floor Monitor"
    app_version: str = "1.0.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    production: ProductionSettings = Field(default_factory=ProductionSettings)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """No debug mode or DEBUG logging in production."""
        if self.environment == "production" and (self.debug or self.log.level == "DEBUG"):
            raise ValueError("debug mode and DEBUG logging are not allowed in production")
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton.

    Raises:
        ValidationError: If the environment holds invalid values.
    """
    return Settings()
