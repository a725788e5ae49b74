"""
VPS Autoscaler - Configuration Management

This module handles all configuration settings including database connections,
control loop timing, telemetry collection, the provisioning API and
notification channels.
"""

from functools import lru_cache
import os

from pydantic import Field, field_validator
from typing import Any
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database configuration settings for PostgreSQL"""

    # Database Connection
    postgres_host: str = Field(default="localhost", validation_alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, validation_alias="POSTGRES_PORT")
    postgres_db: str = Field(default="autoscaler", validation_alias="POSTGRES_DB")
    postgres_user: str = Field(default="autoscaler", validation_alias="POSTGRES_USER")
    postgres_password: str = Field(default="change_me_in_production", validation_alias="POSTGRES_PASSWORD")

    # Connection Pool Settings
    db_pool_size: int = Field(default=10, validation_alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, validation_alias="DB_MAX_OVERFLOW")
    db_pool_timeout: int = Field(default=30, validation_alias="DB_POOL_TIMEOUT")
    db_pool_recycle: int = Field(default=3600, validation_alias="DB_POOL_RECYCLE")

    @property
    def database_url(self) -> str:
        """Generate async PostgreSQL database URL"""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class ControlLoopSettings(BaseSettings):
    """Monitoring and autoscaling control loop settings"""

    control_loop_enabled: bool = Field(default=False, validation_alias="CONTROL_LOOP_ENABLED")
    tick_interval_seconds: int = Field(default=300, validation_alias="CONTROL_LOOP_TICK_INTERVAL")
    startup_delay_seconds: int = Field(default=30, validation_alias="CONTROL_LOOP_STARTUP_DELAY")
    max_concurrent_workers: int = Field(default=10, validation_alias="CONTROL_LOOP_MAX_WORKERS")

    metric_retention_days: int = Field(default=30, validation_alias="METRIC_RETENTION_DAYS")
    min_data_points: int = Field(default=3, validation_alias="SCALING_MIN_DATA_POINTS")
    quota_timezone: str = Field(default="UTC", validation_alias="SCALING_QUOTA_TIMEZONE")

    # In-progress scaling events older than this are marked failed
    stale_event_seconds: int = Field(default=3600, validation_alias="SCALING_STALE_EVENT_SECONDS")

    @field_validator("tick_interval_seconds")
    def validate_tick_interval(cls, v: int) -> int:
        if v < 60 or v > 3600:
            raise ValueError("Control loop tick interval must be between 60 and 3600 seconds")
        return v

    @field_validator("max_concurrent_workers", "min_data_points")
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class TelemetrySettings(BaseSettings):
    """Per-sample timeouts for the provider lookup, Glances agent and connectivity probe"""

    glances_timeout: float = Field(default=5.0, validation_alias="GLANCES_TIMEOUT")
    lookup_timeout: float = Field(default=10.0, validation_alias="PROVIDER_LOOKUP_TIMEOUT")
    probe_port: int = Field(default=80, validation_alias="PROBE_PORT")
    probe_timeout: float = Field(default=5.0, validation_alias="PROBE_TIMEOUT")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class ProvisioningSettings(BaseSettings):
    """Cloud provisioning API settings"""

    api_base_url: str = Field(default="https://api.contabo.com", validation_alias="PROVISIONING_API_URL")
    auth_url: str = Field(
        default="https://auth.contabo.com/auth/realms/contabo/protocol/openid-connect/token",
        validation_alias="PROVISIONING_AUTH_URL",
    )
    client_id: str = Field(default="", validation_alias="PROVISIONING_CLIENT_ID")
    client_secret: str = Field(default="", validation_alias="PROVISIONING_CLIENT_SECRET")
    api_user: str = Field(default="", validation_alias="PROVISIONING_API_USER")
    api_password: str = Field(default="", validation_alias="PROVISIONING_API_PASSWORD")

    request_timeout: float = Field(default=30.0, validation_alias="PROVISIONING_REQUEST_TIMEOUT")
    resize_timeout: float = Field(default=120.0, validation_alias="PROVISIONING_RESIZE_TIMEOUT")

    @field_validator("resize_timeout")
    def validate_resize_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Resize timeout must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class NotificationSettings(BaseSettings):
    """Email and push notification settings"""

    smtp_host: str | None = Field(default=None, validation_alias="SMTP_HOST")
    smtp_port: int = Field(default=587, validation_alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, validation_alias="SMTP_USERNAME")
    smtp_password: str | None = Field(default=None, validation_alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=True, validation_alias="SMTP_USE_TLS")
    mail_from: str = Field(default="autoscaler@localhost", validation_alias="MAIL_FROM")

    # Gotify Notifications
    gotify_url: str | None = Field(default=None, validation_alias="GOTIFY_URL")
    gotify_token: str | None = Field(default=None, validation_alias="GOTIFY_TOKEN")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class AuthSettings(BaseSettings):
    """Authentication and security settings"""

    # API Key Authentication
    api_key: str | None = Field(default=None, validation_alias="API_KEY")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class LoggingSettings(BaseSettings):
    """Logging configuration settings"""

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class APISettings(BaseSettings):
    """FastAPI REST API server configuration settings"""

    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=9101, validation_alias="API_PORT")
    api_log_level: str = Field(default="info", validation_alias="API_LOG_LEVEL")

    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
        ]
    )

    rate_limit_enabled: bool = Field(default=True, validation_alias="RATE_LIMIT_ENABLED")
    rate_limit_requests_per_minute: int = Field(default=100, validation_alias="RATE_LIMIT_REQUESTS_PER_MINUTE")

    def model_post_init(self, __context: Any) -> None:
        super().model_post_init(__context)
        # Handle CORS_ORIGINS environment variable manually after initialization
        cors_env = os.getenv("CORS_ORIGINS")
        if cors_env:
            self.cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class ApplicationSettings(BaseSettings):
    """Main application settings combining all configuration sections"""

    # Environment
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    debug: bool = Field(default=False, validation_alias="DEBUG")

    # Component settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    control_loop: ControlLoopSettings = Field(default_factory=ControlLoopSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    provisioning: ProvisioningSettings = Field(default_factory=ProvisioningSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    api: APISettings = Field(default_factory=APISettings)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


@lru_cache
def get_settings() -> ApplicationSettings:
    """Get cached application settings instance"""
    return ApplicationSettings()


# Global settings instance for easy import
settings = get_settings()
