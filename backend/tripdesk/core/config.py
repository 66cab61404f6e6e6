"""Central application configuration powered by Pydantic settings."""

from __future__ import annotations

from typing import List

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

_DEFAULT_SECRET = "supersecret"
_DEFAULT_REFRESH_SECRET = "superrefreshsecret"

_ENV_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    case_sensitive=False,
    populate_by_name=True,
    extra="ignore",
)


class SMTPSettings(BaseSettings):
    """Outgoing mail server configuration."""

    model_config = _ENV_CONFIG

    host: str | None = Field(default=None, validation_alias="SMTP_HOST")
    port: int = Field(default=587, validation_alias="SMTP_PORT")
    username: str | None = Field(default=None, validation_alias="SMTP_USER")
    password: str | None = Field(default=None, validation_alias="SMTP_PASS")
    from_address: str = Field(default="noreply@tripdesk.lk", validation_alias="EMAIL_FROM")

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.username and self.password)


class ApprovalSettings(BaseSettings):
    """Rules deciding which approval levels a trip request needs."""

    model_config = _ENV_CONFIG

    cost_threshold: float = Field(default=50000.0, validation_alias="APPROVAL_COST_THRESHOLD")
    manager_required: bool = Field(default=True, validation_alias="APPROVAL_MANAGER_REQUIRED")
    department_required: bool = Field(default=True, validation_alias="APPROVAL_DEPARTMENT_REQUIRED")
    finance_required: bool = Field(default=False, validation_alias="APPROVAL_FINANCE_REQUIRED")
    escalation_hours: int = Field(default=48, validation_alias="APPROVAL_ESCALATION_HOURS")


class BillingSettings(BaseSettings):
    """Currency and ageing rules for trip costs and vendor invoices."""

    model_config = _ENV_CONFIG

    default_currency: str = Field(default="LKR", validation_alias="DEFAULT_CURRENCY")
    cost_overdue_days: int = Field(default=30, validation_alias="COST_OVERDUE_DAYS")


class TrackingSettings(BaseSettings):
    """GPS classification thresholds."""

    model_config = _ENV_CONFIG

    idle_speed_kmh: float = Field(default=5.0, validation_alias="GPS_IDLE_SPEED_KMH")


class Settings(BaseSettings):
    """Application settings loaded from the environment with validation."""

    model_config = _ENV_CONFIG

    database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")
    secret_key: str = Field(default=_DEFAULT_SECRET, validation_alias="SECRET_KEY")
    refresh_secret_key: str = Field(default=_DEFAULT_REFRESH_SECRET, validation_alias="REFRESH_SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=15, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    refresh_token_expire_days: int = Field(default=7, validation_alias="REFRESH_TOKEN_EXPIRE_DAYS")
    env: str = Field(default="development", validation_alias="ENVIRONMENT")
    cors_allowed_origins: str = Field(default="http://localhost:3000", validation_alias="CORS_ALLOWED_ORIGINS")
    upload_dir: str = Field(default="uploads", validation_alias="UPLOAD_DIR")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    scheduler_enabled: bool = Field(default=True, validation_alias="SCHEDULER_ENABLED")

    smtp: SMTPSettings = Field(default_factory=SMTPSettings)
    approvals: ApprovalSettings = Field(default_factory=ApprovalSettings)
    billing: BillingSettings = Field(default_factory=BillingSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)

    @field_validator("env", mode="before")
    @classmethod
    def _normalise_env(cls, value: str | None) -> str:
        if not value:
            return "development"
        return str(value).lower()

    @model_validator(mode="after")
    def _validate_production_requirements(self) -> "Settings":
        if self.env != "production":
            return self

        missing: List[str] = []
        if not self.database_url:
            missing.append("DATABASE_URL")
        if not self.secret_key or self.secret_key == _DEFAULT_SECRET:
            missing.append("SECRET_KEY")
        if not self.refresh_secret_key or self.refresh_secret_key == _DEFAULT_REFRESH_SECRET:
            missing.append("REFRESH_SECRET_KEY")

        if missing:
            required = ", ".join(sorted(set(missing)))
            raise ValueError("Missing required environment variables for production: " + required)
        return self

    @property
    def allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.env == "production"


settings = Settings()
