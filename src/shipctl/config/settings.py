# src/shipctl/config/settings.py
from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shipctl.exceptions import ConfigurationError

HISTORY_BACKENDS = ("SSM",)


class Settings(BaseSettings):
    """
    Single source of truth for shipctl settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from shipctl.config import get_settings
        settings = get_settings()
        region = settings.require_region()
    """

    # AWS Core Settings
    aws_region: Optional[str] = Field(
        default=None,
        alias="AWS_REGION",
        description="Region for every API call; wins over AWS_DEFAULT_REGION"
    )

    aws_default_region: Optional[str] = Field(
        default=None,
        alias="AWS_DEFAULT_REGION",
        description="Fallback region when AWS_REGION is unset or blank"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL",
        description="Override endpoint (localstack/moto server)"
    )

    # Deployment History
    history_backend: str = Field(
        default="SSM",
        alias="SHIPCTL_HISTORY_BACKEND",
        description="Backend type of the deployment history store"
    )

    history_limit: int = Field(
        default=5,
        alias="SHIPCTL_HISTORY_LIMIT",
        description="Number of deployment records kept per service"
    )

    history_parameter_prefix: str = Field(
        default="deploy-state",
        alias="SHIPCTL_HISTORY_PARAMETER_PREFIX",
        description="SSM parameter name prefix for history blobs"
    )

    # Polling
    poll_interval: float = Field(
        default=10.0,
        alias="SHIPCTL_POLL_INTERVAL",
        description="Seconds between describe calls while waiting"
    )

    # Notifications
    slack_webhook_url: Optional[str] = Field(
        default=None,
        alias="SHIPCTL_SLACK_WEBHOOK_URL",
        description="Slack incoming webhook URL"
    )

    slack_username: str = Field(
        default="deploy-bot",
        alias="SHIPCTL_SLACK_USERNAME"
    )

    # Image promotion scope
    legacy_single_container: bool = Field(
        default=False,
        alias="SHIPCTL_LEGACY_SINGLE_CONTAINER",
        description="Only promote the first container and reject multi-container task definitions"
    )

    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )

    @field_validator("aws_region", "aws_default_region", "aws_endpoint_url", "slack_webhook_url", mode="before")
    @classmethod
    def empty_string_is_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("history_backend")
    @classmethod
    def normalize_history_backend(cls, v):
        return v.strip().upper()

    @field_validator("history_limit")
    @classmethod
    def validate_history_limit(cls, v):
        if v < 2:
            raise ValueError("history_limit must keep at least 2 records to allow rollback")
        return v

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v):
        if v < 0:
            raise ValueError("poll_interval must not be negative")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper()

    @property
    def region(self) -> Optional[str]:
        """First non-blank of AWS_REGION and AWS_DEFAULT_REGION."""
        return self.aws_region or self.aws_default_region

    def require_region(self) -> str:
        """Return the configured region or fail before any API call."""
        if not self.region:
            raise ConfigurationError(
                "AWS region is not found. please set a AWS_DEFAULT_REGION or AWS_REGION"
            )
        return self.region

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
