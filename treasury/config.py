"""Treasury configuration using pydantic settings with structured sections."""

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = 0.05
    max_delay: float = 1.0


class StorageSettings(BaseModel):
    lock_timeout: float = Field(default=5.0, gt=0)


class NotificationSettings(BaseModel):
    email_endpoint: Optional[str] = None
    timeout: float = 5.0


class Settings(BaseSettings):
    """Top-level treasury settings, read from TREASURY_* variables."""

    model_config = SettingsConfigDict(
        env_prefix="TREASURY_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    environment: str = "development"
    currency: str = "VHS"
    treasury_email: str = "treasury@vandehoeken.gov"
    admin_emails: list[str] = Field(default_factory=list)

    log_level: str = "INFO"
    log_json: Optional[bool] = None

    retry: RetrySettings = RetrySettings()
    storage: StorageSettings = StorageSettings()
    notifications: NotificationSettings = NotificationSettings()


@lru_cache()
def get_settings() -> Settings:
    return Settings()
