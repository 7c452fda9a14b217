from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    STORE_URL: str
    STORE_API_KEY: str = ""
    STORE_TIMEOUT_SECONDS: float = 10.0
    REDIS_URL: str = "redis://localhost:6379"
    LOG_LEVEL: str = "info"
    ENVIRONMENT: str = "production"
    PET_TIMEZONE: str = "UTC"
    COMPLETION_WINDOW_MINUTES: int = 120
    OFFLINE_QUEUE_MAX_SIZE: int = 200
    OFFLINE_QUEUE_WARNING_THRESHOLD: int = 50
    OFFLINE_OPERATION_TTL_DAYS: int = 30
    NOTIFICATIONS_URL: str = ""
    ANALYTICS_URL: str = ""

    @field_validator("STORE_URL")
    @classmethod
    def validate_store_url(cls, v: str) -> str:
        value = v.rstrip("/")
        if not (value.startswith("http://") or value.startswith("https://")):
            raise ValueError("STORE_URL must start with http:// or https://")
        return value

    @field_validator("NOTIFICATIONS_URL", "ANALYTICS_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("PET_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"PET_TIMEZONE is not a known IANA zone: {v}") from exc
        return v

    @field_validator("COMPLETION_WINDOW_MINUTES", "OFFLINE_QUEUE_MAX_SIZE", "OFFLINE_OPERATION_TTL_DAYS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.PET_TIMEZONE)


@lru_cache
def get_settings() -> Settings:
    return Settings()
