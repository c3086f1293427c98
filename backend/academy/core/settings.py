from __future__ import annotations

import json
from functools import lru_cache
from typing import List

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, DotEnvSettingsSource, EnvSettingsSource, SettingsConfigDict


_CSV_FIELDS = {"alimtalk_backoff_minutes", "alimtalk_permanent_error_codes"}


class _FallbackEnvSettingsSource(EnvSettingsSource):
    """Allow list settings to be comma-separated instead of strict JSON."""

    def decode_complex_value(self, field_name, field, value):  # type: ignore[override]
        try:
            return super().decode_complex_value(field_name, field, value)
        except json.JSONDecodeError:
            if field_name in _CSV_FIELDS:
                return value
            raise


class _FallbackDotEnvSettingsSource(DotEnvSettingsSource):
    """Allow list settings to be comma-separated instead of strict JSON."""

    def decode_complex_value(self, field_name, field, value):  # type: ignore[override]
        try:
            return super().decode_complex_value(field_name, field, value)
        except json.JSONDecodeError:
            if field_name in _CSV_FIELDS:
                return value
            raise


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = "Academy Notify API"
    project_version: str = "1.0.0"
    environment: str = Field(
        default="development",
        description="Deployment environment name",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    log_level: str = Field(default="INFO", description="Logging level")

    # Database
    database_url: str = Field(
        default="postgresql+psycopg2://postgres@localhost:5432/academy",
        description="SQLAlchemy database URL",
    )
    db_pool_size: int = Field(default=5, description="Base DB connection pool size")
    db_max_overflow: int = Field(default=10, description="Additional DB connections beyond pool size")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a DB connection")
    db_pool_recycle: int = Field(default=1800, description="Recycle DB connections after N seconds")

    # Bearer token verification
    jwt_secret: str = Field(default="change_me", description="JWT signing secret")
    algorithm: str = Field(default="HS256", description="JWT signing algorithm")

    # AlimTalk provider (Aligo BizMessage)
    kakao_api_key: str | None = Field(
        default=None,
        description="Provider API key",
        validation_alias=AliasChoices("KAKAO_API_KEY"),
    )
    kakao_user_id: str | None = Field(
        default=None,
        description="Provider account user id",
        validation_alias=AliasChoices("KAKAO_USER_ID"),
    )
    kakao_default_sender_key: str | None = Field(
        default=None,
        description="Kakao channel sender key used for ad hoc sends",
        validation_alias=AliasChoices("KAKAO_SENDER_KEY", "KAKAO_DEFAULT_SENDER_KEY"),
    )
    alimtalk_base_url: str = Field(
        default="https://kakaoapi.aligo.in",
        description="Provider base URL",
        validation_alias=AliasChoices("ALIMTALK_BASE_URL"),
    )
    alimtalk_timeout_seconds: float = Field(default=10.0, description="Per-request provider timeout")
    alimtalk_max_attempts: int = Field(default=3, description="Max delivery attempts per queue entry")
    alimtalk_backoff_minutes: List[int] = Field(
        default_factory=lambda: [5, 30, 120],
        description="Retry delay after attempt N (last value repeats)",
    )
    alimtalk_claim_lease_minutes: int = Field(
        default=10,
        description="PROCESSING rows older than this are reclaimed by the next sweep",
    )
    alimtalk_batch_size: int = Field(default=50, description="Max queue entries per sweep")
    alimtalk_worker_concurrency: int = Field(default=4, description="Parallel deliveries per sweep")
    alimtalk_rate_limit_per_minute: int = Field(
        default=300,
        description="Gateway sends allowed per minute across all workers (0 disables)",
    )
    alimtalk_permanent_error_codes: List[str] = Field(
        default_factory=list,
        description="Provider result codes that must not be retried",
    )

    academy_timezone: str = Field(
        default="Asia/Seoul",
        description="Civil timezone for quiet hours and template dates",
        validation_alias=AliasChoices("ACADEMY_TIMEZONE", "TZ_NAME"),
    )

    @field_validator("alimtalk_backoff_minutes", mode="before")
    @classmethod
    def parse_backoff_minutes(cls, value: str | List[int]) -> List[int]:
        if isinstance(value, list):
            return value
        if isinstance(value, str) and value.strip():
            return [int(part.strip()) for part in value.split(",") if part.strip()]
        return [5, 30, 120]

    @field_validator("alimtalk_permanent_error_codes", mode="before")
    @classmethod
    def parse_permanent_codes(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return [str(code) for code in value]
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return []

    @property
    def alimtalk_configured(self) -> bool:
        return bool(self.kakao_api_key and self.kakao_user_id)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            _FallbackEnvSettingsSource(settings_cls),
            _FallbackDotEnvSettingsSource(settings_cls),
            file_secret_settings,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
