from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    document_store_backend: str = Field(default="memory", alias="DOCUMENT_STORE_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    celery_broker_url: str = Field(default="redis://localhost:6379/1", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(
        default="redis://localhost:6379/2",
        alias="CELERY_RESULT_BACKEND",
    )

    session_countdown_ticks: int = Field(default=3, alias="SESSION_COUNTDOWN_TICKS")
    session_tick_interval_seconds: float = Field(
        default=1.0,
        alias="SESSION_TICK_INTERVAL_SECONDS",
    )
    session_min_participants_to_start: int = Field(
        default=1,
        alias="SESSION_MIN_PARTICIPANTS_TO_START",
    )
    session_participant_limit: int = Field(default=100, alias="SESSION_PARTICIPANT_LIMIT")
    session_allow_late_join: bool = Field(default=False, alias="SESSION_ALLOW_LATE_JOIN")
    session_late_answer_grace_seconds: int = Field(
        default=5,
        alias="SESSION_LATE_ANSWER_GRACE_SECONDS",
    )
    session_participant_timeout_termination: bool = Field(
        default=True,
        alias="SESSION_PARTICIPANT_TIMEOUT_TERMINATION",
    )

    store_read_retry_attempts: int = Field(default=3, alias="STORE_READ_RETRY_ATTEMPTS")
    store_read_retry_backoff_seconds: float = Field(
        default=0.2,
        alias="STORE_READ_RETRY_BACKOFF_SECONDS",
    )

    session_timeout_scan_interval_seconds: int = Field(
        default=30,
        alias="SESSION_TIMEOUT_SCAN_INTERVAL_SECONDS",
    )
    session_timeout_batch_size: int = Field(default=200, alias="SESSION_TIMEOUT_BATCH_SIZE")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
