"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Taskflow Backend"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://taskflow@localhost:5432/taskflow"

    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 60.0
    openai_max_tokens: int = 1100

    default_max_steps: int = 6
    max_steps_limit: int = 12
    min_duration_minutes: int = 15
    max_duration_minutes: int = 240
    fallback_duration_minutes: int = 60
    default_timezone: str = "UTC"

    calendar_provider: str = "google"
    google_calendar_api_base: str = "https://www.googleapis.com/calendar/v3"
    calendar_id: str = "primary"
    calendar_timeout_seconds: float = 15.0
    oauth_provider_id: str = "google"

    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "taskflow"

    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    resume_job_interval_minutes: int = 10
    resume_stale_after_minutes: int = 15
    resume_batch_size: int = 50
    jobs_run_on_startup: bool = False

    workflow_history_limit: int = 20


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
