"""Service settings loaded from environment / .env."""
from datetime import datetime
from zoneinfo import ZoneInfo

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _sanitize_ascii(value: str) -> str:
    """Drop non-ASCII / invisible characters (keys pasted from web dashboards)."""
    return "".join(ch for ch in value if 32 < ord(ch) < 127).strip()


class Settings(BaseSettings):
    app_name: str = "HeroToDo"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./data/todo.db"

    # AI parser (OpenAI-compatible endpoint)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    parse_model: str = "gpt-4o-mini"
    ai_parse_timeout_s: float = 8.0

    timezone: str = "Asia/Shanghai"

    # Recurring tasks
    recurring_window_days: int = 30
    cleanup_days_past_due: int = 7
    month_end_policy: str = "clamp"

    # Auth
    secret_key: str = "change-me-in-production-please"
    access_token_expire_hours: int = 72
    cron_secret: str = ""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("openai_api_key", "cron_secret", mode="before")
    @classmethod
    def sanitize_secret(cls, value: str) -> str:
        return _sanitize_ascii(value or "")

    @field_validator("ai_parse_timeout_s", mode="before")
    @classmethod
    def normalize_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 8.0
        return parsed_value

    @field_validator("month_end_policy", mode="before")
    @classmethod
    def normalize_month_end_policy(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("clamp", "skip"):
            raise ValueError("month_end_policy must be 'clamp' or 'skip'")
        return value

    @field_validator("recurring_window_days", "cleanup_days_past_due", mode="before")
    @classmethod
    def positive_days(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value < 1:
            raise ValueError("day counts must be >= 1")
        return parsed_value


settings = Settings()


def local_now() -> datetime:
    """Naive wall-clock time in the configured timezone."""
    return datetime.now(ZoneInfo(settings.timezone)).replace(tzinfo=None)
