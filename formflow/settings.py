from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    # Remote store (Directus REST API)
    directus_url: str = Field(default="http://localhost:8055", alias="DIRECTUS_URL")
    directus_token: str | None = Field(default=None, alias="DIRECTUS_TOKEN")
    request_timeout_seconds: float = Field(default=10.0, alias="REQUEST_TIMEOUT_SECONDS")
    # Answer cache flush cadence; values <= 0 disable the background flush
    autosave_interval_ms: int = Field(default=2000, alias="AUTOSAVE_INTERVAL_MS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    default_form_slug: str = Field(default="demo-health-survey", alias="DEFAULT_FORM_SLUG")
    development_mode: bool = Field(default=False, alias="DEVELOPMENT_MODE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def directus_base_url(self) -> str:
        """Return the Directus URL without a trailing slash."""
        return self.directus_url.rstrip("/")

    @property
    def autosave_enabled(self) -> bool:
        return self.autosave_interval_ms > 0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def is_development_mode() -> bool:
    """
    Check whether DEVELOPMENT_MODE=true is set.

    Development mode lowers the default log level to DEBUG so rule evaluation
    traces are visible.
    """
    try:
        settings = get_settings()
        return bool(settings.development_mode)
    except Exception:
        return False
