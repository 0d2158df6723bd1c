"""
Configuration management for the Dispatch service
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Dispatch"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./dispatch.db"

    # Dispatch templates
    TEMPLATE_NOTE_TITLE: str = "TasklistTemplate"
    JOURNAL_TITLE_PREFIX: str = "Daily Dispatch"
    SUMMARY_MAX_LENGTH: int = 10000

    # List pagination
    PAGE_LIMIT_DEFAULT: int = 20
    PAGE_LIMIT_MAX: int = 100

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
