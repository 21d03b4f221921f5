import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Define project root to build paths consistently
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

load_dotenv(PROJECT_ROOT / ".env")

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Manages application-wide settings for the API service and the background jobs."""
    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Configuration
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Samay API"
    VERSION: str = "1.0.0"

    # Database Configuration
    DATABASE_URL: Optional[str] = None
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "samay"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "samay"

    @property
    def SQLALCHEMY_DATABASE_URL(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # JWT Configuration
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7

    # AI Configuration
    GEMINI_API_KEY: str = ""
    TAGGING_MODEL_NAME: str = "gemini-2.5-flash"
    INSIGHTS_MODEL_NAME: str = "gemini-2.5-flash"

    # --- Timezone ---
    # Calendar days for merging and reporting are bucketed in this zone.
    REFERENCE_TZ: str = "Asia/Kolkata"

    # --- Ingest ---
    EXCLUDED_APPS_STR: str = "loginwindow,dock"

    @property
    def EXCLUDED_APPS(self) -> List[str]:
        return [app.strip() for app in self.EXCLUDED_APPS_STR.split(",") if app.strip()]

    # --- Tagging ---
    TAG_CACHE_TTL_SECONDS: int = 300
    TAGGING_BATCH_SIZE: int = 25

    # --- Merge ---
    MERGE_BATCH_SIZE: int = 500
    MERGE_STATEMENT_TIMEOUT_MS: int = 600000
    MERGE_LOCK_TIMEOUT_MS: int = 30000

    # --- Insights ---
    INSIGHTS_TOP_ACTIVITIES_LIMIT: int = 100
    INSIGHTS_MAX_TIMESTAMPS: int = 20

    # --- Scheduler ---
    ENABLE_SCHEDULER: bool = True
    MERGE_CRON: str = "0 0 * * *"
    TAGGING_CRON: str = "*/10 * * * *"
    INSIGHTS_CRON: str = "1 0 * * *"
    INSIGHTS_RUN_ON_STARTUP: bool = True

    # CORS Configuration
    ALLOWED_ORIGINS_STR: str = "*"

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """
        Returns a list of allowed origins for CORS.
        Reads from the ALLOWED_ORIGINS_STR environment variable.
        """
        if not self.ALLOWED_ORIGINS_STR:
            return []
        return [origin.strip() for origin in self.ALLOWED_ORIGINS_STR.split(",")]

    # Development settings
    DEBUG: bool = False


settings = Settings()
