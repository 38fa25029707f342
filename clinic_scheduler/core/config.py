# clinic_scheduler/core/config.py

from zoneinfo import ZoneInfo
import urllib.parse

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read env from .env; ignore unknown keys so extra lines don't crash startup
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Database ---
    # DATABASE_URL wins when set (tests use sqlite+aiosqlite)
    DATABASE_URL: str | None = None
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "clinic"
    POSTGRES_USER: str = "clinic"
    POSTGRES_PASSWORD: str = ""

    # --- Monitoring & Logging ---
    APP_ENV: str = "production"
    LOG_LEVEL: str = "INFO"
    LOG_REQUESTS: bool = False
    MAX_LOG_LENGTH: int = 200

    # --- Scheduling ---
    CLINIC_TIMEZONE: str = "America/Mexico_City"
    DEFAULT_APPOINTMENT_DURATION: int = 30
    QUERY_MIN_INTERVAL_MS: int = 500
    BUSINESS_HOURS_ENFORCED: bool = False

    # --- Google Calendar ---
    GOOGLE_CALENDAR_ENABLED: bool = True
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    PROVIDER_CALL_TIMEOUT: float = 10.0
    SYNC_MAX_RETRIES: int = 2
    SYNC_RETRY_BACKOFF: float = 0.5
    SYNC_TOKEN_REFRESH_WINDOW_MINUTES: int = 5
    SYNC_PAST_DAYS: int = 30

    # Sync URI (Alembic)
    @property
    def sync_db_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL.replace("+asyncpg", "").replace("+aiosqlite", "")
        pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Async URI (SQLAlchemy engine)
    @property
    def async_db_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def clinic_tz(self) -> ZoneInfo:
        return ZoneInfo(self.CLINIC_TIMEZONE)

    @property
    def google_calendar_configured(self) -> bool:
        return self.GOOGLE_CALENDAR_ENABLED and bool(self.GOOGLE_CLIENT_ID and self.GOOGLE_CLIENT_SECRET)

    # Monitoring helpers
    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() in ("development", "dev", "local")


# Singleton
settings = Settings()
