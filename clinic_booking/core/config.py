# clinic_booking/core/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict
import urllib.parse

class Settings(BaseSettings):
    # Read env from .env; ignore unknown keys so extra lines don't crash startup
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Database ---
    # Full async URL wins over the POSTGRES_* parts (e.g. sqlite+aiosqlite:///./data/clinic.db)
    DATABASE_URL: str | None = None
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "clinic_booking"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""

    # --- Clinic wall clock ---
    CLINIC_TIMEZONE: str = "Asia/Kolkata"
    PHONE_REGION: str = "IN"
    DEFAULT_ADVANCE_NOTICE_HOURS: int = 24

    # --- Read cache (stale-tolerant hints only) ---
    REDIS_URL: str | None = None
    CACHE_TTL_SETTINGS_SECONDS: int = 600
    CACHE_TTL_DISABLED_SLOTS_SECONDS: int = 120
    CACHE_TTL_APPOINTMENTS_SECONDS: int = 120
    CACHE_RETRY_ATTEMPTS: int = 3
    CACHE_RETRY_DELAY_SECONDS: float = 1.0

    # --- Housekeeping ---
    CLEANUP_RETENTION_DAYS: int = 90

    # --- Monitoring & Logging ---
    APP_ENV: str = "production"
    LOG_LEVEL: str = "INFO"
    LOG_REQUESTS: bool = False
    LOG_RESPONSES: bool = False
    MAX_LOG_LENGTH: int = 200
    SLOW_REQUEST_THRESHOLD: float = 2.0

    # Sync URI (Alembic)
    @property
    def sync_db_uri(self) -> str:
        if self.DATABASE_URL:
            return (
                self.DATABASE_URL
                .replace("+asyncpg", "")
                .replace("+aiosqlite", "")
            )
        pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Async URI (SQLAlchemy engine)
    @property
    def async_db_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Monitoring helpers
    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() in ("development", "dev", "local")


# Singleton
settings = Settings()
