"""Core configuration settings loaded from environment variables."""
from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Core
    APP_ENV: Literal["development", "staging", "production"] = "development"
    APP_NAME: str = "BulkVerify Queue"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DB_TYPE: Literal["mysql", "postgresql", "sqlite"] = "sqlite"
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_NAME: str = "bulkverify"
    DB_USER: str = "bulkverify"
    DB_PASSWORD: str = "change_me"
    SQLITE_PATH: str = "./data/bulkverify.db"

    @property
    def DATABASE_URL(self) -> str:
        if self.DB_TYPE == "sqlite":
            return f"sqlite:///{self.SQLITE_PATH}"
        if self.DB_TYPE == "postgresql":
            return f"postgresql+psycopg2://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Verification provider
    VERIFICATION_PROVIDER: Literal["bouncer", "mock"] = "bouncer"
    BOUNCER_API_BASE_URL: str = "https://api.usebouncer.com/v1.1"
    BOUNCER_API_KEY_DELIVERABLE: str = ""
    BOUNCER_API_KEY_CATCHALL: str = ""
    BOUNCER_API_TIMEOUT: float = 30.0
    BOUNCER_USER_AGENT: str = "BulkVerify/1.0"

    # Batch creation
    # Two ceilings (10 and 15) were used historically; 10 is the supported value.
    MAX_CONCURRENT_BATCHES: int = 10
    BATCH_SIZE: int = 10000

    # Provider rate limit (requests per trailing window, per mode and operation)
    RATE_LIMIT_PER_MINUTE: int = 200
    RATE_LIMIT_SAFETY_BUFFER: int = 20
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_RECORD_RETENTION_SECONDS: int = 3600

    # Scheduling
    SCHEDULER_ENABLED: bool = True
    BATCH_CREATOR_INTERVAL_SECONDS: int = 5
    STATUS_SWEEP_INTERVAL_SECONDS: int = 30
    STATUS_CHECK_DELAY_SECONDS: int = 5
    STATUS_CHECK_MAX_ATTEMPTS: int = 4320  # ~6 hours at 5s spacing
    STUCK_BATCH_CLEANUP_INTERVAL_SECONDS: int = 300
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: int = 300

    # Failed provider batches keep their submissions in processing unless released.
    RELEASE_FAILED_BATCHES: bool = False

    @property
    def RATE_LIMIT_SAFETY_LIMIT(self) -> int:
        return self.RATE_LIMIT_PER_MINUTE - self.RATE_LIMIT_SAFETY_BUFFER

    @property
    def PROVIDER_BATCH_MAX_AGE_SECONDS(self) -> int:
        # Same lifetime a poller gets; the status sweep fails batches past it.
        return self.STATUS_CHECK_MAX_ATTEMPTS * self.STATUS_CHECK_DELAY_SECONDS


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
