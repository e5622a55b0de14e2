from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Storage settings
    DATABASE_URL: str = "postgresql://localhost:5432/meeting_triage"
    REDIS_URL: str | None = None

    # Provider API settings
    GOOGLE_CALENDAR_API_BASE_URL: str = "https://www.googleapis.com/calendar/v3"
    GMAIL_API_BASE_URL: str = "https://gmail.googleapis.com/gmail/v1"
    PROVIDER_REQUEST_TIMEOUT: float = 30.0

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 3
    DB_POOL_MAX_SIZE: int = 12
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # =================================================================
    # JOB SCHEDULER SETTINGS
    # =================================================================
    JOB_TICK_INTERVAL_SECONDS: int = 60
    JOB_BATCH_SIZE: int = 50
    JOB_MAX_CONCURRENT: int = 10
    JOB_EXECUTION_TIMEOUT_SECONDS: float = 30.0
    JOB_CLAIM_LEASE_SECONDS: int = 300
    JOB_BACKOFF_BASE_SECONDS: float = 60.0
    JOB_BACKOFF_CAP_SECONDS: float = 3600.0

    # Weekly metrics rollup (0 = Monday)
    METRICS_ROLLUP_WEEKDAY: int = 0
    METRICS_ROLLUP_HOUR: int = 1

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": min(self.DB_POOL_MIN_SIZE, 2),
                    "max_size": min(self.DB_POOL_MAX_SIZE, 5),
                    "timeout": 15.0,
                }
            )

        return config

    def get_scheduler_config(self) -> dict:
        """Job scheduler tuning in one place for the ticker and health output."""
        return {
            "tick_interval_seconds": self.JOB_TICK_INTERVAL_SECONDS,
            "batch_size": self.JOB_BATCH_SIZE,
            "max_concurrent": self.JOB_MAX_CONCURRENT,
            "execution_timeout_seconds": self.JOB_EXECUTION_TIMEOUT_SECONDS,
            "claim_lease_seconds": self.JOB_CLAIM_LEASE_SECONDS,
            "backoff_base_seconds": self.JOB_BACKOFF_BASE_SECONDS,
            "backoff_cap_seconds": self.JOB_BACKOFF_CAP_SECONDS,
        }


settings = Settings()
