"""
Application configuration using Pydantic Settings
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # InfluxDB destination
    INFLUX_URL: str = "http://localhost:8086"
    INFLUX_ORG: Optional[str] = None
    INFLUX_BUCKET: Optional[str] = None
    INFLUX_TOKEN: Optional[str] = None
    INFLUX_TIMEOUT: float = 30.0
    MAX_RETRIES: int = 3
    RETRY_DELAY: float = 1.0

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Import configuration
    BATCH_SIZE: int = 1000
    DRY_RUN_PREVIEW_LIMIT: int = 10
    GAP_FILL_PROGRESS_INTERVAL: int = 1000
    CSV_TIME_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    CSV_TAG_KEY: str = "category"
    TIMESTAMP_FAIL_OPEN: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
