"""
Application configuration using Pydantic Settings.
Loads from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "MedQueue Patient Queue Scheduler"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = ["*"]

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "medqueue"
    MONGODB_TRANSACTIONS: bool = False  # requires a replica set

    # Token System
    QUEUE_NUMBER_PREFIX: str = "QUE"

    # Queue policy
    MAX_SKIP_COUNT: int = 3
    DEFAULT_AVG_SERVICE_TIME: int = 10  # minutes
    MAX_QUEUE_CAPACITY: int = 100
    TRANSFER_RETRIAGE: bool = False

    # Display
    DISPLAY_NEXT_COUNT: int = 5
    DETAILS_WAITING_LIMIT: int = 20

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
