"""
Application Configuration Module
"""
import sys
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration settings"""

    # Application Info
    APP_NAME: str = "Habit Tracker"
    APP_VERSION: str = "0.1.0"

    # Paths
    DATA_DIR: Path = Field(
        default=Path.home() / ".habit_tracker",
        description="Directory holding the embedded database and shared containers"
    )
    LOGS_DIR: Path = Path.home() / ".habit_tracker" / "logs"
    EMBEDDED_DB_NAME: str = "habit_store.db"

    # Storage
    HABIT_STORAGE_KEY: str = "habitData"
    HABIT_STORAGE_GROUP: str = "group.io.ionic.tracker"
    HABIT_STORAGE_BACKEND: Literal["", "bridge", "embedded"] = Field(
        default="",
        description="Force a storage backend; empty means platform detection"
    )
    PLATFORM: str = Field(
        default=sys.platform,
        description="Platform identifier used for backend capability detection"
    )

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
    LOG_ROTATION: str = "10 MB"
    LOG_RETENTION: str = "1 month"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def EMBEDDED_DB_PATH(self) -> Path:
        """Full path to the embedded key-value database"""
        return self.DATA_DIR / self.EMBEDDED_DB_NAME

    @property
    def SHARED_CONTAINER_DIR(self) -> Path:
        """Root of the on-disk app-group containers used by the widget bridge"""
        return self.DATA_DIR / "groups"


# Global configuration instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get application configuration instance"""
    return config


def ensure_directories(app_config: AppConfig = config) -> None:
    """Create necessary directories if they don't exist"""
    directories = [
        app_config.DATA_DIR,
        app_config.LOGS_DIR,
        app_config.SHARED_CONTAINER_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)
