"""
Configuration settings for the CoOwnSign backend
"""

import os
from typing import List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "CoOwnSign"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./coownsign.db")
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "20"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "30"))
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "3600"))

    # When True the app will skip any automatic DB table creation at startup.
    SKIP_DB_TABLE_CREATION: bool = os.getenv("SKIP_DB_TABLE_CREATION", "false").lower() == "true"

    # JWT (operator identity only, tokens are issued by the auth service)
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "your-super-secret-key-change-this")
    JWT_ALGORITHM: str = "HS256"

    # Security
    ALLOWED_ORIGINS: List[str] = ["*"]

    # Signing workflow
    SIGNING_TOKEN_EXPIRATION_DAYS: List[int] = [1, 3, 7, 14, 30, 90]
    DEFAULT_TOKEN_EXPIRATION_DAYS: int = 7
    SIGNING_TOKEN_BYTES: int = 32
    MAX_SIGNERS_PER_CYCLE: int = 50
    MAX_SIGNATURE_BYTES: int = 5 * 1024 * 1024  # 5MB

    # Frontend URL for signing links
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:5173")

    # Group service (membership lookups)
    GROUP_SERVICE_URL: str = os.getenv("GROUP_SERVICE_URL", "")
    GROUP_SERVICE_TOKEN: str = os.getenv("GROUP_SERVICE_TOKEN", "")
    GROUP_SERVICE_TIMEOUT: float = 5.0

    # Notifications
    NOTIFICATION_BACKEND: str = os.getenv("NOTIFICATION_BACKEND", "http")  # http, celery
    NOTIFICATION_SERVICE_URL: str = os.getenv("NOTIFICATION_SERVICE_URL", "")
    NOTIFICATION_SERVICE_TOKEN: str = os.getenv("NOTIFICATION_SERVICE_TOKEN", "")
    NOTIFICATION_TIMEOUT: float = 5.0

    # Celery
    CELERY_BROKER_URL: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    CELERY_RESULT_BACKEND: str = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
    EXPIRATION_SWEEP_INTERVAL_MINUTES: int = 15

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create global settings instance
settings = Settings()
