"""
Configuration management for the reseller back office
"""
from typing import Optional

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Reseller Back Office"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./backoffice.db"

    # Security
    SECRET_KEY: str = "dev-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 24 hours

    # Seeded on startup when no admin exists
    DEFAULT_ADMIN_EMAIL: str = "admin@example.com"
    DEFAULT_ADMIN_PASSWORD: str = "admin123"

    # Frontends
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    CLIENT_URL: str = "http://localhost:3000"  # admin panel
    CONSUMER_URL: str = "http://localhost:3001"  # consumer site

    # Email (SMTP)
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""  # app password
    SMTP_FROM_EMAIL: str = ""  # defaults to SMTP_USER
    SMTP_FROM_NAME: str = "Reseller Back Office"

    # Cache
    REDIS_URL: Optional[str] = None  # e.g. "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_TTL: int = 300  # 5 minutes

    # Accounts
    INVITE_EXPIRE_DAYS: int = 7
    DEFAULT_TRIAL_DAYS: int = 3
    TRIAL_EXTENSION_DAYS: int = 30
    MAX_TRIAL_DAYS: int = 7  # cap on caller-supplied trial dates, from account creation

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
