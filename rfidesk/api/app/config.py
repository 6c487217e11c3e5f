# pyright: reportCallIssue=false, reportConstantRedefinition=false
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
import os
import logging

from .logging_utils import install_log_sanitizer

install_log_sanitizer()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database - hosted Postgres provides postgresql://, we need postgresql+psycopg2://
    DATABASE_URL: str = Field(
        default="sqlite:///./rfidesk.db",
        description="SQLAlchemy connection URL; defaults to a local sqlite file",
        min_length=1,
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+psycopg2:// for SQLAlchemy"""
        if v and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    @field_validator("DATABASE_URL")
    @classmethod
    def reject_default_db_credentials(cls, v: str) -> str:
        env = os.getenv("ENV", "development").lower()
        if env == "production":
            weak_db_patterns = ["postgres:postgres@", "admin:admin@", "rfidesk:rfidesk@"]
            if any(pattern in v for pattern in weak_db_patterns):
                raise ValueError("DATABASE_URL uses default credentials in production")
        return v

    # API settings
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    CORS_ORIGINS: str = ""
    FRONTEND_URL: str = "http://localhost:3000"

    JWT_SECRET: str = Field(
        default="4d0f6a5cbe3f1f0a8e2b7c6d9e1a3b5c7d9f1e3a5c7b9d1f3e5a7c9b1d3f5e7a",
        description="JWT signing secret - override via environment variable",
        min_length=32,
    )

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Validate JWT_SECRET is secure."""
        weak_secrets = {
            "secret",
            "changeme",
            "default",
            "jwt-secret",
            "change-this-secret",
        }
        if v.lower() in weak_secrets:
            env = os.getenv("ENV", "development").lower()
            if env == "production":
                raise ValueError("JWT_SECRET uses weak/default value in production")
            logging.warning("JWT_SECRET uses weak value - change via environment variable")
        return v

    JWT_ISSUER: str = "rfidesk"
    JWT_EXPIRE_MIN: int = 720

    # Invitations
    INVITE_EXPIRY_DAYS: int = 7

    # RFI listing
    RFI_PAGE_LIMIT_DEFAULT: int = 10
    RFI_PAGE_LIMIT_MAX: int = 50
    RECENT_ACTIVITY_LIMIT_DEFAULT: int = 15

    # Client secure links
    SECURE_LINK_EXPIRY_DAYS: int = 30
    SECURE_LINK_MAX_DAYS: int = 365

    # In-app notifications auto-dismiss after this many seconds (0 disables)
    NOTIFICATION_TTL_SECONDS: float = 8.0


try:
    settings = Settings()  # pyright: ignore[reportCallIssue]
except Exception as exc:
    logging.critical("Failed to load settings: %s", exc)
    raise
