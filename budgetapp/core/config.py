"""
Application configuration

SECURITY: Defaults are fail-safe for production.
- DEBUG defaults to False
- SECRET_KEY and DATABASE_URL have no defaults (will fail if not set)
- Runtime validation catches insecure configurations
"""
import json
import os
import logging
from typing import List
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Default CORS origins
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

MIN_SECRET_KEY_LENGTH = 32


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # App - defaults are PRODUCTION safe
    APP_NAME: str = "Budgeting App"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    APP_URL: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # Database - NO DEFAULT (will fail if not set)
    DATABASE_URL: str
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_RECYCLE: int = 3600
    DB_AUTO_CREATE: bool = False

    # Session tokens - NO DEFAULT SECRET KEY
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7

    # Passwords
    BCRYPT_ROUNDS: int = 12
    PASSWORD_MIN_LENGTH: int = 8

    # One-time codes
    OTP_EXPIRY_MINUTES: int = 10
    OTP_VERIFIED_WINDOW_MINUTES: int = 30
    EXPOSE_DEBUG_CODES: bool = False

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "100/minute"
    RATE_LIMIT_AUTH: str = "20/minute"
    AUTH_MAX_ATTEMPTS: int = 5
    AUTH_WINDOW_SECONDS: int = 15 * 60
    OTP_SEND_MAX_ATTEMPTS: int = 3
    RATE_LIMIT_BACKEND: str = "memory"  # "memory" or "redis"
    TOKEN_BLACKLIST_BACKEND: str = "memory"  # "memory" or "redis"
    REDIS_URL: str = ""

    # Email (SendGrid). Empty key = console provider
    SENDGRID_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@budgetingapp.com"
    EMAIL_FROM_NAME: str = "Budgeting App"

    # CORS - accepts JSON array or comma-separated string
    CORS_ORIGINS: List[str] = DEFAULT_CORS_ORIGINS

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            if not v or v.strip() == "":
                return DEFAULT_CORS_ORIGINS
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("BCRYPT_ROUNDS")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        if v < 10 or v > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 10 and 31")
        return v

    @field_validator("RATE_LIMIT_BACKEND", "TOKEN_BLACKLIST_BACKEND")
    @classmethod
    def validate_backend(cls, v: str, info) -> str:
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError(f"{info.field_name} must be 'memory' or 'redis'")
        return v

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def debug_codes_enabled(self) -> bool:
        """Echo OTP codes in API responses (development only)."""
        return self.EXPOSE_DEBUG_CODES and self.is_development

    @model_validator(mode="after")
    def validate_production_config(self):
        """Runtime validation to catch insecure production configurations."""
        if self.ENVIRONMENT == "production":
            errors = []

            if self.DEBUG:
                errors.append(
                    "DEBUG=True is forbidden in production. "
                    "Set DEBUG=false or ENVIRONMENT=development"
                )

            insecure_secrets = [
                "your-secret-key",
                "change-in-production",
                "secret",
                "password",
                "changeme",
            ]
            if any(bad in self.SECRET_KEY.lower() for bad in insecure_secrets):
                errors.append(
                    "Insecure SECRET_KEY detected in production. "
                    "Generate a secure key: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
                )
            if len(self.SECRET_KEY) < MIN_SECRET_KEY_LENGTH:
                errors.append(f"SECRET_KEY must be at least {MIN_SECRET_KEY_LENGTH} characters")

            if "localhost" in self.DATABASE_URL or "127.0.0.1" in self.DATABASE_URL:
                errors.append(
                    "Localhost DATABASE_URL detected in production. "
                    "Configure proper database connection."
                )

            if self.EXPOSE_DEBUG_CODES:
                errors.append("EXPOSE_DEBUG_CODES must never be enabled in production")

            for origin in self.CORS_ORIGINS:
                if origin == "*":
                    logger.warning("Wildcard '*' CORS origin is insecure in production")

            if errors:
                raise ValueError(
                    "PRODUCTION SECURITY VIOLATIONS:\n" + "\n".join(f"  - {e}" for e in errors)
                )

        return self


# Try to load settings, provide helpful error on failure
try:
    settings = Settings()
except Exception:
    # In development, allow fallback defaults
    if os.getenv("ENVIRONMENT", "development") == "development":
        logger.warning(
            "Settings validation failed, using development defaults. "
            "Set DATABASE_URL and SECRET_KEY in .env file."
        )
        os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./budgetapp.db")
        os.environ.setdefault("SECRET_KEY", "dev-only-signing-key-do-not-deploy-0000")
        os.environ.setdefault("ENVIRONMENT", "development")
        settings = Settings()
    else:
        raise
