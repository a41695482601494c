"""
Configuration management for the login service
"""
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_PASSWORD_HASH_ROUNDS = 1000


class Settings(BaseSettings):
    """Login service configuration loaded from environment variables"""

    # Server Configuration
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "/app/logs"

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./app.db"

    # Credential strategy: "token" (JWT access/refresh pair) or "session" (server-side store)
    CREDENTIAL_STRATEGY: Literal["token", "session"] = "token"

    # Signup flow: "verified" (email code first) or "direct"
    SIGNUP_MODE: Literal["verified", "direct"] = "verified"
    SIGNUP_REQUIRE_VERIFIED_EMAIL: bool = False
    VERIFICATION_TOKEN_TTL_SECONDS: int = 180

    # Login failures: one generic message for unknown email and wrong password
    UNIFIED_LOGIN_ERRORS: bool = True
    # pbkdf2_sha256 work factor; values below the floor are rejected at startup
    PASSWORD_HASH_ROUNDS: int = Field(default=29000, ge=MIN_PASSWORD_HASH_ROUNDS)

    # JWT Configuration
    JWT_ACCESS_SECRET: str = "change-this-access-secret-in-prod"
    JWT_REFRESH_SECRET: str = "change-this-refresh-secret-in-prod"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Server-side sessions
    SESSION_REMEMBER_DAYS: int = 7

    # Cookie Configuration
    COOKIE_DOMAIN: Optional[str] = None
    COOKIE_SAMESITE: Literal["lax", "strict", "none"] = "lax"
    COOKIE_SECURE: bool = False

    # Mail Configuration
    MAIL_ENABLED: bool = False
    MAIL_FROM: str = "no-reply@localhost"
    MAIL_TIMEOUT_SECONDS: float = 5.0
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_STARTTLS: bool = True
    SMTP_USE_TLS: bool = False

    # OAuth Configuration
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    CLIENT_REDIRECT_URL: str = "http://localhost:3000"
    OAUTH_TIMEOUT_SECONDS: float = 10.0
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None
    KAKAO_CLIENT_ID: Optional[str] = None
    KAKAO_CLIENT_SECRET: Optional[str] = None

    # CORS Configuration
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings; used as a FastAPI dependency."""
    return Settings()
