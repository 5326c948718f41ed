"""
Application configuration using Pydantic Settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./sharing.db"

    # Redis
    REDIS_URL: str = "redis://localhost:6379"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3005", "http://127.0.0.1:3005"]
    FRONTEND_URL: str = "http://localhost:3005"

    # Security
    JWT_SECRET: str = "change_me_in_production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_HOURS: int = 24
    PASSWORD_HASH_ITERATIONS: int = 120000
    AUTO_CREATE_DB_SCHEMA: bool = True

    # Share links
    SHARE_TOKEN_BYTES: int = 18
    SHARE_TOKEN_MAX_ATTEMPTS: int = 5
    URL_SHORTENER_DOMAIN: str = ""
    SHARE_REAPER_INTERVAL_MINUTES: int = 360
    QR_CODE_BOX_SIZE: int = 8
    QR_CODE_BORDER: int = 2
    QR_CODE_ERROR_CORRECTION: str = "M"

    # Moderation
    REPORT_THRESHOLD_FOR_HIDE: int = 5
    AUTO_MODERATE_REPORTS: bool = False
    AUTO_ESCALATE_SCORE: float = 0.8
    REPORT_RATE_LIMIT: int = 10
    REPORT_RATE_WINDOW_SECONDS: int = 900

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()


def validate_security_settings() -> None:
    """Fail fast when insecure default secrets are still configured."""
    insecure_values = {
        "",
        "change_me_in_production",
        "your-super-secret-jwt-key",
    }
    jwt_secret = (settings.JWT_SECRET or "").strip()

    if jwt_secret in insecure_values or len(jwt_secret) < 24:
        raise ValueError("JWT_SECRET is insecure. Configure a strong non-default secret (>=24 chars).")
    if int(settings.REPORT_THRESHOLD_FOR_HIDE) < 1:
        raise ValueError("REPORT_THRESHOLD_FOR_HIDE must be at least 1.")
