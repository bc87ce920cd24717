"""
Configuration settings for the stockledger service.
Loads from environment variables with validation.
"""

import re

from pydantic_settings import BaseSettings
from functools import lru_cache


_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Stockledger"
    DEBUG: bool = False
    APP_BASE_URL: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"
    SECRET_KEY: str

    # Database
    DATABASE_URL: str

    # Credential Vault (AES-256-GCM)
    # 64 hex chars = 32 bytes. Generate with:
    # python -c "from stockledger.services.credential_vault import generate_encryption_key; print(generate_encryption_key())"
    ENCRYPTION_KEY: str | None = None

    # Outbound storefront calls
    STOREFRONT_TIMEOUT_SECONDS: float = 30.0
    STOREFRONT_MAX_RETRIES: int = 3
    AMAZON_CATALOG_LIMIT: int = 200

    def validate_production_settings(self):
        """Validate critical settings for production deployment."""
        if not self.ENCRYPTION_KEY or not _HEX_KEY.match(self.ENCRYPTION_KEY):
            raise ValueError(
                "ENCRYPTION_KEY must be a 64-character hex string (32 bytes) in production."
            )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings loader with production validation."""
    settings = Settings()
    if not settings.DEBUG:
        settings.validate_production_settings()
    return settings
