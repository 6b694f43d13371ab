"""
Configuration settings for the Profit Auditor service
"""

import os
from typing import Optional
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Settings(BaseSettings):
    """Application settings"""

    # App Info
    APP_NAME: str = "Profit Auditor"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = "AI-assisted profit audits from spreadsheets and connected platforms"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./profit_auditor.db")

    # Blob storage for uploaded spreadsheets
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "./uploads")
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB
    ALLOWED_UPLOAD_EXTENSIONS: list = [".csv", ".xlsx", ".xls"]

    # OpenAI
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_ORG_ID: Optional[str] = os.getenv("OPENAI_ORG_ID", None)
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TEMPERATURE: float = 0.7

    # Audit generation
    AUDIT_MAX_RECORDS: int = 200

    # E-commerce sync
    HTTP_TIMEOUT: float = 30.0
    ENABLE_SCHEDULED_SYNC: bool = False
    SYNC_INTERVAL_SECONDS: int = 900
    DEFAULT_SYNC_FREQUENCY: int = 86400  # 1 day

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # CORS
    CORS_ORIGINS: list = ["*"]

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Create settings instance
settings = Settings()


def validate_settings():
    """Validate that critical settings are configured"""
    errors = []

    if settings.ENVIRONMENT == "production":
        if not settings.OPENAI_API_KEY:
            errors.append("OPENAI_API_KEY must be set for audit generation")

        if settings.DATABASE_URL.startswith("sqlite"):
            errors.append("A server database is required in production")

    if errors:
        raise ValueError(f"Configuration errors: {', '.join(errors)}")


# Run validation
if settings.ENVIRONMENT == "production":
    validate_settings()
