# File: config.py

import logging
import sys
from typing import List, Optional, Any

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AnyHttpUrl, Field, field_validator, ValidationInfo, EmailStr

class Settings(BaseSettings):
    # ===== APPLICATION METADATA =====
    APP_NAME: str = "SeatShare API"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, production
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False

    # ===== DATABASE CONFIGURATION =====
    # Database components (for local development)
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_SERVER: str = "localhost:5432"
    POSTGRES_DB: str = "seatshare"

    # Primary database URL, assembled from the components above when not provided
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    # Database pool settings
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_ECHO: bool = False

    @field_validator("DATABASE_URL", mode='before')
    @classmethod
    def assemble_db_connection(cls, v: Optional[str], info: ValidationInfo) -> Any:
        """Assemble database URL from components if not provided."""
        if isinstance(v, str) and v:
            db_url_to_check = v
        else:
            values = info.data
            user = values.get("POSTGRES_USER")
            password = values.get("POSTGRES_PASSWORD")
            server = values.get("POSTGRES_SERVER")
            db_name = values.get("POSTGRES_DB")
            db_url_to_check = f"postgresql://{user}:{password}@{server}/{db_name}"

        # Ensure async driver
        if db_url_to_check.startswith("sqlite+aiosqlite://"):
            return db_url_to_check
        if "postgresql+asyncpg://" not in db_url_to_check and "postgresql://" in db_url_to_check:
            return db_url_to_check.replace("postgresql://", "postgresql+asyncpg://")
        elif "postgresql+asyncpg://" in db_url_to_check:
            return db_url_to_check

        raise ValueError(f"Unsupported DATABASE_URL format: {db_url_to_check}")

    # ===== JWT CONFIGURATION =====
    JWT_SECRET_KEY: str = "your-super-secret-jwt-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # ===== EMAIL CONFIGURATION =====
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: EmailStr = "noreply@seatshare.app"
    SMTP_FROM_NAME: str = "SeatShare"
    SMTP_USE_TLS: bool = True
    SMTP_TIMEOUT_SECONDS: float = 30.0

    # ===== TEXT GENERATION (LLM) =====
    # Any OpenAI-compatible endpoint (OpenRouter by default)
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "https://openrouter.ai/api/v1"
    LLM_MODEL: str = "google/gemini-2.0-flash-001"
    LLM_TEMPERATURE: float = 0.2

    # ===== CORS CONFIGURATION =====
    BACKEND_CORS_ORIGINS_STR: str = "http://localhost:3000,http://127.0.0.1:3000"
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = Field(default=[], validate_default=True)

    @field_validator("BACKEND_CORS_ORIGINS", mode='before')
    @classmethod
    def assemble_cors_origins(cls, v: Any, info: ValidationInfo) -> List[AnyHttpUrl]:
        """Parse CORS origins from comma-separated string."""
        origins_str = info.data.get("BACKEND_CORS_ORIGINS_STR")
        if isinstance(origins_str, str) and origins_str:
            return [origin.strip() for origin in origins_str.split(",") if origin.strip()]
        return []

    # ===== LOGGING CONFIGURATION =====
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: Optional[str] = None

    # ===== BUSINESS LOGIC SETTINGS =====
    # Trip settings
    MAX_TRIP_SEATS: int = 10

    # Unit-of-work timeout for trip and booking actions
    ACTION_TIMEOUT_SECONDS: float = 15.0

    # Route-match notifications
    SUBJECT_MAX_LENGTH: int = 70
    NOTIFICATION_ATTEMPT_TIMEOUT_SECONDS: float = 20.0
    NOTIFICATIONS_IN_BACKGROUND: bool = False

    # ===== DEVELOPMENT SETTINGS =====
    MOCK_EMAIL: bool = False  # Log instead of sending mail

    # ===== MODEL CONFIGURATION =====
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    # ===== VALIDATION METHODS =====

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment setting."""
        allowed = ["development", "staging", "production", "test"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level setting."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()

    @field_validator("MAX_TRIP_SEATS")
    @classmethod
    def validate_max_trip_seats(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_TRIP_SEATS must be at least 1")
        return v

    # ===== COMPUTED PROPERTIES =====

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def database_url_str(self) -> str:
        """Get database URL as string."""
        return str(self.DATABASE_URL)

    @property
    def email_enabled(self) -> bool:
        return bool(self.SMTP_PASSWORD) and not self.MOCK_EMAIL

    @property
    def llm_enabled(self) -> bool:
        return bool(self.LLM_API_KEY)

# Create settings instance
settings = Settings()

# ===== ENVIRONMENT-SPECIFIC OVERRIDES =====

if settings.is_production:
    settings.DEBUG = False
    settings.MOCK_EMAIL = False

    if settings.JWT_SECRET_KEY == "your-super-secret-jwt-key-change-in-production":
        raise ValueError("JWT_SECRET_KEY must be changed from default in production")

elif settings.is_development:
    settings.DEBUG = True
    settings.MOCK_EMAIL = not bool(settings.SMTP_PASSWORD)

# ===== LOGGING CONFIGURATION =====

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.StreamHandler(sys.stdout),
        *([logging.FileHandler(settings.LOG_FILE)] if settings.LOG_FILE else [])
    ]
)

if settings.is_development:
    logging.getLogger("uvicorn").setLevel(logging.DEBUG)
else:
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)
logger.info(f"🔧 {settings.APP_NAME} configuration loaded")
logger.info(f"📍 Environment: {settings.ENVIRONMENT}")
logger.info(f"🗄️  Database: {settings.database_url_str[:50]}...")
logger.info(f"📧 Email: {'Configured' if settings.email_enabled else 'Mock Mode'}")
logger.info(f"🤖 Text generation: {'LLM' if settings.llm_enabled else 'Template fallback'}")
