# clinic_console/config.py - Configuration management
from dotenv import load_dotenv

load_dotenv()
from typing import Union
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings with validation and environment variable support (Pydantic V2 Syntax)"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
        case_sensitive=False
    )

    # Application
    app_name: str = "Clinic Queue Console"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Database
    database_url: str = Field(default="sqlite:///./clinic_console.db", alias="DATABASE_URL")
    seed_demo_data: bool = Field(default=False, alias="SEED_DEMO_DATA")

    # CORS
    cors_origins: Union[str, list[str]] = Field(default=["http://localhost:5173"], alias="CORS_ORIGINS")

    # Console -> service connection
    api_base_url: str = Field(default="http://localhost:8000/api/v1", alias="API_BASE_URL")
    api_timeout_seconds: float = Field(default=10.0, alias="API_TIMEOUT_SECONDS")

    # Queue board
    poll_interval_seconds: float = Field(default=15.0, alias="POLL_INTERVAL_SECONDS")
    board_next_limit: int = Field(default=5, alias="BOARD_NEXT_LIMIT")
    avg_consultation_minutes: int = Field(default=15, alias="AVG_CONSULTATION_MINUTES")
    queue_number_prefix: str = Field(default="A", alias="QUEUE_NUMBER_PREFIX")
    default_cancel_reason: str = Field(default="Dibatalkan oleh admin", alias="DEFAULT_CANCEL_REASON")
    skip_reason: str = Field(default="Pasien tidak hadir saat dipanggil", alias="SKIP_REASON")
    history_page_size: int = Field(default=10, alias="HISTORY_PAGE_SIZE")

    # Search
    search_debounce_seconds: float = Field(default=0.3, alias="SEARCH_DEBOUNCE_SECONDS")
    search_min_length: int = Field(default=2, alias="SEARCH_MIN_LENGTH")
    medication_search_limit: int = Field(default=20, alias="MEDICATION_SEARCH_LIMIT")
    patient_search_limit: int = Field(default=10, alias="PATIENT_SEARCH_LIMIT")

    # Prescriptions
    prescription_validity_days: int = Field(default=7, alias="PRESCRIPTION_VALIDITY_DAYS")

    # --- Pydantic V2 Validators ---
    @field_validator("cors_origins", mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return ["http://localhost:5173"]
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite://")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL or SQLite URL")
        return v

    @field_validator("poll_interval_seconds", "search_debounce_seconds", "api_timeout_seconds")
    @classmethod
    def validate_positive_interval(cls, v):
        if v <= 0:
            raise ValueError("Intervals and timeouts must be positive")
        return v

    @field_validator("board_next_limit", "medication_search_limit", "patient_search_limit", "prescription_validity_days", "history_page_size")
    @classmethod
    def validate_positive_count(cls, v):
        if v < 1:
            raise ValueError("Limits must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()

# Note: Do not instantiate settings at import time. Use `get_settings()` instead.
