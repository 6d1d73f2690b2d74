"""
Paper Options Ledger - Configuration Settings
"""
from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # =========================
    # Application Settings
    # =========================
    APP_NAME: str = "Paper Options Ledger"
    APP_ENV: str = "development"
    DEBUG: bool = True

    # =========================
    # Database
    # =========================
    # Async SQLAlchemy URL for the open-position table and closed-position log
    DATABASE_URL: str = "sqlite+aiosqlite:///./paper_ledger.db"

    @property
    def database_url(self) -> str:
        """Get the async database URL."""
        url = self.DATABASE_URL
        # Ensure async drivers
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    # =========================
    # Paper Account
    # =========================
    INITIAL_BALANCE: Decimal = Decimal("100000")
    CONTRACT_MULTIPLIER: int = 100  # Shares per equity option contract

    @field_validator("CONTRACT_MULTIPLIER")
    @classmethod
    def check_multiplier(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("CONTRACT_MULTIPLIER must be positive")
        return v

    # =========================
    # Performance Analytics
    # =========================
    DAYS_PER_YEAR: int = 365
    DEFAULT_TIME_FRAME: str = "1M"

    # =========================
    # Logging
    # =========================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""  # Empty disables the file handler

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v


# Create global settings instance
settings = Settings()
