"""
Centralized configuration management.
All environment variables and settings are defined here.
"""
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Small Business Bookkeeping Service", alias="APP_NAME")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Identity headers forwarded by the authenticating gateway
    user_id_header: str = Field(default="X-User-Id", alias="USER_ID_HEADER")
    user_email_header: str = Field(default="X-User-Email", alias="USER_EMAIL_HEADER")
    user_name_header: str = Field(default="X-User-Name", alias="USER_NAME_HEADER")

    # Storage
    database_path: str = Field(default="bookkeeping.db", alias="DATABASE_PATH")
    export_path: str = Field(default="exports", alias="EXPORT_PATH")
    upload_path: str = Field(default="uploads", alias="UPLOAD_PATH")
    max_upload_mb: int = Field(default=10, alias="MAX_UPLOAD_MB")

    # Currency
    default_currency: str = Field(default="USD", alias="DEFAULT_CURRENCY")
    exchange_rate_api_url: str = Field(
        default="https://v6.exchangerate-api.com/v6", alias="EXCHANGE_RATE_API_URL"
    )
    exchange_rate_api_key: Optional[str] = Field(default=None, alias="EXCHANGE_RATE_API_KEY")
    exchange_rate_timeout: int = Field(default=10, alias="EXCHANGE_RATE_TIMEOUT")
    exchange_rate_cache_ttl: int = Field(default=86400, alias="EXCHANGE_RATE_CACHE_TTL")

    # Email (Resend-compatible API)
    resend_api_url: str = Field(default="https://api.resend.com/emails", alias="RESEND_API_URL")
    resend_api_key: Optional[str] = Field(default=None, alias="RESEND_API_KEY")
    resend_from: Optional[str] = Field(default=None, alias="RESEND_FROM")
    resend_reply_to: Optional[str] = Field(default=None, alias="RESEND_REPLY_TO")
    email_timeout: int = Field(default=15, alias="EMAIL_TIMEOUT")

    # LLM insights
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_api_url: str = Field(
        default="https://api.openai.com/v1/chat/completions", alias="OPENAI_API_URL"
    )
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_timeout: int = Field(default=60, alias="OPENAI_TIMEOUT")

    # Notifications and health
    cron_secret: Optional[str] = Field(default=None, alias="CRON_SECRET")
    invoice_reminder_days: int = Field(default=3, alias="INVOICE_REMINDER_DAYS")
    upcoming_expense_days: int = Field(default=30, alias="UPCOMING_EXPENSE_DAYS")
    safe_cash_buffer: float = Field(default=0.25, alias="SAFE_CASH_BUFFER")

    # Search
    fuzzy_match_threshold: float = Field(default=0.8, alias="FUZZY_MATCH_THRESHOLD")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v_upper

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        """Validate port is in valid range."""
        if not (1 <= v <= 65535):
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("default_currency")
    @classmethod
    def validate_default_currency(cls, v):
        """Currency codes are three-letter ISO 4217 codes."""
        code = v.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"Invalid currency code: {v}")
        return code

    @field_validator("fuzzy_match_threshold", "safe_cash_buffer")
    @classmethod
    def validate_fraction(cls, v):
        """Thresholds and buffers are fractions between 0 and 1."""
        if not (0.0 <= v <= 1.0):
            raise ValueError("Value must be between 0 and 1")
        return v

    @field_validator("invoice_reminder_days", "upcoming_expense_days")
    @classmethod
    def validate_window(cls, v):
        """Look-ahead windows must be non-negative and at most a year."""
        if v < 0 or v > 365:
            raise ValueError("Day window must be between 0 and 365")
        return v

    @field_validator("max_upload_mb")
    @classmethod
    def validate_upload_limit(cls, v):
        if not (1 <= v <= 50):
            raise ValueError("MAX_UPLOAD_MB must be between 1 and 50")
        return v

    @property
    def email_configured(self) -> bool:
        """Email is sent only when both the API key and the sender are set."""
        return bool(self.resend_api_key and self.resend_from)

    def ensure_directories(self) -> None:
        """Ensure required directories exist."""
        Path(self.export_path).mkdir(parents=True, exist_ok=True)
        Path(self.upload_path).mkdir(parents=True, exist_ok=True)
        db_parent = Path(self.database_path).parent
        if str(db_parent) not in ("", "."):
            db_parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.ensure_directories()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None
