from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    receipt_prefix: str = Field("RCP", alias="RECEIPT_PREFIX")
    receipt_number_padding: int = Field(5, alias="RECEIPT_NUMBER_PADDING")
    receipt_max_retries: int = Field(5, alias="RECEIPT_MAX_RETRIES")
    # Timestamp-based receipt numbers when the counter cannot be updated. Off by default.
    receipt_emergency_fallback: bool = Field(False, alias="RECEIPT_EMERGENCY_FALLBACK")

    ledger_max_retries: int = Field(3, alias="LEDGER_MAX_RETRIES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: Optional[str] = Field(None, alias="CORS_ORIGINS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
