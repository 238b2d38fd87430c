"""
Application settings and configuration management.

This module handles all environment variables, API keys, and application
configuration using Pydantic settings management for type safety and validation.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values are stored as SecretStr to prevent accidental logging.
    Settings are validated on load and cached for performance.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Keys
    firecrawl_api_key: SecretStr = Field(..., alias="FIRECRAWL_API_KEY")
    anthropic_api_key: SecretStr = Field(..., alias="ANTHROPIC_API_KEY")

    # Google Sheets / Drive
    google_sheet_id: Optional[str] = Field(default=None, alias="GOOGLE_SHEET_ID")
    google_sheet_range: str = Field(default="A:A", alias="GOOGLE_SHEET_RANGE")
    google_credentials_path: Optional[Path] = Field(default=None, alias="GOOGLE_CREDENTIALS_PATH")
    google_drive_folder_id: Optional[str] = Field(default=None, alias="GOOGLE_DRIVE_FOLDER_ID")

    # AWS Rekognition
    aws_region: str = Field(default="us-east-1", alias="AWS_REGION")
    aws_profile: Optional[str] = Field(default=None, alias="AWS_PROFILE")
    aws_access_key_id: Optional[SecretStr] = Field(default=None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: Optional[SecretStr] = Field(default=None, alias="AWS_SECRET_ACCESS_KEY")

    # Email delivery
    gmail_user: Optional[str] = Field(default=None, alias="GMAIL_USER")
    gmail_app_password: Optional[SecretStr] = Field(default=None, alias="GMAIL_APP_PASSWORD")
    email_recipients: Optional[str] = Field(default=None, alias="EMAIL_RECIPIENTS")
    smtp_host: str = Field(default="smtp.gmail.com", alias="SMTP_HOST")
    smtp_port: int = Field(default=465, alias="SMTP_PORT")

    # Application Configuration
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        alias="APP_ENV"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )

    # Model Configuration
    claude_model: str = Field(
        default="claude-sonnet-4-20250514",
        alias="CLAUDE_MODEL"
    )
    claude_max_tokens: int = Field(default=4000, alias="CLAUDE_MAX_TOKENS")
    analysis_temperature: float = Field(default=0.7, alias="ANALYSIS_TEMPERATURE")
    max_retries: int = Field(default=3, alias="MAX_RETRIES")

    # Pacing
    scrape_delay_seconds: float = Field(default=2.0, alias="SCRAPE_DELAY_SECONDS")
    image_delay_seconds: float = Field(default=0.3, alias="IMAGE_DELAY_SECONDS")
    request_timeout_seconds: int = Field(default=60, alias="REQUEST_TIMEOUT_SECONDS")

    # Image analysis
    max_images_per_listing: int = Field(default=5, alias="MAX_IMAGES_PER_LISTING")
    label_min_confidence: float = Field(default=70.0, alias="LABEL_MIN_CONFIDENCE")
    moderation_min_confidence: float = Field(default=60.0, alias="MODERATION_MIN_CONFIDENCE")
    max_labels: int = Field(default=10, alias="MAX_LABELS")

    # Output Settings
    output_dir: Path = Field(default=Path("outputs/reports"), alias="OUTPUT_DIR")
    log_dir: Path = Field(default=Path("logs"), alias="LOG_DIR")

    @field_validator("output_dir", "log_dir", mode="before")
    @classmethod
    def validate_directories(cls, v: str | Path) -> Path:
        """Ensure directories exist."""
        path = Path(v)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("anthropic_api_key", mode="before")
    @classmethod
    def validate_anthropic_key(cls, v: str) -> str:
        """Validate Anthropic API key format."""
        if not v or not v.startswith("sk-"):
            raise ValueError("Invalid Anthropic API key format")
        return v

    def has_aws_credentials(self) -> bool:
        """AWS needs either a named profile or a full access key pair."""
        if self.aws_profile:
            return True
        return bool(self.aws_access_key_id and self.aws_secret_access_key)

    def sheets_configured(self) -> bool:
        return bool(self.google_sheet_id and self.google_credentials_path)

    def drive_configured(self) -> bool:
        return bool(self.google_drive_folder_id and self.google_credentials_path)

    def email_configured(self) -> bool:
        """Email is optional; both the sender and its app password are needed."""
        if not self.gmail_user or not self.gmail_app_password:
            return False
        return bool(self.gmail_app_password.get_secret_value())

    def recipients(self) -> list[str]:
        """Comma separated recipient list, defaulting to the sender."""
        if self.email_recipients:
            return [r.strip() for r in self.email_recipients.split(",") if r.strip()]
        return [self.gmail_user] if self.gmail_user else []


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
