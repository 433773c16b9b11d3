"""
Configuration Management for Ledger Sync

Every knob lives here, read by pydantic-settings from the environment
(and an optional .env file). Each backend has its own prefix, so a
memory-only run needs no Cloudinary or Google credentials at all.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CloudinarySettings(BaseSettings):
    """Cloudinary object store configuration (receipts and documents)."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )
    upload_chunk_size: int = Field(
        default=6 * 1024 * 1024,
        ge=5 * 1024 * 1024,
        description="Chunk size for chunked uploads (Cloudinary minimum is 5MB)"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets ledger collection configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # One worksheet per user: <prefix><user_id>
    ledger_sheet_prefix: str = Field(
        default="ledger_",
        description="Prefix of the per-user ledger worksheets"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """A missing key file only warns; it may be mounted after startup."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "The google backend cannot authenticate until it exists."
            )
        return v


class LedgerSettings(BaseSettings):
    """Paging, aggregation and attachment policy."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    page_size: int = Field(
        default=12,
        ge=1,
        le=500,
        description="Entries per page of the list feed"
    )
    aggregate_limit: int = Field(
        default=1000,
        ge=1,
        description="Upper bound of entries fetched to compute totals"
    )
    temp_marker: str = Field(
        default="temp_",
        min_length=1,
        description="Path-segment prefix marking a staged (temporary) attachment"
    )
    attachments_folder: str = Field(
        default="receipts",
        description="Root folder of attachment objects in the object store"
    )
    max_attachment_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum attachment size in MB"
    )
    allowed_attachment_types: str = Field(
        default="image/jpeg,image/png,image/webp,image/heic,application/pdf",
        description="Comma-separated list of accepted MIME types"
    )

    @property
    def allowed_types_list(self) -> list[str]:
        """Get allowed MIME types as a list."""
        return [t.strip().lower() for t in self.allowed_attachment_types.split(",") if t.strip()]

    @property
    def max_attachment_size_bytes(self) -> int:
        """Get max attachment size in bytes."""
        return self.max_attachment_size_mb * 1024 * 1024


class AppSettings(BaseSettings):
    """
    Process-level settings: environment, logging and backend choice.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level for the structured logger"
    )

    # Which backends the service factory wires up
    backend: str = Field(
        default="google",
        pattern="^(google|memory)$",
        description="'google' (Sheets + Cloudinary) or 'memory' (local, non-persistent)"
    )


class Settings(BaseSettings):
    """
    Entry point to every settings group.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Each group is read on access; an unused backend needs no env vars

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Process-wide Settings instance.

    Cached; call get_settings.cache_clear() after changing the environment.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool | str]:
    """
    Try to load every settings group.

    Returns {group: loaded_ok}, plus "<group>_error" with the reason for
    each group that failed.
    """
    results = {}

    settings = get_settings()

    for name in ("cloudinary", "google_sheets", "ledger", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
