"""
Configuration Management for Ledger IO

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable of the import pipeline (upload limits, progress cadence,
duplicate comparator, category defaults) lives in ImportSettings so the
parser, importer and UI read the same values.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets ledger storage configuration."""

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
        description="ID of the Google Sheets spreadsheet holding the ledger"
    )

    # Sheet names within the spreadsheet
    expenses_sheet_name: str = Field(
        default="Expenses",
        description="Name of the sheet for expenses"
    )
    categories_sheet_name: str = Field(
        default="Categories",
        description="Name of the sheet for categories"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )
    request_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="HTTP timeout for a single Sheets API request"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class ImportSettings(BaseSettings):
    """Bulk import/export pipeline configuration."""

    model_config = SettingsConfigDict(
        env_prefix="IMPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Upload limits
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum upload file size in MB"
    )
    supported_file_formats: str = Field(
        default="xlsx,csv",
        description="Comma-separated list of accepted file extensions"
    )

    # Progress reporting
    progress_batch_size: int = Field(
        default=25,
        ge=1,
        description="Rows between progress events for large files"
    )
    progress_every_row_limit: int = Field(
        default=500,
        ge=0,
        description="Files up to this many rows report progress after every row"
    )

    # Writes
    row_write_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single row write; a timeout fails that row only"
    )

    # Duplicate detection
    duplicate_fields: str = Field(
        default="date,description,amount",
        description="Comma-separated expense fields compared for duplicate detection"
    )

    # Category defaults
    uncategorized_label: str = Field(
        default="Uncategorized",
        min_length=1,
        description="Category name used for rows with a blank category"
    )
    default_category_color: str = Field(
        default="#95A5A6",
        description="Color for auto-created categories"
    )
    default_category_icon: str = Field(
        default="📦",
        description="Icon for auto-created categories"
    )

    # Preview
    parse_error_preview_limit: int = Field(
        default=5,
        ge=0,
        description="How many parse errors the preview lists before summarizing"
    )
    preview_row_limit: int = Field(
        default=20,
        ge=0,
        description="How many parsed rows the preview shows"
    )

    @field_validator('duplicate_fields')
    @classmethod
    def validate_duplicate_fields(cls, v: str) -> str:
        """Only expense fields can take part in duplicate detection."""
        allowed = {"date", "description", "amount", "notes", "category"}
        fields = [f.strip().lower() for f in v.split(",") if f.strip()]
        if not fields:
            raise ValueError("At least one duplicate field is required")
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(
                f"Unknown duplicate fields: {sorted(unknown)}. Allowed: {sorted(allowed)}"
            )
        return ",".join(fields)

    @property
    def supported_formats_list(self) -> list[str]:
        """Get supported formats as a list."""
        return [fmt.strip().lower() for fmt in self.supported_file_formats.split(",")]

    @property
    def duplicate_fields_list(self) -> list[str]:
        """Get duplicate comparator fields as a list."""
        return self.duplicate_fields.split(",")

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
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
    default_user_id: str = Field(
        default="local-user",
        description="User ID used when no session provider is configured"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def importing(self) -> ImportSettings:
        return ImportSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    sections = {
        "google_sheets": lambda: settings.google_sheets,
        "importing": lambda: settings.importing,
        "app": lambda: settings.app,
    }

    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
