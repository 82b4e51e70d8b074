"""
Configuration Management for Digibook

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Thresholds that shape derived numbers (cache TTL, overpayment threshold,
payoff ceiling) live beside storage and security settings so a single
startup check can validate all of them.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Local object store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DIGIBOOK_STORAGE_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path.home() / ".digibook",
        description="Directory holding the database file and backups"
    )
    database_name: str = Field(
        default="digibook",
        min_length=1,
        description="Base name of the database file"
    )
    backend: str = Field(
        default="memory",
        description="Store backend: 'memory' or 'file'"
    )

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Only known backends are accepted."""
        normalized = v.strip().lower()
        if normalized not in {"memory", "file"}:
            raise ValueError(f"Unknown storage backend: {v}. Allowed: memory, file")
        return normalized

    @property
    def database_path(self) -> Path:
        return self.data_dir / f"{self.database_name}.json"

    @property
    def backup_dir(self) -> Path:
        return self.data_dir / "backups"


class BackupSettings(BaseSettings):
    """Backup rotation configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DIGIBOOK_BACKUP_",
        extra="ignore"
    )

    retention: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Number of newest backups to keep"
    )
    compress: bool = Field(
        default=True,
        description="Store backup payloads zlib-compressed"
    )
    key_prefix: str = Field(
        default="digibook_backup_",
        description="Prefix for backup keys"
    )


class SecuritySettings(BaseSettings):
    """Encrypted export configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DIGIBOOK_SECURITY_",
        extra="ignore"
    )

    kdf_iterations: int = Field(
        default=100_000,
        ge=100_000,
        description="PBKDF2-SHA256 iteration count"
    )
    salt_bytes: int = Field(
        default=16,
        ge=16,
        le=64,
        description="Random salt length for key derivation"
    )
    iv_bytes: int = Field(
        default=12,
        ge=12,
        le=16,
        description="AES-GCM nonce length"
    )


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

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Minimum log level for the structured logger"
    )

    # Caching
    category_cache_ttl_seconds: float = Field(
        default=30.0,
        gt=0,
        le=3600,
        description="How long cached categories stay fresh"
    )

    # Derivation thresholds
    significant_overpayment_percent: float = Field(
        default=20.0,
        ge=0,
        description="Overpayment above this percentage is significant"
    )
    payoff_max_months: int = Field(
        default=600,
        ge=12,
        le=1200,
        description="Ceiling for debt payoff simulations (50 years)"
    )
    expense_history_months: int = Field(
        default=6,
        ge=1,
        le=60,
        description="Months covered by the monthly expense history"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize the log level name."""
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


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

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def backup(self) -> BackupSettings:
        return BackupSettings()

    @property
    def security(self) -> SecuritySettings:
        return SecuritySettings()

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

    for name in ("storage", "backup", "security", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
