"""Application configuration settings."""

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncStrategy(str, Enum):
    """When synchronization passes are triggered."""
    SAVE = "save"
    MANUAL = "manual"
    INTERVAL = "interval"


class ConflictPolicy(str, Enum):
    """Which side wins when both sides changed."""
    REMOTE = "remote"
    LOCAL = "local"


class GitHubSettings(BaseSettings):
    """Remote repository configuration."""

    token: str = Field(default="", description="Bearer token with contents read/write access")
    owner: str = Field(default="", description="Owner of the repository to sync")
    repo: str = Field(default="", description="Name of the repository to sync")
    branch: str = Field(default="main", description="Branch to sync")
    api_url: str = Field(default="https://api.github.com")
    api_version: str = Field(default="2022-11-28")
    timeout_seconds: int = Field(default=30)

    model_config = SettingsConfigDict(env_prefix="GITHUB_")


class SyncSettings(BaseSettings):
    """Synchronization behaviour."""

    local_root: str = Field(default=".", description="Root of the local file tree")
    remote_content_path: str = Field(default="", description="Repository subpath, empty for the whole repository")
    local_content_path: str = Field(default="", description="Folder under local_root, defaults to the repository name")
    strategy: SyncStrategy = Field(default=SyncStrategy.MANUAL)
    interval_minutes: int = Field(default=1)
    max_concurrent_transfers: int = Field(default=8)
    conflict_policy: ConflictPolicy = Field(default=ConflictPolicy.REMOTE)
    commit_message: str = Field(default="Sync {path}")
    watch_debounce_ms: int = Field(default=1600)

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    @field_validator("interval_minutes")
    @classmethod
    def validate_interval(cls, v):
        if v < 1:
            raise ValueError("Interval must be at least 1 minute")
        return v

    @field_validator("max_concurrent_transfers")
    @classmethod
    def validate_concurrency(cls, v):
        if v < 1:
            raise ValueError("Must allow at least 1 concurrent transfer")
        return v

    @field_validator("remote_content_path", "local_content_path")
    @classmethod
    def strip_slashes(cls, v):
        return v.strip().strip("/")


class DatabaseSettings(BaseSettings):
    """Metadata database configuration."""

    url: str = Field(default="sqlite:///./data/gitsync.db")

    model_config = SettingsConfigDict(env_prefix="DB_")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file_path: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="LOG_")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


class AppSettings(BaseSettings):
    """Main application settings."""

    name: str = Field(default="gitsync")
    version: str = Field(default="0.1.0")

    # Sub-settings
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="GITSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def local_content_path(self) -> str:
        """Local folder that mirrors the remote content path."""
        return self.sync.local_content_path or self.github.repo


# Global settings instance
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Get application settings."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def set_settings(settings: AppSettings) -> AppSettings:
    """Replace the global settings instance, e.g. after loading a config file."""
    global _settings
    _settings = settings
    return settings
