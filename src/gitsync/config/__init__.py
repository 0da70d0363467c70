"""Configuration package for gitsync."""

from .settings import (
    GitHubSettings,
    SyncSettings,
    DatabaseSettings,
    LoggingSettings,
    AppSettings,
    SyncStrategy,
    ConflictPolicy,
    get_settings,
    set_settings
)

from .loader import (
    ConfigLoader,
    ConfigurationError,
    load_settings
)

__all__ = [
    "GitHubSettings",
    "SyncSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "AppSettings",
    "SyncStrategy",
    "ConflictPolicy",
    "get_settings",
    "set_settings",

    "ConfigLoader",
    "ConfigurationError",
    "load_settings"
]
