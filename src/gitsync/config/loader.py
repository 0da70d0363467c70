"""Configuration loader for JSON/YAML files and environment variables."""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from .settings import AppSettings
from ..utils.logging import get_logger


class ConfigurationError(Exception):
    """Raised when configuration loading fails."""
    pass


# Environment variables that override values from a configuration file.
ENV_OVERRIDES = {
    "GITHUB_TOKEN": ("github", "token"),
    "GITHUB_OWNER": ("github", "owner"),
    "GITHUB_REPO": ("github", "repo"),
    "GITHUB_BRANCH": ("github", "branch"),
    "SYNC_LOCAL_ROOT": ("sync", "local_root"),
    "SYNC_STRATEGY": ("sync", "strategy"),
    "SYNC_INTERVAL_MINUTES": ("sync", "interval_minutes"),
    "DB_URL": ("database", "url"),
    "LOG_LEVEL": ("logging", "level"),
    "LOG_FORMAT": ("logging", "format"),
}


class ConfigLoader:
    """Loads and validates configuration from various sources."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def load_from_file(self, file_path: Union[str, Path]) -> AppSettings:
        """Load configuration from JSON or YAML file.

        Args:
            file_path: Path to configuration file

        Returns:
            Validated AppSettings object

        Raises:
            ConfigurationError: If file cannot be loaded or validated
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        self.logger.info("Loading configuration from file", file_path=str(file_path))

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                if file_path.suffix.lower() in [".yaml", ".yml"]:
                    data = yaml.safe_load(f) or {}
                elif file_path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported file format: {file_path.suffix}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration: {e}")

        return self.load_from_dict(data)

    def load_from_dict(self, data: Dict[str, Any]) -> AppSettings:
        """Load configuration from dictionary.

        Args:
            data: Configuration data as dictionary

        Returns:
            Validated AppSettings object
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        data = self._apply_env_overrides(data)

        try:
            settings = AppSettings(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        self.logger.info(
            "Configuration loaded",
            owner=settings.github.owner,
            repo=settings.github.repo,
            branch=settings.github.branch,
            strategy=settings.sync.strategy.value
        )

        return settings

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration data.

        File values are otherwise passed as explicit init arguments and would
        shadow the environment, so the documented variables are merged here.
        """
        merged = {key: dict(value) if isinstance(value, dict) else value for key, value in data.items()}
        applied = []

        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value is None:
                continue
            merged.setdefault(section, {})[key] = value
            applied.append(env_name)

        if applied:
            self.logger.info("Applied environment variable overrides", overrides=applied)

        return merged


def load_settings(config_file: Optional[str] = None) -> AppSettings:
    """Load settings from a file, or from the environment only.

    Looks for configuration files in this order:
    1. the explicit ``config_file`` argument
    2. GITSYNC_CONFIG_FILE environment variable
    3. ./gitsync.yaml, ./gitsync.yml, ./gitsync.json

    If no file is found, settings come from the environment and ``.env``.
    """
    loader = ConfigLoader()

    candidates = [config_file, os.getenv("GITSYNC_CONFIG_FILE")]
    for candidate in candidates:
        if candidate:
            return loader.load_from_file(candidate)

    for file_path in ["./gitsync.yaml", "./gitsync.yml", "./gitsync.json"]:
        if os.path.exists(file_path):
            return loader.load_from_file(file_path)

    return AppSettings()
