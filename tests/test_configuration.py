"""Tests for settings and the configuration loader."""

import json
import pytest
import yaml

from gitsync.config import (
    AppSettings,
    ConfigLoader,
    ConfigurationError,
    ConflictPolicy,
    SyncStrategy,
    get_settings,
    load_settings,
    set_settings
)


def create_test_config_data():
    """Create a complete configuration mapping."""
    return {
        "github": {
            "token": "ghp_test",
            "owner": "octo",
            "repo": "notes",
            "branch": "main"
        },
        "sync": {
            "local_root": "/tmp/vault",
            "remote_content_path": "/content/",
            "strategy": "interval",
            "interval_minutes": 5,
            "max_concurrent_transfers": 4,
            "conflict_policy": "local"
        },
        "database": {
            "url": "sqlite:///./data/test.db"
        },
        "logging": {
            "level": "debug"
        }
    }


@pytest.fixture
def clean_env(monkeypatch):
    for name in ["GITHUB_TOKEN", "GITHUB_OWNER", "GITHUB_REPO", "GITHUB_BRANCH", "SYNC_LOCAL_ROOT",
                 "SYNC_STRATEGY", "SYNC_INTERVAL_MINUTES", "DB_URL", "LOG_LEVEL", "LOG_FORMAT",
                 "GITSYNC_CONFIG_FILE"]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettings:

    def test_defaults(self, clean_env):
        settings = AppSettings()

        assert settings.github.branch == "main"
        assert settings.github.api_version == "2022-11-28"
        assert settings.sync.strategy == SyncStrategy.MANUAL
        assert settings.sync.interval_minutes == 1
        assert settings.sync.conflict_policy == ConflictPolicy.REMOTE
        assert settings.sync.remote_content_path == ""

    def test_local_content_path_defaults_to_repo(self, clean_env):
        settings = AppSettings(github={"repo": "notes"})
        assert settings.local_content_path == "notes"

        settings = AppSettings(github={"repo": "notes"}, sync={"local_content_path": "/vault/"})
        assert settings.local_content_path == "vault"

    def test_environment_variables(self, clean_env):
        clean_env.setenv("GITHUB_OWNER", "env-owner")
        clean_env.setenv("SYNC_STRATEGY", "save")

        settings = AppSettings()

        assert settings.github.owner == "env-owner"
        assert settings.sync.strategy == SyncStrategy.SAVE

    def test_global_settings(self, clean_env):
        settings = AppSettings(github={"repo": "global"})
        assert set_settings(settings) is settings
        assert get_settings() is settings


class TestConfigLoader:
    """Test file loading, validation and environment overrides."""

    def setup_method(self):
        self.loader = ConfigLoader()

    def test_load_from_dict(self, clean_env):
        settings = self.loader.load_from_dict(create_test_config_data())

        assert settings.github.owner == "octo"
        assert settings.sync.strategy == SyncStrategy.INTERVAL
        assert settings.sync.remote_content_path == "content"
        assert settings.sync.conflict_policy == ConflictPolicy.LOCAL
        assert settings.logging.level == "DEBUG"
        assert settings.local_content_path == "notes"

    def test_load_yaml_file(self, clean_env, tmp_path):
        config_file = tmp_path / "gitsync.yaml"
        config_file.write_text(yaml.safe_dump(create_test_config_data()))

        settings = self.loader.load_from_file(config_file)

        assert settings.github.repo == "notes"
        assert settings.sync.interval_minutes == 5

    def test_load_json_file(self, clean_env, tmp_path):
        config_file = tmp_path / "gitsync.json"
        config_file.write_text(json.dumps(create_test_config_data()))

        settings = self.loader.load_from_file(config_file)

        assert settings.sync.max_concurrent_transfers == 4

    def test_environment_overrides_file(self, clean_env):
        clean_env.setenv("GITHUB_BRANCH", "release")
        clean_env.setenv("SYNC_INTERVAL_MINUTES", "15")

        settings = self.loader.load_from_dict(create_test_config_data())

        assert settings.github.branch == "release"
        assert settings.sync.interval_minutes == 15

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            self.loader.load_from_file(tmp_path / "missing.yaml")

    def test_unsupported_format(self, tmp_path):
        config_file = tmp_path / "gitsync.toml"
        config_file.write_text("x = 1")

        with pytest.raises(ConfigurationError):
            self.loader.load_from_file(config_file)

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "gitsync.yaml"
        config_file.write_text("github: [unclosed")

        with pytest.raises(ConfigurationError):
            self.loader.load_from_file(config_file)

    @pytest.mark.parametrize("section,key,value", [
        ("sync", "strategy", "hourly"),
        ("sync", "interval_minutes", 0),
        ("sync", "max_concurrent_transfers", 0),
        ("sync", "conflict_policy", "merge"),
        ("logging", "level", "LOUD"),
    ])
    def test_invalid_values(self, clean_env, section, key, value):
        data = create_test_config_data()
        data[section][key] = value

        with pytest.raises(ConfigurationError):
            self.loader.load_from_dict(data)

    def test_non_mapping_root(self):
        with pytest.raises(ConfigurationError):
            self.loader.load_from_dict(["not", "a", "mapping"])


class TestLoadSettings:

    def test_explicit_file(self, clean_env, tmp_path):
        config_file = tmp_path / "custom.yml"
        config_file.write_text(yaml.safe_dump(create_test_config_data()))

        assert load_settings(str(config_file)).github.owner == "octo"

    def test_config_file_variable(self, clean_env, tmp_path):
        config_file = tmp_path / "custom.json"
        config_file.write_text(json.dumps(create_test_config_data()))
        clean_env.setenv("GITSYNC_CONFIG_FILE", str(config_file))

        assert load_settings().github.repo == "notes"

    def test_default_file_in_working_directory(self, clean_env, tmp_path):
        (tmp_path / "gitsync.yaml").write_text(yaml.safe_dump(create_test_config_data()))
        clean_env.chdir(tmp_path)

        assert load_settings().sync.strategy == SyncStrategy.INTERVAL

    def test_environment_only(self, clean_env, tmp_path):
        clean_env.chdir(tmp_path)
        clean_env.setenv("GITHUB_REPO", "from-env")

        assert load_settings().github.repo == "from-env"
