"""Unit tests for settings loading."""

import json

import pytest
from pydantic import ValidationError

from stager.config import StagerSettings, load_settings
from stager.models.status import CronMode


@pytest.mark.unit
class TestLoadSettings:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch, tmp_path):
        """避免开发者环境变量和 .env 影响测试。"""
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("STAGER_CONFIG_FILE", raising=False)
        monkeypatch.delenv("STAGER_CRON_MODE", raising=False)
        monkeypatch.delenv("STAGER_PORT", raising=False)

    def test_defaults(self):
        settings = load_settings()

        assert settings.cron_mode == CronMode.SECURITY
        assert settings.core_packages == ["drupal/core", "drupal/core-recommended"]
        assert settings.is_cron_enabled is True

    def test_json_file(self, tmp_path):
        config = tmp_path / "stager.json"
        config.write_text(json.dumps({"cron_mode": "disabled", "port": 9000}))

        settings = load_settings(str(config))

        assert settings.cron_mode == CronMode.DISABLED
        assert settings.is_cron_enabled is False
        assert settings.port == 9000

    def test_environment_beats_file(self, tmp_path, monkeypatch):
        config = tmp_path / "stager.json"
        config.write_text(json.dumps({"cron_mode": "disabled", "port": 9000}))
        monkeypatch.setenv("STAGER_CONFIG_FILE", str(config))
        monkeypatch.setenv("STAGER_CRON_MODE", "all")

        settings = load_settings()

        assert settings.cron_mode == CronMode.ALL
        assert settings.port == 9000

    def test_overrides_beat_everything(self, monkeypatch):
        monkeypatch.setenv("STAGER_PORT", "9100")

        settings = load_settings(port=9200, host=None)

        assert settings.port == 9200
        assert settings.host == "127.0.0.1"

    def test_list_from_environment(self, monkeypatch):
        monkeypatch.setenv("STAGER_RESTART_SERVICES", '["php-fpm", "varnish"]')

        assert load_settings().restart_services == ["php-fpm", "varnish"]

    @pytest.mark.parametrize("path", ["/etc/passwd", "../outside", "sites/../../x"])
    def test_excluded_paths_must_be_relative(self, path):
        with pytest.raises(ValidationError, match="must be relative"):
            StagerSettings(excluded_paths=[path])

    def test_excluded_paths_trailing_slash(self):
        settings = StagerSettings(excluded_paths=["sites/*/files/"])

        assert settings.excluded_paths == ["sites/*/files"]
