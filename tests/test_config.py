"""Tests for configuration management."""

import json
from datetime import datetime, timezone

import pytest


class TestConfigFile:
    """Tests for config.json handling."""

    def test_missing_config_is_empty(self, config):
        """No file means an empty configuration."""
        assert config.load_config() == {}

    def test_unreadable_config_is_empty(self, config):
        """A corrupt file is ignored."""
        config.config_path.write_text("{not json")
        assert config.load_config() == {}

    def test_update_and_unset(self, config):
        """Values can be set and removed."""
        config.update_config(remote_url="http://kb.test", timeout=5)
        assert config.load_config() == {"remote_url": "http://kb.test", "timeout": 5}

        config.update_config(timeout=None)
        assert config.load_config() == {"remote_url": "http://kb.test"}

    def test_unknown_key_rejected(self, config):
        """Unknown keys raise ValueError."""
        with pytest.raises(ValueError, match="Unknown config key"):
            config.update_config(colour="blue")


class TestRemoteSettings:
    """Tests for resolving remote settings."""

    @pytest.fixture(autouse=True)
    def clear_env(self, monkeypatch):
        for name in ("SITE_KB_REMOTE_URL", "SITE_KB_IDENTITY", "SITE_KB_PASSWORD", "SITE_KB_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)

    def test_not_configured(self, config):
        """Without config or environment there is no remote."""
        settings = config.get_remote_settings()
        assert settings.url is None
        assert not settings.has_credentials

    def test_from_config(self, config):
        """Settings come from config.json."""
        config.update_config(
            remote_url="http://kb.test", identity="svc", password="pw", timeout="7.5"
        )
        settings = config.get_remote_settings()
        assert settings.url == "http://kb.test"
        assert settings.has_credentials
        assert settings.timeout == 7.5

    def test_environment_overrides_config(self, config, monkeypatch):
        """Environment variables win over config.json."""
        config.update_config(remote_url="http://kb.test")
        monkeypatch.setenv("SITE_KB_REMOTE_URL", "http://other.test")
        assert config.get_remote_settings().url == "http://other.test"

    def test_invalid_timeout_ignored(self, config, monkeypatch):
        """A timeout that is not a number falls back to the default."""
        monkeypatch.setenv("SITE_KB_TIMEOUT", "soon")
        assert config.get_remote_settings().timeout is None


class TestLastSync:
    """Tests for the last-sync watermark file."""

    def test_initially_unset(self, config):
        """No watermark before the first pull."""
        assert config.get_last_sync() is None

    def test_set_and_get(self, config):
        """The watermark round-trips as an aware datetime."""
        when = datetime(2024, 5, 1, 10, 20, 30, tzinfo=timezone.utc)
        config.set_last_sync(when)
        assert config.get_last_sync() == when
        assert json.loads(config.sync_meta_path.read_text()) == {
            "last_sync": "2024-05-01T10:20:30+00:00"
        }

    def test_clear(self, config):
        """Clearing removes the file and reports whether it existed."""
        config.set_last_sync(datetime(2024, 5, 1, tzinfo=timezone.utc))
        assert config.clear_last_sync() is True
        assert config.get_last_sync() is None
        assert config.clear_last_sync() is False

    def test_corrupt_file_ignored(self, config):
        """An unreadable watermark is treated as missing."""
        config.sync_meta_path.write_text("garbage")
        assert config.get_last_sync() is None
