"""Configuration management for the knowledge base."""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from site_knowledge.utils import parse_timestamp

logger = logging.getLogger(__name__)


@dataclass
class RemoteSettings:
    """Connection settings for the remote store."""

    url: str | None = None
    identity: str | None = None
    password: str | None = None
    timeout: float | None = None

    @property
    def has_credentials(self) -> bool:
        """Whether a service account is configured."""
        return bool(self.identity and self.password)


class ConfigManager:
    """Manages configuration for the knowledge base.

    This service handles loading and saving the configuration file, and the
    small metadata file that records when the last successful pull finished.
    """

    CONFIG_KEYS = frozenset({"remote_url", "identity", "password", "timeout"})

    # Environment variables that override config.json
    ENV_OVERRIDES = {
        "remote_url": "SITE_KB_REMOTE_URL",
        "identity": "SITE_KB_IDENTITY",
        "password": "SITE_KB_PASSWORD",
        "timeout": "SITE_KB_TIMEOUT",
    }

    def __init__(self, base_path: Path) -> None:
        """Initialize the configuration manager.

        Args:
            base_path: Base directory for knowledge base storage.
        """
        self.base_path = base_path
        self.config_path = base_path / "config.json"
        self.sync_meta_path = base_path / "sync_meta.json"

    def load_config(self) -> dict[str, Any]:
        """Load configuration from config.json.

        Returns:
            Configuration dictionary.
        """
        if self.config_path.exists():
            try:
                with open(self.config_path) as f:
                    return json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Ignoring unreadable config %s: %s", self.config_path, e)
                return {}
        return {}

    def save_config(self, config: dict[str, Any]) -> None:
        """Save configuration to config.json.

        Args:
            config: Configuration dictionary to save.
        """
        with open(self.config_path, "w") as f:
            json.dump(config, f, indent=2)

    def update_config(self, **values: Any) -> dict[str, Any]:
        """Merge values into the saved configuration.

        A value of None removes the key.

        Args:
            **values: Configuration keys to set.

        Returns:
            The saved configuration.

        Raises:
            ValueError: If an unknown key is given.
        """
        unknown = set(values) - self.CONFIG_KEYS
        if unknown:
            raise ValueError(f"Unknown config key(s): {', '.join(sorted(unknown))}")

        config = self.load_config()
        for key, value in values.items():
            if value is None:
                config.pop(key, None)
            else:
                config[key] = value
        self.save_config(config)
        return config

    def get_remote_settings(self) -> RemoteSettings:
        """Resolve remote settings from config.json and the environment.

        Returns:
            RemoteSettings; url is None when no remote is configured.
        """
        config = self.load_config()
        values: dict[str, Any] = {}
        for key, env_var in self.ENV_OVERRIDES.items():
            values[key] = os.environ.get(env_var) or config.get(key)

        timeout = values["timeout"]
        if timeout is not None:
            try:
                timeout = float(timeout)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid timeout %r", timeout)
                timeout = None

        return RemoteSettings(
            url=values["remote_url"],
            identity=values["identity"],
            password=values["password"],
            timeout=timeout,
        )

    def get_last_sync(self) -> datetime | None:
        """Get the time the last successful pull finished.

        Returns:
            Timezone-aware datetime, or None if no pull has succeeded yet.
        """
        if not self.sync_meta_path.exists():
            return None
        try:
            with open(self.sync_meta_path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable sync metadata: %s", e)
            return None
        return parse_timestamp(data.get("last_sync"))

    def set_last_sync(self, timestamp: datetime) -> None:
        """Record the time a pull finished successfully.

        Args:
            timestamp: Timezone-aware completion time.
        """
        with open(self.sync_meta_path, "w") as f:
            json.dump({"last_sync": timestamp.isoformat()}, f)

    def clear_last_sync(self) -> bool:
        """Forget the last sync time.

        Returns:
            True if a stored timestamp was removed.
        """
        try:
            self.sync_meta_path.unlink()
        except FileNotFoundError:
            return False
        return True
