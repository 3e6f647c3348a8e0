"""
Configuration management for tonelink.
Loads application settings from YAML and builds sessions from them.
"""

import copy
from pathlib import Path
from typing import Any, Dict, Optional
import yaml

from tonelink.core.events import SessionListener
from tonelink.core.profile import ConfigProfile, ProfileLoader
from tonelink.core.session import Session


class Config:
    """Configuration manager for tonelink."""

    DEFAULT_CONFIG_PATHS = [
        Path("tonelink.yaml"),
        Path("config.yaml"),
        Path.home() / ".config" / "tonelink" / "config.yaml",
        Path("/etc/tonelink/config.yaml"),
    ]

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to configuration file. If None, searches default paths.
        """
        self._config: Dict[str, Any] = {}
        self._config_path: Optional[Path] = None
        self._load_config(config_path)

    def _load_config(self, config_path: Optional[str] = None) -> None:
        if config_path:
            path = Path(config_path)
            if path.exists():
                self._config_path = path
                self._config = self._merge(self._get_defaults(), self._read(path))
                return
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        for path in self.DEFAULT_CONFIG_PATHS:
            if path.exists():
                self._config_path = path
                self._config = self._merge(self._get_defaults(), self._read(path))
                return

        self._config = self._get_defaults()

    @staticmethod
    def _read(path: Path) -> Dict[str, Any]:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file must contain a mapping: {path}")
        return data

    @classmethod
    def _merge(cls, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively overlay user settings on the defaults."""
        merged = copy.deepcopy(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = cls._merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _get_defaults(self) -> Dict[str, Any]:
        """Get default configuration values."""
        return {
            "profile": {
                "config": "standard",
                "key": None,
                "secret": None,
            },
            "engine": {
                "volume": 1.0,
                "auto_mute": True,
                "frequency_correction": 1.0,
                "transmission_channel": 0,
            },
            "audio": {
                "sample_rate": None,
                "buffer_size": 1024,
                "input_device": None,
                "output_device": None,
            },
            "ui": {
                "colors": {
                    "waiting": "yellow",
                    "sending": "blue",
                    "sent": "green",
                    "receiving": "cyan",
                    "error": "red",
                },
            },
            "logging": {
                "enabled": False,
                "file": "tonelink_events.log",
                "format": "text",
                "timestamps": True,
                "level": "info",
            },
        }

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key: Configuration key (e.g., "engine.volume")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split(".")
        value = self._config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value using dot notation.

        Args:
            key: Configuration key (e.g., "engine.volume")
            value: Value to set
        """
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def save(self, path: Optional[str] = None) -> None:
        """
        Save configuration to file.

        Args:
            path: Path to save to. If None, uses the loaded path or tonelink.yaml
        """
        save_path = Path(path) if path else (self._config_path or Path("tonelink.yaml"))
        save_path.parent.mkdir(parents=True, exist_ok=True)
        with open(save_path, 'w') as f:
            yaml.dump(self._config, f, default_flow_style=False, sort_keys=False)

    @property
    def profile(self) -> Dict[str, Any]:
        return self._config.get("profile", {})

    @property
    def engine(self) -> Dict[str, Any]:
        return self._config.get("engine", {})

    @property
    def audio(self) -> Dict[str, Any]:
        return self._config.get("audio", {})

    @property
    def ui(self) -> Dict[str, Any]:
        return self._config.get("ui", {})

    @property
    def logging_config(self) -> Dict[str, Any]:
        return self._config.get("logging", {})

    def create_loader(self) -> ProfileLoader:
        """Create a profile loader with the configured credentials."""
        return ProfileLoader(key=self.profile.get("key"), secret=self.profile.get("secret"))

    def create_profile(self) -> ConfigProfile:
        """
        Resolve the configured profile.

        Raises:
            ConfigError: If the configured profile cannot be loaded
        """
        return self.create_loader().load(self.profile.get("config"))

    def create_session(self, listener: Optional[SessionListener] = None, user_data: Any = None) -> Session:
        """
        Build a configured, stopped session from these settings.

        Args:
            listener: Notification listener for the session
            user_data: Opaque value handed to every notification

        Returns:
            A Session in the STOPPED state
        """
        session = Session.from_config(
            self.create_profile(),
            listener=listener,
            user_data=user_data,
            loader=self.create_loader(),
        )
        engine = self.engine
        session.set_volume(engine.get("volume", 1.0))
        session.set_auto_mute(engine.get("auto_mute", True))
        session.set_frequency_correction(engine.get("frequency_correction", 1.0))
        session.set_transmission_channel(engine.get("transmission_channel", 0))
        sample_rate = self.audio.get("sample_rate")
        if sample_rate:
            session.set_input_sample_rate(sample_rate)
            session.set_output_sample_rate(sample_rate)
        return session

    def __repr__(self) -> str:
        return f"Config(path={self._config_path})"
