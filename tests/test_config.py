"""Tests for the configuration module."""

import os
import tempfile
from pathlib import Path

import pytest
import yaml

from tonelink.core.config import Config
from tonelink.core.errors import ConfigError
from tonelink.core.profile import encode_profile
from tonelink.core.state import SessionState

from conftest import make_profile


@pytest.fixture(autouse=True)
def no_default_files(monkeypatch):
    """Keep config files on the test machine out of the way."""
    monkeypatch.setattr(Config, "DEFAULT_CONFIG_PATHS", [])


def _write_config(data) -> str:
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(data, f)
        return f.name


class TestConfig:
    """Tests for Config class."""

    def test_default_config(self):
        """Test loading default configuration."""
        config = Config()

        assert config.profile["config"] == "standard"
        assert config.engine["auto_mute"] is True
        assert config.audio["buffer_size"] == 1024
        assert config.ui["colors"]["sent"] == "green"
        assert config.logging_config["enabled"] is False

    def test_get_with_dot_notation(self):
        """Test getting values with dot notation."""
        config = Config()

        assert config.get("engine.volume") == 1.0
        assert config.get("logging.format") == "text"

    def test_get_with_default(self):
        """Test getting non-existent values returns default."""
        config = Config()

        assert config.get("nonexistent.key", "default_value") == "default_value"
        assert config.get("engine.volume.deeper", 3) == 3

    def test_set_value(self):
        """Test setting configuration values."""
        config = Config()

        config.set("engine.volume", 0.5)
        config.set("custom.nested.value", 7)

        assert config.get("engine.volume") == 0.5
        assert config.get("custom.nested.value") == 7

    def test_missing_file(self):
        """Test an explicit path that does not exist."""
        with pytest.raises(FileNotFoundError):
            Config("/nonexistent/tonelink.yaml")

    def test_partial_file_keeps_defaults(self):
        """Test a file overrides only the keys it sets."""
        temp_path = _write_config({"engine": {"volume": 0.3}})
        try:
            config = Config(temp_path)

            assert config.get("engine.volume") == 0.3
            assert config.get("engine.auto_mute") is True
            assert config.get("audio.buffer_size") == 1024
        finally:
            os.unlink(temp_path)

    def test_file_must_be_mapping(self):
        """Test a file that is not a mapping."""
        temp_path = _write_config(["not", "a", "mapping"])
        try:
            with pytest.raises(ValueError):
                Config(temp_path)
        finally:
            os.unlink(temp_path)

    def test_save_and_load(self):
        """Test saving and loading configuration."""
        with tempfile.TemporaryDirectory() as tmpdir:
            temp_path = str(Path(tmpdir) / "nested" / "tonelink.yaml")

            config1 = Config()
            config1.set("engine.volume", 0.25)
            config1.save(temp_path)

            config2 = Config(temp_path)
            assert config2.get("engine.volume") == 0.25
            assert "tonelink.yaml" in repr(config2)

    def test_default_search_path(self, monkeypatch):
        """Test the first existing default path is used."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tonelink.yaml"
            path.write_text("profile:\n  config: compact\n")
            monkeypatch.setattr(Config, "DEFAULT_CONFIG_PATHS", [Path(tmpdir) / "missing.yaml", path])

            config = Config()

            assert config.get("profile.config") == "compact"


class TestSessionFactory:
    """Tests for building sessions from configuration."""

    def test_create_profile(self):
        """Test resolving a built-in profile name."""
        config = Config()
        config.set("profile.config", "multichannel")

        assert config.create_profile().channel_count == 2

    def test_create_profile_signed(self):
        """Test resolving a signed config with credentials."""
        config = Config()
        config.set("profile.config", encode_profile(make_profile(), secret="abc", project="demo"))
        config.set("profile.key", "demo")
        config.set("profile.secret", "abc")

        assert config.create_profile() == make_profile()

    def test_create_profile_bad_secret(self):
        """Test a signed config with the wrong secret."""
        config = Config()
        config.set("profile.config", encode_profile(make_profile(), secret="abc"))
        config.set("profile.secret", "wrong")

        with pytest.raises(ConfigError):
            config.create_profile()

    def test_create_session(self):
        """Test engine settings are applied to the session."""
        config = Config()
        config.set("profile.config", "multichannel")
        config.set("engine.volume", 0.5)
        config.set("engine.auto_mute", False)
        config.set("engine.frequency_correction", 1.1)
        config.set("engine.transmission_channel", 1)

        session = config.create_session()

        assert session.get_state() == SessionState.STOPPED
        assert session.get_volume() == 0.5
        assert not session.get_auto_mute()
        assert session.get_frequency_correction() == 1.1
        assert session.get_transmission_channel() == 1
        assert session.get_input_sample_rate() == 48000

    def test_create_session_sample_rate(self):
        """Test the audio sample rate overrides the profile rates."""
        config = Config()
        config.set("audio.sample_rate", 48000)

        session = config.create_session(user_data="app")

        assert session.get_input_sample_rate() == 48000
        assert session.get_output_sample_rate() == 48000
        assert session.get_user_data() == "app"
