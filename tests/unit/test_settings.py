"""Unit tests for connection settings and their persistence."""

import json
import logging
import pytest
from unittest.mock import patch

from ftptree.config.settings import ClientSettings, SettingsManager
from ftptree.ftp.connection import FTPConnectionConfig
from ftptree.ftp.transfer import TransferMode


class TestClientSettings:
    """Tests for ClientSettings dataclass."""

    def test_default_values(self):
        """Test default settings values."""
        settings = ClientSettings()
        assert settings.host == ""
        assert settings.port == 21
        assert settings.username == "anonymous"
        assert settings.secure is False
        assert settings.passive_mode is True
        assert settings.timeout == 90
        assert settings.encoding == "utf-8"
        assert settings.transfer_mode == "binary"
        assert settings.log_level == "INFO"
        assert settings.log_to_file is False

    def test_round_trip_through_dict(self):
        """Test to_dict output is accepted by from_dict."""
        settings = ClientSettings(host="ftp.example.com", port=2121, secure=True)

        restored = ClientSettings.from_dict(settings.to_dict())

        assert restored == settings

    def test_from_dict_ignores_unknown_keys(self):
        """Test that from_dict ignores unknown keys."""
        settings = ClientSettings.from_dict({
            "host": "ftp.example.com",
            "window_width": 800,
        })

        assert settings.host == "ftp.example.com"
        assert not hasattr(settings, "window_width")

    def test_from_dict_with_missing_keys(self):
        """Test that from_dict uses defaults for missing keys."""
        settings = ClientSettings.from_dict({"host": "partial.local"})

        assert settings.port == 21

    def test_to_connection_config(self):
        """Test conversion to a validated connection config."""
        settings = ClientSettings(
            host="10.0.0.2", port=2121, username="alice", passive_mode=False, timeout=30
        )

        config = settings.to_connection_config()

        assert isinstance(config, FTPConnectionConfig)
        assert config.host == "10.0.0.2"
        assert config.port == 2121
        assert config.username == "alice"
        assert config.passive_mode is False
        assert config.timeout == 30

    def test_to_connection_config_validates(self):
        """Test invalid settings fail when converted."""
        with pytest.raises(ValueError, match="Host is required"):
            ClientSettings().to_connection_config()
        with pytest.raises(ValueError, match="Port must be between"):
            ClientSettings(host="10.0.0.2", port=0).to_connection_config()

    def test_default_transfer_mode(self):
        """Test the stored transfer mode maps onto TransferMode."""
        assert ClientSettings().default_transfer_mode == TransferMode.BINARY
        assert ClientSettings(transfer_mode="text").default_transfer_mode == TransferMode.TEXT


class TestApplyLogging:
    """Tests for configuring logging from settings."""

    def test_level_from_settings(self):
        """Test log_level sets the ftptree logger level."""
        logger = ClientSettings(log_level="debug").apply_logging(console=False)

        assert logger.name == "ftptree"
        assert logger.level == logging.DEBUG
        assert logger.handlers == []

    def test_log_file_when_enabled(self, tmp_path):
        """Test log_to_file writes to the platform log file."""
        log_file = tmp_path / "logs" / "ftptree.log"

        with patch("ftptree.config.settings.get_log_file_path", return_value=log_file):
            logger = ClientSettings(log_to_file=True).apply_logging(console=False)

        logger.info("connected")
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)

        assert "connected" in log_file.read_text()

    def test_unknown_level(self):
        """Test an invalid log_level name."""
        with pytest.raises(ValueError):
            ClientSettings(log_level="LOUD").apply_logging(console=False)


class TestSettingsManager:
    """Tests for SettingsManager class."""

    @pytest.fixture
    def manager(self, temp_settings_file):
        """Create a SettingsManager with temp path."""
        return SettingsManager(config_path=temp_settings_file)

    def test_config_path_property(self, manager, temp_settings_file):
        """Test config_path property returns correct path."""
        assert manager.config_path == temp_settings_file

    def test_load_returns_defaults_when_file_missing(self, manager):
        """Test loading settings when file doesn't exist."""
        assert manager.load() == ClientSettings()

    def test_save_writes_json(self, manager, temp_settings_file):
        """Test saving settings writes readable JSON."""
        manager.save(ClientSettings(host="saved.local", port=990, secure=True))

        data = json.loads(temp_settings_file.read_text(encoding="utf-8"))
        assert data["host"] == "saved.local"
        assert data["port"] == 990
        assert data["secure"] is True

    def test_save_creates_parent_directories(self, tmp_path):
        """Test that save creates parent directories if needed."""
        nested_path = tmp_path / "deep" / "nested" / "settings.json"

        SettingsManager(config_path=nested_path).save(ClientSettings(host="nested.local"))

        assert nested_path.exists()

    def test_load_restores_saved_settings(self, manager, temp_settings_file):
        """Test that a new manager loads previously saved settings."""
        original = ClientSettings(host="restore.local", username="bob", passive_mode=False)
        manager.save(original)

        loaded = SettingsManager(config_path=temp_settings_file).load()

        assert loaded == original

    def test_load_handles_corrupted_file(self, manager, temp_settings_file):
        """Test loading settings from corrupted file returns defaults."""
        temp_settings_file.write_text("not valid json {{{")

        assert manager.load() == ClientSettings()

    def test_reset_removes_file(self, manager, temp_settings_file):
        """Test reset returns defaults and removes the settings file."""
        manager.save(ClientSettings(host="to.delete"))

        settings = manager.reset()

        assert settings == ClientSettings()
        assert not temp_settings_file.exists()

    def test_update_modifies_specific_fields(self, manager):
        """Test update modifies only specified fields and persists them."""
        manager.load()

        updated = manager.update(host="updated.local", timeout=15, nonexistent_field="ignored")

        assert updated.host == "updated.local"
        assert updated.timeout == 15
        assert updated.username == "anonymous"
        assert manager.load().host == "updated.local"

    def test_update_loads_if_not_loaded(self, manager):
        """Test update loads settings if not already loaded."""
        assert manager.update(host="auto.loaded").host == "auto.loaded"
