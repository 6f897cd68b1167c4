"""Connection settings management for ftptree.

Provides ClientSettings dataclass and SettingsManager for persistence.
"""

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

from ftptree.config.paths import get_log_file_path, get_settings_path
from ftptree.ftp.codec import DEFAULT_ENCODING
from ftptree.ftp.connection import FTPConnectionConfig
from ftptree.ftp.transfer import TransferMode
from ftptree.utils.logging import setup_logging


@dataclass
class ClientSettings:
    """Connection settings that persist between sessions."""

    # FTP connection defaults
    host: str = ""
    port: int = 21
    username: str = "anonymous"
    secure: bool = False
    passive_mode: bool = True
    timeout: int = 90
    encoding: str = DEFAULT_ENCODING

    # Transfer defaults
    transfer_mode: str = TransferMode.BINARY.value

    # Logging
    log_level: str = "INFO"
    log_to_file: bool = False

    def to_dict(self) -> dict:
        """Convert settings to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ClientSettings":
        """Create settings from dictionary, ignoring unknown keys."""
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered)

    def to_connection_config(self) -> FTPConnectionConfig:
        """
        Build a validated connection configuration.

        Raises:
            ValueError: If host, port or timeout are invalid
        """
        return FTPConnectionConfig(
            host=self.host,
            port=self.port,
            secure=self.secure,
            username=self.username,
            passive_mode=self.passive_mode,
            timeout=self.timeout,
            encoding=self.encoding,
        )

    @property
    def default_transfer_mode(self) -> TransferMode:
        return TransferMode(self.transfer_mode)

    def apply_logging(self, console: bool = True) -> logging.Logger:
        """
        Configure the "ftptree" logger from these settings.

        Logs go to the platform log file when log_to_file is set.

        Raises:
            ValueError: If log_level is not a logging level name
        """
        log_file = get_log_file_path() if self.log_to_file else None
        return setup_logging(self.log_level, log_file=log_file, console=console)


class SettingsManager:
    """Manages connection settings persistence."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize settings manager.

        Args:
            config_path: Optional custom path, defaults to platform standard
        """
        self._config_path = config_path or get_settings_path()
        self._settings: Optional[ClientSettings] = None

    @property
    def config_path(self) -> Path:
        """Path to settings file."""
        return self._config_path

    def load(self) -> ClientSettings:
        """
        Load settings from disk.

        Returns:
            ClientSettings instance (defaults if file not found)
        """
        if self._config_path.exists():
            try:
                with open(self._config_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                self._settings = ClientSettings.from_dict(data)
            except (json.JSONDecodeError, IOError):
                # Invalid or unreadable file, use defaults
                self._settings = ClientSettings()
        else:
            self._settings = ClientSettings()

        return self._settings

    def save(self, settings: ClientSettings) -> None:
        """
        Persist settings to disk.

        Args:
            settings: Settings to save
        """
        self._settings = settings

        self._config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self._config_path, "w", encoding="utf-8") as f:
            json.dump(settings.to_dict(), f, indent=2)

    def reset(self) -> ClientSettings:
        """
        Reset to default settings.

        Returns:
            Default ClientSettings instance
        """
        self._settings = ClientSettings()

        if self._config_path.exists():
            self._config_path.unlink()

        return self._settings

    def update(self, **kwargs) -> ClientSettings:
        """
        Update specific settings fields.

        Args:
            **kwargs: Field names and new values

        Returns:
            Updated ClientSettings instance
        """
        if self._settings is None:
            self.load()

        for key, value in kwargs.items():
            if hasattr(self._settings, key):
                setattr(self._settings, key, value)

        self.save(self._settings)
        return self._settings
