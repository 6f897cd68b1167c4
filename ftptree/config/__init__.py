"""Configuration module for ftptree.

This module handles connection settings and credentials:
- SettingsManager: JSON-based settings persistence
- CredentialManager: Secure credential storage via keyring
- Paths: Path constants and discovery
- ClientSettings: Settings dataclass
"""
