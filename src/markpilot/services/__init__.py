"""Service layer helpers (settings, credentials)."""

from .credentials import CredentialChange, CredentialStore
from .settings import SecretVault, Settings, SettingsStore

__all__ = ["CredentialChange", "CredentialStore", "SecretVault", "Settings", "SettingsStore"]
