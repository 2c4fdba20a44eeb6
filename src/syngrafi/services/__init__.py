"""Application services (settings persistence)."""

from .settings import Settings, SettingsStore, SecretVault

__all__ = ["Settings", "SettingsStore", "SecretVault"]
