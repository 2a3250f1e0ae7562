"""Configuration module for posvault"""

from posvault.config.secure_settings import SecureSettingsManager
from posvault.config.settings import (
    MIN_KDF_ITERATIONS,
    Settings,
    clear_settings_cache,
    get_settings,
    override_settings,
)

__all__ = [
    "MIN_KDF_ITERATIONS",
    "Settings",
    "get_settings",
    "clear_settings_cache",
    "override_settings",
    "SecureSettingsManager",
]
