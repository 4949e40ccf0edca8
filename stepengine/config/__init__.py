"""
Configuration module exports.
"""

from stepengine.config.settings import ConfigManager, Settings, get_settings

__all__ = [
    "Settings",
    "ConfigManager",
    "get_settings",
]
