"""Configuration module."""

from .settings import Settings, ensure_root_api_key, get_settings, save_settings

__all__ = [
    "Settings",
    "ensure_root_api_key",
    "get_settings",
    "save_settings",
]
