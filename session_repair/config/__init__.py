"""Configuration for session repair services."""

from session_repair.config.base import RepairSettings, get_settings, lazy_settings, settings

__all__ = [
    'RepairSettings',
    'get_settings',
    'lazy_settings',
    'settings',
]
