"""
Configuration package.

Exports the singleton settings instance for easy importing.

Usage:
    from schemarepo.config import settings

    print(settings.db_schemas)
"""

from schemarepo.config.settings import Settings, settings, get_settings, print_settings

__all__ = [
    "Settings",
    "settings",
    "get_settings",
    "print_settings",
]
