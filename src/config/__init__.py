"""Configuration module for the role hierarchy engine."""

from .database import DatabaseSettings, get_database_settings
from .settings import HierarchySettings, get_hierarchy_settings, reload_hierarchy_settings

__all__ = [
    "DatabaseSettings",
    "get_database_settings",
    "HierarchySettings",
    "get_hierarchy_settings",
    "reload_hierarchy_settings",
]
