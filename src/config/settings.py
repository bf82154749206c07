"""Hierarchy engine settings using Pydantic Settings.

Tuning knobs for the role hierarchy engine. Every value can be
overridden from the environment with the RBAC_ prefix, e.g.:

    RBAC_VIEW_CACHE_TTL_SECONDS=30
    RBAC_VIEW_CACHE_ENABLED=false
    RBAC_DEFAULT_CUSTOM_ROLE_LEVEL=4
"""

import logging
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class HierarchySettings(BaseSettings):
    """Role hierarchy and permission engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RBAC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Per-tenant hierarchy view cache
    view_cache_enabled: bool = Field(
        default=True,
        description="Cache resolved tenant hierarchy views in process"
    )
    view_cache_ttl_seconds: int = Field(
        default=60,
        ge=0,
        description="Seconds a resolved tenant view stays cached"
    )
    view_cache_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of tenant views kept in the cache"
    )

    # Hierarchy defaults
    default_custom_role_level: int = Field(
        default=3,
        ge=0,
        description="Level given to a custom role created without parent or level"
    )
    unranked_level: int = Field(
        default=999,
        ge=1,
        description="Level reported for roles unknown to the hierarchy"
    )

    @model_validator(mode="after")
    def check_levels(self) -> "HierarchySettings":
        """Unranked roles must sit below every custom role default."""
        if self.default_custom_role_level >= self.unranked_level:
            raise ValueError(
                "default_custom_role_level must be lower than unranked_level"
            )
        return self


@lru_cache
def get_hierarchy_settings() -> HierarchySettings:
    """
    Get cached hierarchy settings instance.

    Returns:
        HierarchySettings: Cached settings loaded from environment.
    """
    return HierarchySettings()


def reload_hierarchy_settings() -> HierarchySettings:
    """Clear the settings cache and reload from the environment."""
    get_hierarchy_settings.cache_clear()
    settings = get_hierarchy_settings()
    logger.debug(
        "Hierarchy settings reloaded",
        extra={"view_cache_enabled": settings.view_cache_enabled},
    )
    return settings
