"""
Tenant Overlay Resolver - merges the built-in catalog with tenant data.

The merged view contains:
- every built-in role, with tenant placement overrides applied
- every active, non-deleted custom role of the tenant

Custom roles carry no stored allow-list; their assignable targets are
computed as every role they strictly outrank. Authorization still goes
through the level-based gate in the service.

Resolution fails closed: any storage error raises RetrievalFailure and no
partial view is ever returned.
"""

from dataclasses import replace
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from config.logging_config import get_logger
from config.settings import HierarchySettings, get_hierarchy_settings

from .cache import HierarchyViewCache
from .catalog import HierarchyCatalog, HierarchyView, RoleDefinition, get_role_catalog
from .exceptions import InvalidHierarchyDefinition, PersistenceFailure, RetrievalFailure
from .records import RolePlacement
from .store import HierarchyRepository, HierarchyStore

logger = get_logger(__name__)


class TenantOverlayResolver:
    """Produces the effective HierarchyView of a tenant."""

    def __init__(
        self,
        store: HierarchyStore,
        catalog: Optional[HierarchyCatalog] = None,
        cache: Optional[HierarchyViewCache] = None,
        settings: Optional[HierarchySettings] = None,
    ):
        self.store = store
        self.catalog = catalog or get_role_catalog()
        self.settings = settings or get_hierarchy_settings()
        self.cache = cache or HierarchyViewCache(
            maxsize=self.settings.view_cache_size,
            ttl_seconds=self.settings.view_cache_ttl_seconds,
            enabled=self.settings.view_cache_enabled,
        )
        if self.settings.unranked_level <= self.catalog.max_level:
            raise InvalidHierarchyDefinition(
                f"unranked_level {self.settings.unranked_level} must be deeper than "
                f"the catalog's deepest level {self.catalog.max_level}",
                {"unranked_level": self.settings.unranked_level},
            )

    async def resolve(
        self,
        tenant_id: str,
        repository: Optional[HierarchyRepository] = None,
    ) -> HierarchyView:
        """
        Resolve the merged hierarchy of ``tenant_id``.

        When ``repository`` is given the view is read through that open
        transaction and the cache is bypassed, so authorization decisions
        see the same snapshot their writes commit against.

        Raises:
            RetrievalFailure: if the tenant data could not be loaded.
        """
        if repository is not None:
            return await self._load(tenant_id, repository)

        cached = self.cache.get(tenant_id)
        if cached is not None:
            return cached

        version = self.cache.version(tenant_id)
        try:
            async with self.store.transaction() as repo:
                view = await self._load(tenant_id, repo)
        except RetrievalFailure:
            raise
        except (PersistenceFailure, SQLAlchemyError, OSError) as e:
            logger.error(
                f"Failed to open hierarchy transaction for tenant {tenant_id}: {e}",
                extra={"tenant_id": tenant_id},
            )
            raise RetrievalFailure(
                f"Hierarchy for tenant {tenant_id} is unavailable", operation="resolve"
            ) from e

        self.cache.set(tenant_id, view, version)
        return view

    def invalidate(self, tenant_id: str) -> None:
        self.cache.invalidate(tenant_id)

    async def _load(self, tenant_id: str, repository: HierarchyRepository) -> HierarchyView:
        try:
            placements = await repository.load_role_placements(tenant_id)
            custom_roles = await repository.load_custom_roles(tenant_id)
        except (PersistenceFailure, SQLAlchemyError, OSError) as e:
            logger.error(
                f"Failed to load hierarchy for tenant {tenant_id}: {e}",
                extra={"tenant_id": tenant_id},
            )
            raise RetrievalFailure(
                f"Hierarchy for tenant {tenant_id} is unavailable", operation="resolve"
            ) from e
        return self.merge(tenant_id, placements, custom_roles)

    def merge(
        self,
        tenant_id: str,
        placements: Iterable[RolePlacement],
        custom_roles: Iterable[RoleDefinition],
    ) -> HierarchyView:
        """Build a tenant view from the catalog plus loaded tenant rows."""
        roles = {r.role_type: r for r in self.catalog.get_all()}
        unranked = self.settings.unranked_level

        for placement in placements:
            base = roles.get(placement.role_type)
            if base is None:
                logger.warning(
                    f"Ignoring placement for unknown built-in role {placement.role_type}",
                    extra={"tenant_id": tenant_id},
                )
                continue
            if not 0 <= placement.level < unranked:
                logger.warning(
                    f"Ignoring placement of {placement.role_type} at unranked level {placement.level}",
                    extra={"tenant_id": tenant_id},
                )
                continue
            roles[placement.role_type] = replace(
                base, level=placement.level, parent_role_type=placement.parent_role_type
            )

        customs: List[RoleDefinition] = []
        for custom in custom_roles:
            if custom.role_type in roles:
                logger.warning(
                    f"Custom role {custom.role_type} collides with a built-in role; skipped",
                    extra={"tenant_id": tenant_id},
                )
                continue
            if not 0 <= custom.level < unranked:
                logger.warning(
                    f"Custom role {custom.role_type} has unranked level {custom.level}; skipped",
                    extra={"tenant_id": tenant_id},
                )
                continue
            customs.append(replace(custom, is_custom=True, tenant_id=tenant_id))

        everything = list(roles.values()) + customs
        merged = list(roles.values())
        for custom in customs:
            targets = frozenset(r.role_type for r in everything if r.level > custom.level)
            merged.append(replace(custom, assignable_targets=targets))

        return HierarchyView(merged, tenant_id=tenant_id, unranked_level=self.settings.unranked_level)
