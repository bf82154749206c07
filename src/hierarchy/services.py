"""
Assignment Authorization Service - gated mutations of the role hierarchy.

Every mutating operation runs its check-then-write sequence under a
per-tenant asyncio lock and inside one storage transaction, resolving the
tenant view through that same transaction. The storage unique index on
active assignments is the final backstop against duplicates written by
other processes.

Results:
- authorization, validation and not-found conditions come back as a
  failed ServiceResult carrying the error code
- PersistenceFailure / RetrievalFailure are raised, never returned

Usage:
    service = AssignmentAuthorizationService(SqlAlchemyHierarchyStore(factory))

    result = await service.assign_role("admin-1", "person-7", "TRAINER", "tenant-a")
    if not result.success:
        print(result.error_code, result.rejected)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from config.logging_config import get_logger
from config.settings import HierarchySettings, get_hierarchy_settings

from .catalog import HierarchyCatalog, HierarchyView, RoleDefinition
from .exceptions import (
    AssignmentNotFound,
    AuthorizationDenied,
    CycleDetected,
    DuplicateAssignment,
    ErrorCode,
    HierarchyError,
    InvalidHierarchyDefinition,
    InvalidPermissionName,
    PersistenceFailure,
    PersonNotFound,
    RoleAlreadyExists,
    RoleNotFound,
)
from .graph import (
    can_assign_to_role,
    can_manage_role,
    highest_authority,
    is_ancestor,
    path_to_root,
)
from .models import AuditAction
from .overlay import TenantOverlayResolver
from .permissions import assignable_permissions, effective_permissions, validate
from .records import (
    CustomRoleRequest,
    RoleAssignment,
    UserRoleHierarchy,
    VisibleRoles,
)
from .store import HierarchyRepository, HierarchyStore

logger = get_logger(__name__)


@dataclass
class ServiceResult:
    """Generic service operation result."""

    success: bool
    message: str
    errors: list[str] = field(default_factory=list)
    error_code: Optional[ErrorCode] = None
    data: Any = None
    rejected: list[str] = field(default_factory=list)

    @classmethod
    def failure(cls, error: HierarchyError) -> "ServiceResult":
        rejected = getattr(error, "rejected", None) or getattr(error, "invalid", None) or []
        return cls(
            success=False,
            message=error.message,
            errors=[error.message],
            error_code=error.code,
            data=error.details,
            rejected=list(rejected),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self.data
        if hasattr(data, "to_dict"):
            data = data.to_dict()
        elif isinstance(data, list):
            data = [d.to_dict() if hasattr(d, "to_dict") else d for d in data]
        return {
            "success": self.success,
            "message": self.message,
            "errors": self.errors,
            "error_code": self.error_code.value if self.error_code else None,
            "data": data,
            "rejected": self.rejected,
        }


def _service_operation(name: str):
    """Turn recoverable hierarchy errors into failed results."""
    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except PersistenceFailure:
                raise
            except HierarchyError as e:
                logger.warning(
                    f"{name} rejected: {e.message}",
                    extra={"operation": name, "code": e.code.value, **e.details},
                )
                return ServiceResult.failure(e)
        return wrapper
    return decorator


class AssignmentAuthorizationService:
    """Authorizes and performs role, permission and hierarchy changes."""

    def __init__(
        self,
        store: HierarchyStore,
        resolver: Optional[TenantOverlayResolver] = None,
        catalog: Optional[HierarchyCatalog] = None,
        settings: Optional[HierarchySettings] = None,
    ):
        self.store = store
        self.settings = settings or get_hierarchy_settings()
        self.resolver = resolver or TenantOverlayResolver(
            store, catalog=catalog, settings=self.settings
        )
        self._tenant_locks: Dict[str, asyncio.Lock] = {}

    @property
    def catalog(self) -> HierarchyCatalog:
        return self.resolver.catalog

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        return self._tenant_locks.setdefault(tenant_id, asyncio.Lock())

    async def _view(self, tenant_id: Optional[str]) -> HierarchyView:
        if tenant_id is None:
            return self.catalog
        return await self.resolver.resolve(tenant_id)

    @staticmethod
    async def _require_person(repo: HierarchyRepository, person_id: str) -> None:
        if not await repo.person_exists(person_id):
            raise PersonNotFound(person_id)

    @staticmethod
    async def _highest_role(
        repo: HierarchyRepository, view: HierarchyView, person_id: str, tenant_id: str
    ) -> Optional[str]:
        assignments = await repo.load_active_role_assignments(person_id, tenant_id)
        return highest_authority(view, [a.role_type for a in assignments])

    @staticmethod
    def _may_assign(view: HierarchyView, assigner_role: Optional[str], role_type: str) -> bool:
        """
        Allow-list check, extended to custom roles.

        Built-in allow-lists never name tenant custom roles, so a custom
        target is assignable by any role that outranks it.
        """
        if assigner_role is None:
            return False
        if can_assign_to_role(view, assigner_role, role_type):
            return True
        target = view.get(role_type)
        return bool(target and target.is_custom and can_manage_role(view, assigner_role, role_type))

    @staticmethod
    def _check_level(view: HierarchyView, role_type: str, level: int) -> None:
        """Ranked levels run from 0 up to, not including, the unranked level."""
        if level < 0 or level >= view.unranked_level:
            raise InvalidHierarchyDefinition(
                f"Level {level} is not a valid hierarchy level",
                {"role_type": role_type, "level": level, "unranked_level": view.unranked_level},
            )

    @staticmethod
    def _may_move(
        view: HierarchyView, requester_role: Optional[str], role_type: str, new_level: int
    ) -> bool:
        if requester_role is None or not view.exists(requester_role):
            return False
        if view.is_root_authority(requester_role):
            return True
        return (
            can_manage_role(view, requester_role, role_type)
            and view.get_level(requester_role) < new_level
        )

    @staticmethod
    def _derive_levels(
        view: HierarchyView, role_type: str, new_level: int, parent: Optional[str]
    ) -> Dict[str, Tuple[int, Optional[str]]]:
        """
        New (level, parent) for the role and its whole subtree.

        Children follow their parent at level + 1, walked depth-first
        with a visited set.
        """
        updates: Dict[str, Tuple[int, Optional[str]]] = {role_type: (new_level, parent)}
        visited = {role_type}
        stack = [(role_type, new_level, [role_type])]
        while stack:
            current, level, trail = stack.pop()
            for child in view.children_of(current):
                if child in visited:
                    raise CycleDetected(child, trail + [child])
                visited.add(child)
                updates[child] = (level + 1, current)
                stack.append((child, level + 1, trail + [child]))
        return updates

    # =========================================================================
    # ROLE ASSIGNMENT
    # =========================================================================

    @_service_operation("assign_role")
    async def assign_role(
        self,
        assigner_id: str,
        target_person_id: str,
        role_type: str,
        tenant_id: str,
        company_id: Optional[str] = None,
        is_primary: bool = False,
    ) -> ServiceResult:
        """
        Assign a role after checking the assigner's authority.

        Order of checks: persons exist, assigner may grant the role, role
        exists in the tenant view, no active duplicate.
        """
        async with self._lock_for(tenant_id):
            async with self.store.transaction() as repo:
                view = await self.resolver.resolve(tenant_id, repository=repo)
                await self._require_person(repo, assigner_id)
                await self._require_person(repo, target_person_id)

                assigner_role = await self._highest_role(repo, view, assigner_id, tenant_id)
                if not self._may_assign(view, assigner_role, role_type):
                    raise AuthorizationDenied(
                        f"Role {assigner_role} cannot assign role {role_type}",
                        rejected=[role_type],
                        assigner_id=assigner_id,
                        assigner_role=assigner_role,
                    )

                if not view.exists(role_type):
                    raise RoleNotFound(role_type, tenant_id)

                existing = await repo.find_active_role_assignment(
                    target_person_id, role_type, tenant_id
                )
                if existing is not None:
                    raise DuplicateAssignment(target_person_id, role_type, tenant_id)

                created = await repo.create_role_assignment(
                    RoleAssignment(
                        person_id=target_person_id,
                        role_type=role_type,
                        tenant_id=tenant_id,
                        assigned_by=assigner_id,
                        level=view.get_level(role_type),
                        company_id=company_id,
                        is_primary=is_primary,
                    )
                )
                await repo.record_audit(
                    AuditAction.ROLE_ASSIGNED,
                    tenant_id,
                    actor_id=assigner_id,
                    target_person_id=target_person_id,
                    role_type=role_type,
                    metadata={"assigner_role": assigner_role, "level": created.level},
                )

        logger.info(
            f"Role {role_type} assigned to {target_person_id}",
            extra={"assigner_id": assigner_id, "tenant_id": tenant_id},
        )
        return ServiceResult(success=True, message="Role assigned", data=created)

    @_service_operation("revoke_role")
    async def revoke_role(
        self,
        revoker_id: str,
        target_person_id: str,
        role_type: str,
        tenant_id: str,
    ) -> ServiceResult:
        """Deactivate an active assignment. The row is kept, only flagged."""
        async with self._lock_for(tenant_id):
            async with self.store.transaction() as repo:
                view = await self.resolver.resolve(tenant_id, repository=repo)
                await self._require_person(repo, revoker_id)

                revoker_role = await self._highest_role(repo, view, revoker_id, tenant_id)
                allowed = self._may_assign(view, revoker_role, role_type) or (
                    revoker_role is not None and can_manage_role(view, revoker_role, role_type)
                )
                if not allowed:
                    raise AuthorizationDenied(
                        f"Role {revoker_role} cannot revoke role {role_type}",
                        rejected=[role_type],
                        revoker_id=revoker_id,
                    )

                revoked = await repo.deactivate_role_assignment(
                    target_person_id, role_type, tenant_id, deactivated_by=revoker_id
                )
                if not revoked:
                    raise AssignmentNotFound(target_person_id, role_type, tenant_id)

                await repo.record_audit(
                    AuditAction.ROLE_REVOKED,
                    tenant_id,
                    actor_id=revoker_id,
                    target_person_id=target_person_id,
                    role_type=role_type,
                )

        logger.info(
            f"Role {role_type} revoked from {target_person_id}",
            extra={"revoker_id": revoker_id, "tenant_id": tenant_id},
        )
        return ServiceResult(success=True, message="Role revoked")

    # =========================================================================
    # PERMISSION ASSIGNMENT
    # =========================================================================

    @_service_operation("assign_permissions")
    async def assign_permissions(
        self,
        assigner_id: str,
        target_person_id: str,
        permissions: Iterable[str],
        tenant_id: str,
    ) -> ServiceResult:
        """
        Grant permissions directly to a person.

        All-or-nothing: unknown names fail with InvalidPermissionName,
        then every permission the assigner does not hold is reported at
        once in AuthorizationDenied.rejected. Re-granting is idempotent.
        """
        requested = list(dict.fromkeys(permissions))

        async with self._lock_for(tenant_id):
            async with self.store.transaction() as repo:
                view = await self.resolver.resolve(tenant_id, repository=repo)
                await self._require_person(repo, assigner_id)
                await self._require_person(repo, target_person_id)

                unknown = [p for p in requested if p not in view.permission_universe]
                if unknown:
                    raise InvalidPermissionName(unknown)

                assigner_role = await self._highest_role(repo, view, assigner_id, tenant_id)
                allowed = assignable_permissions(view, assigner_role)
                rejected = [p for p in requested if p not in allowed]
                if rejected:
                    raise AuthorizationDenied(
                        f"Role {assigner_role} cannot grant {len(rejected)} of the "
                        f"requested permissions",
                        rejected=rejected,
                        assigner_id=assigner_id,
                        assigner_role=assigner_role,
                    )

                grants = []
                for name in requested:
                    grants.append(
                        await repo.create_permission_grant(
                            target_person_id, name, assigner_id, tenant_id
                        )
                    )

                if any(g.is_new for g in grants):
                    await repo.record_audit(
                        AuditAction.PERMISSIONS_GRANTED,
                        tenant_id,
                        actor_id=assigner_id,
                        target_person_id=target_person_id,
                        metadata={"permissions": [g.permission_name for g in grants if g.is_new]},
                    )

        logger.info(
            f"Granted {len(grants)} permissions to {target_person_id}",
            extra={"assigner_id": assigner_id, "tenant_id": tenant_id},
        )
        return ServiceResult(success=True, message="Permissions assigned", data=grants)

    # =========================================================================
    # QUERIES
    # =========================================================================

    @_service_operation("get_user_role_hierarchy")
    async def get_user_role_hierarchy(self, person_id: str, tenant_id: str) -> ServiceResult:
        """Roles, direct grants, highest role and effective permissions of a person."""
        view = await self.resolver.resolve(tenant_id)
        async with self.store.transaction() as repo:
            await self._require_person(repo, person_id)
            roles = await repo.load_active_role_assignments(person_id, tenant_id)
            grants = await repo.load_active_permission_assignments(person_id, tenant_id=tenant_id)

        role_types = [r.role_type for r in roles]
        highest = highest_authority(view, role_types)
        effective = effective_permissions(view, role_types) | {
            g.permission_name for g in grants
        }
        hierarchy = UserRoleHierarchy(
            person_id=person_id,
            tenant_id=tenant_id,
            roles=roles,
            permissions=grants,
            highest_role=highest,
            highest_level=view.get_level(highest) if highest else None,
            effective_permissions=frozenset(effective),
        )
        return ServiceResult(success=True, message="Role hierarchy loaded", data=hierarchy)

    @_service_operation("get_visible_roles_for_user")
    async def get_visible_roles_for_user(
        self,
        person_id: str,
        tenant_id: str,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> ServiceResult:
        """Every role strictly below the person's highest role, paginated."""
        if offset < 0 or (limit is not None and limit < 0):
            raise InvalidHierarchyDefinition(
                "offset and limit must not be negative",
                {"offset": offset, "limit": limit},
            )

        view = await self.resolver.resolve(tenant_id)
        async with self.store.transaction() as repo:
            await self._require_person(repo, person_id)
            highest = await self._highest_role(repo, view, person_id, tenant_id)

        user_level = view.get_level(highest) if highest else view.unranked_level
        visible = [r for r in view.get_all() if r.level > user_level]
        end = None if limit is None else offset + limit
        page = VisibleRoles(
            roles=visible[offset:end],
            user_level=user_level,
            highest_role=highest,
            total_count=len(visible),
            offset=offset,
            limit=limit,
        )
        return ServiceResult(success=True, message="Visible roles loaded", data=page)

    async def get_user_level(self, person_id: str, tenant_id: str) -> int:
        """Level of the person's highest role, or the unranked level."""
        view = await self.resolver.resolve(tenant_id)
        async with self.store.transaction() as repo:
            highest = await self._highest_role(repo, view, person_id, tenant_id)
        return view.get_level(highest) if highest else view.unranked_level

    async def can_move_role(
        self, requester_id: str, role_type: str, new_level: int, tenant_id: str
    ) -> bool:
        """Whether the requester may place ``role_type`` at ``new_level``."""
        view = await self.resolver.resolve(tenant_id)
        async with self.store.transaction() as repo:
            requester_role = await self._highest_role(repo, view, requester_id, tenant_id)
        return (
            view.exists(role_type)
            and 0 <= new_level < view.unranked_level
            and self._may_move(view, requester_role, role_type, new_level)
        )

    # =========================================================================
    # CUSTOM ROLES
    # =========================================================================

    @_service_operation("add_custom_role")
    async def add_custom_role(self, request: CustomRoleRequest, tenant_id: str) -> ServiceResult:
        """
        Create (or revive) a tenant custom role.

        The creator must be root authority or strictly outrank the new
        role's level, and may only put permissions they hold into it.
        """
        requested = set(request.permissions)

        async with self._lock_for(tenant_id):
            async with self.store.transaction() as repo:
                view = await self.resolver.resolve(tenant_id, repository=repo)
                await self._require_person(repo, request.created_by)

                if view.exists(request.role_type):
                    raise RoleAlreadyExists(request.role_type, tenant_id)

                if request.parent_role_type is not None:
                    if not view.exists(request.parent_role_type):
                        raise RoleNotFound(request.parent_role_type, tenant_id)
                    level = view.get_level(request.parent_role_type) + 1
                elif request.level is not None:
                    level = request.level
                else:
                    level = self.settings.default_custom_role_level

                self._check_level(view, request.role_type, level)

                creator_role = await self._highest_role(
                    repo, view, request.created_by, tenant_id
                )
                if creator_role is None or not (
                    view.is_root_authority(creator_role)
                    or view.get_level(creator_role) < level
                ):
                    raise AuthorizationDenied(
                        f"Role {creator_role} cannot create a role at level {level}",
                        rejected=[request.role_type],
                        creator_id=request.created_by,
                    )

                check = validate(view, creator_role, requested)
                if check.invalid:
                    raise InvalidPermissionName(check.invalid)
                if check.extra:
                    raise AuthorizationDenied(
                        f"Role {creator_role} cannot delegate permissions it does not hold",
                        rejected=check.extra,
                        creator_id=request.created_by,
                    )

                stored = await repo.upsert_custom_role(
                    RoleDefinition(
                        role_type=request.role_type,
                        level=level,
                        parent_role_type=request.parent_role_type,
                        display_name=request.display_name,
                        description=request.description,
                        permissions=frozenset(requested),
                        is_custom=True,
                        tenant_id=tenant_id,
                        created_by=request.created_by,
                    )
                )
                await repo.record_audit(
                    AuditAction.CUSTOM_ROLE_CREATED,
                    tenant_id,
                    actor_id=request.created_by,
                    role_type=request.role_type,
                    metadata={"level": level, "parent_role_type": request.parent_role_type},
                )

        self.resolver.invalidate(tenant_id)
        logger.info(
            f"Custom role {request.role_type} created at level {level}",
            extra={"tenant_id": tenant_id, "created_by": request.created_by},
        )
        return ServiceResult(success=True, message="Custom role created", data=stored)

    @_service_operation("delete_custom_role")
    async def delete_custom_role(
        self, requester_id: str, role_type: str, tenant_id: str
    ) -> ServiceResult:
        """Soft-delete a custom role and deactivate every assignment of it."""
        async with self._lock_for(tenant_id):
            async with self.store.transaction() as repo:
                view = await self.resolver.resolve(tenant_id, repository=repo)
                role = view.get(role_type)
                if role is None or not role.is_custom:
                    raise RoleNotFound(role_type, tenant_id)

                await self._require_person(repo, requester_id)
                requester_role = await self._highest_role(repo, view, requester_id, tenant_id)
                if requester_role is None or not can_manage_role(view, requester_role, role_type):
                    raise AuthorizationDenied(
                        f"Role {requester_role} cannot delete role {role_type}",
                        rejected=[role_type],
                        requester_id=requester_id,
                    )

                await repo.soft_delete_custom_role(tenant_id, role_type)
                deactivated = await repo.deactivate_role_assignments_for_role(
                    role_type, tenant_id, deactivated_by=requester_id
                )
                await repo.record_audit(
                    AuditAction.CUSTOM_ROLE_DELETED,
                    tenant_id,
                    actor_id=requester_id,
                    role_type=role_type,
                    metadata={"deactivated_assignments": deactivated},
                )

        self.resolver.invalidate(tenant_id)
        logger.info(
            f"Custom role {role_type} deleted",
            extra={"tenant_id": tenant_id, "deactivated_assignments": deactivated},
        )
        return ServiceResult(
            success=True,
            message="Custom role deleted",
            data={"role_type": role_type, "deactivated_assignments": deactivated},
        )

    # =========================================================================
    # HIERARCHY MUTATION
    # =========================================================================

    @_service_operation("update_role_hierarchy")
    async def update_role_hierarchy(
        self,
        role_type: str,
        new_level: int,
        new_parent: Optional[str],
        tenant_id: str,
        requested_by: str,
    ) -> ServiceResult:
        """
        Move a role and re-derive the levels of its whole subtree.

        ``new_parent=None`` keeps the current parent. The requester must be
        root authority, or manage the role and outrank ``new_level``. Every
        derived level must stay ranked. The role and all descendants are
        written in one transaction.
        """
        async with self._lock_for(tenant_id):
            async with self.store.transaction() as repo:
                view = await self.resolver.resolve(tenant_id, repository=repo)
                current = view.get(role_type)
                if current is None:
                    raise RoleNotFound(role_type, tenant_id)

                parent = current.parent_role_type
                if new_parent is not None:
                    if not view.exists(new_parent):
                        raise RoleNotFound(new_parent, tenant_id)
                    if new_parent == role_type or is_ancestor(view, role_type, new_parent):
                        raise CycleDetected(role_type, path_to_root(view, new_parent) + [role_type])
                    parent = new_parent

                self._check_level(view, role_type, new_level)

                await self._require_person(repo, requested_by)
                requester_role = await self._highest_role(repo, view, requested_by, tenant_id)
                if not self._may_move(view, requester_role, role_type, new_level):
                    raise AuthorizationDenied(
                        f"Role {requester_role} cannot move role {role_type} "
                        f"to level {new_level}",
                        rejected=[role_type],
                        requester_id=requested_by,
                    )

                updates = self._derive_levels(view, role_type, new_level, parent)
                for updated_role, (level, _) in updates.items():
                    self._check_level(view, updated_role, level)
                for updated_role, (level, updated_parent) in updates.items():
                    await repo.update_role_level(
                        tenant_id, updated_role, level, updated_parent, updated_by=requested_by
                    )
                await repo.record_audit(
                    AuditAction.HIERARCHY_UPDATED,
                    tenant_id,
                    actor_id=requested_by,
                    role_type=role_type,
                    metadata={
                        "previous_level": current.level,
                        "levels": {r: lvl for r, (lvl, _) in updates.items()},
                    },
                )

        self.resolver.invalidate(tenant_id)
        logger.info(
            f"Role {role_type} moved to level {new_level}; {len(updates) - 1} descendants re-leveled",
            extra={"tenant_id": tenant_id, "parent_role_type": parent},
        )
        return ServiceResult(
            success=True,
            message="Role hierarchy updated",
            data={
                "role_type": role_type,
                "level": new_level,
                "parent_role_type": parent,
                "updated_levels": {r: lvl for r, (lvl, _) in updates.items()},
            },
        )

    # =========================================================================
    # READ-ONLY ACCESSORS
    # =========================================================================

    async def resolve_hierarchy(self, tenant_id: Optional[str] = None) -> HierarchyView:
        """Tenant view, or the built-in catalog when no tenant is given."""
        return await self._view(tenant_id)

    async def effective_permissions(
        self, roles: Iterable[str], tenant_id: Optional[str] = None
    ) -> FrozenSet[str]:
        return effective_permissions(await self._view(tenant_id), roles)

    async def can_assign_to_role(
        self, assigner_role: str, target_role: str, tenant_id: Optional[str] = None
    ) -> bool:
        return self._may_assign(await self._view(tenant_id), assigner_role, target_role)

    async def can_manage_role(
        self, manager_role: str, target_role: str, tenant_id: Optional[str] = None
    ) -> bool:
        return can_manage_role(await self._view(tenant_id), manager_role, target_role)

    async def get_assignable_roles(
        self, role_type: str, tenant_id: Optional[str] = None
    ) -> List[RoleDefinition]:
        """Full definitions of every role ``role_type`` may assign."""
        view = await self._view(tenant_id)
        return [r for r in view.get_all() if self._may_assign(view, role_type, r.role_type)]

    async def get_assignable_permissions(
        self, role_type: str, tenant_id: Optional[str] = None
    ) -> FrozenSet[str]:
        return assignable_permissions(await self._view(tenant_id), role_type)
