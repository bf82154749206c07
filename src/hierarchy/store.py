"""
Hierarchy store - the persistence collaborator of the engine.

The engine talks to storage only through ``HierarchyStore.transaction()``,
which yields a ``HierarchyRepository`` bound to one database transaction.
Everything done through that repository commits together when the block
exits cleanly and rolls back on any exception, cancellation included.

Storage exceptions never leak: an active-assignment unique violation
becomes DuplicateAssignment, any other SQLAlchemyError becomes
PersistenceFailure.

Usage:
    store = SqlAlchemyHierarchyStore(session_factory)

    async with store.transaction() as repo:
        roles = await repo.load_active_role_assignments("p-1", "tenant-a")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, AsyncContextManager, AsyncIterator, Dict, List, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.logging_config import get_logger
from database.models import utcnow
from database.transaction import TransactionManager

from .catalog import RoleDefinition
from .exceptions import DuplicateAssignment, PersistenceFailure
from .models import (
    AuditAction,
    CustomRole,
    CustomRolePermission,
    HierarchyAuditLog,
    Permission,
    Person,
    PersonPermission,
    PersonRole,
    RolePlacementOverride,
)
from .permissions import describe_permission
from .records import PermissionAssignment, RoleAssignment, RolePlacement

logger = get_logger(__name__)


# =============================================================================
# CONTRACT
# =============================================================================

class HierarchyRepository(ABC):
    """Storage operations available inside one transaction."""

    @abstractmethod
    async def person_exists(self, person_id: str) -> bool: ...

    @abstractmethod
    async def load_active_role_assignments(
        self, person_id: str, tenant_id: str
    ) -> List[RoleAssignment]: ...

    @abstractmethod
    async def load_active_permission_assignments(
        self, person_id: str, tenant_id: Optional[str] = None
    ) -> List[PermissionAssignment]: ...

    @abstractmethod
    async def load_custom_roles(self, tenant_id: str) -> List[RoleDefinition]: ...

    @abstractmethod
    async def load_role_placements(self, tenant_id: str) -> List[RolePlacement]: ...

    @abstractmethod
    async def find_active_role_assignment(
        self, person_id: str, role_type: str, tenant_id: str
    ) -> Optional[RoleAssignment]: ...

    @abstractmethod
    async def create_role_assignment(self, record: RoleAssignment) -> RoleAssignment:
        """Persist a new assignment. Raises DuplicateAssignment on a clash."""

    @abstractmethod
    async def deactivate_role_assignment(
        self, person_id: str, role_type: str, tenant_id: str,
        deactivated_by: Optional[str] = None,
    ) -> bool: ...

    @abstractmethod
    async def deactivate_role_assignments_for_role(
        self, role_type: str, tenant_id: str, deactivated_by: Optional[str] = None,
    ) -> int: ...

    @abstractmethod
    async def create_permission_grant(
        self, person_id: str, permission_name: str, granted_by: Optional[str],
        tenant_id: str,
    ) -> PermissionAssignment:
        """Grant a permission. Re-granting returns the existing record."""

    @abstractmethod
    async def upsert_custom_role(self, definition: RoleDefinition) -> RoleDefinition: ...

    @abstractmethod
    async def soft_delete_custom_role(self, tenant_id: str, role_type: str) -> bool: ...

    @abstractmethod
    async def update_role_level(
        self, tenant_id: str, role_type: str, new_level: int,
        parent_role_type: Optional[str], updated_by: Optional[str] = None,
    ) -> None: ...

    @abstractmethod
    async def record_audit(
        self, action: AuditAction, tenant_id: str,
        actor_id: Optional[str] = None, target_person_id: Optional[str] = None,
        role_type: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None,
    ) -> None: ...


class HierarchyStore(ABC):
    """Factory of transactional repositories."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[HierarchyRepository]: ...


# =============================================================================
# SQLALCHEMY IMPLEMENTATION
# =============================================================================

def _guarded(operation: str):
    """Translate storage errors raised by a repository method."""
    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except SQLAlchemyError as e:
                logger.error(
                    f"Hierarchy store operation {operation} failed: {e}",
                    exc_info=True,
                    extra={"operation": operation},
                )
                raise PersistenceFailure(
                    f"Storage error during {operation}", operation=operation
                ) from e
        return wrapper
    return decorator


def _to_role_assignment(row: PersonRole) -> RoleAssignment:
    return RoleAssignment(
        person_id=row.person_id,
        role_type=row.role_type,
        tenant_id=row.tenant_id,
        assigned_by=row.assigned_by,
        level=row.level,
        company_id=row.company_id,
        is_primary=row.is_primary,
        is_active=row.is_active,
        assigned_at=row.assigned_at,
        assignment_id=row.assignment_id,
    )


def _to_permission_assignment(row: PersonPermission, is_new: bool = False) -> PermissionAssignment:
    return PermissionAssignment(
        person_id=row.person_id,
        permission_name=row.permission.name,
        granted_by=row.granted_by,
        granted_at=row.granted_at,
        tenant_id=row.permission.tenant_id,
        grant_id=row.grant_id,
        is_new=is_new,
    )


def _to_role_definition(row: CustomRole) -> RoleDefinition:
    return RoleDefinition(
        role_type=row.role_type,
        level=row.level,
        parent_role_type=row.parent_role_type,
        display_name=row.display_name,
        description=row.description or "",
        permissions=frozenset(p.permission_name for p in row.permissions),
        is_custom=True,
        tenant_id=row.tenant_id,
        custom_role_id=row.custom_role_id,
        created_by=row.created_by,
    )


class SqlAlchemyHierarchyRepository(HierarchyRepository):
    """Repository over one AsyncSession. Flushes eagerly, never commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @_guarded("person_exists")
    async def person_exists(self, person_id: str) -> bool:
        stmt = select(Person.person_id).where(
            and_(
                Person.person_id == person_id,
                Person.is_active.is_(True),
                Person.deleted_at.is_(None),
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @_guarded("load_active_role_assignments")
    async def load_active_role_assignments(
        self, person_id: str, tenant_id: str
    ) -> List[RoleAssignment]:
        stmt = (
            select(PersonRole)
            .where(
                and_(
                    PersonRole.person_id == person_id,
                    PersonRole.tenant_id == tenant_id,
                    PersonRole.is_active.is_(True),
                )
            )
            .order_by(PersonRole.assigned_at, PersonRole.role_type)
        )
        result = await self.session.execute(stmt)
        return [_to_role_assignment(row) for row in result.scalars().all()]

    @_guarded("load_active_permission_assignments")
    async def load_active_permission_assignments(
        self, person_id: str, tenant_id: Optional[str] = None
    ) -> List[PermissionAssignment]:
        stmt = (
            select(PersonPermission)
            .join(Permission, PersonPermission.permission_id == Permission.permission_id)
            .where(PersonPermission.person_id == person_id)
            .order_by(Permission.name)
        )
        if tenant_id is not None:
            stmt = stmt.where(Permission.tenant_id == tenant_id)
        result = await self.session.execute(stmt)
        return [_to_permission_assignment(row) for row in result.scalars().all()]

    @_guarded("load_custom_roles")
    async def load_custom_roles(self, tenant_id: str) -> List[RoleDefinition]:
        stmt = (
            select(CustomRole)
            .where(
                and_(
                    CustomRole.tenant_id == tenant_id,
                    CustomRole.is_active.is_(True),
                    CustomRole.deleted_at.is_(None),
                )
            )
            .order_by(CustomRole.role_type)
        )
        result = await self.session.execute(stmt)
        return [_to_role_definition(row) for row in result.scalars().all()]

    @_guarded("load_role_placements")
    async def load_role_placements(self, tenant_id: str) -> List[RolePlacement]:
        stmt = select(RolePlacementOverride).where(RolePlacementOverride.tenant_id == tenant_id)
        result = await self.session.execute(stmt)
        return [
            RolePlacement(
                tenant_id=row.tenant_id,
                role_type=row.role_type,
                level=row.level,
                parent_role_type=row.parent_role_type,
            )
            for row in result.scalars().all()
        ]

    async def _active_assignment_row(
        self, person_id: str, role_type: str, tenant_id: str
    ) -> Optional[PersonRole]:
        stmt = select(PersonRole).where(
            and_(
                PersonRole.person_id == person_id,
                PersonRole.role_type == role_type,
                PersonRole.tenant_id == tenant_id,
                PersonRole.is_active.is_(True),
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @_guarded("find_active_role_assignment")
    async def find_active_role_assignment(
        self, person_id: str, role_type: str, tenant_id: str
    ) -> Optional[RoleAssignment]:
        row = await self._active_assignment_row(person_id, role_type, tenant_id)
        return _to_role_assignment(row) if row else None

    @_guarded("create_role_assignment")
    async def create_role_assignment(self, record: RoleAssignment) -> RoleAssignment:
        row = PersonRole(
            person_id=record.person_id,
            role_type=record.role_type,
            tenant_id=record.tenant_id,
            company_id=record.company_id,
            level=record.level,
            assigned_by=record.assigned_by,
            assigned_at=record.assigned_at or utcnow(),
            is_primary=record.is_primary,
            is_active=True,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateAssignment(record.person_id, record.role_type, record.tenant_id) from e
        return _to_role_assignment(row)

    @_guarded("deactivate_role_assignment")
    async def deactivate_role_assignment(
        self, person_id: str, role_type: str, tenant_id: str,
        deactivated_by: Optional[str] = None,
    ) -> bool:
        row = await self._active_assignment_row(person_id, role_type, tenant_id)
        if row is None:
            return False
        row.is_active = False
        row.deactivated_at = utcnow()
        row.deactivated_by = deactivated_by
        await self.session.flush()
        return True

    @_guarded("deactivate_role_assignments_for_role")
    async def deactivate_role_assignments_for_role(
        self, role_type: str, tenant_id: str, deactivated_by: Optional[str] = None,
    ) -> int:
        stmt = (
            update(PersonRole)
            .where(
                and_(
                    PersonRole.role_type == role_type,
                    PersonRole.tenant_id == tenant_id,
                    PersonRole.is_active.is_(True),
                )
            )
            .values(is_active=False, deactivated_at=utcnow(), deactivated_by=deactivated_by)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    @_guarded("create_permission_grant")
    async def create_permission_grant(
        self, person_id: str, permission_name: str, granted_by: Optional[str],
        tenant_id: str,
    ) -> PermissionAssignment:
        result = await self.session.execute(
            select(Permission).where(
                and_(Permission.tenant_id == tenant_id, Permission.name == permission_name)
            )
        )
        permission = result.scalar_one_or_none()
        if permission is None:
            grant = describe_permission(permission_name)
            permission = Permission(
                tenant_id=tenant_id,
                name=permission_name,
                resource=grant.resource,
                action=grant.action,
            )
            self.session.add(permission)
            await self.session.flush()

        result = await self.session.execute(
            select(PersonPermission).where(
                and_(
                    PersonPermission.person_id == person_id,
                    PersonPermission.permission_id == permission.permission_id,
                )
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return _to_permission_assignment(existing)

        row = PersonPermission(
            person_id=person_id,
            permission_id=permission.permission_id,
            granted_by=granted_by,
            granted_at=utcnow(),
        )
        row.permission = permission
        self.session.add(row)
        await self.session.flush()
        return _to_permission_assignment(row, is_new=True)

    @_guarded("upsert_custom_role")
    async def upsert_custom_role(self, definition: RoleDefinition) -> RoleDefinition:
        result = await self.session.execute(
            select(CustomRole).where(
                and_(
                    CustomRole.tenant_id == definition.tenant_id,
                    CustomRole.role_type == definition.role_type,
                )
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = CustomRole(
                tenant_id=definition.tenant_id,
                role_type=definition.role_type,
                created_by=definition.created_by,
                permissions=[],
            )
            self.session.add(row)

        row.display_name = definition.display_name
        row.description = definition.description
        row.parent_role_type = definition.parent_role_type
        row.level = definition.level
        row.is_active = True
        row.deleted_at = None

        # Diff rather than replace: the unique constraint on
        # (custom_role_id, permission_name) forbids delete+insert in one flush
        wanted = set(definition.permissions)
        for perm in list(row.permissions):
            if perm.permission_name not in wanted:
                row.permissions.remove(perm)
        held = {p.permission_name for p in row.permissions}
        for name in sorted(wanted - held):
            row.permissions.append(CustomRolePermission(permission_name=name))

        await self.session.flush()
        return _to_role_definition(row)

    @_guarded("soft_delete_custom_role")
    async def soft_delete_custom_role(self, tenant_id: str, role_type: str) -> bool:
        result = await self.session.execute(
            select(CustomRole).where(
                and_(
                    CustomRole.tenant_id == tenant_id,
                    CustomRole.role_type == role_type,
                    CustomRole.deleted_at.is_(None),
                )
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            return False
        row.is_active = False
        row.deleted_at = utcnow()
        await self.session.flush()
        return True

    @_guarded("update_role_level")
    async def update_role_level(
        self, tenant_id: str, role_type: str, new_level: int,
        parent_role_type: Optional[str], updated_by: Optional[str] = None,
    ) -> None:
        result = await self.session.execute(
            select(CustomRole).where(
                and_(
                    CustomRole.tenant_id == tenant_id,
                    CustomRole.role_type == role_type,
                    CustomRole.deleted_at.is_(None),
                )
            )
        )
        custom = result.scalar_one_or_none()
        if custom is not None:
            custom.level = new_level
            custom.parent_role_type = parent_role_type
        else:
            # Built-in roles are immutable; record a tenant placement instead
            placement = await self.session.get(RolePlacementOverride, (tenant_id, role_type))
            if placement is None:
                placement = RolePlacementOverride(tenant_id=tenant_id, role_type=role_type)
                self.session.add(placement)
            placement.level = new_level
            placement.parent_role_type = parent_role_type
            placement.updated_by = updated_by
        await self.session.flush()

    @_guarded("record_audit")
    async def record_audit(
        self, action: AuditAction, tenant_id: str,
        actor_id: Optional[str] = None, target_person_id: Optional[str] = None,
        role_type: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.session.add(
            HierarchyAuditLog(
                action=action,
                tenant_id=tenant_id,
                actor_id=actor_id,
                target_person_id=target_person_id,
                role_type=role_type,
                event_metadata=metadata or {},
            )
        )
        await self.session.flush()

    @_guarded("register_person")
    async def register_person(
        self, person_id: str, tenant_id: str, display_name: Optional[str] = None
    ) -> None:
        """Add a principal to the registry if absent. Used for seeding."""
        if await self.session.get(Person, person_id) is None:
            self.session.add(
                Person(person_id=person_id, tenant_id=tenant_id, display_name=display_name)
            )
            await self.session.flush()


class SqlAlchemyHierarchyStore(HierarchyStore):
    """HierarchyStore backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlAlchemyHierarchyRepository]:
        try:
            async with TransactionManager(self._session_factory) as session:
                yield SqlAlchemyHierarchyRepository(session)
        except SQLAlchemyError as e:
            logger.error(f"Hierarchy transaction failed: {e}", exc_info=True)
            raise PersistenceFailure("Storage transaction failed", operation="commit") from e
