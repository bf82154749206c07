"""
Plain data records exchanged between the engine, its store and callers.

No framework objects cross the engine boundary; every record here can be
turned into a JSON-friendly dict with ``to_dict()``.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional
from uuid import UUID

from .catalog import RoleDefinition


def _jsonable(data: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in data.items():
        if isinstance(value, UUID):
            value = str(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        out[key] = value
    return out


@dataclass
class RoleAssignment:
    """A principal holding a role within a tenant."""
    person_id: str
    role_type: str
    tenant_id: str
    assigned_by: Optional[str]
    level: int
    company_id: Optional[str] = None
    is_primary: bool = False
    is_active: bool = True
    assigned_at: Optional[datetime] = None
    assignment_id: Optional[UUID] = None

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class PermissionAssignment:
    """An ad-hoc permission granted directly to a principal."""
    person_id: str
    permission_name: str
    granted_by: Optional[str]
    granted_at: Optional[datetime] = None
    tenant_id: Optional[str] = None
    grant_id: Optional[UUID] = None
    # True when this call created the grant, False when it already existed
    is_new: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class RolePlacement:
    """Tenant-specific level/parent override for a built-in role."""
    tenant_id: str
    role_type: str
    level: int
    parent_role_type: Optional[str]


@dataclass
class UserRoleHierarchy:
    """Aggregate of everything a principal holds in one tenant."""
    person_id: str
    tenant_id: str
    roles: List[RoleAssignment] = field(default_factory=list)
    permissions: List[PermissionAssignment] = field(default_factory=list)
    highest_role: Optional[str] = None
    highest_level: Optional[int] = None
    effective_permissions: FrozenSet[str] = frozenset()

    @property
    def role_types(self) -> List[str]:
        return [r.role_type for r in self.roles]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "person_id": self.person_id,
            "tenant_id": self.tenant_id,
            "roles": [r.to_dict() for r in self.roles],
            "permissions": [p.to_dict() for p in self.permissions],
            "highest_role": self.highest_role,
            "highest_level": self.highest_level,
            "effective_permissions": sorted(self.effective_permissions),
        }


@dataclass
class CustomRoleRequest:
    """Input of custom role creation.

    The level is derived from ``parent_role_type`` when one is given,
    otherwise ``level`` is used, otherwise the configured default.
    """
    role_type: str
    display_name: str
    created_by: str
    parent_role_type: Optional[str] = None
    level: Optional[int] = None
    description: str = ""
    permissions: FrozenSet[str] = frozenset()


@dataclass
class VisibleRoles:
    """One page of the roles a principal may offer to others."""
    roles: List[RoleDefinition]
    user_level: int
    highest_role: Optional[str]
    total_count: int
    offset: int = 0
    limit: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roles": [r.to_dict() for r in self.roles],
            "user_level": self.user_level,
            "highest_role": self.highest_role,
            "total_count": self.total_count,
            "offset": self.offset,
            "limit": self.limit,
        }
