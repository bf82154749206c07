"""
Hierarchy Catalog - role definitions and the read-only hierarchy view.

Levels:
    0  SUPER_ADMIN   root authority, grants every permission
    1  ADMIN
    2  COMPANY_ADMIN, TENANT_ADMIN
    3+ progressively more subordinate roles

Lower level means greater authority. Built-in roles keep
level == parent.level + 1; tenant custom roles may override their level.

Usage:
    from hierarchy.catalog import get_role_catalog

    catalog = get_role_catalog()
    catalog.get_level("MANAGER")          # 4
    catalog.get_parent("MANAGER")         # "TRAINING_ADMIN"
    catalog.get_level("NOT_A_ROLE")       # UNRANKED_LEVEL
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional
from uuid import UUID

from config.logging_config import get_logger

from .exceptions import CycleDetected, InvalidHierarchyDefinition

logger = get_logger(__name__)

# Level reported for roles the hierarchy does not know
UNRANKED_LEVEL = 999
ROOT_LEVEL = 0


# =============================================================================
# ROLE DEFINITION
# =============================================================================

@dataclass(frozen=True)
class RoleDefinition:
    """A node of the role hierarchy, built-in or tenant custom."""
    role_type: str
    level: int
    parent_role_type: Optional[str]
    display_name: str
    description: str = ""
    assignable_targets: FrozenSet[str] = frozenset()
    permissions: FrozenSet[str] = frozenset()
    grants_all: bool = False
    is_custom: bool = False
    tenant_id: Optional[str] = None
    custom_role_id: Optional[UUID] = None
    created_by: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        # Accept any iterable from callers, store frozensets
        object.__setattr__(self, "assignable_targets", frozenset(self.assignable_targets))
        object.__setattr__(self, "permissions", frozenset(self.permissions))

    @property
    def is_root(self) -> bool:
        return self.level == ROOT_LEVEL and self.parent_role_type is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role_type": self.role_type,
            "level": self.level,
            "parent_role_type": self.parent_role_type,
            "display_name": self.display_name,
            "description": self.description,
            "assignable_targets": sorted(self.assignable_targets),
            "permissions": sorted(self.permissions),
            "grants_all": self.grants_all,
            "is_custom": self.is_custom,
            "tenant_id": self.tenant_id,
            "custom_role_id": str(self.custom_role_id) if self.custom_role_id else None,
        }


# =============================================================================
# HIERARCHY VIEW
# =============================================================================

class HierarchyView:
    """
    Read-only adjacency structure over a set of role definitions.

    Unknown-role queries never raise; they answer with neutral values
    (UNRANKED_LEVEL, None, empty sets) so callers can treat unranked roles
    uniformly. A view built by the tenant overlay may contain malformed
    custom-role links; graph walks guard against those themselves.
    """

    def __init__(
        self,
        roles: Iterable[RoleDefinition],
        tenant_id: Optional[str] = None,
        unranked_level: int = UNRANKED_LEVEL,
    ):
        self.tenant_id = tenant_id
        self.unranked_level = unranked_level
        self._roles: Dict[str, RoleDefinition] = {}
        for role in roles:
            if role.role_type in self._roles:
                raise InvalidHierarchyDefinition(
                    f"Role {role.role_type} defined more than once",
                    {"role_type": role.role_type},
                )
            self._roles[role.role_type] = role

        self._children: Dict[str, List[str]] = {}
        self._by_level: Dict[int, List[str]] = {}
        for role in self._roles.values():
            if role.parent_role_type is not None:
                self._children.setdefault(role.parent_role_type, []).append(role.role_type)
            self._by_level.setdefault(role.level, []).append(role.role_type)
        for children in self._children.values():
            children.sort()

        universe = set()
        for role in self._roles.values():
            universe |= role.permissions
        self._universe: FrozenSet[str] = frozenset(universe)

    # -- lookups --------------------------------------------------------------

    def get(self, role_type: str) -> Optional[RoleDefinition]:
        """Get role definition by type."""
        return self._roles.get(role_type)

    def get_role_info(self, role_type: str) -> Optional[Dict[str, Any]]:
        role = self._roles.get(role_type)
        return role.to_dict() if role else None

    def exists(self, role_type: str) -> bool:
        return role_type in self._roles

    def get_level(self, role_type: str) -> int:
        role = self._roles.get(role_type)
        if role is None:
            return self.unranked_level
        return role.level

    def get_parent(self, role_type: str) -> Optional[str]:
        role = self._roles.get(role_type)
        return role.parent_role_type if role else None

    def get_assignable_targets(self, role_type: str) -> FrozenSet[str]:
        role = self._roles.get(role_type)
        return role.assignable_targets if role else frozenset()

    def get_permissions(self, role_type: str) -> FrozenSet[str]:
        """Literal permission set of a role. The grants-all flag is not expanded."""
        role = self._roles.get(role_type)
        return role.permissions if role else frozenset()

    def grants_all(self, role_type: str) -> bool:
        role = self._roles.get(role_type)
        return bool(role and role.grants_all)

    def is_root_authority(self, role_type: str) -> bool:
        role = self._roles.get(role_type)
        return role is not None and role.level == ROOT_LEVEL

    def children_of(self, role_type: str) -> List[str]:
        """Direct children, sorted by role type."""
        return list(self._children.get(role_type, []))

    # -- collections ----------------------------------------------------------

    def all_role_types(self) -> FrozenSet[str]:
        return frozenset(self._roles)

    def roles_at_level(self, level: int) -> FrozenSet[str]:
        return frozenset(self._by_level.get(level, []))

    @property
    def max_level(self) -> int:
        """Deepest ranked level in the view."""
        return max(self._by_level, default=ROOT_LEVEL)

    def get_all(self) -> List[RoleDefinition]:
        """All definitions ordered by (level, role_type)."""
        return sorted(self._roles.values(), key=lambda r: (r.level, r.role_type))

    def custom_roles(self) -> List[RoleDefinition]:
        return [r for r in self.get_all() if r.is_custom]

    @property
    def permission_universe(self) -> FrozenSet[str]:
        """Every permission name granted literally by any role in the view."""
        return self._universe

    def __contains__(self, role_type: object) -> bool:
        return role_type in self._roles

    def __iter__(self) -> Iterator[str]:
        return iter(self._roles)

    def __len__(self) -> int:
        return len(self._roles)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(tenant={self.tenant_id}, roles={len(self._roles)})>"


class HierarchyCatalog(HierarchyView):
    """
    Immutable catalog of built-in roles, validated once at construction.

    Validation rules:
    - exactly one root (level 0, no parent)
    - every parent and assignable target refers to a defined role
    - parent links are acyclic
    - level == parent.level + 1
    """

    def __init__(
        self,
        roles: Optional[Iterable[RoleDefinition]] = None,
        unranked_level: int = UNRANKED_LEVEL,
    ):
        super().__init__(
            BUILTIN_ROLES if roles is None else roles,
            tenant_id=None,
            unranked_level=unranked_level,
        )
        self._validate()

    def _validate(self) -> None:
        roots = [r for r in self._roles.values() if r.parent_role_type is None]
        if len(roots) != 1 or roots[0].level != ROOT_LEVEL:
            raise InvalidHierarchyDefinition(
                "Catalog must have exactly one root role at level 0",
                {"roots": sorted(r.role_type for r in roots)},
            )

        for role in self._roles.values():
            if role.is_custom:
                raise InvalidHierarchyDefinition(
                    f"Custom role {role.role_type} cannot be part of the built-in catalog",
                    {"role_type": role.role_type},
                )
            if role.level >= self.unranked_level:
                raise InvalidHierarchyDefinition(
                    f"Role {role.role_type} has level {role.level} at or beyond unranked",
                    {"role_type": role.role_type},
                )
            unknown_targets = role.assignable_targets - self._roles.keys()
            if unknown_targets:
                raise InvalidHierarchyDefinition(
                    f"Role {role.role_type} can assign undefined roles",
                    {"role_type": role.role_type, "unknown": sorted(unknown_targets)},
                )
            if role.parent_role_type is None:
                continue
            parent = self._roles.get(role.parent_role_type)
            if parent is None:
                raise InvalidHierarchyDefinition(
                    f"Role {role.role_type} has undefined parent {role.parent_role_type}",
                    {"role_type": role.role_type},
                )

        for role_type in self._roles:
            self._check_acyclic(role_type)

        for role in self._roles.values():
            if role.parent_role_type is None:
                continue
            parent = self._roles[role.parent_role_type]
            if role.level != parent.level + 1:
                raise InvalidHierarchyDefinition(
                    f"Role {role.role_type} level {role.level} does not follow "
                    f"parent {parent.role_type} level {parent.level}",
                    {"role_type": role.role_type},
                )

        logger.debug(f"Validated role catalog with {len(self._roles)} roles")

    def _check_acyclic(self, role_type: str) -> None:
        seen: List[str] = []
        current: Optional[str] = role_type
        while current is not None:
            if current in seen:
                raise CycleDetected(current, seen + [current])
            seen.append(current)
            current = self._roles[current].parent_role_type


# =============================================================================
# BUILT-IN ROLES
# =============================================================================

def _role(role_type, level, parent, name, description, targets, permissions, grants_all=False):
    return RoleDefinition(
        role_type=role_type,
        level=level,
        parent_role_type=parent,
        display_name=name,
        description=description,
        assignable_targets=frozenset(targets),
        permissions=frozenset(permissions),
        grants_all=grants_all,
    )


BUILTIN_ROLES: List[RoleDefinition] = [
    _role(
        "SUPER_ADMIN", 0, None,
        "Super Administrator", "Full access to the whole system",
        ["ADMIN", "COMPANY_ADMIN", "TENANT_ADMIN", "TRAINER", "EMPLOYEE"],
        [],
        grants_all=True,
    ),
    _role(
        "ADMIN", 1, "SUPER_ADMIN",
        "Administrator", "Full management of the tenant",
        ["COMPANY_ADMIN", "TENANT_ADMIN", "HR_MANAGER", "MANAGER", "TRAINER", "EMPLOYEE"],
        [
            "ROLE_MANAGEMENT", "USER_MANAGEMENT", "TENANT_MANAGEMENT",
            "CREATE_ROLES", "EDIT_ROLES", "DELETE_ROLES", "VIEW_ROLES", "EDIT_HIERARCHY",
            "MANAGE_USERS", "ASSIGN_ROLES", "REVOKE_ROLES", "VIEW_ADMINISTRATION",
            "VIEW_HIERARCHY", "CREATE_HIERARCHY", "DELETE_HIERARCHY", "MANAGE_HIERARCHY",
            "HIERARCHY_MANAGEMENT",
            "VIEW_COMPANIES", "CREATE_COMPANIES", "EDIT_COMPANIES", "DELETE_COMPANIES",
            "VIEW_EMPLOYEES", "CREATE_EMPLOYEES", "EDIT_EMPLOYEES", "DELETE_EMPLOYEES",
            "VIEW_TRAINERS", "CREATE_TRAINERS", "EDIT_TRAINERS", "DELETE_TRAINERS",
            "VIEW_USERS", "CREATE_USERS", "EDIT_USERS", "DELETE_USERS",
            "VIEW_COURSES", "CREATE_COURSES", "EDIT_COURSES", "DELETE_COURSES",
            "VIEW_DOCUMENTS", "CREATE_DOCUMENTS", "EDIT_DOCUMENTS", "DELETE_DOCUMENTS",
            "ADMIN_PANEL", "SYSTEM_SETTINGS", "VIEW_REPORTS", "CREATE_REPORTS",
        ],
    ),
    _role(
        "COMPANY_ADMIN", 2, "ADMIN",
        "Company Administrator", "Manages their own company and its employees",
        ["TRAINING_ADMIN", "CLINIC_ADMIN", "HR_MANAGER", "MANAGER", "TRAINER", "EMPLOYEE"],
        [
            "CREATE_ROLES", "EDIT_ROLES", "VIEW_ROLES",
            "MANAGE_USERS", "ASSIGN_ROLES", "VIEW_HIERARCHY",
            "VIEW_COMPANIES", "EDIT_COMPANIES",
            "VIEW_EMPLOYEES", "CREATE_EMPLOYEES", "EDIT_EMPLOYEES",
            "VIEW_TRAINERS", "CREATE_TRAINERS", "EDIT_TRAINERS",
            "VIEW_USERS", "CREATE_USERS", "EDIT_USERS",
            "VIEW_COURSES", "CREATE_COURSES", "EDIT_COURSES",
            "VIEW_DOCUMENTS", "CREATE_DOCUMENTS", "EDIT_DOCUMENTS",
        ],
    ),
    _role(
        "TENANT_ADMIN", 2, "ADMIN",
        "Tenant Administrator", "Manages the tenant",
        ["COMPANY_ADMIN", "HR_MANAGER", "MANAGER", "TRAINER", "EMPLOYEE"],
        [
            "TENANT_MANAGEMENT",
            "CREATE_ROLES", "EDIT_ROLES", "DELETE_ROLES", "VIEW_ROLES", "EDIT_HIERARCHY",
            "MANAGE_USERS", "ASSIGN_ROLES", "REVOKE_ROLES", "VIEW_ADMINISTRATION",
            "VIEW_HIERARCHY", "CREATE_HIERARCHY", "DELETE_HIERARCHY", "MANAGE_HIERARCHY",
            "VIEW_COMPANIES", "CREATE_COMPANIES", "EDIT_COMPANIES",
            "VIEW_EMPLOYEES", "CREATE_EMPLOYEES", "EDIT_EMPLOYEES",
            "VIEW_TRAINERS", "CREATE_TRAINERS", "EDIT_TRAINERS",
            "VIEW_USERS", "CREATE_USERS", "EDIT_USERS",
            "VIEW_COURSES", "CREATE_COURSES", "EDIT_COURSES",
        ],
    ),
    _role(
        "TRAINING_ADMIN", 3, "COMPANY_ADMIN",
        "Training & Work Administrator", "Full management of training and work",
        ["MANAGER", "HR_MANAGER", "TRAINER_COORDINATOR"],
        [
            "VIEW_EMPLOYEES", "CREATE_EMPLOYEES", "EDIT_EMPLOYEES", "DELETE_EMPLOYEES",
            "VIEW_TRAINERS", "CREATE_TRAINERS", "EDIT_TRAINERS", "DELETE_TRAINERS",
            "VIEW_COURSES", "CREATE_COURSES", "EDIT_COURSES", "DELETE_COURSES",
            "VIEW_DOCUMENTS", "CREATE_DOCUMENTS", "EDIT_DOCUMENTS", "DELETE_DOCUMENTS",
            "VIEW_REPORTS", "CREATE_REPORTS", "EDIT_REPORTS",
        ],
    ),
    _role(
        "CLINIC_ADMIN", 3, "COMPANY_ADMIN",
        "Clinic Administrator", "Full management of the clinic",
        ["MANAGER", "DEPARTMENT_HEAD", "SUPERVISOR"],
        [
            "VIEW_EMPLOYEES", "CREATE_EMPLOYEES", "EDIT_EMPLOYEES", "DELETE_EMPLOYEES",
            "VIEW_PATIENTS", "CREATE_PATIENTS", "EDIT_PATIENTS",
            "VIEW_APPOINTMENTS", "CREATE_APPOINTMENTS", "EDIT_APPOINTMENTS",
            "VIEW_MEDICAL_RECORDS", "CREATE_MEDICAL_RECORDS", "EDIT_MEDICAL_RECORDS",
            "VIEW_DOCUMENTS", "CREATE_DOCUMENTS", "EDIT_DOCUMENTS", "DELETE_DOCUMENTS",
            "VIEW_REPORTS", "CREATE_REPORTS", "EDIT_REPORTS",
        ],
    ),
    _role(
        "HR_MANAGER", 4, "TRAINING_ADMIN",
        "HR Manager", "Human resources management",
        ["TRAINER_COORDINATOR", "COMPANY_MANAGER", "SUPERVISOR", "EMPLOYEE"],
        [
            "VIEW_EMPLOYEES", "CREATE_EMPLOYEES", "EDIT_EMPLOYEES", "DELETE_EMPLOYEES",
            "VIEW_TRAINERS", "CREATE_TRAINERS", "EDIT_TRAINERS",
            "VIEW_COURSES", "VIEW_DOCUMENTS", "CREATE_DOCUMENTS",
        ],
    ),
    _role(
        "MANAGER", 4, "TRAINING_ADMIN",
        "Manager", "Operational management and coordination",
        ["DEPARTMENT_HEAD", "HR_MANAGER", "TRAINER_COORDINATOR", "SUPERVISOR"],
        [
            "VIEW_EMPLOYEES", "CREATE_EMPLOYEES", "EDIT_EMPLOYEES",
            "VIEW_TRAINERS", "CREATE_TRAINERS", "EDIT_TRAINERS",
            "VIEW_COURSES", "CREATE_COURSES", "EDIT_COURSES",
            "VIEW_DOCUMENTS", "CREATE_DOCUMENTS", "EDIT_DOCUMENTS",
            "VIEW_REPORTS",
        ],
    ),
    _role(
        "DEPARTMENT_HEAD", 5, "MANAGER",
        "Department Head", "Manages a specific department",
        ["SUPERVISOR", "COORDINATOR", "TRAINER"],
        [
            "VIEW_EMPLOYEES", "CREATE_EMPLOYEES", "EDIT_EMPLOYEES",
            "VIEW_TRAINERS", "CREATE_TRAINERS",
            "VIEW_COURSES", "CREATE_COURSES", "EDIT_COURSES",
            "VIEW_DOCUMENTS", "CREATE_DOCUMENTS",
        ],
    ),
    _role(
        "AUDITOR", 5, "MANAGER",
        "Auditor", "Control and audit",
        [],
        ["VIEW_REPORTS", "VIEW_DOCUMENTS", "VIEW_EMPLOYEES"],
    ),
    _role(
        "TRAINER_COORDINATOR", 5, "HR_MANAGER",
        "Trainer Coordinator", "Coordinates training activities",
        ["SENIOR_TRAINER", "TRAINER", "EXTERNAL_TRAINER"],
        [
            "VIEW_TRAINERS", "CREATE_TRAINERS", "EDIT_TRAINERS",
            "VIEW_COURSES", "CREATE_COURSES", "EDIT_COURSES",
            "VIEW_DOCUMENTS", "CREATE_DOCUMENTS",
        ],
    ),
    _role(
        "COMPANY_MANAGER", 5, "HR_MANAGER",
        "Company Manager", "Specific company responsibilities",
        ["SUPERVISOR", "COORDINATOR", "EMPLOYEE"],
        [
            "VIEW_EMPLOYEES", "EDIT_EMPLOYEES",
            "VIEW_COURSES", "EDIT_COURSES",
            "VIEW_DOCUMENTS", "CREATE_DOCUMENTS",
            "VIEW_REPORTS",
        ],
    ),
    _role(
        "SENIOR_TRAINER", 6, "TRAINER_COORDINATOR",
        "Senior Trainer", "Advanced training and mentoring",
        ["TRAINER", "EXTERNAL_TRAINER"],
        [
            "VIEW_COURSES", "CREATE_COURSES", "EDIT_COURSES",
            "VIEW_EMPLOYEES", "VIEW_DOCUMENTS", "CREATE_DOCUMENTS",
        ],
    ),
    _role(
        "SUPERVISOR", 6, "DEPARTMENT_HEAD",
        "Supervisor", "Operational supervision",
        ["COORDINATOR", "OPERATOR", "EMPLOYEE"],
        ["VIEW_EMPLOYEES", "EDIT_EMPLOYEES", "VIEW_COURSES", "VIEW_DOCUMENTS"],
    ),
    _role(
        "TRAINER", 7, "SENIOR_TRAINER",
        "Trainer", "Runs courses and training",
        ["EMPLOYEE"],
        ["VIEW_COURSES", "EDIT_COURSES", "VIEW_EMPLOYEES", "VIEW_DOCUMENTS", "CREATE_DOCUMENTS"],
    ),
    _role(
        "EXTERNAL_TRAINER", 7, "SENIOR_TRAINER",
        "External Trainer", "Specialist external training",
        [],
        ["VIEW_COURSES", "VIEW_DOCUMENTS"],
    ),
    _role(
        "COORDINATOR", 7, "SUPERVISOR",
        "Coordinator", "Coordinates activities",
        ["OPERATOR", "EMPLOYEE"],
        ["VIEW_EMPLOYEES", "VIEW_COURSES", "VIEW_DOCUMENTS"],
    ),
    _role(
        "OPERATOR", 8, "COORDINATOR",
        "Operator", "Basic operations",
        ["EMPLOYEE"],
        ["VIEW_COURSES", "VIEW_DOCUMENTS"],
    ),
    _role(
        "CONSULTANT", 8, "COORDINATOR",
        "Consultant", "Specialist consulting",
        [],
        ["VIEW_COURSES", "VIEW_DOCUMENTS", "VIEW_REPORTS"],
    ),
    _role(
        "EMPLOYEE", 9, "OPERATOR",
        "Employee", "Basic access to the platform",
        ["VIEWER"],
        ["VIEW_COURSES", "VIEW_DOCUMENTS"],
    ),
    _role(
        "VIEWER", 10, "EMPLOYEE",
        "Viewer", "Read-only access",
        ["GUEST"],
        ["VIEW_COURSES", "VIEW_DOCUMENTS"],
    ),
    _role(
        "GUEST", 11, "VIEWER",
        "Guest", "Limited access",
        [],
        ["VIEW_COURSES"],
    ),
]


# Singleton instance
_role_catalog: Optional[HierarchyCatalog] = None


def get_role_catalog() -> HierarchyCatalog:
    """Get singleton built-in role catalog."""
    global _role_catalog
    if _role_catalog is None:
        _role_catalog = HierarchyCatalog()
    return _role_catalog
