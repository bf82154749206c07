"""
Permission Aggregator - expands and combines role permission sets.

A role either grants the literal set in ``permissions`` or, when its
``grants_all`` flag is set, every permission in the view's universe.
A role can only delegate permissions it holds itself.

Usage:
    from hierarchy.permissions import effective_permissions, validate

    perms = effective_permissions(view, ["MANAGER", "AUDITOR"])
    result = validate(view, "MANAGER", {"VIEW_COURSES", "NOT_A_PERMISSION"})
    result.invalid   # {"NOT_A_PERMISSION"}
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from .catalog import HierarchyView

# Leading verbs recognised when splitting a permission name
KNOWN_ACTIONS = frozenset({
    "VIEW", "CREATE", "EDIT", "DELETE", "MANAGE", "ASSIGN", "REVOKE",
})


# =============================================================================
# PERMISSION GRANTS
# =============================================================================

@dataclass(frozen=True)
class PermissionGrant:
    """Atomic capability: an action performed on a resource."""
    permission_name: str
    resource: str
    action: str


def describe_permission(name: str) -> PermissionGrant:
    """
    Split a permission name into resource and action.

    VIEW_EMPLOYEES     -> action VIEW,   resource EMPLOYEES
    USER_MANAGEMENT    -> action MANAGE, resource USER
    ADMIN_PANEL        -> action ACCESS, resource ADMIN_PANEL
    """
    head, _, tail = name.partition("_")
    if head in KNOWN_ACTIONS and tail:
        return PermissionGrant(name, tail, head)
    if name.endswith("_MANAGEMENT"):
        return PermissionGrant(name, name[: -len("_MANAGEMENT")], "MANAGE")
    return PermissionGrant(name, name, "ACCESS")


# =============================================================================
# EXPANSION
# =============================================================================

def permission_universe(view: HierarchyView) -> FrozenSet[str]:
    """Every permission name granted literally by some role in the view."""
    return view.permission_universe


def expand(view: HierarchyView, role_type: str) -> FrozenSet[str]:
    if view.grants_all(role_type):
        return view.permission_universe
    return view.get_permissions(role_type)


def effective_permissions(view: HierarchyView, roles: Iterable[str]) -> FrozenSet[str]:
    result: Set[str] = set()
    for role_type in roles:
        result |= expand(view, role_type)
    return frozenset(result)


def has_permission(view: HierarchyView, role_type: str, permission: str) -> bool:
    return permission in expand(view, role_type)


def principal_has_permission(view: HierarchyView, roles: Iterable[str], permission: str) -> bool:
    return any(has_permission(view, r, permission) for r in roles)


def assignable_permissions(view: HierarchyView, assigner_role: Optional[str]) -> FrozenSet[str]:
    """Permissions ``assigner_role`` may grant: exactly what it holds."""
    if assigner_role is None:
        return frozenset()
    return expand(view, assigner_role)


def can_assign_permission(view: HierarchyView, assigner_role: Optional[str], permission: str) -> bool:
    return permission in assignable_permissions(view, assigner_role)


# =============================================================================
# COMPARISON
# =============================================================================

def missing_permissions(view: HierarchyView, current_role: str, target_role: str) -> FrozenSet[str]:
    """Permissions gained by moving from ``current_role`` to ``target_role``."""
    return expand(view, target_role) - expand(view, current_role)


def excess_permissions(view: HierarchyView, current_role: str, target_role: str) -> FrozenSet[str]:
    """Permissions lost by moving from ``current_role`` to ``target_role``."""
    return expand(view, current_role) - expand(view, target_role)


def common_permissions(view: HierarchyView, roles: Iterable[str]) -> FrozenSet[str]:
    roles = list(roles)
    if not roles:
        return frozenset()
    result = set(expand(view, roles[0]))
    for role_type in roles[1:]:
        result &= expand(view, role_type)
    return frozenset(result)


def all_unique_permissions(view: HierarchyView, roles: Iterable[str]) -> FrozenSet[str]:
    return effective_permissions(view, roles)


# =============================================================================
# VALIDATION
# =============================================================================

@dataclass
class PermissionValidation:
    """Outcome of checking a requested permission set against a role."""
    invalid: Set[str] = field(default_factory=set)
    missing: Set[str] = field(default_factory=set)
    extra: Set[str] = field(default_factory=set)

    @property
    def is_valid(self) -> bool:
        return not self.invalid

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "invalid": sorted(self.invalid),
            "missing": sorted(self.missing),
            "extra": sorted(self.extra),
        }


def validate(view: HierarchyView, role_type: str, requested: Iterable[str]) -> PermissionValidation:
    """
    Check requested permissions against the universe and against a role.

    invalid: names unknown to the view
    missing: held by the role but absent from the request
    extra:   requested but not held by the role
    """
    requested = set(requested)
    held = expand(view, role_type)
    return PermissionValidation(
        invalid=requested - view.permission_universe,
        missing=set(held - requested),
        extra=requested - held,
    )
