"""
Graph Calculator - pure authority and path functions over a HierarchyView.

Authority comparisons use only ``level`` (lower is stronger). Parent
pointers are consulted only by the path and ancestor queries, which guard
every walk with a visited set and raise CycleDetected on a revisit.

Note on subordinates_of / superiors_of: these are level-based, not
tree-based. A role at level 5 on an unrelated branch is still a
subordinate of a level 4 role. Use is_descendant / descendants_of for the
strict tree relation.
"""

from typing import Iterable, List, Optional

from config.logging_config import get_logger

from .catalog import HierarchyView, RoleDefinition
from .exceptions import CycleDetected

logger = get_logger(__name__)


# =============================================================================
# PATHS
# =============================================================================

def path_to_root(view: HierarchyView, role_type: str) -> List[str]:
    """
    Ordered list root -> role_type following parent links.

    Unknown roles yield an empty list. A parent reference to a role missing
    from the view ends the walk, so malformed custom roles produce a path
    that starts at their topmost known ancestor.

    Raises:
        CycleDetected: if the walk revisits a role.
    """
    if not view.exists(role_type):
        return []

    path: List[str] = []
    seen = set()
    current: Optional[str] = role_type
    while current is not None and view.exists(current):
        if current in seen:
            logger.error(
                f"Cycle in hierarchy while walking from {role_type}",
                extra={"tenant_id": view.tenant_id, "path": path},
            )
            raise CycleDetected(current, list(reversed(path)) + [current])
        seen.add(current)
        path.append(current)
        current = view.get_parent(current)

    path.reverse()
    return path


def shortest_path(view: HierarchyView, from_role: str, to_role: str) -> List[str]:
    """
    Path from one role to another through their lowest common ancestor.

    Returns an empty list when either role is unknown or the two paths
    share no ancestor (only possible in malformed custom-role graphs).
    """
    from_path = path_to_root(view, from_role)
    to_path = path_to_root(view, to_role)
    if not from_path or not to_path:
        return []

    common = 0
    for a, b in zip(from_path, to_path):
        if a != b:
            break
        common += 1
    if common == 0:
        return []

    # from_role up to the ancestor (inclusive), then down to to_role
    upward = list(reversed(from_path[common - 1:]))
    downward = to_path[common:]
    return upward + downward


def descendants_of(view: HierarchyView, role_type: str) -> List[str]:
    """
    Every direct and transitive child, depth-first in sorted child order.

    Raises:
        CycleDetected: if a child link leads back to an already visited role.
    """
    result: List[str] = []
    visited = {role_type}
    stack = [(role_type, [role_type])]
    while stack:
        current, trail = stack.pop()
        for child in reversed(view.children_of(current)):
            if child in visited:
                raise CycleDetected(child, trail + [child])
            visited.add(child)
            result.append(child)
            stack.append((child, trail + [child]))
    return result


def is_ancestor(view: HierarchyView, ancestor: str, role_type: str) -> bool:
    """True if ``ancestor`` lies strictly above ``role_type`` on its parent chain."""
    if ancestor == role_type:
        return False
    return ancestor in path_to_root(view, role_type)


def is_descendant(view: HierarchyView, descendant: str, role_type: str) -> bool:
    return is_ancestor(view, role_type, descendant)


# =============================================================================
# AUTHORITY
# =============================================================================

def can_assign_to_role(view: HierarchyView, assigner_role: str, target_role: str) -> bool:
    """
    Root authority may assign anything; other roles only their allow-list.

    Assignability is deliberately not a level comparison: a role may be
    allowed to grant a peer role it does not outrank.
    """
    if view.is_root_authority(assigner_role):
        return True
    return target_role in view.get_assignable_targets(assigner_role)


def can_manage_role(view: HierarchyView, manager_role: str, target_role: str) -> bool:
    """Root authority, or strictly lower level than the target. Equal levels never manage."""
    if view.is_root_authority(manager_role):
        return True
    if not view.exists(manager_role):
        return False
    return view.get_level(manager_role) < view.get_level(target_role)


def highest_authority(view: HierarchyView, roles: Iterable[str]) -> Optional[str]:
    """
    Role with the minimum level; ties go to the lexicographically smallest
    role type so the answer never depends on input order.
    """
    candidates = set(roles)
    if not candidates:
        return None
    return min(candidates, key=lambda r: (view.get_level(r), r))


def hierarchical_distance(view: HierarchyView, a: str, b: str) -> int:
    return abs(view.get_level(a) - view.get_level(b))


def are_same_level(view: HierarchyView, a: str, b: str) -> bool:
    if not (view.exists(a) and view.exists(b)):
        return False
    return view.get_level(a) == view.get_level(b)


def are_siblings(view: HierarchyView, a: str, b: str) -> bool:
    """Distinct roles sharing level and parent."""
    if a == b or not are_same_level(view, a, b):
        return False
    return view.get_parent(a) == view.get_parent(b)


def sibling_roles(view: HierarchyView, role_type: str) -> List[str]:
    if not view.exists(role_type):
        return []
    return sorted(r for r in view if are_siblings(view, role_type, r))


def is_subordinate(view: HierarchyView, role_type: str, of_role: str) -> bool:
    """Level-based: ``role_type`` sits strictly below ``of_role``."""
    if not (view.exists(role_type) and view.exists(of_role)):
        return False
    return view.get_level(role_type) > view.get_level(of_role)


def subordinates_of(view: HierarchyView, role_type: str) -> List[str]:
    """Roles with strictly greater level, ordered by (level, role_type)."""
    if not view.exists(role_type):
        return []
    level = view.get_level(role_type)
    return [r.role_type for r in view.get_all() if r.level > level]


def superiors_of(view: HierarchyView, role_type: str) -> List[str]:
    """Roles with strictly lower level, ordered by (level, role_type)."""
    if not view.exists(role_type):
        return []
    level = view.get_level(role_type)
    return [r.role_type for r in view.get_all() if r.level < level]


def assignable_roles(view: HierarchyView, role_type: str) -> List[RoleDefinition]:
    """
    Full definitions of the roles ``role_type`` may grant.

    Root authority may grant every role in the view.
    """
    if view.is_root_authority(role_type):
        return view.get_all()
    targets = view.get_assignable_targets(role_type)
    return [r for r in view.get_all() if r.role_type in targets]
