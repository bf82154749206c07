"""
Role Hierarchy & Permission Engine.

Components, leaves first:
- catalog: built-in role definitions and the read-only HierarchyView
- graph: authority and path functions over a view
- permissions: permission expansion, aggregation and validation
- overlay: merges tenant custom roles and placements into a view
- services: authorized role, permission and hierarchy mutations

Usage:
    from hierarchy import (
        AssignmentAuthorizationService,
        SqlAlchemyHierarchyStore,
        get_role_catalog,
    )

    service = AssignmentAuthorizationService(SqlAlchemyHierarchyStore(factory))
    result = await service.assign_role("admin-1", "person-7", "TRAINER", "tenant-a")
"""

# Catalog
from .catalog import (
    BUILTIN_ROLES,
    ROOT_LEVEL,
    UNRANKED_LEVEL,
    HierarchyCatalog,
    HierarchyView,
    RoleDefinition,
    get_role_catalog,
)

# Errors
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
    RetrievalFailure,
    RoleAlreadyExists,
    RoleNotFound,
)

# Graph calculator
from .graph import (
    are_same_level,
    are_siblings,
    assignable_roles,
    can_assign_to_role,
    can_manage_role,
    descendants_of,
    hierarchical_distance,
    highest_authority,
    is_ancestor,
    is_descendant,
    is_subordinate,
    path_to_root,
    shortest_path,
    sibling_roles,
    subordinates_of,
    superiors_of,
)

# Permission aggregator
from .permissions import (
    PermissionGrant,
    PermissionValidation,
    all_unique_permissions,
    assignable_permissions,
    can_assign_permission,
    common_permissions,
    describe_permission,
    effective_permissions,
    excess_permissions,
    expand,
    has_permission,
    missing_permissions,
    permission_universe,
    principal_has_permission,
    validate,
)

# Records
from .records import (
    CustomRoleRequest,
    PermissionAssignment,
    RoleAssignment,
    RolePlacement,
    UserRoleHierarchy,
    VisibleRoles,
)

# Persistence, overlay and services
from .cache import HierarchyViewCache
from .store import HierarchyRepository, HierarchyStore, SqlAlchemyHierarchyStore
from .overlay import TenantOverlayResolver
from .services import AssignmentAuthorizationService, ServiceResult

__all__ = [
    # Catalog
    "BUILTIN_ROLES",
    "ROOT_LEVEL",
    "UNRANKED_LEVEL",
    "HierarchyCatalog",
    "HierarchyView",
    "RoleDefinition",
    "get_role_catalog",
    # Errors
    "AssignmentNotFound",
    "AuthorizationDenied",
    "CycleDetected",
    "DuplicateAssignment",
    "ErrorCode",
    "HierarchyError",
    "InvalidHierarchyDefinition",
    "InvalidPermissionName",
    "PersistenceFailure",
    "PersonNotFound",
    "RetrievalFailure",
    "RoleAlreadyExists",
    "RoleNotFound",
    # Graph calculator
    "are_same_level",
    "are_siblings",
    "assignable_roles",
    "can_assign_to_role",
    "can_manage_role",
    "descendants_of",
    "hierarchical_distance",
    "highest_authority",
    "is_ancestor",
    "is_descendant",
    "is_subordinate",
    "path_to_root",
    "shortest_path",
    "sibling_roles",
    "subordinates_of",
    "superiors_of",
    # Permission aggregator
    "PermissionGrant",
    "PermissionValidation",
    "all_unique_permissions",
    "assignable_permissions",
    "can_assign_permission",
    "common_permissions",
    "describe_permission",
    "effective_permissions",
    "excess_permissions",
    "expand",
    "has_permission",
    "missing_permissions",
    "permission_universe",
    "principal_has_permission",
    "validate",
    # Records
    "CustomRoleRequest",
    "PermissionAssignment",
    "RoleAssignment",
    "RolePlacement",
    "UserRoleHierarchy",
    "VisibleRoles",
    # Persistence, overlay and services
    "HierarchyViewCache",
    "HierarchyRepository",
    "HierarchyStore",
    "SqlAlchemyHierarchyStore",
    "TenantOverlayResolver",
    "AssignmentAuthorizationService",
    "ServiceResult",
]
