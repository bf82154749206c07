"""
Error taxonomy for the role hierarchy engine.

Authorization and validation errors are recoverable by the caller (fix
the input and retry). PersistenceFailure and RetrievalFailure signal that
the storage collaborator is unavailable and must never be confused with
"you are not allowed".
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class ErrorCode(str, Enum):
    """
    Stable error codes carried by every hierarchy error.

    Categories:
    - AUTH_*: the requester lacks authority (403 at an HTTP boundary)
    - RESOURCE_*: missing or conflicting entities (404, 409)
    - VALIDATION_*: malformed input or hierarchy (400, 422)
    - SERVER_*: storage unavailable (503)
    """

    AUTH_DENIED = "AUTH_DENIED"

    RESOURCE_ROLE_NOT_FOUND = "RESOURCE_ROLE_NOT_FOUND"
    RESOURCE_PERSON_NOT_FOUND = "RESOURCE_PERSON_NOT_FOUND"
    RESOURCE_DUPLICATE_ASSIGNMENT = "RESOURCE_DUPLICATE_ASSIGNMENT"
    RESOURCE_ROLE_EXISTS = "RESOURCE_ROLE_EXISTS"
    RESOURCE_ASSIGNMENT_NOT_FOUND = "RESOURCE_ASSIGNMENT_NOT_FOUND"

    VALIDATION_INVALID_PERMISSION = "VALIDATION_INVALID_PERMISSION"
    VALIDATION_CYCLE_DETECTED = "VALIDATION_CYCLE_DETECTED"
    VALIDATION_INVALID_HIERARCHY = "VALIDATION_INVALID_HIERARCHY"

    SERVER_PERSISTENCE_FAILURE = "SERVER_PERSISTENCE_FAILURE"
    SERVER_RETRIEVAL_FAILURE = "SERVER_RETRIEVAL_FAILURE"


class HierarchyError(Exception):
    """Base class for every error raised by the hierarchy engine."""

    code: ErrorCode = ErrorCode.VALIDATION_INVALID_HIERARCHY

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class RoleNotFound(HierarchyError):
    code = ErrorCode.RESOURCE_ROLE_NOT_FOUND

    def __init__(self, role_type: str, tenant_id: Optional[str] = None):
        self.role_type = role_type
        self.tenant_id = tenant_id
        super().__init__(
            f"Role {role_type} does not exist",
            {"role_type": role_type, "tenant_id": tenant_id},
        )


class PersonNotFound(HierarchyError):
    code = ErrorCode.RESOURCE_PERSON_NOT_FOUND

    def __init__(self, person_id: str):
        self.person_id = person_id
        super().__init__(f"Person {person_id} not found", {"person_id": person_id})


class AuthorizationDenied(HierarchyError):
    """Requester lacks rank, or lacks the permissions being granted.

    ``rejected`` always holds every offending role or permission name, not
    only the first one encountered.
    """

    code = ErrorCode.AUTH_DENIED

    def __init__(self, message: str, rejected: Iterable[str] = (), **details):
        self.rejected: List[str] = sorted(set(rejected))
        super().__init__(message, {"rejected": self.rejected, **details})


class DuplicateAssignment(HierarchyError):
    code = ErrorCode.RESOURCE_DUPLICATE_ASSIGNMENT

    def __init__(self, person_id: str, role_type: str, tenant_id: str):
        self.person_id = person_id
        self.role_type = role_type
        self.tenant_id = tenant_id
        super().__init__(
            f"Person {person_id} already holds active role {role_type}",
            {"person_id": person_id, "role_type": role_type, "tenant_id": tenant_id},
        )


class RoleAlreadyExists(HierarchyError):
    code = ErrorCode.RESOURCE_ROLE_EXISTS

    def __init__(self, role_type: str, tenant_id: Optional[str] = None):
        self.role_type = role_type
        super().__init__(
            f"Role {role_type} already exists",
            {"role_type": role_type, "tenant_id": tenant_id},
        )


class InvalidPermissionName(HierarchyError):
    code = ErrorCode.VALIDATION_INVALID_PERMISSION

    def __init__(self, invalid: Iterable[str]):
        self.invalid: List[str] = sorted(set(invalid))
        super().__init__(
            f"Unknown permissions: {', '.join(self.invalid)}",
            {"invalid": self.invalid},
        )


class CycleDetected(HierarchyError):
    code = ErrorCode.VALIDATION_CYCLE_DETECTED

    def __init__(self, role_type: str, path: Iterable[str] = ()):
        self.role_type = role_type
        self.path: List[str] = list(path)
        super().__init__(
            f"Cycle detected in role hierarchy at {role_type}",
            {"role_type": role_type, "path": self.path},
        )


class InvalidHierarchyDefinition(HierarchyError):
    code = ErrorCode.VALIDATION_INVALID_HIERARCHY


class PersistenceFailure(HierarchyError):
    """Storage collaborator I/O error. Writes have been rolled back."""

    code = ErrorCode.SERVER_PERSISTENCE_FAILURE

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message, {"operation": operation})


class RetrievalFailure(PersistenceFailure):
    """The tenant hierarchy could not be loaded; no view was produced."""

    code = ErrorCode.SERVER_RETRIEVAL_FAILURE


class AssignmentNotFound(HierarchyError):
    code = ErrorCode.RESOURCE_ASSIGNMENT_NOT_FOUND

    def __init__(self, person_id: str, role_type: str, tenant_id: str):
        super().__init__(
            f"Person {person_id} holds no active role {role_type}",
            {"person_id": person_id, "role_type": role_type, "tenant_id": tenant_id},
        )
