"""
Hierarchy Database Models - SQLAlchemy ORM tables backing the hierarchy store.

Tables:
- hierarchy_persons: principals known to the engine
- hierarchy_custom_roles: tenant-scoped custom roles (soft-deletable)
- hierarchy_custom_role_permissions: permissions granted by a custom role
- hierarchy_role_placements: per-tenant level/parent overrides for built-in roles
- hierarchy_permissions: permission rows, unique per tenant and name
- hierarchy_person_roles: role assignments
- hierarchy_person_permissions: ad-hoc permission grants
- hierarchy_audit_log: audit trail of hierarchy mutations
"""

from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Enum, ForeignKey, Index,
    Integer, String, Text, UniqueConstraint, Uuid, text,
)
from sqlalchemy.orm import relationship

# Import base from the shared database module
from database.models import Base, JSONB, utcnow


# =============================================================================
# ENUMERATIONS
# =============================================================================

class AuditAction(str, PyEnum):
    """Audit log action types."""
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REVOKED = "role_revoked"
    PERMISSIONS_GRANTED = "permissions_granted"
    CUSTOM_ROLE_CREATED = "custom_role_created"
    CUSTOM_ROLE_DELETED = "custom_role_deleted"
    HIERARCHY_UPDATED = "hierarchy_updated"


# =============================================================================
# PRINCIPALS
# =============================================================================

class Person(Base):
    """Principal registry. Populated by the surrounding application."""
    __tablename__ = "hierarchy_persons"

    person_id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    display_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Person(id={self.person_id}, tenant={self.tenant_id})>"


# =============================================================================
# CUSTOM ROLES
# =============================================================================

class CustomRole(Base):
    """
    Tenant-defined role merged into the hierarchy at resolve time.

    Soft-deleted rows (deleted_at set) and inactive rows are excluded
    from every hierarchy computation.
    """
    __tablename__ = "hierarchy_custom_roles"

    custom_role_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    role_type = Column(String(100), nullable=False)
    display_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    parent_role_type = Column(String(100), nullable=True)
    level = Column(Integer, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    permissions = relationship(
        "CustomRolePermission",
        back_populates="custom_role",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "role_type", name="uq_custom_role_tenant_type"),
        CheckConstraint("level >= 0", name="ck_custom_role_level"),
    )

    def __repr__(self):
        return f"<CustomRole(type={self.role_type}, tenant={self.tenant_id}, level={self.level})>"


class CustomRolePermission(Base):
    """Permission granted by a custom role."""
    __tablename__ = "hierarchy_custom_role_permissions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    custom_role_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("hierarchy_custom_roles.custom_role_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permission_name = Column(String(100), nullable=False)

    custom_role = relationship("CustomRole", back_populates="permissions")

    __table_args__ = (
        UniqueConstraint("custom_role_id", "permission_name", name="uq_custom_role_permission"),
    )


class RolePlacementOverride(Base):
    """Per-tenant level/parent of a built-in role, written by hierarchy updates."""
    __tablename__ = "hierarchy_role_placements"

    tenant_id = Column(String(64), primary_key=True)
    role_type = Column(String(100), primary_key=True)
    level = Column(Integer, nullable=False)
    parent_role_type = Column(String(100), nullable=True)
    updated_by = Column(String(64), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("level >= 0", name="ck_role_placement_level"),
    )

    def __repr__(self):
        return f"<RolePlacementOverride(type={self.role_type}, tenant={self.tenant_id}, level={self.level})>"


# =============================================================================
# PERMISSIONS
# =============================================================================

class Permission(Base):
    """Permission row, created on first grant within a tenant."""
    __tablename__ = "hierarchy_permissions"

    permission_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    resource = Column(String(100), nullable=False)
    action = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_permission_tenant_name"),
    )

    def __repr__(self):
        return f"<Permission(name={self.name}, tenant={self.tenant_id})>"


# =============================================================================
# ASSIGNMENTS
# =============================================================================

class PersonRole(Base):
    """
    Role held by a person in a tenant.

    At most one active row may exist per (person, role, tenant); the partial
    unique index enforces it at the storage layer. Rows are never deleted,
    only deactivated.
    """
    __tablename__ = "hierarchy_person_roles"

    assignment_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    person_id = Column(String(64), nullable=False, index=True)
    role_type = Column(String(100), nullable=False)
    tenant_id = Column(String(64), nullable=False, index=True)
    company_id = Column(String(64), nullable=True)

    # Level of the role at assignment time
    level = Column(Integer, nullable=False)

    assigned_by = Column(String(64), nullable=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    is_primary = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)
    deactivated_by = Column(String(64), nullable=True)

    __table_args__ = (
        Index(
            "uq_person_role_active",
            "person_id", "role_type", "tenant_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active = true"),
        ),
        Index("ix_person_role_person_tenant", "person_id", "tenant_id"),
    )

    def __repr__(self):
        return f"<PersonRole(person={self.person_id}, role={self.role_type}, active={self.is_active})>"


class PersonPermission(Base):
    """Ad-hoc permission granted to a person."""
    __tablename__ = "hierarchy_person_permissions"

    grant_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    person_id = Column(String(64), nullable=False, index=True)
    permission_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("hierarchy_permissions.permission_id", ondelete="CASCADE"),
        nullable=False,
    )
    granted_by = Column(String(64), nullable=True)
    granted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    permission = relationship("Permission", lazy="joined")

    __table_args__ = (
        UniqueConstraint("person_id", "permission_id", name="uq_person_permission"),
    )

    def __repr__(self):
        return f"<PersonPermission(person={self.person_id}, permission={self.permission_id})>"


# =============================================================================
# AUDIT
# =============================================================================

class HierarchyAuditLog(Base):
    """Audit trail of successful hierarchy mutations."""
    __tablename__ = "hierarchy_audit_log"

    log_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    action = Column(Enum(AuditAction), nullable=False, index=True)

    actor_id = Column(String(64), nullable=True, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    target_person_id = Column(String(64), nullable=True)
    role_type = Column(String(100), nullable=True)

    event_metadata = Column(JSONB, default=dict)

    __table_args__ = (
        Index("ix_hierarchy_audit_tenant_time", "tenant_id", "timestamp"),
    )

    def __repr__(self):
        return f"<HierarchyAuditLog(action={self.action}, actor={self.actor_id})>"
