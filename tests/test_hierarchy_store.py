"""
Hierarchy Store Tests

Repository behaviour against an in-memory SQLite database: transaction
boundaries, the active-assignment unique index, idempotent grants and
error translation.
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from hierarchy.catalog import RoleDefinition
from hierarchy.exceptions import DuplicateAssignment, PersistenceFailure
from hierarchy.models import AuditAction, HierarchyAuditLog, PersonRole
from hierarchy.records import RoleAssignment
from hierarchy.store import SqlAlchemyHierarchyRepository

TENANT = "tenant-t"


def _assignment(person_id="p", role_type="LEAF", level=2):
    return RoleAssignment(
        person_id=person_id,
        role_type=role_type,
        tenant_id=TENANT,
        assigned_by="tester",
        level=level,
    )


def _custom(role_type="REVIEWER", permissions=("VIEW_REPORTS",)):
    return RoleDefinition(
        role_type=role_type,
        level=2,
        parent_role_type="MID",
        display_name="Reviewer",
        permissions=frozenset(permissions),
        is_custom=True,
        tenant_id=TENANT,
        created_by="tester",
    )


class TestTransactions:
    """Commit and rollback through store.transaction()."""

    @pytest.mark.asyncio
    async def test_commit_on_success(self, store):
        async with store.transaction() as repo:
            await repo.register_person("p", TENANT)

        async with store.transaction() as repo:
            assert await repo.person_exists("p") is True

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, store):
        with pytest.raises(RuntimeError):
            async with store.transaction() as repo:
                await repo.register_person("p", TENANT)
                raise RuntimeError("boom")

        async with store.transaction() as repo:
            assert await repo.person_exists("p") is False


class TestRoleAssignments:
    """Tests for role assignment rows."""

    @pytest.mark.asyncio
    async def test_create_and_load(self, store):
        async with store.transaction() as repo:
            created = await repo.create_role_assignment(_assignment())

        assert created.assignment_id is not None
        assert created.is_active is True
        async with store.transaction() as repo:
            loaded = await repo.load_active_role_assignments("p", TENANT)
            assert [a.role_type for a in loaded] == ["LEAF"]
            assert await repo.load_active_role_assignments("p", "other") == []

    @pytest.mark.asyncio
    async def test_unique_index_raises_duplicate(self, store):
        """The index catches duplicates even without a prior lookup."""
        async with store.transaction() as repo:
            await repo.create_role_assignment(_assignment())

        with pytest.raises(DuplicateAssignment):
            async with store.transaction() as repo:
                await repo.create_role_assignment(_assignment())

    @pytest.mark.asyncio
    async def test_deactivate_keeps_row(self, store, session_factory):
        async with store.transaction() as repo:
            await repo.create_role_assignment(_assignment())
        async with store.transaction() as repo:
            assert await repo.deactivate_role_assignment("p", "LEAF", TENANT, deactivated_by="x") is True
            assert await repo.deactivate_role_assignment("p", "LEAF", TENANT) is False
            assert await repo.find_active_role_assignment("p", "LEAF", TENANT) is None

        async with session_factory() as session:
            row = (await session.execute(select(PersonRole))).scalar_one()
            assert row.is_active is False
            assert row.deactivated_by == "x"

    @pytest.mark.asyncio
    async def test_deactivate_for_role(self, store):
        async with store.transaction() as repo:
            await repo.create_role_assignment(_assignment("a"))
            await repo.create_role_assignment(_assignment("b"))
            await repo.create_role_assignment(_assignment("c", "MID", 1))

        async with store.transaction() as repo:
            assert await repo.deactivate_role_assignments_for_role("LEAF", TENANT) == 2
            assert [a.role_type for a in await repo.load_active_role_assignments("c", TENANT)] == ["MID"]


class TestPermissionGrants:
    """Tests for direct permission grants."""

    @pytest.mark.asyncio
    async def test_grant_is_idempotent(self, store):
        async with store.transaction() as repo:
            first = await repo.create_permission_grant("p", "VIEW_REPORTS", "tester", TENANT)
        async with store.transaction() as repo:
            second = await repo.create_permission_grant("p", "VIEW_REPORTS", "someone-else", TENANT)
            grants = await repo.load_active_permission_assignments("p", TENANT)

        assert first.is_new is True
        assert second.is_new is False
        assert second.grant_id == first.grant_id
        assert second.granted_by == "tester"
        assert [g.permission_name for g in grants] == ["VIEW_REPORTS"]

    @pytest.mark.asyncio
    async def test_grants_are_tenant_scoped(self, store):
        async with store.transaction() as repo:
            await repo.create_permission_grant("p", "VIEW_REPORTS", "tester", TENANT)
            await repo.create_permission_grant("p", "VIEW_USERS", "tester", "other")

        async with store.transaction() as repo:
            scoped = await repo.load_active_permission_assignments("p", TENANT)
            everything = await repo.load_active_permission_assignments("p")

        assert [g.permission_name for g in scoped] == ["VIEW_REPORTS"]
        assert [g.permission_name for g in everything] == ["VIEW_REPORTS", "VIEW_USERS"]


class TestCustomRolesAndPlacements:
    """Tests for custom role rows and built-in placements."""

    @pytest.mark.asyncio
    async def test_upsert_updates_permissions(self, store):
        async with store.transaction() as repo:
            await repo.upsert_custom_role(_custom(permissions=("VIEW_REPORTS", "VIEW_USERS")))
        async with store.transaction() as repo:
            updated = await repo.upsert_custom_role(_custom(permissions=("VIEW_USERS", "EDIT_REPORTS")))

        assert updated.permissions == {"VIEW_USERS", "EDIT_REPORTS"}
        async with store.transaction() as repo:
            [loaded] = await repo.load_custom_roles(TENANT)
        assert loaded.permissions == {"VIEW_USERS", "EDIT_REPORTS"}
        assert loaded.custom_role_id == updated.custom_role_id

    @pytest.mark.asyncio
    async def test_soft_delete_hides_role(self, store):
        async with store.transaction() as repo:
            await repo.upsert_custom_role(_custom())
        async with store.transaction() as repo:
            assert await repo.soft_delete_custom_role(TENANT, "REVIEWER") is True
            assert await repo.soft_delete_custom_role(TENANT, "REVIEWER") is False
            assert await repo.load_custom_roles(TENANT) == []

    @pytest.mark.asyncio
    async def test_update_level_of_builtin_writes_placement(self, store):
        async with store.transaction() as repo:
            await repo.update_role_level(TENANT, "MID", 5, "ROOT", updated_by="tester")
        async with store.transaction() as repo:
            await repo.update_role_level(TENANT, "MID", 4, "ROOT")
            placements = await repo.load_role_placements(TENANT)

        assert [(p.role_type, p.level, p.parent_role_type) for p in placements] == [("MID", 4, "ROOT")]

    @pytest.mark.asyncio
    async def test_update_level_of_custom_role(self, store):
        async with store.transaction() as repo:
            await repo.upsert_custom_role(_custom())
            await repo.update_role_level(TENANT, "REVIEWER", 6, "LEAF")
            [role] = await repo.load_custom_roles(TENANT)
            placements = await repo.load_role_placements(TENANT)

        assert (role.level, role.parent_role_type) == (6, "LEAF")
        assert placements == []


class TestAuditAndErrors:
    """Audit rows and storage error translation."""

    @pytest.mark.asyncio
    async def test_record_audit(self, store, session_factory):
        async with store.transaction() as repo:
            await repo.record_audit(
                AuditAction.ROLE_ASSIGNED, TENANT, actor_id="a", target_person_id="p",
                role_type="LEAF", metadata={"level": 2},
            )

        async with session_factory() as session:
            row = (await session.execute(select(HierarchyAuditLog))).scalar_one()
            assert row.action == AuditAction.ROLE_ASSIGNED
            assert row.event_metadata == {"level": 2}

    @pytest.mark.asyncio
    async def test_service_writes_audit_trail(self, service, seed_people, session_factory):
        await seed_people({"root-1": ["ROOT"], "p": []})
        await service.assign_role("root-1", "p", "LEAF", TENANT)
        await service.assign_role("root-1", "p", "LEAF", TENANT)

        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(HierarchyAuditLog))
        assert count == 1

    @pytest.mark.asyncio
    async def test_sqlalchemy_error_becomes_persistence_failure(self):
        session = AsyncMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
        repo = SqlAlchemyHierarchyRepository(session)

        with pytest.raises(PersistenceFailure) as exc_info:
            await repo.person_exists("p")
        assert exc_info.value.operation == "person_exists"
