"""Pytest configuration and fixtures for the hierarchy engine test suite."""

import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Set test environment BEFORE any other imports
os.environ.setdefault("DB_DRIVER", "sqlite+aiosqlite")
os.environ.setdefault("DB_SQLITE_PATH", ":memory:")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from config.database import DatabaseSettings
from config.settings import HierarchySettings
from hierarchy.catalog import HierarchyCatalog, RoleDefinition
from hierarchy.records import RoleAssignment
from hierarchy.services import AssignmentAuthorizationService
from hierarchy.store import SqlAlchemyHierarchyStore

TENANT = "tenant-t"


def _reset_db_modules():
    """Reset database module globals to ensure clean state."""
    import database.async_engine as module
    module._async_engine = None
    module._async_session_factory = None


@pytest.fixture(autouse=True)
def reset_database_globals():
    """Reset database module globals before and after each test."""
    _reset_db_modules()
    yield
    _reset_db_modules()


# =============================================================================
# CATALOGS
# =============================================================================

def build_scenario_catalog() -> HierarchyCatalog:
    """ROOT -> MID -> LEAF, the minimal three-level hierarchy."""
    return HierarchyCatalog([
        RoleDefinition(
            role_type="ROOT",
            level=0,
            parent_role_type=None,
            display_name="Root",
            assignable_targets={"MID"},
            grants_all=True,
        ),
        RoleDefinition(
            role_type="MID",
            level=1,
            parent_role_type="ROOT",
            display_name="Middle",
            assignable_targets={"LEAF"},
            permissions={"VIEW_REPORTS", "EDIT_REPORTS", "VIEW_USERS"},
        ),
        RoleDefinition(
            role_type="LEAF",
            level=2,
            parent_role_type="MID",
            display_name="Leaf",
            permissions={"VIEW_REPORTS"},
        ),
    ])


@pytest.fixture
def scenario_catalog():
    """Three-level catalog used by most scenario tests."""
    return build_scenario_catalog()


@pytest.fixture
def hierarchy_settings():
    """Settings with caching on and a short TTL."""
    return HierarchySettings(
        view_cache_enabled=True,
        view_cache_ttl_seconds=30,
        view_cache_size=100,
        default_custom_role_level=3,
    )


# =============================================================================
# DATABASE
# =============================================================================

@pytest_asyncio.fixture
async def session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    from database.async_engine import create_engine, get_session_factory, init_database

    engine = create_engine(DatabaseSettings(driver="sqlite+aiosqlite", sqlite_path=":memory:"))
    await init_database(engine)
    try:
        yield get_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlAlchemyHierarchyStore(session_factory)


@pytest.fixture
def service(store, scenario_catalog, hierarchy_settings):
    """Service over the ROOT/MID/LEAF catalog."""
    return AssignmentAuthorizationService(
        store, catalog=scenario_catalog, settings=hierarchy_settings
    )


@pytest.fixture
def builtin_service(store, hierarchy_settings):
    """Service over the built-in role catalog."""
    return AssignmentAuthorizationService(store, settings=hierarchy_settings)


@pytest.fixture
def seed_people(store):
    """
    Register persons and give them roles directly, bypassing authorization.

    Usage:
        await seed_people({"root-1": ["ROOT"], "p": []})
    """
    async def _seed(people, tenant_id=TENANT, catalog=None):
        catalog = catalog or build_scenario_catalog()
        async with store.transaction() as repo:
            for person_id, roles in people.items():
                await repo.register_person(person_id, tenant_id)
                for role_type in roles:
                    await repo.create_role_assignment(
                        RoleAssignment(
                            person_id=person_id,
                            role_type=role_type,
                            tenant_id=tenant_id,
                            assigned_by="seed",
                            level=catalog.get_level(role_type),
                        )
                    )
    return _seed
