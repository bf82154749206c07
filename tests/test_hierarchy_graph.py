"""
Graph Calculator Tests

Authority, path and ancestry queries over built-in, scenario and
deliberately malformed views.
"""

import random

import pytest

from hierarchy.catalog import HierarchyView, RoleDefinition, get_role_catalog
from hierarchy.exceptions import CycleDetected
from hierarchy.graph import (
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


def _cyclic_view():
    """View where A and B are each other's parent. Only a view allows this."""
    return HierarchyView([
        RoleDefinition("ROOT", 0, None, "Root"),
        RoleDefinition("A", 1, "B", "A"),
        RoleDefinition("B", 2, "A", "B"),
    ], tenant_id="broken")


# =============================================================================
# PATHS
# =============================================================================

class TestPathToRoot:
    """Tests for parent-chain walks."""

    def test_scenario_path(self, scenario_catalog):
        assert path_to_root(scenario_catalog, "LEAF") == ["ROOT", "MID", "LEAF"]
        assert path_to_root(scenario_catalog, "ROOT") == ["ROOT"]

    def test_every_builtin_path_starts_at_root(self):
        catalog = get_role_catalog()
        for role_type in catalog:
            path = path_to_root(catalog, role_type)
            assert path[0] == "SUPER_ADMIN"
            assert path[-1] == role_type
            assert len(path) == catalog.get_level(role_type) + 1

    def test_unknown_role_has_empty_path(self, scenario_catalog):
        assert path_to_root(scenario_catalog, "NOPE") == []

    def test_dangling_parent_ends_walk(self):
        view = HierarchyView([
            RoleDefinition("ROOT", 0, None, "Root"),
            RoleDefinition("ORPHAN", 4, "DELETED_ROLE", "Orphan", is_custom=True),
        ])
        assert path_to_root(view, "ORPHAN") == ["ORPHAN"]

    def test_cycle_raises(self):
        with pytest.raises(CycleDetected) as exc_info:
            path_to_root(_cyclic_view(), "A")
        assert exc_info.value.path[-1] == exc_info.value.role_type


class TestShortestPath:
    """Paths through the lowest common ancestor."""

    def test_down_the_chain(self, scenario_catalog):
        assert shortest_path(scenario_catalog, "ROOT", "LEAF") == ["ROOT", "MID", "LEAF"]

    def test_up_the_chain(self, scenario_catalog):
        assert shortest_path(scenario_catalog, "LEAF", "ROOT") == ["LEAF", "MID", "ROOT"]

    def test_across_branches(self):
        catalog = get_role_catalog()
        assert shortest_path(catalog, "AUDITOR", "DEPARTMENT_HEAD") == [
            "AUDITOR", "MANAGER", "DEPARTMENT_HEAD",
        ]

    def test_same_role(self, scenario_catalog):
        assert shortest_path(scenario_catalog, "MID", "MID") == ["MID"]

    def test_unknown_role(self, scenario_catalog):
        assert shortest_path(scenario_catalog, "MID", "NOPE") == []


class TestDescendants:
    """Tree-based descendant queries."""

    def test_descendants_of_mid(self, scenario_catalog):
        assert descendants_of(scenario_catalog, "MID") == ["LEAF"]
        assert descendants_of(scenario_catalog, "LEAF") == []

    def test_builtin_descendants(self):
        catalog = get_role_catalog()
        assert set(descendants_of(catalog, "TRAINER_COORDINATOR")) == {
            "SENIOR_TRAINER", "TRAINER", "EXTERNAL_TRAINER",
        }
        assert set(descendants_of(catalog, "SUPER_ADMIN")) == catalog.all_role_types() - {"SUPER_ADMIN"}

    def test_ancestry(self, scenario_catalog):
        assert is_ancestor(scenario_catalog, "ROOT", "LEAF") is True
        assert is_ancestor(scenario_catalog, "LEAF", "ROOT") is False
        assert is_ancestor(scenario_catalog, "MID", "MID") is False
        assert is_descendant(scenario_catalog, "LEAF", "MID") is True

    def test_cycle_in_children_raises(self):
        with pytest.raises(CycleDetected):
            descendants_of(_cyclic_view(), "A")


# =============================================================================
# AUTHORITY
# =============================================================================

class TestAssignAndManage:
    """Allow-list assignment and level-based management."""

    def test_scenario_a(self, scenario_catalog):
        """ROOT assigns anything, MID assigns LEAF but never ROOT."""
        assert can_assign_to_role(scenario_catalog, "ROOT", "LEAF") is True
        assert can_assign_to_role(scenario_catalog, "MID", "LEAF") is True
        assert can_assign_to_role(scenario_catalog, "LEAF", "MID") is False
        assert can_assign_to_role(scenario_catalog, "MID", "ROOT") is False
        assert can_manage_role(scenario_catalog, "MID", "ROOT") is False

    def test_assignment_is_allow_list_not_level(self):
        """HR_MANAGER and MANAGER share a level yet MANAGER may assign HR_MANAGER."""
        catalog = get_role_catalog()
        assert can_assign_to_role(catalog, "MANAGER", "HR_MANAGER") is True
        assert can_manage_role(catalog, "MANAGER", "HR_MANAGER") is False
        assert can_assign_to_role(catalog, "AUDITOR", "GUEST") is False

    def test_manage_is_irreflexive(self):
        catalog = get_role_catalog()
        for role_type in catalog:
            if catalog.is_root_authority(role_type):
                continue
            assert can_manage_role(catalog, role_type, role_type) is False

    def test_root_manages_itself(self, scenario_catalog):
        assert can_manage_role(scenario_catalog, "ROOT", "ROOT") is True

    def test_unknown_manager_manages_nothing(self, scenario_catalog):
        assert can_manage_role(scenario_catalog, "NOPE", "LEAF") is False
        assert can_assign_to_role(scenario_catalog, "NOPE", "LEAF") is False

    def test_known_role_manages_unknown(self, scenario_catalog):
        """Unknown targets are unranked, so any known role outranks them."""
        assert can_manage_role(scenario_catalog, "LEAF", "NOPE") is True

    def test_assignable_roles(self, scenario_catalog):
        assert [r.role_type for r in assignable_roles(scenario_catalog, "MID")] == ["LEAF"]
        assert [r.role_type for r in assignable_roles(scenario_catalog, "ROOT")] == [
            "ROOT", "MID", "LEAF",
        ]
        assert assignable_roles(scenario_catalog, "LEAF") == []


class TestHighestAuthority:
    """Minimum-level selection with a deterministic tie-break."""

    def test_empty(self, scenario_catalog):
        assert highest_authority(scenario_catalog, []) is None

    def test_picks_lowest_level(self, scenario_catalog):
        assert highest_authority(scenario_catalog, ["LEAF", "MID"]) == "MID"

    def test_unknown_roles_lose(self, scenario_catalog):
        assert highest_authority(scenario_catalog, ["NOPE", "LEAF"]) == "LEAF"

    def test_tie_breaks_lexicographically(self):
        catalog = get_role_catalog()
        assert highest_authority(catalog, ["TENANT_ADMIN", "COMPANY_ADMIN"]) == "COMPANY_ADMIN"

    def test_result_is_a_minimum_and_order_independent(self):
        catalog = get_role_catalog()
        rng = random.Random(7)
        role_types = sorted(catalog)
        for _ in range(50):
            roles = rng.sample(role_types, rng.randint(1, 6))
            best = highest_authority(catalog, roles)
            assert best in roles
            assert all(catalog.get_level(best) <= catalog.get_level(r) for r in roles)
            rng.shuffle(roles)
            assert highest_authority(catalog, roles) == best


class TestLevelRelations:
    """Level-based comparisons and sibling detection."""

    def test_distance(self, scenario_catalog):
        assert hierarchical_distance(scenario_catalog, "ROOT", "LEAF") == 2
        assert hierarchical_distance(scenario_catalog, "LEAF", "ROOT") == 2

    def test_same_level(self):
        catalog = get_role_catalog()
        assert are_same_level(catalog, "COMPANY_ADMIN", "TENANT_ADMIN") is True
        assert are_same_level(catalog, "COMPANY_ADMIN", "NOPE") is False

    def test_siblings_need_shared_parent(self):
        catalog = get_role_catalog()
        assert are_siblings(catalog, "TRAINER", "EXTERNAL_TRAINER") is True
        # same level 7, different parents
        assert are_siblings(catalog, "TRAINER", "COORDINATOR") is False
        assert are_siblings(catalog, "TRAINER", "TRAINER") is False

    def test_sibling_roles(self):
        catalog = get_role_catalog()
        assert sibling_roles(catalog, "AUDITOR") == ["DEPARTMENT_HEAD"]
        assert sibling_roles(catalog, "NOPE") == []

    def test_subordinates_are_level_based(self):
        """A deeper role on an unrelated branch still counts as subordinate."""
        catalog = get_role_catalog()
        assert is_subordinate(catalog, "TRAINER", "AUDITOR") is True
        assert "TRAINER" in subordinates_of(catalog, "AUDITOR")
        assert "AUDITOR" not in subordinates_of(catalog, "DEPARTMENT_HEAD")

    def test_subordinates_and_superiors_of_scenario(self, scenario_catalog):
        assert subordinates_of(scenario_catalog, "ROOT") == ["MID", "LEAF"]
        assert superiors_of(scenario_catalog, "LEAF") == ["ROOT", "MID"]
        assert subordinates_of(scenario_catalog, "NOPE") == []
        assert superiors_of(scenario_catalog, "NOPE") == []
