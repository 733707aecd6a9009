"""
Tests for access-level and custom permission evaluation.
"""

import pytest

from ftth_tracker.services.permissions import (
    ACCESS_LEVELS,
    ALL_PERMISSIONS,
    MUTATING_PERMISSIONS,
    PERMISSIONS,
    effective_permissions,
    has_permission,
    is_valid_access_level,
    validate_permission_list,
)


class TestAccessLevels:
    def test_admin_has_every_permission(self):
        user = {"access_level": "ADMIN"}
        for perm in ALL_PERMISSIONS:
            assert has_permission(user, perm)

    def test_viewer_holds_no_mutating_permission(self):
        viewer = {"access_level": "VIEWER"}
        assert not (effective_permissions(viewer) & MUTATING_PERMISSIONS)

    @pytest.mark.parametrize("level", sorted(ACCESS_LEVELS))
    def test_only_admin_manages_users(self, level):
        expected = level == "ADMIN"
        assert has_permission({"access_level": level}, PERMISSIONS.MANAGE_USERS) is expected

    def test_maintenance_manager_cannot_add_technicians(self):
        user = {"access_level": "MAINTENANCE_MANAGER"}
        assert has_permission(user, PERMISSIONS.ADD_MAINTENANCE)
        assert not has_permission(user, PERMISSIONS.ADD_TECHNICIAN)

    def test_tech_manager_cannot_delete_maintenance(self):
        user = {"access_level": "TECH_MANAGER"}
        assert has_permission(user, PERMISSIONS.DELETE_TECHNICIAN)
        assert not has_permission(user, PERMISSIONS.DELETE_MAINTENANCE)


class TestEdgeCases:
    def test_missing_user(self):
        assert not has_permission(None, PERMISSIONS.VIEW_TASKS)

    def test_unknown_access_level(self):
        assert not has_permission({"access_level": "ROOT"}, PERMISSIONS.VIEW_TASKS)

    def test_custom_list_replaces_level(self):
        user = {
            "access_level": "VIEWER",
            "custom_permissions": True,
            "permissions": [PERMISSIONS.CREATE_TASKS],
        }
        assert has_permission(user, PERMISSIONS.CREATE_TASKS)
        assert not has_permission(user, PERMISSIONS.VIEW_TASKS)

    def test_empty_custom_list_grants_nothing(self):
        user = {"access_level": "ADMIN", "custom_permissions": True, "permissions": []}
        assert effective_permissions(user) == frozenset()

    def test_custom_flag_without_list_falls_back_to_level(self):
        user = {"access_level": "USER", "custom_permissions": True, "permissions": None}
        assert has_permission(user, PERMISSIONS.ADD_TECHNICIAN)

    def test_list_ignored_without_custom_flag(self):
        user = {"access_level": "VIEWER", "custom_permissions": False, "permissions": [PERMISSIONS.MANAGE_USERS]}
        assert not has_permission(user, PERMISSIONS.MANAGE_USERS)

    def test_unknown_custom_permissions_are_dropped(self):
        user = {"access_level": "USER", "custom_permissions": True, "permissions": ["fly", PERMISSIONS.VIEW_MAP]}
        assert effective_permissions(user) == frozenset({PERMISSIONS.VIEW_MAP})

    def test_orm_like_objects(self):
        class Row:
            access_level = "USER"
            custom_permissions = False
            permissions = None

        assert has_permission(Row(), PERMISSIONS.VIEW_TECHNICIANS)


def test_validate_permission_list():
    assert validate_permission_list(None) == []
    assert validate_permission_list([PERMISSIONS.VIEW_MAP, "bogus", "alpha"]) == ["alpha", "bogus"]


def test_is_valid_access_level():
    assert is_valid_access_level("ADMIN")
    assert not is_valid_access_level("admin")
    assert not is_valid_access_level(None)
