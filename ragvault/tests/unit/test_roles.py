from __future__ import annotations

import pytest

from ragvault.core.errors import InvalidInputError
from ragvault.services.auth.roles import (
    ROLE_HIERARCHY,
    can_access_database,
    get_minimum_role_for_action,
    normalize_action,
    normalize_role,
    role_allows_action,
    role_is_higher_or_equal,
)


def test_role_hierarchy_values() -> None:
    assert ROLE_HIERARCHY == {"reader": 1, "writer": 2, "owner": 3}


def test_role_hierarchy_is_reflexive_and_ordered() -> None:
    for role in ROLE_HIERARCHY:
        assert role_is_higher_or_equal(role, role)
    assert role_is_higher_or_equal("owner", "writer")
    assert role_is_higher_or_equal("writer", "reader")
    assert not role_is_higher_or_equal("reader", "writer")


def test_permission_sets_are_nested() -> None:
    actions = ["read", "write", "admin"]
    allowed = {role: {a for a in actions if role_allows_action(role, a)} for role in ROLE_HIERARCHY}
    assert allowed["reader"] == {"read"}
    assert allowed["writer"] == {"read", "write"}
    assert allowed["owner"] == {"read", "write", "admin"}
    assert allowed["reader"] < allowed["writer"] < allowed["owner"]


def test_minimum_role_for_action() -> None:
    assert get_minimum_role_for_action("read") == "reader"
    assert get_minimum_role_for_action("write") == "writer"
    assert get_minimum_role_for_action("admin") == "owner"


def test_public_database_allows_read_without_role() -> None:
    assert can_access_database("public", None, "read")
    assert not can_access_database("public", None, "write")
    assert not can_access_database("private", None, "read")
    assert can_access_database("private", "reader", "read")
    assert not can_access_database("private", "writer", "admin")


def test_normalize_role_and_action() -> None:
    assert normalize_role(" Writer ") == "writer"
    assert normalize_action("ADMIN") == "admin"
    with pytest.raises(InvalidInputError):
        normalize_role("superuser")
    with pytest.raises(InvalidInputError):
        normalize_action("delete")
