from __future__ import annotations

from ragvault.core.errors import InvalidInputError


ROLE_HIERARCHY: dict[str, int] = {
    "reader": 1,
    "writer": 2,
    "owner": 3,
}

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "reader": frozenset({"read"}),
    "writer": frozenset({"read", "write"}),
    "owner": frozenset({"read", "write", "admin"}),
}

_MINIMUM_ROLE_FOR_ACTION: dict[str, str] = {
    "read": "reader",
    "write": "writer",
    "admin": "owner",
}


def normalize_role(role: str) -> str:
    # Enforce a stable, lowercased role vocabulary for permission checks.
    normalized = (role or "").strip().lower()
    if normalized not in ROLE_HIERARCHY:
        raise InvalidInputError(f"Unsupported role: {role}", role=role)
    return normalized


def normalize_action(action: str) -> str:
    normalized = (action or "").strip().lower()
    if normalized not in _MINIMUM_ROLE_FOR_ACTION:
        raise InvalidInputError(f"Unsupported action: {action}", action=action)
    return normalized


def role_allows_action(role: str | None, action: str) -> bool:
    if role is None:
        return False
    return action in ROLE_PERMISSIONS.get(role, frozenset())


def role_is_higher_or_equal(role: str, other: str) -> bool:
    # Compare roles using numeric ordering for least-privilege enforcement.
    return ROLE_HIERARCHY.get(role, 0) >= ROLE_HIERARCHY.get(other, 0)


def get_minimum_role_for_action(action: str) -> str:
    return _MINIMUM_ROLE_FOR_ACTION[normalize_action(action)]


def can_access_database(visibility: str, role: str | None, action: str) -> bool:
    # Public databases are readable by anyone; everything else needs a role.
    if visibility == "public" and action == "read":
        return True
    return role_allows_action(role, action)
