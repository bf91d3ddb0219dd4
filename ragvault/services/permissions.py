from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from ragvault.core.errors import ForbiddenError, InvalidInputError, NotFoundError
from ragvault.domain.entities import PermissionGrant, PermissionSummary
from ragvault.persistence.portal import StoragePortal
from ragvault.services.auth.roles import can_access_database, normalize_action, normalize_role
from ragvault.services.locks import KeyedLock
from ragvault.services.registry import DatabaseRegistry


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _portal_prefix(database_name: str) -> str:
    return f"permissions/{database_name}/"


class PermissionService:
    """Per-database permission grants on top of the registry.

    The registry owner is always treated as role ``owner`` even when no grant
    row exists; public databases are readable by anyone.
    """

    def __init__(
        self,
        registry: DatabaseRegistry,
        *,
        portal: StoragePortal | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._registry = registry
        self._grants: dict[str, dict[str, PermissionGrant]] = {}
        self._locks = KeyedLock()
        self._portal = portal
        self._now = time_provider or _utc_now

    @property
    def registry(self) -> DatabaseRegistry:
        return self._registry

    async def grant(
        self,
        database_name: str,
        user_address: str,
        role: str,
        *,
        granted_by: str | None = None,
    ) -> PermissionGrant:
        normalized_role = normalize_role(role)
        if not user_address or not user_address.strip():
            raise InvalidInputError("user_address is required", database_name=database_name)
        self._registry.require(database_name)
        async with self._locks.hold(database_name):
            grant = PermissionGrant(
                database_name=database_name,
                user_address=user_address,
                role=normalized_role,
                granted_by=granted_by,
                granted_at=self._now(),
            )
            if self._portal is not None:
                await self._portal.put(
                    f"{_portal_prefix(database_name)}{user_address}", grant.model_dump(mode="json")
                )
            # Re-granting replaces the row so upgrades and downgrades both apply.
            self._grants.setdefault(database_name, {})[user_address] = grant
        logger.info(
            "permission_granted database=%s user=%s role=%s", database_name, user_address, normalized_role
        )
        return grant.model_copy()

    async def revoke(self, database_name: str, user_address: str) -> PermissionGrant:
        record = self._registry.require(database_name)
        if user_address == record.owner:
            raise InvalidInputError(
                "Cannot revoke owner permission", database_name=database_name, user_address=user_address
            )
        async with self._locks.hold(database_name):
            grants = self._grants.get(database_name, {})
            grant = grants.get(user_address)
            if grant is None:
                raise NotFoundError(
                    "Permission not found", database_name=database_name, user_address=user_address
                )
            if self._portal is not None:
                await self._portal.delete(f"{_portal_prefix(database_name)}{user_address}")
            del grants[user_address]
        logger.info("permission_revoked database=%s user=%s", database_name, user_address)
        return grant

    def get_role(self, database_name: str, user_address: str) -> str | None:
        record = self._registry.get(database_name)
        if record is None:
            return None
        if record.owner == user_address:
            return "owner"
        grant = self._grants.get(database_name, {}).get(user_address)
        return grant.role if grant is not None else None

    def check(self, database_name: str, user_address: str, action: str) -> bool:
        normalized_action = normalize_action(action)
        record = self._registry.get(database_name)
        if record is None:
            return False
        return can_access_database(record.visibility, self.get_role(database_name, user_address), normalized_action)

    def require(self, database_name: str, user_address: str, action: str) -> None:
        self._registry.require(database_name)
        if not self.check(database_name, user_address, action):
            raise ForbiddenError(
                "Permission denied",
                database_name=database_name,
                user_address=user_address,
                action=action,
            )

    def list(self, database_name: str) -> list[PermissionGrant]:
        grants = self._grants.get(database_name, {})
        return [grants[user].model_copy() for user in sorted(grants)]

    def list_for_user(self, user_address: str) -> list[PermissionGrant]:
        found = [
            grant
            for grants in self._grants.values()
            for grant in grants.values()
            if grant.user_address == user_address
        ]
        found.sort(key=lambda grant: grant.database_name)
        return [grant.model_copy() for grant in found]

    def get_summary(self, database_name: str) -> PermissionSummary:
        grants = list(self._grants.get(database_name, {}).values())
        counts = {"reader": 0, "writer": 0, "owner": 0}
        for grant in grants:
            counts[grant.role] += 1
        return PermissionSummary(
            database_name=database_name,
            total_permissions=len(grants),
            reader_count=counts["reader"],
            writer_count=counts["writer"],
            owner_count=counts["owner"],
            last_granted_at=max((grant.granted_at for grant in grants), default=None),
        )

    async def purge_database(self, database_name: str) -> int:
        # Drop every grant for a database that is being unregistered.
        async with self._locks.hold(database_name):
            grants = self._grants.pop(database_name, {})
            if self._portal is not None:
                for user_address in grants:
                    await self._portal.delete(f"{_portal_prefix(database_name)}{user_address}")
        if grants:
            logger.info("permissions_purged database=%s count=%s", database_name, len(grants))
        return len(grants)

    async def load(self, database_name: str) -> int:
        if self._portal is None:
            return 0
        loaded = 0
        async with self._locks.hold(database_name):
            grants = self._grants.setdefault(database_name, {})
            for key in await self._portal.list(_portal_prefix(database_name)):
                payload = await self._portal.get(key)
                if payload is None:
                    continue
                grant = PermissionGrant.model_validate(payload)
                grants.setdefault(grant.user_address, grant)
                loaded += 1
        return loaded
