from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from ragvault.core.config import get_settings
from ragvault.core.errors import (
    AlreadyTerminalError,
    ForbiddenError,
    InvalidInputError,
    InvitationExpiredError,
    NotFoundError,
)
from ragvault.domain.entities import TERMINAL_INVITATION_STATUSES, ShareInvitation
from ragvault.services.auth.roles import normalize_role
from ragvault.services.auth.tokens import generate_unique_id
from ragvault.services.locks import KeyedLock
from ragvault.services.permissions import PermissionService
from ragvault.services.sharing.notifications import NotificationManager
from ragvault.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InvitationService:
    """Invitation lifecycle: pending -> accepted | rejected | revoked.

    Terminal states are final. Every transition is serialized on the
    invitation id, so an accept racing a revoke lets exactly one win and the
    loser observes ``AlreadyTerminalError``.
    """

    def __init__(
        self,
        permissions: PermissionService,
        notifications: NotificationManager,
        *,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._permissions = permissions
        self._notifications = notifications
        self._invitations: dict[str, ShareInvitation] = {}
        self._locks = KeyedLock()
        self._now = time_provider or _utc_now

    async def create_invitation(
        self,
        *,
        database_name: str,
        inviter_address: str,
        invitee_address: str,
        role: str,
        expires_at: datetime | None = None,
    ) -> ShareInvitation:
        normalized_role = normalize_role(role)
        if not invitee_address or not invitee_address.strip():
            raise InvalidInputError("invitee_address is required", database_name=database_name)
        if invitee_address == inviter_address:
            raise InvalidInputError("Cannot invite yourself", database_name=database_name)
        self._permissions.require(database_name, inviter_address, "admin")

        now = self._now()
        if expires_at is None:
            ttl_hours = get_settings().invitation_default_ttl_hours
            if ttl_hours is not None:
                expires_at = now + timedelta(hours=ttl_hours)
        elif expires_at <= now:
            raise InvalidInputError("expires_at must be in the future", database_name=database_name)

        invitation = ShareInvitation(
            id=generate_unique_id("inv"),
            database_name=database_name,
            inviter_address=inviter_address,
            invitee_address=invitee_address,
            role=normalized_role,
            created_at=now,
            expires_at=expires_at,
        )
        self._invitations[invitation.id] = invitation
        self._notifications.notify_invitation_received(
            invitee_address=invitee_address,
            inviter_address=inviter_address,
            database_name=database_name,
            role=normalized_role,
            invitation_id=invitation.id,
        )
        increment_counter("invitations_created_total")
        logger.info(
            "invitation_created id=%s database=%s inviter=%s invitee=%s role=%s",
            invitation.id,
            database_name,
            inviter_address,
            invitee_address,
            normalized_role,
        )
        return invitation.model_copy()

    def _get_or_raise(self, invitation_id: str) -> ShareInvitation:
        invitation = self._invitations.get(invitation_id)
        if invitation is None:
            raise NotFoundError("Invitation not found", invitation_id=invitation_id)
        return invitation

    def _require_pending(self, invitation: ShareInvitation) -> None:
        if invitation.status in TERMINAL_INVITATION_STATUSES:
            raise AlreadyTerminalError(
                f"Invitation is already {invitation.status}",
                invitation_id=invitation.id,
                status=invitation.status,
            )

    async def accept_invitation(self, invitation_id: str, user_address: str) -> ShareInvitation:
        async with self._locks.hold(invitation_id):
            invitation = self._get_or_raise(invitation_id)
            if invitation.invitee_address != user_address:
                raise ForbiddenError(
                    "Only the invitee can accept this invitation", invitation_id=invitation_id
                )
            self._require_pending(invitation)
            now = self._now()
            if invitation.expires_at is not None and invitation.expires_at <= now:
                raise InvitationExpiredError("Invitation has expired", invitation_id=invitation_id)

            # Grant first: if it fails the invitation stays pending, so both or neither apply.
            await self._permissions.grant(
                invitation.database_name,
                invitation.invitee_address,
                invitation.role,
                granted_by=invitation.inviter_address,
            )
            invitation.status = "accepted"
            invitation.accepted_at = now
        self._notifications.notify_invitation_accepted(
            inviter_address=invitation.inviter_address,
            invitee_address=invitation.invitee_address,
            database_name=invitation.database_name,
            role=invitation.role,
            invitation_id=invitation.id,
        )
        increment_counter("invitations_accepted_total")
        logger.info("invitation_accepted id=%s database=%s", invitation_id, invitation.database_name)
        return invitation.model_copy()

    async def reject_invitation(self, invitation_id: str, user_address: str) -> ShareInvitation:
        async with self._locks.hold(invitation_id):
            invitation = self._get_or_raise(invitation_id)
            if invitation.invitee_address != user_address:
                raise ForbiddenError(
                    "Only the invitee can reject this invitation", invitation_id=invitation_id
                )
            self._require_pending(invitation)
            invitation.status = "rejected"
            invitation.rejected_at = self._now()
        self._notifications.notify_invitation_rejected(
            inviter_address=invitation.inviter_address,
            invitee_address=invitation.invitee_address,
            database_name=invitation.database_name,
            role=invitation.role,
            invitation_id=invitation.id,
        )
        logger.info("invitation_rejected id=%s database=%s", invitation_id, invitation.database_name)
        return invitation.model_copy()

    async def decline_invitation(self, invitation_id: str, user_address: str) -> ShareInvitation:
        return await self.reject_invitation(invitation_id, user_address)

    async def revoke_invitation(self, invitation_id: str, user_address: str) -> ShareInvitation:
        async with self._locks.hold(invitation_id):
            invitation = self._get_or_raise(invitation_id)
            if invitation.inviter_address != user_address:
                raise ForbiddenError(
                    "Only the inviter can revoke this invitation", invitation_id=invitation_id
                )
            self._require_pending(invitation)
            invitation.status = "revoked"
            invitation.revoked_at = self._now()
        self._notifications.notify_invitation_revoked(
            invitee_address=invitation.invitee_address,
            inviter_address=invitation.inviter_address,
            database_name=invitation.database_name,
            role=invitation.role,
            invitation_id=invitation.id,
        )
        logger.info("invitation_revoked id=%s database=%s", invitation_id, invitation.database_name)
        return invitation.model_copy()

    def get_invitation(self, invitation_id: str) -> ShareInvitation | None:
        invitation = self._invitations.get(invitation_id)
        return invitation.model_copy() if invitation is not None else None

    def list_invitations(self, database_name: str) -> list[ShareInvitation]:
        return [
            invitation.model_copy()
            for invitation in self._invitations.values()
            if invitation.database_name == database_name
        ]

    def list_invitations_for_user(self, user_address: str, *, pending_only: bool = True) -> list[ShareInvitation]:
        return [
            invitation.model_copy()
            for invitation in self._invitations.values()
            if invitation.invitee_address == user_address
            and (not pending_only or invitation.status == "pending")
        ]

    def purge_database(self, database_name: str) -> int:
        doomed = [
            invitation_id
            for invitation_id, invitation in self._invitations.items()
            if invitation.database_name == database_name
        ]
        for invitation_id in doomed:
            del self._invitations[invitation_id]
        return len(doomed)
