from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from ragvault.core.errors import InvalidInputError
from ragvault.domain.entities import AccessToken, PermissionGrant, ShareInvitation, TokenRedemption
from ragvault.services.permissions import PermissionService
from ragvault.services.sharing.invitations import InvitationService
from ragvault.services.sharing.notifications import NotificationManager
from ragvault.services.sharing.tokens import AccessTokenService
from ragvault.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


class SharingService:
    """Facade over invitations, access tokens and notifications.

    All three share one ``NotificationManager`` so a user sees invitation and
    token events in a single list.
    """

    def __init__(
        self,
        permissions: PermissionService,
        *,
        notifications: NotificationManager | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._permissions = permissions
        self._notifications = notifications or NotificationManager(time_provider=time_provider)
        self.invitations = InvitationService(permissions, self._notifications, time_provider=time_provider)
        self.tokens = AccessTokenService(permissions, self._notifications, time_provider=time_provider)

    @property
    def permissions(self) -> PermissionService:
        return self._permissions

    def get_notification_manager(self) -> NotificationManager:
        return self._notifications

    # Invitations

    async def create_invitation(
        self,
        database_name: str,
        inviter_address: str,
        invitee_address: str,
        role: str,
        *,
        expires_at: datetime | None = None,
    ) -> ShareInvitation:
        return await self.invitations.create_invitation(
            database_name=database_name,
            inviter_address=inviter_address,
            invitee_address=invitee_address,
            role=role,
            expires_at=expires_at,
        )

    async def accept_invitation(self, invitation_id: str, user_address: str) -> ShareInvitation:
        return await self.invitations.accept_invitation(invitation_id, user_address)

    async def reject_invitation(self, invitation_id: str, user_address: str) -> ShareInvitation:
        return await self.invitations.reject_invitation(invitation_id, user_address)

    async def decline_invitation(self, invitation_id: str, user_address: str) -> ShareInvitation:
        return await self.invitations.decline_invitation(invitation_id, user_address)

    async def revoke_invitation(self, invitation_id: str, user_address: str) -> ShareInvitation:
        return await self.invitations.revoke_invitation(invitation_id, user_address)

    def get_invitation(self, invitation_id: str) -> ShareInvitation | None:
        return self.invitations.get_invitation(invitation_id)

    def list_invitations(self, database_name: str) -> list[ShareInvitation]:
        return self.invitations.list_invitations(database_name)

    def list_invitations_for_user(self, user_address: str, *, pending_only: bool = True) -> list[ShareInvitation]:
        return self.invitations.list_invitations_for_user(user_address, pending_only=pending_only)

    # Access tokens

    async def generate_token(
        self,
        database_name: str,
        issuer_address: str,
        role: str,
        *,
        expires_at: datetime | None = None,
        ttl: timedelta | None = None,
        max_uses: int | None = None,
    ) -> AccessToken:
        return await self.tokens.generate_token(
            database_name=database_name,
            issuer_address=issuer_address,
            role=role,
            expires_at=expires_at,
            ttl=ttl,
            max_uses=max_uses,
        )

    def validate_token(self, token: str) -> bool:
        return self.tokens.validate_token(token)

    async def redeem_token(self, token: str, user_address: str) -> TokenRedemption:
        return await self.tokens.redeem_token(token, user_address)

    async def revoke_token(self, token_id: str, user_address: str, *, revoke_access: bool = True) -> AccessToken:
        return await self.tokens.revoke_token(token_id, user_address, revoke_access=revoke_access)

    def get_token(self, token_id: str) -> AccessToken | None:
        return self.tokens.get_token(token_id)

    def list_tokens(self, database_name: str, *, active_only: bool = False) -> list[AccessToken]:
        return self.tokens.list_tokens(database_name, active_only=active_only)

    # Direct access management

    async def revoke_access(
        self,
        database_name: str,
        requester_address: str,
        user_address: str,
        *,
        reason: str = "Access revoked by database owner",
    ) -> PermissionGrant:
        self._permissions.require(database_name, requester_address, "admin")
        if requester_address == user_address:
            raise InvalidInputError("Cannot revoke your own access", database_name=database_name)
        grant = await self._permissions.revoke(database_name, user_address)
        self._notifications.notify_access_revoked(
            user_address=user_address,
            database_name=database_name,
            reason=reason,
        )
        increment_counter("access_revoked_total")
        logger.info(
            "access_revoked database=%s requester=%s user=%s", database_name, requester_address, user_address
        )
        return grant

    def purge_database(self, database_name: str) -> dict[str, int]:
        return {
            "invitations": self.invitations.purge_database(database_name),
            "tokens": self.tokens.purge_database(database_name),
        }
