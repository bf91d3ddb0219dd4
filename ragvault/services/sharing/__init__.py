from __future__ import annotations

# Re-export sharing services for centralized imports.

from ragvault.services.sharing.invitations import InvitationService
from ragvault.services.sharing.manager import SharingService
from ragvault.services.sharing.notifications import NotificationManager
from ragvault.services.sharing.tokens import AccessTokenService

__all__ = [
    "AccessTokenService",
    "InvitationService",
    "NotificationManager",
    "SharingService",
]
