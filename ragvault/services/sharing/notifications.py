from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from ragvault.core.errors import ForbiddenError, InvalidInputError, NotFoundError
from ragvault.domain.entities import Notification
from ragvault.services.auth.tokens import generate_unique_id
from ragvault.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_NOTIFICATION_TYPES = frozenset(
    {
        "invitation_received",
        "invitation_accepted",
        "invitation_rejected",
        "invitation_revoked",
        "token_used",
        "token_revoked",
        "access_revoked",
    }
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NotificationManager:
    """Per-user, append-only notification lists with read state.

    ``data`` conventions by type:

    - invitation_*: ``invitation_id``, ``database_name``, ``role``, and the
      counterpart address (``inviter_address`` or ``invitee_address``)
    - token_used: ``token_id``, ``database_name``, ``user_address``
    - token_revoked / access_revoked: ``database_name``, ``reason``, and
      ``token_id`` when a token triggered it
    """

    def __init__(self, *, time_provider: Callable[[], datetime] | None = None) -> None:
        self._notifications: dict[str, list[Notification]] = {}
        self._index: dict[str, str] = {}
        self._now = time_provider or _utc_now

    def notify(
        self,
        user_address: str,
        type: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> Notification:
        if type not in _NOTIFICATION_TYPES:
            raise InvalidInputError(f"Unsupported notification type: {type}", type=type)
        notification = Notification(
            id=generate_unique_id("ntf"),
            user_address=user_address,
            type=type,
            message=message,
            data=dict(data or {}),
            created_at=self._now(),
        )
        self._notifications.setdefault(user_address, []).append(notification)
        self._index[notification.id] = user_address
        increment_counter(f"notifications_sent_total.{type}")
        logger.debug("notification_sent user=%s type=%s", user_address, type)
        return notification.model_copy(deep=True)

    def get_notifications(
        self,
        user_address: str,
        *,
        unread_only: bool = False,
        type: str | None = None,
        limit: int | None = None,
    ) -> list[Notification]:
        # Newest first; the backing list is append-only so reverse it.
        items = [
            notification
            for notification in reversed(self._notifications.get(user_address, []))
            if (not unread_only or not notification.read) and (type is None or notification.type == type)
        ]
        if limit is not None:
            items = items[: max(0, limit)]
        return [notification.model_copy(deep=True) for notification in items]

    def get_unread_count(self, user_address: str) -> int:
        return sum(1 for notification in self._notifications.get(user_address, []) if not notification.read)

    def _owned(self, notification_id: str, user_address: str) -> Notification:
        recipient = self._index.get(notification_id)
        if recipient is None:
            raise NotFoundError("Notification not found", notification_id=notification_id)
        if recipient != user_address:
            raise ForbiddenError(
                "Only the recipient can modify this notification", notification_id=notification_id
            )
        for notification in self._notifications.get(recipient, []):
            if notification.id == notification_id:
                return notification
        raise NotFoundError("Notification not found", notification_id=notification_id)

    def mark_as_read(self, notification_id: str, user_address: str) -> Notification:
        notification = self._owned(notification_id, user_address)
        if not notification.read:
            notification.read = True
            notification.read_at = self._now()
        return notification.model_copy(deep=True)

    def mark_all_as_read(self, user_address: str) -> int:
        now = self._now()
        updated = 0
        for notification in self._notifications.get(user_address, []):
            if not notification.read:
                notification.read = True
                notification.read_at = now
                updated += 1
        return updated

    def delete_notification(self, notification_id: str, user_address: str) -> None:
        notification = self._owned(notification_id, user_address)
        self._notifications[user_address].remove(notification)
        del self._index[notification_id]

    def clear_all_notifications(self, user_address: str) -> int:
        removed = self._notifications.pop(user_address, [])
        for notification in removed:
            self._index.pop(notification.id, None)
        return len(removed)

    def notify_invitation_received(
        self, *, invitee_address: str, inviter_address: str, database_name: str, role: str, invitation_id: str
    ) -> Notification:
        return self.notify(
            invitee_address,
            "invitation_received",
            f"{inviter_address} invited you to '{database_name}' as {role}",
            {
                "invitation_id": invitation_id,
                "database_name": database_name,
                "role": role,
                "inviter_address": inviter_address,
            },
        )

    def notify_invitation_accepted(
        self, *, inviter_address: str, invitee_address: str, database_name: str, role: str, invitation_id: str
    ) -> Notification:
        return self.notify(
            inviter_address,
            "invitation_accepted",
            f"{invitee_address} accepted your invitation to '{database_name}'",
            {
                "invitation_id": invitation_id,
                "database_name": database_name,
                "role": role,
                "invitee_address": invitee_address,
            },
        )

    def notify_invitation_rejected(
        self, *, inviter_address: str, invitee_address: str, database_name: str, role: str, invitation_id: str
    ) -> Notification:
        return self.notify(
            inviter_address,
            "invitation_rejected",
            f"{invitee_address} declined your invitation to '{database_name}'",
            {
                "invitation_id": invitation_id,
                "database_name": database_name,
                "role": role,
                "invitee_address": invitee_address,
            },
        )

    def notify_invitation_revoked(
        self, *, invitee_address: str, inviter_address: str, database_name: str, role: str, invitation_id: str
    ) -> Notification:
        return self.notify(
            invitee_address,
            "invitation_revoked",
            f"{inviter_address} revoked the invitation to '{database_name}'",
            {
                "invitation_id": invitation_id,
                "database_name": database_name,
                "role": role,
                "inviter_address": inviter_address,
            },
        )

    def notify_token_used(
        self, *, issuer_address: str, user_address: str, database_name: str, token_id: str
    ) -> Notification:
        return self.notify(
            issuer_address,
            "token_used",
            f"{user_address} used an access token for '{database_name}'",
            {"token_id": token_id, "database_name": database_name, "user_address": user_address},
        )

    def notify_token_revoked(
        self, *, user_address: str, database_name: str, token_id: str, access_removed: bool
    ) -> Notification:
        return self.notify(
            user_address,
            "token_revoked",
            f"An access token for '{database_name}' was revoked",
            {
                "token_id": token_id,
                "database_name": database_name,
                "reason": "Access token revoked by owner",
                "access_removed": access_removed,
            },
        )

    def notify_access_revoked(self, *, user_address: str, database_name: str, reason: str) -> Notification:
        return self.notify(
            user_address,
            "access_revoked",
            f"Your access to '{database_name}' was revoked",
            {"database_name": database_name, "reason": reason},
        )
