from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from ragvault.core.config import get_settings
from ragvault.core.errors import (
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    TokenExhaustedError,
    TokenExpiredError,
    TokenInvalidError,
)
from ragvault.domain.entities import AccessToken, TokenRedemption
from ragvault.services.auth.roles import normalize_role
from ragvault.services.auth.tokens import generate_secure_token, generate_unique_id, hash_token
from ragvault.services.locks import KeyedLock
from ragvault.services.permissions import PermissionService
from ragvault.services.sharing.notifications import NotificationManager
from ragvault.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AccessTokenService:
    """Bearer tokens granting a role without an interactive accept.

    A token is usable while ``active and now < expires_at`` and, when
    ``max_uses`` is set, ``usage_count < max_uses``. ``usage_count`` counts
    every redemption, including repeats by a user already in ``used_by``.
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
        self._tokens: dict[str, AccessToken] = {}
        # token hash -> token id; the raw bearer string is never used as a key.
        self._lookup: dict[str, str] = {}
        self._locks = KeyedLock()
        self._now = time_provider or _utc_now

    async def generate_token(
        self,
        *,
        database_name: str,
        issuer_address: str,
        role: str,
        expires_at: datetime | None = None,
        ttl: timedelta | None = None,
        max_uses: int | None = None,
    ) -> AccessToken:
        normalized_role = normalize_role(role)
        if max_uses is not None and max_uses < 1:
            raise InvalidInputError("max_uses must be at least 1", database_name=database_name)
        self._permissions.require(database_name, issuer_address, "admin")

        now = self._now()
        if expires_at is None:
            expires_at = now + (ttl or timedelta(hours=get_settings().access_token_default_ttl_hours))
        if expires_at <= now:
            raise InvalidInputError("expires_at must be in the future", database_name=database_name)

        raw_token, token_hash = generate_secure_token()
        token = AccessToken(
            id=generate_unique_id("tok"),
            token=raw_token,
            database_name=database_name,
            issuer_address=issuer_address,
            role=normalized_role,
            created_at=now,
            expires_at=expires_at,
            max_uses=max_uses,
        )
        self._tokens[token.id] = token
        self._lookup[token_hash] = token.id
        increment_counter("access_tokens_issued_total")
        logger.info(
            "access_token_issued id=%s database=%s issuer=%s role=%s max_uses=%s",
            token.id,
            database_name,
            issuer_address,
            normalized_role,
            max_uses,
        )
        return token.model_copy(deep=True)

    def _find(self, raw_token: str) -> AccessToken | None:
        token_id = self._lookup.get(hash_token(raw_token or ""))
        return self._tokens.get(token_id) if token_id is not None else None

    def _ensure_usable(self, token: AccessToken, now: datetime) -> None:
        if not token.active:
            raise TokenInvalidError("Access token is not active", token_id=token.id)
        if now >= token.expires_at:
            raise TokenExpiredError("Access token has expired", token_id=token.id)
        if token.max_uses is not None and token.usage_count >= token.max_uses:
            raise TokenExhaustedError(
                "Access token usage limit reached", token_id=token.id, max_uses=token.max_uses
            )

    def validate_token(self, raw_token: str) -> bool:
        token = self._find(raw_token)
        if token is None:
            return False
        try:
            self._ensure_usable(token, self._now())
        except (TokenInvalidError, TokenExpiredError, TokenExhaustedError):
            return False
        return True

    async def redeem_token(self, raw_token: str, user_address: str) -> TokenRedemption:
        if not user_address or not user_address.strip():
            raise InvalidInputError("user_address is required")
        token = self._find(raw_token)
        if token is None:
            raise TokenInvalidError("Access token is not valid")

        # Check-and-increment under the token lock so concurrent redemptions cannot overshoot max_uses.
        async with self._locks.hold(token.id):
            self._ensure_usable(token, self._now())
            owner = self._permissions.registry.get(token.database_name)
            # The owner's role is implicit; no grant row is stored for them.
            if owner is None or owner.owner != user_address:
                await self._permissions.grant(
                    token.database_name,
                    user_address,
                    token.role,
                    granted_by=token.issuer_address,
                )
            token.usage_count += 1
            if user_address not in token.used_by:
                token.used_by.append(user_address)
            usage_count = token.usage_count

        self._notifications.notify_token_used(
            issuer_address=token.issuer_address,
            user_address=user_address,
            database_name=token.database_name,
            token_id=token.id,
        )
        increment_counter("access_tokens_redeemed_total")
        logger.info(
            "access_token_redeemed id=%s database=%s user=%s usage_count=%s",
            token.id,
            token.database_name,
            user_address,
            usage_count,
        )
        return TokenRedemption(granted=True, role=token.role, database_name=token.database_name)

    async def revoke_token(self, token_id: str, user_address: str, *, revoke_access: bool = True) -> AccessToken:
        token = self._tokens.get(token_id)
        if token is None:
            raise NotFoundError("Access token not found", token_id=token_id)
        if token.issuer_address != user_address:
            raise ForbiddenError("Only the issuer can revoke this token", token_id=token_id)

        async with self._locks.hold(token_id):
            if not token.active:
                # Idempotent: a second revoke changes nothing and notifies nobody.
                return token.model_copy(deep=True)
            token.active = False
            token.revoked_at = self._now()
            redeemers = list(token.used_by)

        owner = self._permissions.registry.get(token.database_name)
        for redeemer in redeemers:
            access_removed = False
            if revoke_access and (owner is None or owner.owner != redeemer):
                try:
                    await self._permissions.revoke(token.database_name, redeemer)
                    access_removed = True
                except NotFoundError:
                    # Grant already removed by another path (revoke_access, unregister).
                    logger.debug(
                        "access_token_grant_missing id=%s database=%s user=%s",
                        token_id,
                        token.database_name,
                        redeemer,
                    )
            self._notifications.notify_token_revoked(
                user_address=redeemer,
                database_name=token.database_name,
                token_id=token_id,
                access_removed=access_removed,
            )
        increment_counter("access_tokens_revoked_total")
        logger.info("access_token_revoked id=%s database=%s redeemers=%s", token_id, token.database_name, len(redeemers))
        return token.model_copy(deep=True)

    def get_token(self, token_id: str) -> AccessToken | None:
        token = self._tokens.get(token_id)
        return token.model_copy(deep=True) if token is not None else None

    def list_tokens(self, database_name: str, *, active_only: bool = False) -> list[AccessToken]:
        now = self._now()
        return [
            token.model_copy(deep=True)
            for token in self._tokens.values()
            if token.database_name == database_name
            and (not active_only or (token.active and token.expires_at > now))
        ]

    def purge_database(self, database_name: str) -> int:
        doomed = [token for token in self._tokens.values() if token.database_name == database_name]
        for token in doomed:
            self._lookup.pop(hash_token(token.token), None)
            del self._tokens[token.id]
        return len(doomed)
