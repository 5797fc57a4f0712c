"""Scoped bans with inheritance down the containment chain."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Sequence

from forum.moderation.domain.exceptions import InvalidStateError, NotFoundError, ValidationError
from forum.moderation.domain.models import Ban, BanType, Clock, new_id, utcnow
from forum.moderation.domain.resolver import ScopeResolver
from forum.moderation.domain.scopes import Scope, ScopeChain
from forum.moderation.domain.storage import Transaction
from forum.obs import metrics

logger = logging.getLogger(__name__)


def validate_ban(ban_type: BanType | str, *, banned_at: datetime, expires_at: datetime | None) -> BanType:
    try:
        ban_type = BanType(ban_type)
    except ValueError as exc:
        raise ValidationError("invalid_ban_type") from exc
    if expires_at is not None and expires_at.tzinfo is None:
        raise ValidationError("ban_expiry_requires_timezone")
    if expires_at is not None and expires_at <= banned_at:
        raise ValidationError("ban_expiry_must_follow_issue")
    return ban_type


def _most_recent(bans: Iterable[Ban]) -> Ban | None:
    latest: Ban | None = None
    for ban in bans:
        if latest is None or (ban.banned_at, ban.id) > (latest.banned_at, latest.id):
            latest = ban
    return latest


def pick_effective(bans: Sequence[Ban], chain: ScopeChain, *, now: datetime, ban_type: BanType | None = None) -> Ban | None:
    """Choose the ban that governs ``chain`` from a user's bans.

    The platform level wins, then the exact level, then each broader ancestor.
    Within a level the most recently issued active ban wins.
    """
    candidates = [
        ban for ban in bans if ban.is_active(now=now) and (ban_type is None or ban.ban_type is ban_type)
    ]
    for level in [Scope.platform(), *chain.lineage()]:
        winner = _most_recent(ban for ban in candidates if ban.scope == level)
        if winner is not None:
            return winner
    return None


class BanStore:
    """Issues, lifts and looks up bans. No authorization here."""

    def __init__(self, resolver: ScopeResolver, *, clock: Clock = utcnow) -> None:
        self._resolver = resolver
        self._clock = clock

    async def ban(
        self,
        tx: Transaction,
        *,
        user_id: str,
        ban_type: BanType,
        scope: Scope,
        banned_by: str,
        reason: str | None = None,
        expires_at: datetime | None = None,
    ) -> Ban:
        banned_at = self._clock()
        ban_type = validate_ban(ban_type, banned_at=banned_at, expires_at=expires_at)
        await self._resolver.ensure_user(tx, user_id)
        await self._resolver.resolve(tx, scope)
        ban = Ban(
            id=new_id(),
            user_id=user_id,
            ban_type=ban_type,
            scope=scope,
            banned_at=banned_at,
            banned_by=banned_by,
            reason=reason,
            expires_at=expires_at,
        )
        return await tx.bans.insert(ban)

    async def unban(self, tx: Transaction, *, ban_id: str, unbanned_by: str) -> Ban:
        ban = await self.get(tx, ban_id)
        if ban.unbanned_at is not None:
            raise InvalidStateError("ban_already_lifted")
        lifted = await tx.bans.mark_unbanned(ban_id, unbanned_by=unbanned_by, unbanned_at=self._clock())
        if lifted is None:
            metrics.MODERATION_CONFLICTS.labels(entity="ban").inc()
            logger.info("unban lost race", extra={"ban_id": ban_id})
            raise InvalidStateError("ban_already_lifted")
        return lifted

    async def get(self, tx: Transaction, ban_id: str) -> Ban:
        ban = await tx.bans.get(ban_id)
        if ban is None:
            raise NotFoundError("ban_not_found")
        return ban

    async def effective_ban(
        self,
        tx: Transaction,
        user_id: str,
        scope: Scope,
        *,
        ban_type: BanType | None = None,
    ) -> Ban | None:
        chain = await self._resolver.resolve(tx, scope)
        return await self.effective_ban_for_chain(tx, user_id, chain, ban_type=ban_type)

    async def effective_ban_for_chain(
        self,
        tx: Transaction,
        user_id: str,
        chain: ScopeChain,
        *,
        ban_type: BanType | None = None,
    ) -> Ban | None:
        now = self._clock()
        bans = await tx.bans.list_active_for_user(user_id, now=now)
        return pick_effective(bans, chain, now=now, ban_type=ban_type)

    async def is_banned(self, tx: Transaction, user_id: str, scope: Scope) -> bool:
        return await self.effective_ban(tx, user_id, scope) is not None

    async def can_post(self, tx: Transaction, user_id: str, scope: Scope) -> bool:
        return not await self.is_banned(tx, user_id, scope)

    async def can_read(self, tx: Transaction, user_id: str, scope: Scope) -> bool:
        return await self.effective_ban(tx, user_id, scope, ban_type=BanType.READ_WRITE) is None

    async def active_bans_for(self, tx: Transaction, user_id: str) -> Sequence[Ban]:
        await self._resolver.ensure_user(tx, user_id)
        bans = list(await tx.bans.list_active_for_user(user_id, now=self._clock()))
        bans.sort(key=lambda ban: (ban.banned_at, ban.id), reverse=True)
        return bans

    async def bans_at(self, tx: Transaction, scope: Scope, *, include_inactive: bool = False) -> Sequence[Ban]:
        await self._resolver.resolve(tx, scope)
        return await tx.bans.list_at(scope, now=self._clock(), include_inactive=include_inactive)
