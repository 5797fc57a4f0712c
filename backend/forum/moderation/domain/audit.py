"""Append-only moderation log."""

from __future__ import annotations

from forum.moderation.domain.models import (
    ActionType,
    Clock,
    ModerationLogEntry,
    PagedResult,
    TargetRefs,
    new_id,
    utcnow,
)
from forum.moderation.domain.pagination import build_page, normalize_page
from forum.moderation.domain.scopes import Scope, ScopeChain
from forum.moderation.domain.storage import Transaction


class AuditLog:
    """Records privileged actions. Entries are never updated or deleted and
    are never consulted for authorization."""

    def __init__(self, *, clock: Clock = utcnow) -> None:
        self._clock = clock

    async def append(
        self,
        tx: Transaction,
        *,
        actor_id: str,
        action: ActionType,
        chain: ScopeChain,
        targets: TargetRefs | None = None,
        details: str | None = None,
        reason: str | None = None,
    ) -> ModerationLogEntry:
        entry = ModerationLogEntry(
            id=new_id(),
            actor_id=actor_id,
            action=ActionType(action),
            targets=targets or TargetRefs(),
            chain=chain,
            created_at=self._clock(),
            details=details,
            reason=reason,
        )
        return await tx.log.append(entry)

    async def list_for_scope(
        self,
        tx: Transaction,
        scope: Scope,
        *,
        offset: int = 0,
        page_size: int | None = None,
    ) -> PagedResult[ModerationLogEntry]:
        offset, page_size = normalize_page(offset, page_size)
        items, total = await tx.log.list_for_scope(scope, offset=offset, limit=page_size)
        return build_page(items, offset=offset, page_size=page_size, total=total)

    async def list_for_actor(
        self,
        tx: Transaction,
        actor_id: str,
        *,
        offset: int = 0,
        page_size: int | None = None,
    ) -> PagedResult[ModerationLogEntry]:
        offset, page_size = normalize_page(offset, page_size)
        items, total = await tx.log.list_for_actor(actor_id, offset=offset, limit=page_size)
        return build_page(items, offset=offset, page_size=page_size, total=total)
