"""Repository protocols the moderation services are written against."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncContextManager, Optional, Protocol, Sequence

from forum.moderation.domain.models import (
    Ban,
    DiscussionRef,
    HubRef,
    ModerationLogEntry,
    PostRef,
    Report,
    ReportComment,
    ReportReason,
    ReportStatus,
    RoleGrant,
    SpaceRef,
)
from forum.moderation.domain.scopes import Scope


class RoleRepository(Protocol):
    async def insert(self, grant: RoleGrant) -> RoleGrant:
        ...

    async def get(self, grant_id: str) -> RoleGrant | None:
        ...

    async def mark_revoked(self, grant_id: str, *, revoked_by: str, revoked_at: datetime) -> RoleGrant | None:
        """Tombstone the grant if still active; ``None`` when nothing was updated."""
        ...

    async def list_active_for_user(self, user_id: str) -> Sequence[RoleGrant]:
        ...

    async def list_active_at(self, scope: Scope) -> Sequence[RoleGrant]:
        ...


class BanRepository(Protocol):
    async def insert(self, ban: Ban) -> Ban:
        ...

    async def get(self, ban_id: str) -> Ban | None:
        ...

    async def mark_unbanned(self, ban_id: str, *, unbanned_by: str, unbanned_at: datetime) -> Ban | None:
        """Lift the ban if not lifted yet; ``None`` when nothing was updated."""
        ...

    async def list_active_for_user(self, user_id: str, *, now: datetime) -> Sequence[Ban]:
        ...

    async def list_at(self, scope: Scope, *, now: datetime, include_inactive: bool = False) -> Sequence[Ban]:
        ...


class ReportRepository(Protocol):
    async def insert(self, report: Report) -> Report:
        ...

    async def get(self, report_id: str) -> Report | None:
        ...

    async def mark_terminal(
        self,
        report_id: str,
        *,
        status: ReportStatus,
        resolved_by: str,
        resolved_at: datetime,
        note: str | None,
    ) -> Report | None:
        """Move a pending report to ``status``; ``None`` when it was no longer pending."""
        ...

    async def query(
        self,
        scopes: Optional[Sequence[Scope]],
        *,
        status: ReportStatus | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[Report], int]:
        """Reports whose frozen chain sits within any of ``scopes``, newest first.

        ``None`` means every report. Matches are deduplicated by id and the
        second element is the total before paging.
        """
        ...

    async def add_comment(self, comment: ReportComment) -> ReportComment:
        ...

    async def list_comments(self, report_id: str) -> Sequence[ReportComment]:
        ...

    async def get_reason(self, reason_id: str) -> ReportReason | None:
        ...

    async def list_reasons(self) -> Sequence[ReportReason]:
        ...


class ModerationLogRepository(Protocol):
    async def append(self, entry: ModerationLogEntry) -> ModerationLogEntry:
        ...

    async def list_for_scope(self, scope: Scope, *, offset: int, limit: int) -> tuple[list[ModerationLogEntry], int]:
        ...

    async def list_for_actor(self, actor_id: str, *, offset: int, limit: int) -> tuple[list[ModerationLogEntry], int]:
        ...


class Directory(Protocol):
    """Read-only view of the content hierarchy owned by other subsystems."""

    async def community_exists(self, community_id: str) -> bool:
        ...

    async def get_hub(self, hub_id: str) -> HubRef | None:
        ...

    async def get_space(self, space_id: str) -> SpaceRef | None:
        ...

    async def get_discussion(self, discussion_id: str) -> DiscussionRef | None:
        ...

    async def get_post(self, post_id: str) -> PostRef | None:
        ...

    async def user_exists(self, user_id: str) -> bool:
        ...


class ContentStore(Protocol):
    """Content mutations applied inside the moderation transaction.

    Each call returns ``False`` when the content was already in the requested
    state.
    """

    async def soft_delete_post(self, post_id: str, *, deleted_at: datetime) -> bool:
        ...

    async def soft_delete_discussion(self, discussion_id: str, *, deleted_at: datetime) -> bool:
        ...

    async def set_discussion_locked(self, discussion_id: str, locked: bool) -> bool:
        ...

    async def edit_post(self, post_id: str, *, content: str, edited_at: datetime) -> bool:
        ...


class Transaction(Protocol):
    roles: RoleRepository
    bans: BanRepository
    reports: ReportRepository
    log: ModerationLogRepository
    directory: Directory
    content: ContentStore


class UnitOfWork(Protocol):
    def begin(self) -> AsyncContextManager[Transaction]:
        """Open a transaction; leaving the block with an exception rolls it back."""
        ...
