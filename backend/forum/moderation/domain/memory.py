"""In-memory moderation storage used by tests and local development."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import AsyncIterator, Optional, Sequence

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

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _State:
    communities: set[str] = field(default_factory=set)
    hubs: dict[str, HubRef] = field(default_factory=dict)
    spaces: dict[str, SpaceRef] = field(default_factory=dict)
    users: set[str] = field(default_factory=set)
    discussions: dict[str, DiscussionRef] = field(default_factory=dict)
    posts: dict[str, PostRef] = field(default_factory=dict)
    post_content: dict[str, str] = field(default_factory=dict)
    grants: dict[str, RoleGrant] = field(default_factory=dict)
    bans: dict[str, Ban] = field(default_factory=dict)
    reports: dict[str, Report] = field(default_factory=dict)
    comments: dict[str, ReportComment] = field(default_factory=dict)
    reasons: dict[str, ReportReason] = field(default_factory=dict)
    log: list[ModerationLogEntry] = field(default_factory=list)

    def snapshot(self) -> "_State":
        # Stored records are replaced, never mutated, so shallow copies suffice.
        return _State(
            communities=set(self.communities),
            hubs=dict(self.hubs),
            spaces=dict(self.spaces),
            users=set(self.users),
            discussions=dict(self.discussions),
            posts=dict(self.posts),
            post_content=dict(self.post_content),
            grants=dict(self.grants),
            bans=dict(self.bans),
            reports=dict(self.reports),
            comments=dict(self.comments),
            reasons=dict(self.reasons),
            log=list(self.log),
        )


def _page(items: list, offset: int, limit: int | None) -> list:
    if limit is None:
        return items[offset:]
    return items[offset : offset + limit]


class InMemoryRoleRepository:
    def __init__(self, store: "InMemoryModerationStore") -> None:
        self._store = store

    async def insert(self, grant: RoleGrant) -> RoleGrant:
        self._store.state.grants[grant.id] = replace(grant)
        return replace(grant)

    async def get(self, grant_id: str) -> RoleGrant | None:
        grant = self._store.state.grants.get(grant_id)
        return replace(grant) if grant else None

    async def mark_revoked(self, grant_id: str, *, revoked_by: str, revoked_at: datetime) -> RoleGrant | None:
        grant = self._store.state.grants.get(grant_id)
        if grant is None or grant.revoked_at is not None:
            return None
        updated = replace(grant, revoked_at=revoked_at, revoked_by=revoked_by)
        self._store.state.grants[grant_id] = updated
        return replace(updated)

    async def list_active_for_user(self, user_id: str) -> Sequence[RoleGrant]:
        return [
            replace(grant)
            for grant in self._store.state.grants.values()
            if grant.user_id == user_id and grant.is_active
        ]

    async def list_active_at(self, scope: Scope) -> Sequence[RoleGrant]:
        return [
            replace(grant)
            for grant in self._store.state.grants.values()
            if grant.scope == scope and grant.is_active
        ]


class InMemoryBanRepository:
    def __init__(self, store: "InMemoryModerationStore") -> None:
        self._store = store

    async def insert(self, ban: Ban) -> Ban:
        self._store.state.bans[ban.id] = replace(ban)
        return replace(ban)

    async def get(self, ban_id: str) -> Ban | None:
        ban = self._store.state.bans.get(ban_id)
        return replace(ban) if ban else None

    async def mark_unbanned(self, ban_id: str, *, unbanned_by: str, unbanned_at: datetime) -> Ban | None:
        ban = self._store.state.bans.get(ban_id)
        if ban is None or ban.unbanned_at is not None:
            return None
        updated = replace(ban, unbanned_at=unbanned_at, unbanned_by=unbanned_by)
        self._store.state.bans[ban_id] = updated
        return replace(updated)

    async def list_active_for_user(self, user_id: str, *, now: datetime) -> Sequence[Ban]:
        return [
            replace(ban)
            for ban in self._store.state.bans.values()
            if ban.user_id == user_id and ban.is_active(now=now)
        ]

    async def list_at(self, scope: Scope, *, now: datetime, include_inactive: bool = False) -> Sequence[Ban]:
        bans = [
            replace(ban)
            for ban in self._store.state.bans.values()
            if ban.scope == scope and (include_inactive or ban.is_active(now=now))
        ]
        bans.sort(key=lambda ban: (ban.banned_at, ban.id), reverse=True)
        return bans


class InMemoryReportRepository:
    def __init__(self, store: "InMemoryModerationStore") -> None:
        self._store = store

    async def insert(self, report: Report) -> Report:
        self._store.state.reports[report.id] = replace(report)
        return replace(report)

    async def get(self, report_id: str) -> Report | None:
        report = self._store.state.reports.get(report_id)
        return replace(report) if report else None

    async def mark_terminal(
        self,
        report_id: str,
        *,
        status: ReportStatus,
        resolved_by: str,
        resolved_at: datetime,
        note: str | None,
    ) -> Report | None:
        report = self._store.state.reports.get(report_id)
        if report is None or report.status is not ReportStatus.PENDING:
            return None
        updated = replace(
            report,
            status=status,
            resolved_by=resolved_by,
            resolved_at=resolved_at,
            resolution_note=note,
        )
        self._store.state.reports[report_id] = updated
        return replace(updated)

    async def query(
        self,
        scopes: Optional[Sequence[Scope]],
        *,
        status: ReportStatus | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[Report], int]:
        matches = [
            replace(report)
            for report in self._store.state.reports.values()
            if (status is None or report.status is status)
            and (scopes is None or any(report.chain.within(scope) for scope in scopes))
        ]
        matches.sort(key=lambda report: (report.created_at, report.id), reverse=True)
        return _page(matches, offset, limit), len(matches)

    async def add_comment(self, comment: ReportComment) -> ReportComment:
        self._store.state.comments[comment.id] = replace(comment)
        return replace(comment)

    async def list_comments(self, report_id: str) -> Sequence[ReportComment]:
        comments = [replace(c) for c in self._store.state.comments.values() if c.report_id == report_id]
        comments.sort(key=lambda c: (c.created_at, c.id))
        return comments

    async def get_reason(self, reason_id: str) -> ReportReason | None:
        reason = self._store.state.reasons.get(reason_id)
        return replace(reason) if reason else None

    async def list_reasons(self) -> Sequence[ReportReason]:
        return [replace(reason) for reason in self._store.state.reasons.values()]


class InMemoryModerationLogRepository:
    def __init__(self, store: "InMemoryModerationStore") -> None:
        self._store = store

    async def append(self, entry: ModerationLogEntry) -> ModerationLogEntry:
        self._store.state.log.append(replace(entry))
        return replace(entry)

    def _newest_first(self, entries: list[ModerationLogEntry]) -> list[ModerationLogEntry]:
        return sorted(entries, key=lambda e: (e.created_at, e.id), reverse=True)

    async def list_for_scope(self, scope: Scope, *, offset: int, limit: int) -> tuple[list[ModerationLogEntry], int]:
        matches = self._newest_first([replace(e) for e in self._store.state.log if e.chain.within(scope)])
        return _page(matches, offset, limit), len(matches)

    async def list_for_actor(self, actor_id: str, *, offset: int, limit: int) -> tuple[list[ModerationLogEntry], int]:
        matches = self._newest_first([replace(e) for e in self._store.state.log if e.actor_id == actor_id])
        return _page(matches, offset, limit), len(matches)


class InMemoryDirectory:
    def __init__(self, store: "InMemoryModerationStore") -> None:
        self._store = store

    async def community_exists(self, community_id: str) -> bool:
        return community_id in self._store.state.communities

    async def get_hub(self, hub_id: str) -> HubRef | None:
        return self._store.state.hubs.get(hub_id)

    async def get_space(self, space_id: str) -> SpaceRef | None:
        return self._store.state.spaces.get(space_id)

    async def get_discussion(self, discussion_id: str) -> DiscussionRef | None:
        return self._store.state.discussions.get(discussion_id)

    async def get_post(self, post_id: str) -> PostRef | None:
        return self._store.state.posts.get(post_id)

    async def user_exists(self, user_id: str) -> bool:
        return user_id in self._store.state.users


class InMemoryContentStore:
    def __init__(self, store: "InMemoryModerationStore") -> None:
        self._store = store

    async def soft_delete_post(self, post_id: str, *, deleted_at: datetime) -> bool:
        post = self._store.state.posts.get(post_id)
        if post is None or post.is_deleted:
            return False
        self._store.state.posts[post_id] = replace(post, is_deleted=True)
        return True

    async def soft_delete_discussion(self, discussion_id: str, *, deleted_at: datetime) -> bool:
        discussion = self._store.state.discussions.get(discussion_id)
        if discussion is None or discussion.is_deleted:
            return False
        self._store.state.discussions[discussion_id] = replace(discussion, is_deleted=True)
        return True

    async def set_discussion_locked(self, discussion_id: str, locked: bool) -> bool:
        discussion = self._store.state.discussions.get(discussion_id)
        if discussion is None or discussion.is_locked == locked:
            return False
        self._store.state.discussions[discussion_id] = replace(discussion, is_locked=locked)
        return True

    async def edit_post(self, post_id: str, *, content: str, edited_at: datetime) -> bool:
        post = self._store.state.posts.get(post_id)
        if post is None or post.is_deleted:
            return False
        self._store.state.post_content[post_id] = content
        return True


class InMemoryModerationStore:
    """Unit of work over process memory.

    Units of work are serialized by a lock; a block that raises restores the
    state captured when it began.
    """

    def __init__(self) -> None:
        self.state = _State()
        self._lock = asyncio.Lock()
        self.roles = InMemoryRoleRepository(self)
        self.bans = InMemoryBanRepository(self)
        self.reports = InMemoryReportRepository(self)
        self.log = InMemoryModerationLogRepository(self)
        self.directory = InMemoryDirectory(self)
        self.content = InMemoryContentStore(self)

    @asynccontextmanager
    async def begin(self) -> AsyncIterator["InMemoryModerationStore"]:
        async with self._lock:
            snapshot = self.state.snapshot()
            try:
                yield self
            except BaseException:
                self.state = snapshot
                logger.debug("in-memory moderation transaction rolled back")
                raise

    # --- seeding helpers --------------------------------------------------

    def add_community(self, community_id: str) -> None:
        self.state.communities.add(community_id)

    def add_hub(self, hub_id: str, *, community_id: str) -> None:
        self.state.hubs[hub_id] = HubRef(id=hub_id, community_id=community_id)

    def add_space(self, space_id: str, *, hub_id: str) -> None:
        self.state.spaces[space_id] = SpaceRef(id=space_id, hub_id=hub_id)

    def add_user(self, user_id: str) -> None:
        self.state.users.add(user_id)

    def add_discussion(self, discussion_id: str, *, space_id: str, locked: bool = False) -> None:
        self.state.discussions[discussion_id] = DiscussionRef(id=discussion_id, space_id=space_id, is_locked=locked)

    def add_post(self, post_id: str, *, discussion_id: str, content: str = "") -> None:
        self.state.posts[post_id] = PostRef(id=post_id, discussion_id=discussion_id)
        self.state.post_content[post_id] = content

    def add_report_reason(self, reason: ReportReason) -> None:
        self.state.reasons[reason.id] = reason

    def post_content(self, post_id: str) -> str | None:
        return self.state.post_content.get(post_id)
