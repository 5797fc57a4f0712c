"""Postgres views of the community content tables used by moderation."""

from __future__ import annotations

from datetime import datetime

import asyncpg

from forum.moderation.domain.models import DiscussionRef, HubRef, PostRef, SpaceRef


class PostgresDirectory:
    """Read-only containment lookups over the community, hub, space and content tables."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def community_exists(self, community_id: str) -> bool:
        found = await self._conn.fetchval(
            "SELECT 1 FROM community WHERE id = $1 AND deleted_at IS NULL",
            community_id,
        )
        return found is not None

    async def get_hub(self, hub_id: str) -> HubRef | None:
        row = await self._conn.fetchrow(
            "SELECT id, community_id FROM hub WHERE id = $1 AND deleted_at IS NULL",
            hub_id,
        )
        if row is None:
            return None
        return HubRef(id=str(row["id"]), community_id=str(row["community_id"]))

    async def get_space(self, space_id: str) -> SpaceRef | None:
        row = await self._conn.fetchrow(
            "SELECT id, hub_id FROM space WHERE id = $1 AND deleted_at IS NULL",
            space_id,
        )
        if row is None:
            return None
        return SpaceRef(id=str(row["id"]), hub_id=str(row["hub_id"]))

    async def get_discussion(self, discussion_id: str) -> DiscussionRef | None:
        row = await self._conn.fetchrow(
            "SELECT id, space_id, is_locked, deleted_at FROM discussion WHERE id = $1",
            discussion_id,
        )
        if row is None:
            return None
        return DiscussionRef(
            id=str(row["id"]),
            space_id=str(row["space_id"]),
            is_locked=bool(row["is_locked"]),
            is_deleted=row["deleted_at"] is not None,
        )

    async def get_post(self, post_id: str) -> PostRef | None:
        row = await self._conn.fetchrow(
            "SELECT id, discussion_id, deleted_at FROM post WHERE id = $1",
            post_id,
        )
        if row is None:
            return None
        return PostRef(
            id=str(row["id"]),
            discussion_id=str(row["discussion_id"]),
            is_deleted=row["deleted_at"] is not None,
        )

    async def user_exists(self, user_id: str) -> bool:
        found = await self._conn.fetchval(
            "SELECT 1 FROM users WHERE id = $1 AND deleted_at IS NULL",
            user_id,
        )
        return found is not None


def _updated(status: str) -> bool:
    # asyncpg returns the command tag, e.g. "UPDATE 1"
    try:
        return int(status.split()[-1]) > 0
    except (AttributeError, IndexError, ValueError):
        return False


class PostgresContentStore:
    """Soft deletes, locks and edits on content rows, inside the caller's transaction."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def soft_delete_post(self, post_id: str, *, deleted_at: datetime) -> bool:
        status = await self._conn.execute(
            "UPDATE post SET deleted_at = $2 WHERE id = $1 AND deleted_at IS NULL",
            post_id,
            deleted_at,
        )
        return _updated(status)

    async def soft_delete_discussion(self, discussion_id: str, *, deleted_at: datetime) -> bool:
        status = await self._conn.execute(
            "UPDATE discussion SET deleted_at = $2 WHERE id = $1 AND deleted_at IS NULL",
            discussion_id,
            deleted_at,
        )
        return _updated(status)

    async def set_discussion_locked(self, discussion_id: str, locked: bool) -> bool:
        status = await self._conn.execute(
            "UPDATE discussion SET is_locked = $2 WHERE id = $1 AND is_locked IS DISTINCT FROM $2",
            discussion_id,
            locked,
        )
        return _updated(status)

    async def edit_post(self, post_id: str, *, content: str, edited_at: datetime) -> bool:
        status = await self._conn.execute(
            "UPDATE post SET content = $2, edited_at = $3 WHERE id = $1 AND deleted_at IS NULL",
            post_id,
            content,
            edited_at,
        )
        return _updated(status)
