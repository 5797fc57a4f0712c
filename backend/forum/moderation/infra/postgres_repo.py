"""PostgreSQL persistence for the moderation authority tables."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Sequence

import asyncpg

from forum.moderation.domain.models import (
    ActionType,
    Ban,
    BanType,
    ModerationLogEntry,
    Report,
    ReportComment,
    ReportReason,
    ReportStatus,
    ReportTarget,
    RoleGrant,
    RoleType,
    TargetKind,
    TargetRefs,
)
from forum.moderation.domain.scopes import Scope, ScopeChain, ScopeKind
from forum.moderation.infra.directory import PostgresContentStore, PostgresDirectory

_GRANT_COLUMNS = "id, user_id, role_type, scope_kind, scope_id, assigned_by, assigned_at, revoked_at, revoked_by"
_BAN_COLUMNS = (
    "id, user_id, ban_type, scope_kind, scope_id, reason, banned_at, expires_at, banned_by, unbanned_at, unbanned_by"
)
_REPORT_COLUMNS = (
    "id, reporter_id, target_kind, target_id, reason_id, details, status, community_id, hub_id, space_id, "
    "created_at, resolved_at, resolved_by, resolution_note"
)
_LOG_COLUMNS = (
    "id, actor_id, action, post_id, discussion_id, user_id, report_id, role_id, ban_id, "
    "community_id, hub_id, space_id, details, reason, created_at"
)

_CHAIN_COLUMN = {
    ScopeKind.COMMUNITY: "community_id",
    ScopeKind.HUB: "hub_id",
    ScopeKind.SPACE: "space_id",
}


def _opt_str(row: asyncpg.Record, key: str) -> Optional[str]:
    value = row[key]
    return str(value) if value is not None else None


def _row_scope(row: asyncpg.Record) -> Scope:
    return Scope(ScopeKind(str(row["scope_kind"])), _opt_str(row, "scope_id"))


def _row_chain(row: asyncpg.Record) -> ScopeChain:
    return ScopeChain(
        community_id=_opt_str(row, "community_id"),
        hub_id=_opt_str(row, "hub_id"),
        space_id=_opt_str(row, "space_id"),
    )


def _row_to_grant(row: asyncpg.Record) -> RoleGrant:
    return RoleGrant(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        role_type=RoleType(str(row["role_type"])),
        scope=_row_scope(row),
        assigned_by=str(row["assigned_by"]),
        assigned_at=row["assigned_at"],
        revoked_at=row["revoked_at"],
        revoked_by=_opt_str(row, "revoked_by"),
    )


def _row_to_ban(row: asyncpg.Record) -> Ban:
    return Ban(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        ban_type=BanType(str(row["ban_type"])),
        scope=_row_scope(row),
        reason=_opt_str(row, "reason"),
        banned_at=row["banned_at"],
        expires_at=row["expires_at"],
        banned_by=str(row["banned_by"]),
        unbanned_at=row["unbanned_at"],
        unbanned_by=_opt_str(row, "unbanned_by"),
    )


def _row_to_report(row: asyncpg.Record) -> Report:
    return Report(
        id=str(row["id"]),
        reporter_id=str(row["reporter_id"]),
        target=ReportTarget(TargetKind(str(row["target_kind"])), str(row["target_id"])),
        chain=_row_chain(row),
        status=ReportStatus(str(row["status"])),
        created_at=row["created_at"],
        reason_id=_opt_str(row, "reason_id"),
        details=_opt_str(row, "details"),
        resolved_at=row["resolved_at"],
        resolved_by=_opt_str(row, "resolved_by"),
        resolution_note=_opt_str(row, "resolution_note"),
    )


def _row_to_comment(row: asyncpg.Record) -> ReportComment:
    return ReportComment(
        id=str(row["id"]),
        report_id=str(row["report_id"]),
        author_id=str(row["author_id"]),
        content=str(row["content"]),
        created_at=row["created_at"],
    )


def _row_to_reason(row: asyncpg.Record) -> ReportReason:
    return ReportReason(
        id=str(row["id"]),
        name=str(row["name"]),
        description=_opt_str(row, "description"),
        scope=_row_scope(row),
        display_order=int(row["display_order"]),
    )


def _row_to_entry(row: asyncpg.Record) -> ModerationLogEntry:
    return ModerationLogEntry(
        id=str(row["id"]),
        actor_id=str(row["actor_id"]),
        action=ActionType(str(row["action"])),
        targets=TargetRefs(
            post_id=_opt_str(row, "post_id"),
            discussion_id=_opt_str(row, "discussion_id"),
            user_id=_opt_str(row, "user_id"),
            report_id=_opt_str(row, "report_id"),
            role_id=_opt_str(row, "role_id"),
            ban_id=_opt_str(row, "ban_id"),
        ),
        chain=_row_chain(row),
        created_at=row["created_at"],
        details=_opt_str(row, "details"),
        reason=_opt_str(row, "reason"),
    )


def chain_filter(scopes: Sequence[Scope], args: list[Any]) -> str:
    """OR together one chain-column predicate per scope, appending bind values to ``args``."""

    clauses: list[str] = []
    for scope in scopes:
        if scope.is_platform:
            return "TRUE"
        args.append(scope.id)
        clauses.append(f"{_CHAIN_COLUMN[scope.kind]} = ${len(args)}")
    if not clauses:
        return "FALSE"
    return "(" + " OR ".join(clauses) + ")"


class PostgresRoleRepository:
    """Stores role grants in mod_role_grant."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def insert(self, grant: RoleGrant) -> RoleGrant:
        row = await self._conn.fetchrow(
            f"""
            INSERT INTO mod_role_grant (id, user_id, role_type, scope_kind, scope_id, assigned_by, assigned_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            RETURNING {_GRANT_COLUMNS}
            """,
            grant.id,
            grant.user_id,
            grant.role_type.value,
            grant.scope.kind.value,
            grant.scope.id,
            grant.assigned_by,
            grant.assigned_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert role grant")
        return _row_to_grant(row)

    async def get(self, grant_id: str) -> RoleGrant | None:
        row = await self._conn.fetchrow(f"SELECT {_GRANT_COLUMNS} FROM mod_role_grant WHERE id = $1", grant_id)
        return _row_to_grant(row) if row else None

    async def mark_revoked(self, grant_id: str, *, revoked_by: str, revoked_at: datetime) -> RoleGrant | None:
        row = await self._conn.fetchrow(
            f"""
            UPDATE mod_role_grant
            SET revoked_at = $2, revoked_by = $3
            WHERE id = $1 AND revoked_at IS NULL
            RETURNING {_GRANT_COLUMNS}
            """,
            grant_id,
            revoked_at,
            revoked_by,
        )
        return _row_to_grant(row) if row else None

    async def list_active_for_user(self, user_id: str) -> Sequence[RoleGrant]:
        rows = await self._conn.fetch(
            f"""
            SELECT {_GRANT_COLUMNS}
            FROM mod_role_grant
            WHERE user_id = $1 AND revoked_at IS NULL
            ORDER BY assigned_at
            """,
            user_id,
        )
        return [_row_to_grant(row) for row in rows]

    async def list_active_at(self, scope: Scope) -> Sequence[RoleGrant]:
        rows = await self._conn.fetch(
            f"""
            SELECT {_GRANT_COLUMNS}
            FROM mod_role_grant
            WHERE scope_kind = $1 AND scope_id IS NOT DISTINCT FROM $2 AND revoked_at IS NULL
            ORDER BY assigned_at
            """,
            scope.kind.value,
            scope.id,
        )
        return [_row_to_grant(row) for row in rows]


class PostgresBanRepository:
    """Stores bans in mod_ban."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def insert(self, ban: Ban) -> Ban:
        row = await self._conn.fetchrow(
            f"""
            INSERT INTO mod_ban (id, user_id, ban_type, scope_kind, scope_id, reason, banned_at, expires_at, banned_by)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING {_BAN_COLUMNS}
            """,
            ban.id,
            ban.user_id,
            ban.ban_type.value,
            ban.scope.kind.value,
            ban.scope.id,
            ban.reason,
            ban.banned_at,
            ban.expires_at,
            ban.banned_by,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert ban")
        return _row_to_ban(row)

    async def get(self, ban_id: str) -> Ban | None:
        row = await self._conn.fetchrow(f"SELECT {_BAN_COLUMNS} FROM mod_ban WHERE id = $1", ban_id)
        return _row_to_ban(row) if row else None

    async def mark_unbanned(self, ban_id: str, *, unbanned_by: str, unbanned_at: datetime) -> Ban | None:
        row = await self._conn.fetchrow(
            f"""
            UPDATE mod_ban
            SET unbanned_at = $2, unbanned_by = $3
            WHERE id = $1 AND unbanned_at IS NULL
            RETURNING {_BAN_COLUMNS}
            """,
            ban_id,
            unbanned_at,
            unbanned_by,
        )
        return _row_to_ban(row) if row else None

    async def list_active_for_user(self, user_id: str, *, now: datetime) -> Sequence[Ban]:
        rows = await self._conn.fetch(
            f"""
            SELECT {_BAN_COLUMNS}
            FROM mod_ban
            WHERE user_id = $1 AND unbanned_at IS NULL AND (expires_at IS NULL OR expires_at > $2)
            """,
            user_id,
            now,
        )
        return [_row_to_ban(row) for row in rows]

    async def list_at(self, scope: Scope, *, now: datetime, include_inactive: bool = False) -> Sequence[Ban]:
        rows = await self._conn.fetch(
            f"""
            SELECT {_BAN_COLUMNS}
            FROM mod_ban
            WHERE scope_kind = $1 AND scope_id IS NOT DISTINCT FROM $2
              AND ($3 OR (unbanned_at IS NULL AND (expires_at IS NULL OR expires_at > $4)))
            ORDER BY banned_at DESC, id DESC
            """,
            scope.kind.value,
            scope.id,
            include_inactive,
            now,
        )
        return [_row_to_ban(row) for row in rows]


class PostgresReportRepository:
    """Stores reports, their comments and reasons in mod_report*."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def insert(self, report: Report) -> Report:
        row = await self._conn.fetchrow(
            f"""
            INSERT INTO mod_report (
                id, reporter_id, target_kind, target_id, reason_id, details, status,
                community_id, hub_id, space_id, created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            RETURNING {_REPORT_COLUMNS}
            """,
            report.id,
            report.reporter_id,
            report.target.kind.value,
            report.target.id,
            report.reason_id,
            report.details,
            report.status.value,
            report.chain.community_id,
            report.chain.hub_id,
            report.chain.space_id,
            report.created_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert report")
        return _row_to_report(row)

    async def get(self, report_id: str) -> Report | None:
        row = await self._conn.fetchrow(f"SELECT {_REPORT_COLUMNS} FROM mod_report WHERE id = $1", report_id)
        return _row_to_report(row) if row else None

    async def mark_terminal(
        self,
        report_id: str,
        *,
        status: ReportStatus,
        resolved_by: str,
        resolved_at: datetime,
        note: str | None,
    ) -> Report | None:
        row = await self._conn.fetchrow(
            f"""
            UPDATE mod_report
            SET status = $2, resolved_by = $3, resolved_at = $4, resolution_note = $5
            WHERE id = $1 AND status = 'pending'
            RETURNING {_REPORT_COLUMNS}
            """,
            report_id,
            status.value,
            resolved_by,
            resolved_at,
            note,
        )
        return _row_to_report(row) if row else None

    async def query(
        self,
        scopes: Optional[Sequence[Scope]],
        *,
        status: ReportStatus | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[Report], int]:
        args: list[Any] = []
        where = ["TRUE" if scopes is None else chain_filter(scopes, args)]
        if status is not None:
            args.append(status.value)
            where.append(f"status = ${len(args)}")
        predicate = " AND ".join(where)
        total = await self._conn.fetchval(f"SELECT COUNT(*) FROM mod_report WHERE {predicate}", *args)
        if limit == 0:
            return [], int(total or 0)
        page_args = [*args, offset]
        sql = (
            f"SELECT {_REPORT_COLUMNS} FROM mod_report WHERE {predicate} "
            f"ORDER BY created_at DESC, id DESC OFFSET ${len(page_args)}"
        )
        if limit is not None:
            page_args.append(limit)
            sql += f" LIMIT ${len(page_args)}"
        rows = await self._conn.fetch(sql, *page_args)
        return [_row_to_report(row) for row in rows], int(total or 0)

    async def add_comment(self, comment: ReportComment) -> ReportComment:
        row = await self._conn.fetchrow(
            """
            INSERT INTO mod_report_comment (id, report_id, author_id, content, created_at)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING id, report_id, author_id, content, created_at
            """,
            comment.id,
            comment.report_id,
            comment.author_id,
            comment.content,
            comment.created_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert report comment")
        return _row_to_comment(row)

    async def list_comments(self, report_id: str) -> Sequence[ReportComment]:
        rows = await self._conn.fetch(
            """
            SELECT id, report_id, author_id, content, created_at
            FROM mod_report_comment
            WHERE report_id = $1
            ORDER BY created_at, id
            """,
            report_id,
        )
        return [_row_to_comment(row) for row in rows]

    async def get_reason(self, reason_id: str) -> ReportReason | None:
        row = await self._conn.fetchrow(
            """
            SELECT id, name, description, scope_kind, scope_id, display_order
            FROM mod_report_reason
            WHERE id = $1
            """,
            reason_id,
        )
        return _row_to_reason(row) if row else None

    async def list_reasons(self) -> Sequence[ReportReason]:
        rows = await self._conn.fetch(
            """
            SELECT id, name, description, scope_kind, scope_id, display_order
            FROM mod_report_reason
            ORDER BY display_order, name
            """
        )
        return [_row_to_reason(row) for row in rows]


class PostgresModerationLogRepository:
    """Append-only writes to mod_log."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def append(self, entry: ModerationLogEntry) -> ModerationLogEntry:
        row = await self._conn.fetchrow(
            f"""
            INSERT INTO mod_log (
                id, actor_id, action, post_id, discussion_id, user_id, report_id, role_id, ban_id,
                community_id, hub_id, space_id, details, reason, created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
            RETURNING {_LOG_COLUMNS}
            """,
            entry.id,
            entry.actor_id,
            entry.action.value,
            entry.targets.post_id,
            entry.targets.discussion_id,
            entry.targets.user_id,
            entry.targets.report_id,
            entry.targets.role_id,
            entry.targets.ban_id,
            entry.chain.community_id,
            entry.chain.hub_id,
            entry.chain.space_id,
            entry.details,
            entry.reason,
            entry.created_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to append moderation log entry")
        return _row_to_entry(row)

    async def _page(self, predicate: str, args: list[Any], offset: int, limit: int) -> tuple[list[ModerationLogEntry], int]:
        total = await self._conn.fetchval(f"SELECT COUNT(*) FROM mod_log WHERE {predicate}", *args)
        rows = await self._conn.fetch(
            f"""
            SELECT {_LOG_COLUMNS}
            FROM mod_log
            WHERE {predicate}
            ORDER BY created_at DESC, id DESC
            OFFSET ${len(args) + 1} LIMIT ${len(args) + 2}
            """,
            *args,
            offset,
            limit,
        )
        return [_row_to_entry(row) for row in rows], int(total or 0)

    async def list_for_scope(self, scope: Scope, *, offset: int, limit: int) -> tuple[list[ModerationLogEntry], int]:
        args: list[Any] = []
        predicate = chain_filter([scope], args)
        return await self._page(predicate, args, offset, limit)

    async def list_for_actor(self, actor_id: str, *, offset: int, limit: int) -> tuple[list[ModerationLogEntry], int]:
        return await self._page("actor_id = $1", [actor_id], offset, limit)


class PostgresTransaction:
    """Repositories bound to one connection inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self.connection = conn
        self.roles = PostgresRoleRepository(conn)
        self.bans = PostgresBanRepository(conn)
        self.reports = PostgresReportRepository(conn)
        self.log = PostgresModerationLogRepository(conn)
        self.directory = PostgresDirectory(conn)
        self.content = PostgresContentStore(conn)


class PostgresUnitOfWork:
    """Runs each unit of work on a pooled connection inside a transaction."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[PostgresTransaction]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresTransaction(conn)
