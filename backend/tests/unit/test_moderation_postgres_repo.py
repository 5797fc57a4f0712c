from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import pytest

from forum.moderation.domain.models import BanType, ReportStatus, RoleGrant, RoleType, TargetKind
from forum.moderation.domain.scopes import Scope, ScopeChain
from forum.moderation.infra.directory import PostgresContentStore, PostgresDirectory
from forum.moderation.infra.postgres_repo import (
    PostgresBanRepository,
    PostgresReportRepository,
    PostgresRoleRepository,
    PostgresUnitOfWork,
    chain_filter,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


class FakeConnection:
    """Records statements and replays queued results."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, tuple[Any, ...]]] = []
        self.rows: list[Any] = []
        self.values: list[Any] = []
        self.status = "UPDATE 1"
        self.transactions = 0

    async def fetchrow(self, sql: str, *args: Any):
        self.calls.append(("fetchrow", sql, args))
        return self.rows.pop(0) if self.rows else None

    async def fetch(self, sql: str, *args: Any):
        self.calls.append(("fetch", sql, args))
        return self.rows.pop(0) if self.rows else []

    async def fetchval(self, sql: str, *args: Any):
        self.calls.append(("fetchval", sql, args))
        return self.values.pop(0) if self.values else None

    async def execute(self, sql: str, *args: Any) -> str:
        self.calls.append(("execute", sql, args))
        return self.status

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield


class FakePool:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


def _grant_row(**overrides: Any) -> dict[str, Any]:
    row = {
        "id": "g1",
        "user_id": "alice",
        "role_type": "hub_mod",
        "scope_kind": "hub",
        "scope_id": "h1",
        "assigned_by": "root",
        "assigned_at": NOW,
        "revoked_at": None,
        "revoked_by": None,
    }
    row.update(overrides)
    return row


def test_chain_filter_builds_or_clause() -> None:
    args: list[Any] = ["pending"]
    clause = chain_filter([Scope.community("c1"), Scope.space("s2")], args)
    assert clause == "(community_id = $2 OR space_id = $3)"
    assert args == ["pending", "c1", "s2"]
    assert chain_filter([Scope.hub("h1"), Scope.platform()], []) == "TRUE"
    assert chain_filter([], []) == "FALSE"


@pytest.mark.asyncio
async def test_role_rows_round_through_repository() -> None:
    conn = FakeConnection()
    conn.rows.append(_grant_row())
    repo = PostgresRoleRepository(conn)
    grant = await repo.insert(
        RoleGrant(
            id="g1",
            user_id="alice",
            role_type=RoleType.HUB_MOD,
            scope=Scope.hub("h1"),
            assigned_by="root",
            assigned_at=NOW,
        )
    )
    assert grant.scope == Scope.hub("h1")
    assert grant.role_type is RoleType.HUB_MOD
    _, sql, args = conn.calls[0]
    assert "INSERT INTO mod_role_grant" in sql
    assert args[2:5] == ("hub_mod", "hub", "h1")


@pytest.mark.asyncio
async def test_conditional_revoke_returns_none_when_already_revoked() -> None:
    conn = FakeConnection()
    repo = PostgresRoleRepository(conn)
    assert await repo.mark_revoked("g1", revoked_by="root", revoked_at=NOW) is None
    _, sql, _ = conn.calls[0]
    assert "revoked_at IS NULL" in sql

    conn.rows.append(_grant_row(revoked_at=NOW, revoked_by="root"))
    revoked = await repo.mark_revoked("g1", revoked_by="root", revoked_at=NOW)
    assert revoked is not None and not revoked.is_active


@pytest.mark.asyncio
async def test_platform_grants_keep_null_scope_id() -> None:
    conn = FakeConnection()
    conn.rows.append([_grant_row(role_type="global_admin", scope_kind="platform", scope_id=None)])
    grants = await PostgresRoleRepository(conn).list_active_at(Scope.platform())
    assert grants[0].scope.is_platform
    assert conn.calls[0][2] == ("platform", None)


@pytest.mark.asyncio
async def test_unban_is_conditional() -> None:
    conn = FakeConnection()
    repo = PostgresBanRepository(conn)
    assert await repo.mark_unbanned("b1", unbanned_by="mod", unbanned_at=NOW) is None
    assert "unbanned_at IS NULL" in conn.calls[0][1]

    conn.rows.append(
        {
            "id": "b1",
            "user_id": "alice",
            "ban_type": "read_write",
            "scope_kind": "community",
            "scope_id": "c1",
            "reason": None,
            "banned_at": NOW,
            "expires_at": None,
            "banned_by": "mod",
            "unbanned_at": NOW,
            "unbanned_by": "mod",
        }
    )
    ban = await repo.mark_unbanned("b1", unbanned_by="mod", unbanned_at=NOW)
    assert ban.ban_type is BanType.READ_WRITE
    assert not ban.is_active(now=NOW)


@pytest.mark.asyncio
async def test_report_query_counts_then_pages() -> None:
    conn = FakeConnection()
    conn.values.append(3)
    conn.rows.append(
        [
            {
                "id": "r1",
                "reporter_id": "alice",
                "target_kind": "post",
                "target_id": "p1",
                "reason_id": None,
                "details": None,
                "status": "pending",
                "community_id": "c1",
                "hub_id": "h1",
                "space_id": "s1",
                "created_at": NOW,
                "resolved_at": None,
                "resolved_by": None,
                "resolution_note": None,
            }
        ]
    )
    repo = PostgresReportRepository(conn)
    items, total = await repo.query([Scope.hub("h1")], status=ReportStatus.PENDING, offset=2, limit=1)
    assert total == 3
    assert items[0].chain == ScopeChain(community_id="c1", hub_id="h1", space_id="s1")
    assert items[0].target.kind is TargetKind.POST
    count_call, page_call = conn.calls
    assert "hub_id = $1" in count_call[1] and "status = $2" in count_call[1]
    assert count_call[2] == ("h1", "pending")
    assert "OFFSET $3" in page_call[1] and "LIMIT $4" in page_call[1]
    assert page_call[2] == ("h1", "pending", 2, 1)


@pytest.mark.asyncio
async def test_report_count_only_skips_page_query() -> None:
    conn = FakeConnection()
    conn.values.append(5)
    items, total = await PostgresReportRepository(conn).query(None, status=ReportStatus.PENDING, limit=0)
    assert (items, total) == ([], 5)
    assert len(conn.calls) == 1
    assert "WHERE TRUE AND status = $1" in conn.calls[0][1]


@pytest.mark.asyncio
async def test_content_store_reads_command_tag() -> None:
    conn = FakeConnection()
    content = PostgresContentStore(conn)
    assert await content.soft_delete_post("p1", deleted_at=NOW)
    conn.status = "UPDATE 0"
    assert not await content.set_discussion_locked("d1", True)


@pytest.mark.asyncio
async def test_directory_maps_discussion_rows() -> None:
    conn = FakeConnection()
    conn.rows.append({"id": "d1", "space_id": "s1", "is_locked": True, "deleted_at": NOW})
    discussion = await PostgresDirectory(conn).get_discussion("d1")
    assert discussion.is_locked and discussion.is_deleted
    assert await PostgresDirectory(conn).get_hub("missing") is None


@pytest.mark.asyncio
async def test_unit_of_work_opens_one_transaction_per_block() -> None:
    conn = FakeConnection()
    uow = PostgresUnitOfWork(FakePool(conn))
    async with uow.begin() as tx:
        assert tx.connection is conn
        await tx.roles.get("g1")
    assert conn.transactions == 1
