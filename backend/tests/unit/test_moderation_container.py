from __future__ import annotations

import importlib
from unittest.mock import MagicMock

import asyncpg
import pytest

from forum.infra.redis import RedisProxy
from forum.moderation.domain import container
from forum.moderation.domain.memory import InMemoryModerationStore
from forum.moderation.domain.models import RoleType
from forum.moderation.domain.scopes import Scope
from forum.moderation.infra.postgres_repo import PostgresUnitOfWork


def test_configure_postgres_uses_production_unit_of_work(fake_redis) -> None:
    importlib.reload(container)
    pool = MagicMock(spec=asyncpg.Pool)
    proxy = RedisProxy(fake_redis)

    container.configure_postgres(pool, proxy)

    assert isinstance(container.get_unit_of_work(), PostgresUnitOfWork)
    cache = container.get_pending_cache()
    assert cache is not None and cache.redis is proxy
    actions = container.get_moderation_actions()
    assert actions._uow is container.get_unit_of_work()
    importlib.reload(container)


@pytest.mark.asyncio
async def test_default_container_runs_in_memory(clock) -> None:
    importlib.reload(container)
    store = InMemoryModerationStore()
    store.add_community("c1")
    store.add_user("root")
    store.add_user("alice")
    async with store.begin() as tx:
        await container._roles.assign(
            tx, user_id="root", role_type=RoleType.GLOBAL_ADMIN, scope=Scope.platform(), assigned_by="seed"
        )

    container.configure(uow=store, clock=clock, cache_pending_counts=False)
    actions = container.get_moderation_actions()
    grant = await actions.assign_role(
        actor_id="root", user_id="alice", role_type=RoleType.COMMUNITY_MOD, scope=Scope.community("c1")
    )

    assert grant.assigned_at <= clock.now
    assert container.get_pending_cache() is None
    assert await actions.can_moderate("alice", Scope.community("c1"))
    importlib.reload(container)


@pytest.mark.asyncio
async def test_configure_from_settings_wires_shared_pool(monkeypatch) -> None:
    importlib.reload(container)
    pool = MagicMock(spec=asyncpg.Pool)
    init_calls: list[str] = []

    async def _init_pool():
        return pool

    monkeypatch.setattr(container.postgres, "init_pool", _init_pool)
    monkeypatch.setattr(container.obs, "init", lambda: init_calls.append("obs"))

    actions = await container.configure_from_settings()

    assert init_calls == ["obs"]
    assert isinstance(actions._uow, PostgresUnitOfWork)
    assert actions._uow._pool is pool
    importlib.reload(container)


@pytest.mark.asyncio
async def test_shutdown_closes_pool_and_falls_back_to_memory(monkeypatch) -> None:
    importlib.reload(container)
    closed: list[bool] = []

    async def _close_pool():
        closed.append(True)

    monkeypatch.setattr(container.postgres, "close_pool", _close_pool)
    container.configure_postgres(MagicMock(spec=asyncpg.Pool))

    await container.shutdown()

    assert closed == [True]
    assert isinstance(container.get_unit_of_work(), InMemoryModerationStore)
    assert container.get_pending_cache() is None
    importlib.reload(container)
