import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from forum.moderation.domain.actions import ModerationActions
from forum.moderation.domain.caching import PendingCountCache
from forum.moderation.domain.memory import InMemoryModerationStore
from forum.moderation.domain.models import RoleType
from forum.moderation.domain.resolver import ScopeResolver
from forum.moderation.domain.roles import RoleStore
from forum.moderation.domain.scopes import Scope


class FakeClock:
	"""Deterministic clock; every call advances one second so records order strictly."""

	def __init__(self, start: datetime | None = None) -> None:
		self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

	def __call__(self) -> datetime:
		self.now += timedelta(seconds=1)
		return self.now

	def advance(self, **kwargs) -> None:
		self.now += timedelta(**kwargs)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from forum.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture
def clock() -> FakeClock:
	return FakeClock()


@pytest.fixture
def store() -> InMemoryModerationStore:
	"""Two communities; c1 has hubs h1 (spaces s1, s2) and h2 (space s3); c2 has hub h3 (space s4)."""
	store = InMemoryModerationStore()
	store.add_community("c1")
	store.add_community("c2")
	store.add_hub("h1", community_id="c1")
	store.add_hub("h2", community_id="c1")
	store.add_hub("h3", community_id="c2")
	store.add_space("s1", hub_id="h1")
	store.add_space("s2", hub_id="h1")
	store.add_space("s3", hub_id="h2")
	store.add_space("s4", hub_id="h3")
	for user_id in ("root", "cadmin", "cmod", "hmod", "smod", "alice", "bob", "carol"):
		store.add_user(user_id)
	store.add_discussion("d1", space_id="s1")
	store.add_discussion("d2", space_id="s3")
	store.add_discussion("d4", space_id="s4")
	store.add_post("p1", discussion_id="d1", content="first")
	store.add_post("p2", discussion_id="d2", content="second")
	store.add_post("p4", discussion_id="d4", content="elsewhere")
	return store


@pytest.fixture
def grant_role(store, clock):
	"""Insert a grant directly, bypassing authorization."""
	roles = RoleStore(ScopeResolver(), clock=clock)

	async def _grant(user_id: str, role_type: RoleType, scope: Scope):
		async with store.begin() as tx:
			return await roles.assign(tx, user_id=user_id, role_type=role_type, scope=scope, assigned_by="seed")

	return _grant


@pytest_asyncio.fixture
async def staffed(grant_role):
	"""Standard staff: a global admin plus one grant holder per community-level role."""
	return {
		"root": await grant_role("root", RoleType.GLOBAL_ADMIN, Scope.platform()),
		"cadmin": await grant_role("cadmin", RoleType.COMMUNITY_ADMIN, Scope.community("c1")),
		"cmod": await grant_role("cmod", RoleType.COMMUNITY_MOD, Scope.community("c1")),
		"hmod": await grant_role("hmod", RoleType.HUB_MOD, Scope.hub("h1")),
		"smod": await grant_role("smod", RoleType.SPACE_MOD, Scope.space("s1")),
	}


@pytest.fixture
def pending_cache(fake_redis) -> PendingCountCache:
	return PendingCountCache(fake_redis, ttl_seconds=30, namespace="test:pending:")


@pytest.fixture
def actions(store, clock, pending_cache) -> ModerationActions:
	return ModerationActions(store, pending_cache=pending_cache, clock=clock)
