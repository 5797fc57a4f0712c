"""Lightweight service container shared by moderation modules."""

from __future__ import annotations

from typing import Optional

import asyncpg
from redis.asyncio import Redis

from forum import obs
from forum.infra import postgres
from forum.infra.redis import RedisProxy, redis_client
from forum.moderation.domain.actions import ModerationActions
from forum.moderation.domain.audit import AuditLog
from forum.moderation.domain.bans import BanStore
from forum.moderation.domain.caching import PendingCountCache
from forum.moderation.domain.memory import InMemoryModerationStore
from forum.moderation.domain.models import Clock, utcnow
from forum.moderation.domain.permissions import PermissionEvaluator
from forum.moderation.domain.reports import ReportRouter
from forum.moderation.domain.resolver import ScopeResolver
from forum.moderation.domain.roles import RoleStore
from forum.moderation.domain.storage import UnitOfWork
from forum.moderation.infra.postgres_repo import PostgresUnitOfWork

_uow: UnitOfWork = InMemoryModerationStore()
_clock: Clock = utcnow
_resolver = ScopeResolver()
_permissions = PermissionEvaluator(_resolver)
_roles = RoleStore(_resolver, clock=_clock)
_bans = BanStore(_resolver, clock=_clock)
_reports = ReportRouter(_resolver, clock=_clock)
_audit = AuditLog(clock=_clock)
_pending_cache: Optional[PendingCountCache] = None
_actions: Optional[ModerationActions] = None


def _build_actions() -> ModerationActions:
	return ModerationActions(
		_uow,
		resolver=_resolver,
		permissions=_permissions,
		roles=_roles,
		bans=_bans,
		reports=_reports,
		audit=_audit,
		pending_cache=_pending_cache,
		clock=_clock,
	)


def configure(
	*,
	uow: UnitOfWork | None = None,
	redis: Redis | RedisProxy | None = None,
	clock: Clock | None = None,
	cache_pending_counts: bool = True,
) -> None:
	"""Swap collaborators (tests, local dev) and rebuild the action facade."""

	global _uow, _clock, _roles, _bans, _reports, _audit, _pending_cache, _actions
	if uow is not None:
		_uow = uow
	if clock is not None:
		_clock = clock
		_roles = RoleStore(_resolver, clock=_clock)
		_bans = BanStore(_resolver, clock=_clock)
		_reports = ReportRouter(_resolver, clock=_clock)
		_audit = AuditLog(clock=_clock)
	if cache_pending_counts:
		_pending_cache = PendingCountCache(redis or redis_client)
	else:
		_pending_cache = None
	_actions = _build_actions()


def configure_postgres(pool: asyncpg.Pool, redis: Redis | RedisProxy | None = None) -> None:
	"""Back the moderation services with Postgres and Redis."""

	configure(uow=PostgresUnitOfWork(pool), redis=redis)


async def configure_from_settings() -> ModerationActions:
	"""Startup wiring: JSON logging, the shared asyncpg pool and redis client."""

	obs.init()
	pool = await postgres.init_pool()
	configure_postgres(pool, redis_client)
	return get_moderation_actions()


async def shutdown() -> None:
	await postgres.close_pool()
	configure(uow=InMemoryModerationStore(), cache_pending_counts=False)


def get_unit_of_work() -> UnitOfWork:
	return _uow


def get_permission_evaluator() -> PermissionEvaluator:
	return _permissions


def get_ban_store() -> BanStore:
	return _bans


def get_report_router() -> ReportRouter:
	return _reports


def get_pending_cache() -> Optional[PendingCountCache]:
	return _pending_cache


def get_moderation_actions() -> ModerationActions:
	global _actions
	if _actions is None:
		_actions = _build_actions()
	return _actions


__all__ = [
	"configure",
	"configure_from_settings",
	"configure_postgres",
	"get_ban_store",
	"get_moderation_actions",
	"get_pending_cache",
	"get_permission_evaluator",
	"get_report_router",
	"get_unit_of_work",
	"shutdown",
]
