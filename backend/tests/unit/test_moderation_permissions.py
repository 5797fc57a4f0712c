from __future__ import annotations

import pytest

from forum.moderation.domain.exceptions import ForbiddenError, NotFoundError
from forum.moderation.domain.models import RoleType
from forum.moderation.domain.permissions import PermissionEvaluator
from forum.moderation.domain.resolver import ScopeResolver
from forum.moderation.domain.scopes import Scope, ScopeChain
from forum.obs import metrics

# (user, scope, moderates, administers) against the standard staff
MATRIX = [
    ("root", Scope.platform(), True, True),
    ("root", Scope.space("s4"), True, True),
    ("cadmin", Scope.community("c1"), True, True),
    ("cadmin", Scope.space("s3"), True, True),
    ("cadmin", Scope.community("c2"), False, False),
    ("cadmin", Scope.platform(), False, False),
    ("cmod", Scope.community("c1"), True, False),
    ("cmod", Scope.hub("h2"), True, False),
    ("cmod", Scope.space("s1"), True, False),
    ("cmod", Scope.hub("h3"), False, False),
    ("hmod", Scope.hub("h1"), True, False),
    ("hmod", Scope.space("s1"), True, False),
    ("hmod", Scope.space("s2"), True, False),
    ("hmod", Scope.space("s3"), False, False),
    ("hmod", Scope.community("c1"), False, False),
    ("smod", Scope.space("s1"), True, False),
    ("smod", Scope.space("s2"), False, False),
    ("smod", Scope.hub("h1"), False, False),
    ("alice", Scope.space("s1"), False, False),
]


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id, scope, moderates, administers", MATRIX)
async def test_privilege_matrix(store, staffed, user_id, scope, moderates, administers) -> None:
    evaluator = PermissionEvaluator(ScopeResolver())
    async with store.begin() as tx:
        assert await evaluator.can_moderate(tx, user_id, scope) is moderates
        assert await evaluator.can_administer(tx, user_id, scope) is administers


@pytest.mark.asyncio
async def test_revoked_grant_confers_nothing(store, staffed) -> None:
    evaluator = PermissionEvaluator(ScopeResolver())
    async with store.begin() as tx:
        await tx.roles.mark_revoked(staffed["hmod"].id, revoked_by="root", revoked_at=staffed["hmod"].assigned_at)
        assert not await evaluator.can_moderate(tx, "hmod", Scope.space("s1"))


@pytest.mark.asyncio
async def test_any_grant_suffices(store, staffed, grant_role) -> None:
    await grant_role("smod", RoleType.HUB_MOD, Scope.hub("h2"))
    evaluator = PermissionEvaluator(ScopeResolver())
    async with store.begin() as tx:
        assert await evaluator.can_moderate(tx, "smod", Scope.space("s1"))
        assert await evaluator.can_moderate(tx, "smod", Scope.space("s3"))
        assert not await evaluator.can_moderate(tx, "smod", Scope.space("s2"))


@pytest.mark.asyncio
async def test_unknown_user_is_not_found(store) -> None:
    evaluator = PermissionEvaluator(ScopeResolver())
    async with store.begin() as tx:
        with pytest.raises(NotFoundError):
            await evaluator.can_moderate(tx, "ghost", Scope.platform())


@pytest.mark.asyncio
async def test_unknown_scope_is_not_found(store, staffed) -> None:
    evaluator = PermissionEvaluator(ScopeResolver())
    async with store.begin() as tx:
        with pytest.raises(NotFoundError):
            await evaluator.can_moderate(tx, "root", Scope.space("missing"))


@pytest.mark.asyncio
async def test_denials_are_counted(store, staffed) -> None:
    evaluator = PermissionEvaluator(ScopeResolver())
    counter = metrics.MODERATION_DENIED.labels(check="administer")
    before = counter._value.get()
    async with store.begin() as tx:
        with pytest.raises(ForbiddenError) as excinfo:
            await evaluator.ensure_can_administer(tx, "cmod", ScopeChain(community_id="c1"))
    assert excinfo.value.detail == "administer_permission_required"
    assert counter._value.get() == before + 1
