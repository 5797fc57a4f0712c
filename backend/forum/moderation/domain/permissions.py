"""Authority checks: who may moderate or administer a scope."""

from __future__ import annotations

import logging
from typing import Iterable

from forum.moderation.domain.exceptions import ForbiddenError
from forum.moderation.domain.models import ROLE_PRIVILEGES, RoleGrant
from forum.moderation.domain.resolver import ScopeResolver
from forum.moderation.domain.scopes import Scope, ScopeChain
from forum.moderation.domain.storage import Transaction
from forum.obs import metrics

logger = logging.getLogger(__name__)


def grants_moderate(grants: Iterable[RoleGrant], chain: ScopeChain) -> bool:
    return any(
        ROLE_PRIVILEGES[grant.role_type].moderates and chain.within(grant.scope)
        for grant in grants
        if grant.is_active
    )


def grants_administer(grants: Iterable[RoleGrant], chain: ScopeChain) -> bool:
    return any(
        ROLE_PRIVILEGES[grant.role_type].administers and chain.within(grant.scope)
        for grant in grants
        if grant.is_active
    )


class PermissionEvaluator:
    """Answers moderate/administer questions from active grants.

    The scope chain is resolved once per check and the user's grants are
    scanned linearly against it. The ``*_chain`` variants take a chain the
    caller already holds, such as a report's frozen chain.
    """

    def __init__(self, resolver: ScopeResolver) -> None:
        self._resolver = resolver

    async def can_moderate(self, tx: Transaction, user_id: str, scope: Scope) -> bool:
        chain = await self._resolver.resolve(tx, scope)
        return await self.can_moderate_chain(tx, user_id, chain)

    async def can_administer(self, tx: Transaction, user_id: str, scope: Scope) -> bool:
        chain = await self._resolver.resolve(tx, scope)
        return await self.can_administer_chain(tx, user_id, chain)

    async def can_moderate_chain(self, tx: Transaction, user_id: str, chain: ScopeChain) -> bool:
        return grants_moderate(await self._grants(tx, user_id), chain)

    async def can_administer_chain(self, tx: Transaction, user_id: str, chain: ScopeChain) -> bool:
        return grants_administer(await self._grants(tx, user_id), chain)

    async def ensure_can_moderate(self, tx: Transaction, user_id: str, chain: ScopeChain) -> None:
        if not await self.can_moderate_chain(tx, user_id, chain):
            self._deny("moderate", user_id, chain)

    async def ensure_can_administer(self, tx: Transaction, user_id: str, chain: ScopeChain) -> None:
        if not await self.can_administer_chain(tx, user_id, chain):
            self._deny("administer", user_id, chain)

    async def _grants(self, tx: Transaction, user_id: str) -> list[RoleGrant]:
        await self._resolver.ensure_user(tx, user_id)
        return list(await tx.roles.list_active_for_user(user_id))

    def _deny(self, check: str, user_id: str, chain: ScopeChain) -> None:
        metrics.MODERATION_DENIED.labels(check=check).inc()
        logger.info(
            "moderation permission denied",
            extra={"actor_id": user_id, "check": check, "scope": str(chain.leaf)},
        )
        raise ForbiddenError(f"{check}_permission_required")
