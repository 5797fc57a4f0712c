"""Role grant ledger with tombstone revocation."""

from __future__ import annotations

import logging
from typing import Sequence

from forum.moderation.domain.exceptions import InvalidStateError, NotFoundError, ValidationError
from forum.moderation.domain.models import ROLE_PRIVILEGES, Clock, RoleGrant, RoleType, new_id, utcnow
from forum.moderation.domain.resolver import ScopeResolver
from forum.moderation.domain.scopes import Scope
from forum.moderation.domain.storage import Transaction
from forum.obs import metrics

logger = logging.getLogger(__name__)


def validate_assignment(role_type: RoleType | str, scope: Scope) -> RoleType:
    """Coerce ``role_type`` and check it is bound to the kind of ``scope``."""
    try:
        role_type = RoleType(role_type)
    except ValueError as exc:
        raise ValidationError("invalid_role_type") from exc
    expected = ROLE_PRIVILEGES[role_type].scope_kind
    if scope.kind is not expected:
        raise ValidationError(f"{role_type.value}_requires_{expected.value}_scope")
    return role_type


class RoleStore:
    """Issues and revokes role grants. Authorization is the caller's job."""

    def __init__(self, resolver: ScopeResolver, *, clock: Clock = utcnow) -> None:
        self._resolver = resolver
        self._clock = clock

    async def assign(
        self,
        tx: Transaction,
        *,
        user_id: str,
        role_type: RoleType,
        scope: Scope,
        assigned_by: str,
    ) -> RoleGrant:
        role_type = validate_assignment(role_type, scope)
        await self._resolver.ensure_user(tx, user_id)
        await self._resolver.resolve(tx, scope)
        grant = RoleGrant(
            id=new_id(),
            user_id=user_id,
            role_type=role_type,
            scope=scope,
            assigned_by=assigned_by,
            assigned_at=self._clock(),
        )
        return await tx.roles.insert(grant)

    async def revoke(self, tx: Transaction, *, grant_id: str, revoked_by: str) -> RoleGrant:
        grant = await self.get(tx, grant_id)
        if not grant.is_active:
            raise InvalidStateError("role_already_revoked")
        revoked = await tx.roles.mark_revoked(grant_id, revoked_by=revoked_by, revoked_at=self._clock())
        if revoked is None:
            metrics.MODERATION_CONFLICTS.labels(entity="role").inc()
            logger.info("role revoke lost race", extra={"grant_id": grant_id})
            raise InvalidStateError("role_already_revoked")
        return revoked

    async def get(self, tx: Transaction, grant_id: str) -> RoleGrant:
        grant = await tx.roles.get(grant_id)
        if grant is None:
            raise NotFoundError("role_not_found")
        return grant

    async def active_roles_for(self, tx: Transaction, user_id: str) -> Sequence[RoleGrant]:
        await self._resolver.ensure_user(tx, user_id)
        return await tx.roles.list_active_for_user(user_id)

    async def active_roles_at(self, tx: Transaction, scope: Scope) -> Sequence[RoleGrant]:
        await self._resolver.resolve(tx, scope)
        return await tx.roles.list_active_at(scope)
