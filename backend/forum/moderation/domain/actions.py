"""Authorized moderation operations.

Each mutation runs inside one unit of work: resolve the target's scope chain,
authorize, apply the change and append exactly one audit entry. Any exception
rolls the whole unit back, so a denied or failed call leaves no trace.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from forum.moderation.domain.audit import AuditLog
from forum.moderation.domain.bans import BanStore, validate_ban
from forum.moderation.domain.caching import PendingCountCache
from forum.moderation.domain.exceptions import ForbiddenError, InvalidStateError, ValidationError
from forum.moderation.domain.models import (
    ActionType,
    Ban,
    BanType,
    Clock,
    ModerationLogEntry,
    PagedResult,
    Report,
    ReportComment,
    ReportDetail,
    ReportReason,
    ReportStatus,
    ReportTarget,
    RoleGrant,
    RoleType,
    TargetKind,
    TargetRefs,
    utcnow,
)
from forum.moderation.domain.pagination import normalize_page
from forum.moderation.domain.permissions import PermissionEvaluator
from forum.moderation.domain.reports import ReportRouter
from forum.moderation.domain.resolver import ScopeResolver
from forum.moderation.domain.roles import RoleStore, validate_assignment
from forum.moderation.domain.scopes import Scope, ScopeChain
from forum.moderation.domain.storage import UnitOfWork
from forum.obs import metrics

logger = logging.getLogger(__name__)


def _report_refs(report: Report) -> TargetRefs:
    target = report.target
    return TargetRefs(
        report_id=report.id,
        post_id=target.id if target.kind is TargetKind.POST else None,
        discussion_id=target.id if target.kind is TargetKind.DISCUSSION else None,
        user_id=target.id if target.kind is TargetKind.USER else None,
    )


class ModerationActions:
    """Entry point for every privileged moderation request."""

    def __init__(
        self,
        uow: UnitOfWork,
        *,
        resolver: ScopeResolver | None = None,
        permissions: PermissionEvaluator | None = None,
        roles: RoleStore | None = None,
        bans: BanStore | None = None,
        reports: ReportRouter | None = None,
        audit: AuditLog | None = None,
        pending_cache: PendingCountCache | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._uow = uow
        self._clock = clock
        self._resolver = resolver or ScopeResolver()
        self._permissions = permissions or PermissionEvaluator(self._resolver)
        self._roles = roles or RoleStore(self._resolver, clock=clock)
        self._bans = bans or BanStore(self._resolver, clock=clock)
        self._reports = reports or ReportRouter(self._resolver, clock=clock)
        self._audit = audit or AuditLog(clock=clock)
        self._pending_cache = pending_cache

    # --- roles ------------------------------------------------------------

    async def assign_role(self, *, actor_id: str, user_id: str, role_type: RoleType | str, scope: Scope) -> RoleGrant:
        role_type = validate_assignment(role_type, scope)
        async with self._uow.begin() as tx:
            chain = await self._resolver.resolve(tx, scope)
            await self._permissions.ensure_can_administer(tx, actor_id, chain)
            grant = await self._roles.assign(
                tx, user_id=user_id, role_type=role_type, scope=scope, assigned_by=actor_id
            )
            await self._audit.append(
                tx,
                actor_id=actor_id,
                action=ActionType.ASSIGN_ROLE,
                chain=chain,
                targets=TargetRefs(user_id=user_id, role_id=grant.id),
                details=role_type.value,
            )
        self._committed(ActionType.ASSIGN_ROLE, actor_id, chain, role_id=grant.id)
        await self._invalidate_pending()
        return grant

    async def revoke_role(self, *, actor_id: str, grant_id: str, reason: str | None = None) -> RoleGrant:
        async with self._uow.begin() as tx:
            grant = await self._roles.get(tx, grant_id)
            chain = await self._resolver.resolve(tx, grant.scope)
            await self._permissions.ensure_can_administer(tx, actor_id, chain)
            revoked = await self._roles.revoke(tx, grant_id=grant_id, revoked_by=actor_id)
            await self._audit.append(
                tx,
                actor_id=actor_id,
                action=ActionType.REVOKE_ROLE,
                chain=chain,
                targets=TargetRefs(user_id=grant.user_id, role_id=grant.id),
                details=grant.role_type.value,
                reason=reason,
            )
        self._committed(ActionType.REVOKE_ROLE, actor_id, chain, role_id=grant_id)
        await self._invalidate_pending()
        return revoked

    # --- bans -------------------------------------------------------------

    async def ban_user(
        self,
        *,
        actor_id: str,
        user_id: str,
        ban_type: BanType | str,
        scope: Scope,
        reason: str | None = None,
        expires_at: datetime | None = None,
    ) -> Ban:
        ban_type = validate_ban(ban_type, banned_at=self._clock(), expires_at=expires_at)
        async with self._uow.begin() as tx:
            chain = await self._resolver.resolve(tx, scope)
            await self._permissions.ensure_can_moderate(tx, actor_id, chain)
            await self._resolver.ensure_user(tx, user_id)
            if await self._permissions.can_moderate_chain(tx, user_id, chain):
                raise ForbiddenError("target_is_moderator")
            ban = await self._bans.ban(
                tx,
                user_id=user_id,
                ban_type=ban_type,
                scope=scope,
                banned_by=actor_id,
                reason=reason,
                expires_at=expires_at,
            )
            await self._audit.append(
                tx,
                actor_id=actor_id,
                action=ActionType.BAN_USER,
                chain=chain,
                targets=TargetRefs(user_id=user_id, ban_id=ban.id),
                details=ban_type.value,
                reason=reason,
            )
        self._committed(ActionType.BAN_USER, actor_id, chain, ban_id=ban.id)
        return ban

    async def unban_user(self, *, actor_id: str, ban_id: str, reason: str | None = None) -> Ban:
        async with self._uow.begin() as tx:
            ban = await self._bans.get(tx, ban_id)
            chain = await self._resolver.resolve(tx, ban.scope)
            await self._permissions.ensure_can_moderate(tx, actor_id, chain)
            lifted = await self._bans.unban(tx, ban_id=ban_id, unbanned_by=actor_id)
            await self._audit.append(
                tx,
                actor_id=actor_id,
                action=ActionType.UNBAN_USER,
                chain=chain,
                targets=TargetRefs(user_id=ban.user_id, ban_id=ban.id),
                reason=reason,
            )
        self._committed(ActionType.UNBAN_USER, actor_id, chain, ban_id=ban_id)
        return lifted

    # --- reports ----------------------------------------------------------

    async def create_report(
        self,
        *,
        reporter_id: str,
        post_id: str | None = None,
        discussion_id: str | None = None,
        user_id: str | None = None,
        reason_id: str | None = None,
        details: str | None = None,
    ) -> Report:
        target = ReportTarget.from_refs(post_id=post_id, discussion_id=discussion_id, user_id=user_id)
        async with self._uow.begin() as tx:
            report = await self._reports.create(
                tx, reporter_id=reporter_id, target=target, reason_id=reason_id, details=details
            )
        logger.info(
            "report filed",
            extra={"report_id": report.id, "target": target.kind.value, "scope": str(report.scope)},
        )
        await self._invalidate_pending()
        return report

    async def resolve_report(
        self,
        *,
        actor_id: str,
        report_id: str,
        note: str | None = None,
        dismiss: bool = False,
    ) -> Report:
        action = ActionType.DISMISS_REPORT if dismiss else ActionType.RESOLVE_REPORT
        async with self._uow.begin() as tx:
            report = await self._reports.get(tx, report_id)
            await self._permissions.ensure_can_moderate(tx, actor_id, report.chain)
            updated = await self._reports.resolve(
                tx, report_id=report_id, resolved_by=actor_id, note=note, dismiss=dismiss
            )
            await self._audit.append(
                tx,
                actor_id=actor_id,
                action=action,
                chain=report.chain,
                targets=_report_refs(report),
                reason=note,
            )
        self._committed(action, actor_id, report.chain, report_id=report_id)
        await self._invalidate_pending()
        return updated

    async def add_report_comment(self, *, actor_id: str, report_id: str, content: str) -> ReportComment:
        if not content or not content.strip():
            raise ValidationError("comment_content_required")
        async with self._uow.begin() as tx:
            report = await self._reports.get(tx, report_id)
            await self._permissions.ensure_can_moderate(tx, actor_id, report.chain)
            return await self._reports.add_comment(tx, report_id=report_id, author_id=actor_id, content=content)

    # --- content ----------------------------------------------------------

    async def delete_post(self, *, actor_id: str, post_id: str, reason: str | None = None) -> None:
        async with self._uow.begin() as tx:
            post, chain = await self._resolver.resolve_post(tx, post_id)
            await self._permissions.ensure_can_moderate(tx, actor_id, chain)
            if post.is_deleted or not await tx.content.soft_delete_post(post_id, deleted_at=self._clock()):
                raise InvalidStateError("post_already_deleted")
            await self._audit.append(
                tx,
                actor_id=actor_id,
                action=ActionType.DELETE_POST,
                chain=chain,
                targets=TargetRefs(post_id=post_id, discussion_id=post.discussion_id),
                reason=reason,
            )
        self._committed(ActionType.DELETE_POST, actor_id, chain, post_id=post_id)

    async def delete_discussion(self, *, actor_id: str, discussion_id: str, reason: str | None = None) -> None:
        async with self._uow.begin() as tx:
            discussion, chain = await self._resolver.resolve_discussion(tx, discussion_id)
            await self._permissions.ensure_can_moderate(tx, actor_id, chain)
            if discussion.is_deleted or not await tx.content.soft_delete_discussion(
                discussion_id, deleted_at=self._clock()
            ):
                raise InvalidStateError("discussion_already_deleted")
            await self._audit.append(
                tx,
                actor_id=actor_id,
                action=ActionType.DELETE_DISCUSSION,
                chain=chain,
                targets=TargetRefs(discussion_id=discussion_id),
                reason=reason,
            )
        self._committed(ActionType.DELETE_DISCUSSION, actor_id, chain, discussion_id=discussion_id)

    async def lock_discussion(self, *, actor_id: str, discussion_id: str, reason: str | None = None) -> None:
        await self._set_locked(actor_id, discussion_id, locked=True, reason=reason)

    async def unlock_discussion(self, *, actor_id: str, discussion_id: str, reason: str | None = None) -> None:
        await self._set_locked(actor_id, discussion_id, locked=False, reason=reason)

    async def _set_locked(self, actor_id: str, discussion_id: str, *, locked: bool, reason: str | None) -> None:
        async with self._uow.begin() as tx:
            discussion, chain = await self._resolver.resolve_discussion(tx, discussion_id)
            await self._permissions.ensure_can_moderate(tx, actor_id, chain)
            if discussion.is_deleted:
                raise InvalidStateError("discussion_deleted")
            if not await tx.content.set_discussion_locked(discussion_id, locked):
                raise InvalidStateError("discussion_already_locked" if locked else "discussion_not_locked")
            # Unlocks share the lock action; details tell them apart.
            await self._audit.append(
                tx,
                actor_id=actor_id,
                action=ActionType.LOCK_DISCUSSION,
                chain=chain,
                targets=TargetRefs(discussion_id=discussion_id),
                details="locked" if locked else "unlocked",
                reason=reason,
            )
        self._committed(ActionType.LOCK_DISCUSSION, actor_id, chain, discussion_id=discussion_id)

    async def edit_post(self, *, actor_id: str, post_id: str, content: str, reason: str | None = None) -> None:
        if not content or not content.strip():
            raise ValidationError("post_content_required")
        async with self._uow.begin() as tx:
            post, chain = await self._resolver.resolve_post(tx, post_id)
            await self._permissions.ensure_can_moderate(tx, actor_id, chain)
            if post.is_deleted or not await tx.content.edit_post(post_id, content=content, edited_at=self._clock()):
                raise InvalidStateError("post_deleted")
            await self._audit.append(
                tx,
                actor_id=actor_id,
                action=ActionType.EDIT_POST,
                chain=chain,
                targets=TargetRefs(post_id=post_id, discussion_id=post.discussion_id),
                reason=reason,
            )
        self._committed(ActionType.EDIT_POST, actor_id, chain, post_id=post_id)

    # --- reads ------------------------------------------------------------

    async def can_moderate(self, user_id: str, scope: Scope) -> bool:
        async with self._uow.begin() as tx:
            return await self._permissions.can_moderate(tx, user_id, scope)

    async def can_administer(self, user_id: str, scope: Scope) -> bool:
        async with self._uow.begin() as tx:
            return await self._permissions.can_administer(tx, user_id, scope)

    async def is_banned(self, user_id: str, scope: Scope) -> bool:
        async with self._uow.begin() as tx:
            return await self._bans.is_banned(tx, user_id, scope)

    async def effective_ban(self, user_id: str, scope: Scope, *, ban_type: BanType | None = None) -> Ban | None:
        async with self._uow.begin() as tx:
            return await self._bans.effective_ban(tx, user_id, scope, ban_type=ban_type)

    async def can_post(self, user_id: str, scope: Scope) -> bool:
        async with self._uow.begin() as tx:
            return await self._bans.can_post(tx, user_id, scope)

    async def can_read(self, user_id: str, scope: Scope) -> bool:
        async with self._uow.begin() as tx:
            return await self._bans.can_read(tx, user_id, scope)

    async def active_bans_for(self, user_id: str) -> Sequence[Ban]:
        async with self._uow.begin() as tx:
            return await self._bans.active_bans_for(tx, user_id)

    async def bans_at(self, *, actor_id: str, scope: Scope, include_inactive: bool = False) -> Sequence[Ban]:
        async with self._uow.begin() as tx:
            chain = await self._resolver.resolve(tx, scope)
            await self._permissions.ensure_can_moderate(tx, actor_id, chain)
            return await self._bans.bans_at(tx, scope, include_inactive=include_inactive)

    async def active_roles_for(self, user_id: str) -> Sequence[RoleGrant]:
        async with self._uow.begin() as tx:
            return await self._roles.active_roles_for(tx, user_id)

    async def active_roles_at(self, scope: Scope) -> Sequence[RoleGrant]:
        async with self._uow.begin() as tx:
            return await self._roles.active_roles_at(tx, scope)

    async def list_reports(
        self,
        *,
        actor_id: str,
        scope: Scope,
        status: ReportStatus | None = None,
        offset: int = 0,
        page_size: int | None = None,
    ) -> PagedResult[Report]:
        offset, page_size = normalize_page(offset, page_size)
        async with self._uow.begin() as tx:
            chain = await self._resolver.resolve(tx, scope)
            await self._permissions.ensure_can_moderate(tx, actor_id, chain)
            return await self._reports.list_for_scope(tx, scope, status=status, offset=offset, page_size=page_size)

    async def list_reports_for_moderator(
        self,
        *,
        actor_id: str,
        status: ReportStatus | None = None,
        offset: int = 0,
        page_size: int | None = None,
    ) -> PagedResult[Report]:
        offset, page_size = normalize_page(offset, page_size)
        async with self._uow.begin() as tx:
            return await self._reports.list_for_moderator(
                tx, actor_id, status=status, offset=offset, page_size=page_size
            )

    async def pending_count_for_moderator(self, user_id: str) -> int:
        async def build() -> int:
            async with self._uow.begin() as tx:
                return await self._reports.pending_count_for_moderator(tx, user_id)

        if self._pending_cache is None:
            return await build()
        return await self._pending_cache.get_or_build(user_id, build)

    async def report_detail(self, *, actor_id: str, report_id: str) -> ReportDetail:
        async with self._uow.begin() as tx:
            report = await self._reports.get(tx, report_id)
            await self._permissions.ensure_can_moderate(tx, actor_id, report.chain)
            comments = await self._reports.list_comments(tx, report_id)
        return ReportDetail(report=report, comments=list(comments))

    async def report_reasons(self, scope: Scope | None = None) -> list[ReportReason]:
        async with self._uow.begin() as tx:
            return await self._reports.reasons_for(tx, scope or Scope.platform())

    async def moderation_log(
        self,
        *,
        actor_id: str,
        scope: Scope,
        offset: int = 0,
        page_size: int | None = None,
    ) -> PagedResult[ModerationLogEntry]:
        offset, page_size = normalize_page(offset, page_size)
        async with self._uow.begin() as tx:
            chain = await self._resolver.resolve(tx, scope)
            await self._permissions.ensure_can_moderate(tx, actor_id, chain)
            return await self._audit.list_for_scope(tx, scope, offset=offset, page_size=page_size)

    async def moderation_log_for_actor(
        self,
        *,
        viewer_id: str,
        actor_id: str,
        offset: int = 0,
        page_size: int | None = None,
    ) -> PagedResult[ModerationLogEntry]:
        """A moderator's own history, or anyone's for platform administrators."""
        offset, page_size = normalize_page(offset, page_size)
        async with self._uow.begin() as tx:
            if viewer_id != actor_id:
                await self._permissions.ensure_can_administer(tx, viewer_id, ScopeChain())
            return await self._audit.list_for_actor(tx, actor_id, offset=offset, page_size=page_size)

    # --- helpers ----------------------------------------------------------

    def _committed(self, action: ActionType, actor_id: str, chain: ScopeChain, **refs: str) -> None:
        metrics.MODERATION_ACTIONS.labels(action=action.value).inc()
        logger.info(
            "moderation action applied",
            extra={"action": action.value, "actor_id": actor_id, "scope": str(chain.leaf), **refs},
        )

    async def _invalidate_pending(self) -> None:
        if self._pending_cache is not None:
            await self._pending_cache.invalidate()
