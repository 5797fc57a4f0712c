"""Report intake, bubble-up routing and resolution."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from forum.moderation.domain.exceptions import InvalidStateError, NotFoundError, ValidationError
from forum.moderation.domain.models import (
    Clock,
    PagedResult,
    Report,
    ReportComment,
    ReportReason,
    ReportStatus,
    ReportTarget,
    RoleType,
    new_id,
    utcnow,
)
from forum.moderation.domain.pagination import build_page, normalize_page
from forum.moderation.domain.resolver import ScopeResolver
from forum.moderation.domain.scopes import Scope
from forum.moderation.domain.storage import Transaction
from forum.obs import metrics

logger = logging.getLogger(__name__)


class ReportRouter:
    """Files reports against a frozen scope chain and routes them to moderators.

    A report stays attached to the chain its target had when it was filed, so
    later moves of the content never change who sees it. Listings bubble up:
    a hub listing includes its spaces, a community listing includes its hubs.
    """

    def __init__(self, resolver: ScopeResolver, *, clock: Clock = utcnow) -> None:
        self._resolver = resolver
        self._clock = clock

    async def create(
        self,
        tx: Transaction,
        *,
        reporter_id: str,
        target: ReportTarget,
        reason_id: str | None = None,
        details: str | None = None,
    ) -> Report:
        await self._resolver.ensure_user(tx, reporter_id)
        chain = await self._resolver.resolve_target(tx, target)
        if reason_id is not None:
            reason = await tx.reports.get_reason(reason_id)
            if reason is None:
                raise NotFoundError("report_reason_not_found")
            if not chain.within(reason.scope):
                raise ValidationError("reason_not_applicable")
        report = Report(
            id=new_id(),
            reporter_id=reporter_id,
            target=target,
            chain=chain,
            status=ReportStatus.PENDING,
            created_at=self._clock(),
            reason_id=reason_id,
            details=details,
        )
        stored = await tx.reports.insert(report)
        metrics.REPORTS_CREATED.labels(target=target.kind.value).inc()
        return stored

    async def get(self, tx: Transaction, report_id: str) -> Report:
        report = await tx.reports.get(report_id)
        if report is None:
            raise NotFoundError("report_not_found")
        return report

    async def list_for_scope(
        self,
        tx: Transaction,
        scope: Scope,
        *,
        status: ReportStatus | None = None,
        offset: int = 0,
        page_size: int | None = None,
    ) -> PagedResult[Report]:
        offset, page_size = normalize_page(offset, page_size)
        await self._resolver.resolve(tx, scope)
        items, total = await tx.reports.query([scope], status=status, offset=offset, limit=page_size)
        return build_page(items, offset=offset, page_size=page_size, total=total)

    async def list_for_moderator(
        self,
        tx: Transaction,
        user_id: str,
        *,
        status: ReportStatus | None = None,
        offset: int = 0,
        page_size: int | None = None,
    ) -> PagedResult[Report]:
        offset, page_size = normalize_page(offset, page_size)
        scopes = await self._moderated_scopes(tx, user_id)
        if scopes == []:
            return build_page([], offset=offset, page_size=page_size, total=0)
        items, total = await tx.reports.query(scopes, status=status, offset=offset, limit=page_size)
        return build_page(items, offset=offset, page_size=page_size, total=total)

    async def pending_count_for_moderator(self, tx: Transaction, user_id: str) -> int:
        scopes = await self._moderated_scopes(tx, user_id)
        if scopes == []:
            return 0
        _, total = await tx.reports.query(scopes, status=ReportStatus.PENDING, offset=0, limit=0)
        return total

    async def resolve(
        self,
        tx: Transaction,
        *,
        report_id: str,
        resolved_by: str,
        note: str | None = None,
        dismiss: bool = False,
    ) -> Report:
        report = await self.get(tx, report_id)
        if report.status is not ReportStatus.PENDING:
            raise InvalidStateError("report_not_pending")
        status = ReportStatus.DISMISSED if dismiss else ReportStatus.RESOLVED
        updated = await tx.reports.mark_terminal(
            report_id,
            status=status,
            resolved_by=resolved_by,
            resolved_at=self._clock(),
            note=note,
        )
        if updated is None:
            metrics.MODERATION_CONFLICTS.labels(entity="report").inc()
            logger.info("report resolution lost race", extra={"report_id": report_id})
            raise InvalidStateError("report_not_pending")
        return updated

    async def add_comment(self, tx: Transaction, *, report_id: str, author_id: str, content: str) -> ReportComment:
        if not content or not content.strip():
            raise ValidationError("comment_content_required")
        await self.get(tx, report_id)
        comment = ReportComment(
            id=new_id(),
            report_id=report_id,
            author_id=author_id,
            content=content.strip(),
            created_at=self._clock(),
        )
        return await tx.reports.add_comment(comment)

    async def list_comments(self, tx: Transaction, report_id: str) -> Sequence[ReportComment]:
        return await tx.reports.list_comments(report_id)

    async def reasons_for(self, tx: Transaction, scope: Scope) -> list[ReportReason]:
        chain = await self._resolver.resolve(tx, scope)
        reasons = [reason for reason in await tx.reports.list_reasons() if chain.within(reason.scope)]
        reasons.sort(key=lambda reason: (reason.display_order, reason.name))
        return reasons

    async def _moderated_scopes(self, tx: Transaction, user_id: str) -> Optional[list[Scope]]:
        """Scopes a user's active grants cover; ``None`` means everything."""
        await self._resolver.ensure_user(tx, user_id)
        grants = await tx.roles.list_active_for_user(user_id)
        if any(grant.role_type is RoleType.GLOBAL_ADMIN for grant in grants):
            return None
        scopes: list[Scope] = []
        for grant in grants:
            if grant.scope not in scopes:
                scopes.append(grant.scope)
        return scopes
