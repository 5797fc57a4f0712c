from __future__ import annotations

import pytest

from forum.moderation.domain.exceptions import InvalidStateError, NotFoundError, ValidationError
from forum.moderation.domain.models import ReportReason, ReportStatus, ReportTarget, RoleType, TargetKind
from forum.moderation.domain.reports import ReportRouter
from forum.moderation.domain.resolver import ScopeResolver
from forum.moderation.domain.scopes import Scope, ScopeChain


@pytest.fixture
def router(clock) -> ReportRouter:
    return ReportRouter(ScopeResolver(), clock=clock)


async def _report(store, router, kind: TargetKind, target_id: str, **kwargs):
    async with store.begin() as tx:
        return await router.create(tx, reporter_id="alice", target=ReportTarget(kind, target_id), **kwargs)


@pytest.mark.asyncio
async def test_report_freezes_chain_at_creation(store, router) -> None:
    report = await _report(store, router, TargetKind.POST, "p1")
    assert report.status is ReportStatus.PENDING
    assert report.chain == ScopeChain(community_id="c1", hub_id="h1", space_id="s1")

    # the space moves to another hub afterwards
    store.add_space("s1", hub_id="h2")
    async with store.begin() as tx:
        under_h1 = await router.list_for_scope(tx, Scope.hub("h1"))
        under_h2 = await router.list_for_scope(tx, Scope.hub("h2"))
    assert [r.id for r in under_h1.items] == [report.id]
    assert under_h2.items == []


@pytest.mark.asyncio
async def test_user_reports_sit_at_platform(store, router) -> None:
    report = await _report(store, router, TargetKind.USER, "bob")
    assert report.chain == ScopeChain()
    async with store.begin() as tx:
        assert (await router.list_for_scope(tx, Scope.community("c1"))).total == 0
        assert (await router.list_for_scope(tx, Scope.platform())).total == 1


@pytest.mark.asyncio
async def test_report_on_missing_content_is_not_found(store, router) -> None:
    with pytest.raises(NotFoundError):
        await _report(store, router, TargetKind.DISCUSSION, "nope")


@pytest.mark.asyncio
async def test_listings_bubble_up(store, router) -> None:
    in_s1 = await _report(store, router, TargetKind.POST, "p1")
    in_s3 = await _report(store, router, TargetKind.POST, "p2")
    in_s4 = await _report(store, router, TargetKind.POST, "p4")
    async with store.begin() as tx:
        community = await router.list_for_scope(tx, Scope.community("c1"))
        hub = await router.list_for_scope(tx, Scope.hub("h1"))
        space = await router.list_for_scope(tx, Scope.space("s3"))
        everything = await router.list_for_scope(tx, Scope.platform())
    assert [r.id for r in community.items] == [in_s3.id, in_s1.id]
    assert [r.id for r in hub.items] == [in_s1.id]
    assert [r.id for r in space.items] == [in_s3.id]
    assert [r.id for r in everything.items] == [in_s4.id, in_s3.id, in_s1.id]


@pytest.mark.asyncio
async def test_listing_pages_newest_first(store, router) -> None:
    created = [await _report(store, router, TargetKind.POST, "p1") for _ in range(3)]
    async with store.begin() as tx:
        first = await router.list_for_scope(tx, Scope.space("s1"), offset=0, page_size=2)
        second = await router.list_for_scope(tx, Scope.space("s1"), offset=2, page_size=2)
        with pytest.raises(ValidationError):
            await router.list_for_scope(tx, Scope.space("s1"), offset=-1)
    assert [r.id for r in first.items] == [created[2].id, created[1].id]
    assert first.has_more and first.total == 3
    assert [r.id for r in second.items] == [created[0].id]
    assert not second.has_more


@pytest.mark.asyncio
async def test_pending_count_deduplicates_overlapping_grants(store, router, grant_role) -> None:
    await grant_role("carol", RoleType.COMMUNITY_MOD, Scope.community("c1"))
    await grant_role("carol", RoleType.HUB_MOD, Scope.hub("h1"))
    await grant_role("carol", RoleType.SPACE_MOD, Scope.space("s1"))
    await _report(store, router, TargetKind.POST, "p1")
    await _report(store, router, TargetKind.POST, "p2")
    await _report(store, router, TargetKind.POST, "p4")
    async with store.begin() as tx:
        assert await router.pending_count_for_moderator(tx, "carol") == 2
        listed = await router.list_for_moderator(tx, "carol")
        assert listed.total == 2


@pytest.mark.asyncio
async def test_global_admin_counts_everything(store, router, staffed) -> None:
    await _report(store, router, TargetKind.POST, "p4")
    await _report(store, router, TargetKind.USER, "bob")
    async with store.begin() as tx:
        assert await router.pending_count_for_moderator(tx, "root") == 2
        assert await router.pending_count_for_moderator(tx, "smod") == 0
        assert await router.pending_count_for_moderator(tx, "alice") == 0


@pytest.mark.asyncio
async def test_resolve_is_terminal(store, router) -> None:
    report = await _report(store, router, TargetKind.POST, "p1")
    async with store.begin() as tx:
        dismissed = await router.resolve(tx, report_id=report.id, resolved_by="smod", note="fine", dismiss=True)
        assert dismissed.status is ReportStatus.DISMISSED
        assert dismissed.resolution_note == "fine"
        with pytest.raises(InvalidStateError):
            await router.resolve(tx, report_id=report.id, resolved_by="smod")
        assert await router.pending_count_for_moderator(tx, "smod") == 0


@pytest.mark.asyncio
async def test_reasons_are_scoped_and_ordered(store, router) -> None:
    store.add_report_reason(ReportReason(id="r-other", name="Other", scope=Scope.platform(), display_order=100))
    store.add_report_reason(ReportReason(id="r-spam", name="Spam", scope=Scope.platform(), display_order=10))
    store.add_report_reason(ReportReason(id="r-abuse", name="Abuse", scope=Scope.platform(), display_order=10))
    store.add_report_reason(ReportReason(id="r-spoiler", name="Spoiler", scope=Scope.community("c2"), display_order=5))
    async with store.begin() as tx:
        for_c1 = await router.reasons_for(tx, Scope.space("s1"))
        for_c2 = await router.reasons_for(tx, Scope.space("s4"))
    assert [r.id for r in for_c1] == ["r-abuse", "r-spam", "r-other"]
    assert [r.id for r in for_c2] == ["r-spoiler", "r-abuse", "r-spam", "r-other"]

    with pytest.raises(ValidationError):
        await _report(store, router, TargetKind.POST, "p1", reason_id="r-spoiler")
    with pytest.raises(NotFoundError):
        await _report(store, router, TargetKind.POST, "p1", reason_id="missing")
    report = await _report(store, router, TargetKind.POST, "p4", reason_id="r-spoiler")
    assert report.reason_id == "r-spoiler"


@pytest.mark.asyncio
async def test_comments_are_kept_in_order(store, router) -> None:
    report = await _report(store, router, TargetKind.POST, "p1")
    async with store.begin() as tx:
        await router.add_comment(tx, report_id=report.id, author_id="smod", content="  looking  ")
        await router.add_comment(tx, report_id=report.id, author_id="hmod", content="agreed")
        with pytest.raises(ValidationError):
            await router.add_comment(tx, report_id=report.id, author_id="hmod", content="   ")
        comments = await router.list_comments(tx, report.id)
    assert [(c.author_id, c.content) for c in comments] == [("smod", "looking"), ("hmod", "agreed")]
