"""Scope chain resolution against the content directory."""

from __future__ import annotations

from forum.moderation.domain.exceptions import NotFoundError
from forum.moderation.domain.models import DiscussionRef, PostRef, ReportTarget, TargetKind
from forum.moderation.domain.scopes import Scope, ScopeChain, ScopeKind
from forum.moderation.domain.storage import Transaction


class ScopeResolver:
    """Maps scopes and content to their ancestor chain. Read-only."""

    async def resolve(self, tx: Transaction, scope: Scope) -> ScopeChain:
        if scope.kind is ScopeKind.PLATFORM:
            return ScopeChain()
        if scope.kind is ScopeKind.COMMUNITY:
            if not await tx.directory.community_exists(scope.id):
                raise NotFoundError("community_not_found")
            return ScopeChain(community_id=scope.id)
        if scope.kind is ScopeKind.HUB:
            return await self._hub_chain(tx, scope.id)
        return await self._space_chain(tx, scope.id)

    async def resolve_discussion(self, tx: Transaction, discussion_id: str) -> tuple[DiscussionRef, ScopeChain]:
        discussion = await tx.directory.get_discussion(discussion_id)
        if discussion is None:
            raise NotFoundError("discussion_not_found")
        return discussion, await self._space_chain(tx, discussion.space_id)

    async def resolve_post(self, tx: Transaction, post_id: str) -> tuple[PostRef, ScopeChain]:
        post = await tx.directory.get_post(post_id)
        if post is None:
            raise NotFoundError("post_not_found")
        _, chain = await self.resolve_discussion(tx, post.discussion_id)
        return post, chain

    async def resolve_target(self, tx: Transaction, target: ReportTarget) -> ScopeChain:
        if target.kind is TargetKind.POST:
            _, chain = await self.resolve_post(tx, target.id)
            return chain
        if target.kind is TargetKind.DISCUSSION:
            _, chain = await self.resolve_discussion(tx, target.id)
            return chain
        # Users live outside the hierarchy.
        await self.ensure_user(tx, target.id)
        return ScopeChain()

    async def ensure_user(self, tx: Transaction, user_id: str) -> None:
        if not user_id or not await tx.directory.user_exists(user_id):
            raise NotFoundError("user_not_found")

    async def _hub_chain(self, tx: Transaction, hub_id: str) -> ScopeChain:
        hub = await tx.directory.get_hub(hub_id)
        if hub is None:
            raise NotFoundError("hub_not_found")
        return ScopeChain(community_id=hub.community_id, hub_id=hub.id)

    async def _space_chain(self, tx: Transaction, space_id: str) -> ScopeChain:
        space = await tx.directory.get_space(space_id)
        if space is None:
            raise NotFoundError("space_not_found")
        hub_chain = await self._hub_chain(tx, space.hub_id)
        return ScopeChain(community_id=hub_chain.community_id, hub_id=hub_chain.hub_id, space_id=space.id)
