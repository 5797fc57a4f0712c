"""Containment scopes: Platform ⊃ Community ⊃ Hub ⊃ Space."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from forum.moderation.domain.exceptions import ValidationError


class ScopeKind(str, Enum):
    PLATFORM = "platform"
    COMMUNITY = "community"
    HUB = "hub"
    SPACE = "space"


@dataclass(frozen=True, slots=True)
class Scope:
    """A single containment level an authority check or ban applies to.

    Platform carries no identifier; every other kind carries exactly one.
    """

    kind: ScopeKind
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, ScopeKind):
            try:
                object.__setattr__(self, "kind", ScopeKind(self.kind))
            except ValueError as exc:
                raise ValidationError("invalid_scope_kind") from exc
        if self.kind is ScopeKind.PLATFORM:
            if self.id is not None:
                raise ValidationError("platform_scope_takes_no_id")
        elif not self.id:
            raise ValidationError(f"{self.kind.value}_scope_requires_id")

    @classmethod
    def platform(cls) -> "Scope":
        return cls(ScopeKind.PLATFORM)

    @classmethod
    def community(cls, community_id: str) -> "Scope":
        return cls(ScopeKind.COMMUNITY, community_id)

    @classmethod
    def hub(cls, hub_id: str) -> "Scope":
        return cls(ScopeKind.HUB, hub_id)

    @classmethod
    def space(cls, space_id: str) -> "Scope":
        return cls(ScopeKind.SPACE, space_id)

    @property
    def is_platform(self) -> bool:
        return self.kind is ScopeKind.PLATFORM

    def __str__(self) -> str:
        return self.kind.value if self.id is None else f"{self.kind.value}:{self.id}"


@dataclass(frozen=True, slots=True)
class ScopeChain:
    """Resolved ancestors of a scope or entity.

    An empty chain is the platform itself (e.g. a report against a user, which
    has no container).
    """

    community_id: Optional[str] = None
    hub_id: Optional[str] = None
    space_id: Optional[str] = None

    def id_at(self, kind: ScopeKind) -> Optional[str]:
        if kind is ScopeKind.COMMUNITY:
            return self.community_id
        if kind is ScopeKind.HUB:
            return self.hub_id
        if kind is ScopeKind.SPACE:
            return self.space_id
        return None

    @property
    def leaf(self) -> Scope:
        if self.space_id:
            return Scope.space(self.space_id)
        if self.hub_id:
            return Scope.hub(self.hub_id)
        if self.community_id:
            return Scope.community(self.community_id)
        return Scope.platform()

    def within(self, scope: Scope) -> bool:
        """True when this chain sits at or beneath ``scope``."""
        if scope.is_platform:
            return True
        return self.id_at(scope.kind) == scope.id

    def lineage(self) -> list[Scope]:
        """Scopes from the leaf up to the community, nearest first. Platform excluded."""
        levels: list[Scope] = []
        if self.space_id:
            levels.append(Scope.space(self.space_id))
        if self.hub_id:
            levels.append(Scope.hub(self.hub_id))
        if self.community_id:
            levels.append(Scope.community(self.community_id))
        return levels
