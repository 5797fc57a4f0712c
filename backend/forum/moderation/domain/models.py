"""Records owned by the moderation authority subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Generic, Mapping, Optional, Sequence, TypeVar

import ulid

from forum.moderation.domain.exceptions import ValidationError
from forum.moderation.domain.scopes import Scope, ScopeChain, ScopeKind

Clock = Callable[[], datetime]
T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ulid.new())


class RoleType(str, Enum):
    GLOBAL_ADMIN = "global_admin"
    COMMUNITY_ADMIN = "community_admin"
    COMMUNITY_MOD = "community_mod"
    HUB_MOD = "hub_mod"
    SPACE_MOD = "space_mod"


@dataclass(frozen=True, slots=True)
class RolePrivileges:
    scope_kind: ScopeKind
    moderates: bool
    administers: bool


# The whole privilege matrix. A grant covers every scope at or beneath its own.
ROLE_PRIVILEGES: Mapping[RoleType, RolePrivileges] = {
    RoleType.GLOBAL_ADMIN: RolePrivileges(ScopeKind.PLATFORM, moderates=True, administers=True),
    RoleType.COMMUNITY_ADMIN: RolePrivileges(ScopeKind.COMMUNITY, moderates=True, administers=True),
    RoleType.COMMUNITY_MOD: RolePrivileges(ScopeKind.COMMUNITY, moderates=True, administers=False),
    RoleType.HUB_MOD: RolePrivileges(ScopeKind.HUB, moderates=True, administers=False),
    RoleType.SPACE_MOD: RolePrivileges(ScopeKind.SPACE, moderates=True, administers=False),
}


class BanType(str, Enum):
    WRITE_ONLY = "write_only"  # can read, cannot post or reply
    READ_WRITE = "read_write"  # cannot read or write


class ReportStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ActionType(str, Enum):
    ASSIGN_ROLE = "assign_role"
    REVOKE_ROLE = "revoke_role"
    BAN_USER = "ban_user"
    UNBAN_USER = "unban_user"
    RESOLVE_REPORT = "resolve_report"
    DISMISS_REPORT = "dismiss_report"
    DELETE_POST = "delete_post"
    DELETE_DISCUSSION = "delete_discussion"
    EDIT_POST = "edit_post"
    LOCK_DISCUSSION = "lock_discussion"


class TargetKind(str, Enum):
    POST = "post"
    DISCUSSION = "discussion"
    USER = "user"


@dataclass(slots=True)
class RoleGrant:
    id: str
    user_id: str
    role_type: RoleType
    scope: Scope
    assigned_by: str
    assigned_at: datetime
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None


@dataclass(slots=True)
class Ban:
    id: str
    user_id: str
    ban_type: BanType
    scope: Scope
    banned_at: datetime
    banned_by: str
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    unbanned_at: Optional[datetime] = None
    unbanned_by: Optional[str] = None

    def is_active(self, *, now: datetime | None = None) -> bool:
        if self.unbanned_at is not None:
            return False
        now = now or utcnow()
        return self.expires_at is None or self.expires_at > now


@dataclass(frozen=True, slots=True)
class ReportTarget:
    """Exactly one reported entity: a post, a discussion or a user."""

    kind: TargetKind
    id: str

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("report_target_id_required")

    @classmethod
    def from_refs(
        cls,
        *,
        post_id: str | None = None,
        discussion_id: str | None = None,
        user_id: str | None = None,
    ) -> "ReportTarget":
        provided = [
            (kind, value)
            for kind, value in (
                (TargetKind.POST, post_id),
                (TargetKind.DISCUSSION, discussion_id),
                (TargetKind.USER, user_id),
            )
            if value
        ]
        if len(provided) != 1:
            raise ValidationError("exactly_one_report_target_required")
        kind, value = provided[0]
        return cls(kind, value)


@dataclass(slots=True)
class Report:
    id: str
    reporter_id: str
    target: ReportTarget
    chain: ScopeChain
    status: ReportStatus
    created_at: datetime
    reason_id: Optional[str] = None
    details: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None

    @property
    def scope(self) -> Scope:
        return self.chain.leaf


@dataclass(slots=True)
class ReportComment:
    id: str
    report_id: str
    author_id: str
    content: str
    created_at: datetime


@dataclass(slots=True)
class ReportReason:
    id: str
    name: str
    scope: Scope
    description: Optional[str] = None
    display_order: int = 0


@dataclass(frozen=True, slots=True)
class TargetRefs:
    post_id: Optional[str] = None
    discussion_id: Optional[str] = None
    user_id: Optional[str] = None
    report_id: Optional[str] = None
    role_id: Optional[str] = None
    ban_id: Optional[str] = None


@dataclass(slots=True)
class ModerationLogEntry:
    id: str
    actor_id: str
    action: ActionType
    targets: TargetRefs
    chain: ScopeChain
    created_at: datetime
    details: Optional[str] = None
    reason: Optional[str] = None

    @property
    def scope(self) -> Scope:
        return self.chain.leaf


@dataclass(slots=True)
class PagedResult(Generic[T]):
    items: list[T]
    offset: int
    page_size: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(slots=True)
class ReportDetail:
    report: Report
    comments: Sequence[ReportComment] = field(default_factory=list)


# --- Read-only views of the content directory ------------------------------


@dataclass(frozen=True, slots=True)
class HubRef:
    id: str
    community_id: str


@dataclass(frozen=True, slots=True)
class SpaceRef:
    id: str
    hub_id: str


@dataclass(frozen=True, slots=True)
class DiscussionRef:
    id: str
    space_id: str
    is_locked: bool = False
    is_deleted: bool = False


@dataclass(frozen=True, slots=True)
class PostRef:
    id: str
    discussion_id: str
    is_deleted: bool = False
