"""Offset pagination helpers for moderation listings."""

from __future__ import annotations

from typing import Sequence, TypeVar

from forum.moderation.domain.exceptions import ValidationError
from forum.moderation.domain.models import PagedResult
from forum.settings import settings

T = TypeVar("T")


def normalize_page(offset: int = 0, page_size: int | None = None) -> tuple[int, int]:
    """Validate an offset/page size pair, applying the configured default size."""

    size = settings.moderation_default_page_size if page_size is None else page_size
    if offset < 0:
        raise ValidationError("offset_must_be_non_negative")
    if size < 1 or size > settings.moderation_max_page_size:
        raise ValidationError("page_size_out_of_range")
    return offset, size


def build_page(items: Sequence[T], *, offset: int, page_size: int, total: int) -> PagedResult[T]:
    return PagedResult(items=list(items), offset=offset, page_size=page_size, total=total)
