"""
Query builders and row serializers shared by the routers.
"""

from typing import Any, Mapping, Optional

import sqlalchemy as sa
from fastapi import Depends, Query

from api.common import get_settings
from api.database import likes, users, videos
from api.pagination import PageRequest, clamp_limit
from api.schemas import OwnerSummary, PageResponse, UserResponse, VideoResponse
from config import Settings


class PageParams:
    """Raw page/limit query values, with limit already capped at the configured maximum."""

    def __init__(self, page: Any, limit: Optional[int], default_limit: int):
        self.page = page
        self.limit = limit
        self.default_limit = default_limit


def page_params(
    page: Optional[str] = Query(default=None, description="1-based page number"),
    limit: Optional[str] = Query(default=None, description="Items per page"),
    settings: Settings = Depends(get_settings),
) -> PageParams:
    """FastAPI dependency collecting pagination query parameters as untyped strings."""
    return PageParams(page, clamp_limit(limit, settings.max_page_size), settings.default_page_size)


def page_response(items: list, request: PageRequest) -> PageResponse:
    return PageResponse(
        items=items,
        page=request.page,
        limit=request.limit,
        total=request.total,
        total_pages=request.total_pages,
        has_next=request.has_next,
        has_prev=request.has_prev,
    )


def owner_columns(prefix: str = "owner"):
    return [
        users.c.username.label(f"{prefix}_username"),
        users.c.full_name.label(f"{prefix}_full_name"),
        users.c.avatar_url.label(f"{prefix}_avatar_url"),
    ]


def owner_summary(row: Mapping[str, Any], id_key: str = "owner_id", prefix: str = "owner") -> OwnerSummary:
    return OwnerSummary(
        id=row[id_key],
        username=row[f"{prefix}_username"],
        full_name=row[f"{prefix}_full_name"],
        avatar_url=row[f"{prefix}_avatar_url"],
    )


def user_response(user: Mapping[str, Any]) -> UserResponse:
    return UserResponse(
        id=user["id"],
        username=user["username"],
        email=user["email"],
        full_name=user["full_name"],
        avatar_url=user["avatar_url"],
        cover_image_url=user["cover_image_url"],
        created_at=user["created_at"],
        updated_at=user["updated_at"],
    )


def published():
    return videos.c.is_published == sa.true()


def video_select(*extra_columns, joins=()):
    """
    SELECT videos joined with their owner's public fields.

    joins is a sequence of (table, onclause) pairs appended to the FROM clause.
    """
    from_clause = videos.join(users, videos.c.owner_id == users.c.id)
    for table, onclause in joins:
        from_clause = from_clause.join(table, onclause)
    return sa.select(videos, *owner_columns(), *extra_columns).select_from(from_clause)


def video_response(row: Mapping[str, Any]) -> VideoResponse:
    return VideoResponse(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        video_url=row["video_url"],
        thumbnail_url=row["thumbnail_url"],
        duration=row["duration"] or 0,
        views=row["views"] or 0,
        is_published=bool(row["is_published"]),
        owner=owner_summary(row),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def like_count_subquery(like_column, target_column):
    """Correlated COUNT of likes where like_column (likes.c.video_id or comment_id) matches target_column."""
    return sa.select(sa.func.count()).select_from(likes).where(like_column == target_column).scalar_subquery()
