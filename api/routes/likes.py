"""Like toggles for videos and comments."""

from typing import Optional

import sqlalchemy as sa
from databases import Database
from fastapi import APIRouter, Depends

from api.auth import get_current_user, get_optional_user
from api.common import get_database
from api.database import likes, videos
from api.db_retry import fetch_all_with_retry, fetch_val_with_retry
from api.enums import ToggleKind
from api.ownership import locate_visible_video
from api.pagination import paginate
from api.queries import PageParams, page_params, page_response, published, video_response, video_select
from api.resources import locate
from api.schemas import CountResponse, PageResponse, ToggleResponse, VideoResponse
from api.toggles import EDGES, ToggleResult, count_edges, toggle

router = APIRouter(prefix="/likes", tags=["likes"])


def _toggle_response(result: ToggleResult) -> ToggleResponse:
    return ToggleResponse(
        target_id=result.target_id,
        kind=result.kind.value,
        state=result.state.value,
        active=result.active,
        total=result.total,
    )


async def _locate_visible_target(db: Database, kind: ToggleKind, raw_id: str, current_user: Optional[dict]) -> dict:
    """The like target, checked against the visibility of the video it belongs to."""
    target = await locate(db, EDGES[kind].target_kind, raw_id)
    video_id = target["id"] if kind == ToggleKind.VIDEO_LIKE else target["video_id"]
    await locate_visible_video(db, video_id, current_user)
    return target


async def _count(db: Database, kind: ToggleKind, raw_id: str, current_user: Optional[dict]) -> CountResponse:
    target = await _locate_visible_target(db, kind, raw_id, current_user)
    return CountResponse(target_id=target["id"], total=await count_edges(db, kind, target["id"]))


@router.post("/video/{video_id}", response_model=ToggleResponse)
async def toggle_video_like(
    video_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> ToggleResponse:
    await _locate_visible_target(db, ToggleKind.VIDEO_LIKE, video_id, current_user)
    return _toggle_response(await toggle(db, ToggleKind.VIDEO_LIKE, current_user, video_id))


@router.post("/comment/{comment_id}", response_model=ToggleResponse)
async def toggle_comment_like(
    comment_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> ToggleResponse:
    await _locate_visible_target(db, ToggleKind.COMMENT_LIKE, comment_id, current_user)
    return _toggle_response(await toggle(db, ToggleKind.COMMENT_LIKE, current_user, comment_id))


@router.get("/video/{video_id}", response_model=CountResponse)
async def video_like_count(
    video_id: str,
    current_user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_database),
) -> CountResponse:
    return await _count(db, ToggleKind.VIDEO_LIKE, video_id, current_user)


@router.get("/comment/{comment_id}", response_model=CountResponse)
async def comment_like_count(
    comment_id: str,
    current_user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_database),
) -> CountResponse:
    return await _count(db, ToggleKind.COMMENT_LIKE, comment_id, current_user)


@router.get("/videos", response_model=PageResponse[VideoResponse])
async def liked_videos(
    params: PageParams = Depends(page_params),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> PageResponse:
    """Published videos the current user has liked, most recently liked first."""
    join_on = sa.and_(likes.c.video_id == videos.c.id, likes.c.liked_by == current_user["id"])
    total = await fetch_val_with_retry(
        db,
        sa.select(sa.func.count()).select_from(videos.join(likes, join_on)).where(published()),
    )
    page = paginate(params.page, params.limit, total, default_limit=params.default_limit)
    rows = await fetch_all_with_retry(
        db,
        video_select(joins=[(likes, join_on)])
        .where(published())
        .order_by(likes.c.created_at.desc(), likes.c.id)
        .offset(page.skip)
        .limit(page.limit),
    )
    return page_response([video_response(row) for row in rows], page)
