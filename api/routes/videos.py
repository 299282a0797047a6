"""Video upload, listing, viewing and owner-only management."""

import logging
from typing import Optional

import sqlalchemy as sa
from databases import Database
from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile

from api.audit import AuditAction, log_audit
from api.auth import get_current_user, get_optional_user
from api.common import get_database, get_settings
from api.database import comments, likes, new_id, playlist_videos, utcnow, videos, watch_history
from api.db_retry import db_execute_with_retry, fetch_all_with_retry, fetch_one_with_retry, fetch_val_with_retry
from api.enums import ResourceKind, SortBy, SortOrder, ToggleKind
from api.errors import NotFound, ValidationFailed
from api.media import MediaClient, MediaType, get_media_client, validate_upload
from api.metrics import VIDEO_UPLOADS_TOTAL, VIDEO_VIEWS_TOTAL
from api.ownership import is_owner, locate_owned
from api.pagination import paginate
from api.queries import PageParams, page_params, page_response, published, video_response, video_select
from api.resources import locate, parse_id
from api.schemas import (
    MessageResponse,
    PageResponse,
    VideoCreate,
    VideoDetailResponse,
    VideoResponse,
    VideoUpdate,
    validate_form,
)
from api.toggles import count_edges, is_active
from config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/videos", tags=["videos"])

_SORT_COLUMNS = {
    SortBy.CREATED_AT: videos.c.created_at,
    SortBy.VIEWS: videos.c.views,
    SortBy.DURATION: videos.c.duration,
    SortBy.TITLE: videos.c.title,
}


async def _load_video(db: Database, video_id: str) -> VideoResponse:
    row = await fetch_one_with_retry(db, video_select().where(videos.c.id == video_id))
    if row is None:
        raise NotFound("Video not found")
    return video_response(row)


@router.get("", response_model=PageResponse[VideoResponse])
async def list_videos(
    params: PageParams = Depends(page_params),
    query: Optional[str] = Query(default=None, max_length=200, description="Search in title and description"),
    sort_by: SortBy = Query(default=SortBy.CREATED_AT),
    sort_type: SortOrder = Query(default=SortOrder.DESC),
    user_id: Optional[str] = Query(default=None, description="Only videos owned by this user"),
    current_user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_database),
) -> PageResponse:
    """
    List published videos.

    When user_id names the signed-in user, their unpublished videos are included.
    """
    conditions = []
    if user_id is not None:
        owner_id = parse_id(user_id, ResourceKind.USER)
        conditions.append(videos.c.owner_id == owner_id)
        if not (current_user and is_owner({"owner_id": owner_id}, current_user["id"])):
            conditions.append(published())
    else:
        conditions.append(published())

    # Text search; LIKE wildcards in the query match literally
    if query and query.strip():
        term = query.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        search_term = f"%{term}%"
        conditions.append(
            sa.or_(
                videos.c.title.ilike(search_term, escape="\\"),
                videos.c.description.ilike(search_term, escape="\\"),
            )
        )

    where = sa.and_(*conditions)
    total = await fetch_val_with_retry(db, sa.select(sa.func.count()).select_from(videos).where(where))
    page = paginate(params.page, params.limit, total, default_limit=params.default_limit)

    column = _SORT_COLUMNS[sort_by]
    order = column.asc() if sort_type == SortOrder.ASC else column.desc()
    rows = await fetch_all_with_retry(
        db,
        video_select().where(where).order_by(order, videos.c.id).offset(page.skip).limit(page.limit),
    )
    return page_response([video_response(row) for row in rows], page)


@router.post("", response_model=VideoResponse, status_code=201)
async def upload_video(
    request: Request,
    title: str = Form(...),
    description: str = Form(""),
    video_file: Optional[UploadFile] = File(None),
    thumbnail: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
    media: MediaClient = Depends(get_media_client),
) -> VideoResponse:
    """Upload a video file and thumbnail to the media host and create the video."""
    data = validate_form(VideoCreate, title=title, description=description)
    validate_upload(video_file, MediaType.VIDEO, settings, "video_file")
    validate_upload(thumbnail, MediaType.IMAGE, settings, "thumbnail")

    try:
        video_asset = await media.upload(video_file, MediaType.VIDEO)
    except Exception:
        VIDEO_UPLOADS_TOTAL.labels("failed").inc()
        raise
    try:
        thumbnail_asset = await media.upload(thumbnail, MediaType.IMAGE)
    except Exception:
        VIDEO_UPLOADS_TOTAL.labels("failed").inc()
        await media.destroy(video_asset.public_id, MediaType.VIDEO)
        raise

    video_id = new_id()
    now = utcnow()
    try:
        await db_execute_with_retry(
            db,
            videos.insert().values(
                id=video_id,
                owner_id=current_user["id"],
                title=data.title,
                description=data.description,
                video_url=video_asset.url,
                video_public_id=video_asset.public_id,
                thumbnail_url=thumbnail_asset.url,
                thumbnail_public_id=thumbnail_asset.public_id,
                duration=video_asset.duration,
                views=0,
                is_published=True,
                created_at=now,
                updated_at=now,
            ),
        )
    except Exception:
        VIDEO_UPLOADS_TOTAL.labels("failed").inc()
        await media.destroy(video_asset.public_id, MediaType.VIDEO)
        await media.destroy(thumbnail_asset.public_id, MediaType.IMAGE)
        raise

    VIDEO_UPLOADS_TOTAL.labels("success").inc()
    log_audit(request, AuditAction.VIDEO_UPLOAD, user=current_user, resource_type="video", resource_id=video_id,
              resource_name=data.title, details={"duration": video_asset.duration})
    return await _load_video(db, video_id)


@router.get("/{video_id}", response_model=VideoDetailResponse)
async def get_video(
    video_id: str,
    current_user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_database),
) -> VideoDetailResponse:
    """
    Fetch a video and count the view.

    Unpublished videos are only visible to their owner. Signed-in viewers get
    the video added to their watch history.
    """
    video = await locate(db, ResourceKind.VIDEO, video_id)
    viewer_is_owner = current_user is not None and is_owner(video, current_user["id"])
    if not video["is_published"] and not viewer_is_owner:
        raise NotFound("Video not found")

    await db_execute_with_retry(
        db, videos.update().where(videos.c.id == video["id"]).values(views=videos.c.views + 1)
    )
    VIDEO_VIEWS_TOTAL.inc()

    is_liked = False
    if current_user is not None:
        # Keep one history row per video, moved to the top on each view
        async with db.transaction():
            await db.execute(
                watch_history.delete().where(
                    watch_history.c.user_id == current_user["id"],
                    watch_history.c.video_id == video["id"],
                )
            )
            await db.execute(
                watch_history.insert().values(user_id=current_user["id"], video_id=video["id"], watched_at=utcnow())
            )
        is_liked = await is_active(db, ToggleKind.VIDEO_LIKE, current_user["id"], video["id"])

    base = await _load_video(db, video["id"])
    like_count = await count_edges(db, ToggleKind.VIDEO_LIKE, video["id"])
    return VideoDetailResponse(**base.model_dump(), like_count=like_count, is_liked=is_liked)


@router.patch("/{video_id}", response_model=VideoResponse)
async def update_video(
    request: Request,
    video_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    thumbnail: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
    media: MediaClient = Depends(get_media_client),
) -> VideoResponse:
    """Owner-only update of title, description and thumbnail."""
    video = await locate_owned(db, ResourceKind.VIDEO, video_id, current_user)

    data = validate_form(VideoUpdate, title=title, description=description)
    has_thumbnail = thumbnail is not None and bool(thumbnail.filename)
    if data.title is None and data.description is None and not has_thumbnail:
        raise ValidationFailed("Provide a title, description or thumbnail to update")

    values = {"updated_at": utcnow()}
    if data.title is not None:
        values["title"] = data.title
    if data.description is not None:
        values["description"] = data.description

    new_thumbnail = None
    if has_thumbnail:
        validate_upload(thumbnail, MediaType.IMAGE, settings, "thumbnail")
        new_thumbnail = await media.upload(thumbnail, MediaType.IMAGE)
        values["thumbnail_url"] = new_thumbnail.url
        values["thumbnail_public_id"] = new_thumbnail.public_id

    await db_execute_with_retry(db, videos.update().where(videos.c.id == video["id"]).values(**values))

    if new_thumbnail and video["thumbnail_public_id"]:
        await media.destroy(video["thumbnail_public_id"], MediaType.IMAGE)

    log_audit(request, AuditAction.VIDEO_UPDATE, user=current_user, resource_type="video", resource_id=video["id"],
              resource_name=values.get("title", video["title"]),
              details={"fields": sorted(k for k in values if k not in ("updated_at", "thumbnail_public_id"))})
    return await _load_video(db, video["id"])


@router.delete("/{video_id}", response_model=MessageResponse)
async def delete_video(
    request: Request,
    video_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
    media: MediaClient = Depends(get_media_client),
) -> MessageResponse:
    """Owner-only delete. Removes comments, likes, playlist entries and history, then the media files."""
    video = await locate_owned(db, ResourceKind.VIDEO, video_id, current_user)
    vid = video["id"]

    comment_ids = sa.select(comments.c.id).where(comments.c.video_id == vid)
    async with db.transaction():
        await db.execute(likes.delete().where(likes.c.comment_id.in_(comment_ids)))
        await db.execute(likes.delete().where(likes.c.video_id == vid))
        # Replies before their parents
        await db.execute(comments.delete().where(comments.c.video_id == vid, comments.c.parent_id.is_not(None)))
        await db.execute(comments.delete().where(comments.c.video_id == vid))
        await db.execute(playlist_videos.delete().where(playlist_videos.c.video_id == vid))
        await db.execute(watch_history.delete().where(watch_history.c.video_id == vid))
        await db.execute(videos.delete().where(videos.c.id == vid))

    await media.destroy(video["video_public_id"], MediaType.VIDEO)
    await media.destroy(video["thumbnail_public_id"], MediaType.IMAGE)

    log_audit(request, AuditAction.VIDEO_DELETE, user=current_user, resource_type="video", resource_id=vid,
              resource_name=video["title"])
    return MessageResponse(message="Video deleted")


@router.patch("/{video_id}/publish", response_model=VideoResponse)
async def toggle_publish(
    request: Request,
    video_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> VideoResponse:
    """Owner-only flip of is_published."""
    video = await locate_owned(db, ResourceKind.VIDEO, video_id, current_user)
    new_state = not bool(video["is_published"])
    await db_execute_with_retry(
        db,
        videos.update().where(videos.c.id == video["id"]).values(is_published=new_state, updated_at=utcnow()),
    )
    log_audit(request, AuditAction.VIDEO_PUBLISH_TOGGLE, user=current_user, resource_type="video",
              resource_id=video["id"], resource_name=video["title"], details={"is_published": new_state})
    return await _load_video(db, video["id"])
