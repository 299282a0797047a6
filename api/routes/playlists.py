"""User playlists: ordered lists of videos with owner-only editing."""

import logging
from typing import Optional

import sqlalchemy as sa
from databases import Database
from fastapi import APIRouter, Depends, Request

from api.audit import AuditAction, log_audit
from api.auth import get_current_user, get_optional_user
from api.common import get_database
from api.database import new_id, playlist_videos, playlists, utcnow, videos
from api.db_retry import db_execute_with_retry, fetch_all_with_retry, fetch_one_with_retry, fetch_val_with_retry
from api.enums import ResourceKind
from api.errors import Conflict, NotFound, is_unique_violation
from api.ownership import locate_owned, locate_visible_video
from api.pagination import paginate
from api.queries import PageParams, page_params, page_response, published
from api.resources import locate
from api.schemas import (
    MessageResponse,
    OwnerSummary,
    PageResponse,
    PlaylistCreate,
    PlaylistDetailResponse,
    PlaylistResponse,
    PlaylistUpdate,
    PlaylistVideoChange,
    PlaylistVideoInfo,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/playlists", tags=["playlists"])

DUPLICATE_NAME = "You already have a playlist with this name"


def _playlist_stats():
    """Per-playlist video count and total duration as correlated subqueries."""
    entries = playlist_videos.join(videos, playlist_videos.c.video_id == videos.c.id)
    video_count = (
        sa.select(sa.func.count())
        .select_from(entries)
        .where(playlist_videos.c.playlist_id == playlists.c.id)
        .scalar_subquery()
    )
    total_duration = (
        sa.select(sa.func.coalesce(sa.func.sum(videos.c.duration), 0))
        .select_from(entries)
        .where(playlist_videos.c.playlist_id == playlists.c.id)
        .scalar_subquery()
    )
    return video_count.label("video_count"), total_duration.label("total_duration")


def _playlist_response(row) -> PlaylistResponse:
    return PlaylistResponse(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        owner_id=row["owner_id"],
        video_count=row["video_count"] or 0,
        total_duration=row["total_duration"] or 0,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


async def _load_playlist(db: Database, playlist_id: str) -> PlaylistResponse:
    row = await fetch_one_with_retry(db, sa.select(playlists, *_playlist_stats()).where(playlists.c.id == playlist_id))
    if row is None:
        raise NotFound("Playlist not found")
    return _playlist_response(row)


async def _video_count(db: Database, playlist_id: str) -> int:
    count = await fetch_val_with_retry(
        db, sa.select(sa.func.count()).select_from(playlist_videos).where(playlist_videos.c.playlist_id == playlist_id)
    )
    return count or 0


async def _add_at_top(db: Database, playlist_id: str, video_id: str) -> bool:
    """Insert a video as the first entry. Returns False if it was already in the playlist."""
    existing = await fetch_one_with_retry(
        db,
        sa.select(playlist_videos.c.id).where(
            playlist_videos.c.playlist_id == playlist_id,
            playlist_videos.c.video_id == video_id,
        ),
    )
    if existing:
        return False

    lowest = await fetch_val_with_retry(
        db, sa.select(sa.func.min(playlist_videos.c.position)).where(playlist_videos.c.playlist_id == playlist_id)
    )
    position = 0 if lowest is None else lowest - 1
    try:
        await db_execute_with_retry(
            db,
            playlist_videos.insert().values(
                playlist_id=playlist_id, video_id=video_id, position=position, added_at=utcnow()
            ),
        )
    except Exception as e:
        if is_unique_violation(e):
            return False
        raise
    return True


@router.post("", response_model=PlaylistResponse, status_code=201)
async def create_playlist(
    request: Request,
    data: PlaylistCreate,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> PlaylistResponse:
    """Create a playlist, optionally seeded with one video."""
    video = await locate_visible_video(db, data.video_id, current_user) if data.video_id is not None else None

    duplicate = await fetch_one_with_retry(
        db,
        sa.select(playlists.c.id).where(playlists.c.owner_id == current_user["id"], playlists.c.name == data.name),
    )
    if duplicate:
        raise Conflict(DUPLICATE_NAME)

    playlist_id = new_id()
    now = utcnow()
    try:
        await db_execute_with_retry(
            db,
            playlists.insert().values(
                id=playlist_id,
                owner_id=current_user["id"],
                name=data.name,
                description=data.description,
                created_at=now,
                updated_at=now,
            ),
        )
    except Exception as e:
        if is_unique_violation(e):
            raise Conflict(DUPLICATE_NAME)
        raise

    if video is not None:
        await _add_at_top(db, playlist_id, video["id"])

    log_audit(request, AuditAction.PLAYLIST_CREATE, user=current_user, resource_type="playlist",
              resource_id=playlist_id, resource_name=data.name)
    return await _load_playlist(db, playlist_id)


@router.get("/user/{user_id}", response_model=PageResponse[PlaylistResponse])
async def list_user_playlists(
    user_id: str,
    params: PageParams = Depends(page_params),
    db: Database = Depends(get_database),
) -> PageResponse:
    """A user's playlists, most recently updated first."""
    owner = await locate(db, ResourceKind.USER, user_id)
    where = playlists.c.owner_id == owner["id"]
    total = await fetch_val_with_retry(db, sa.select(sa.func.count()).select_from(playlists).where(where))
    page = paginate(params.page, params.limit, total, default_limit=params.default_limit)
    rows = await fetch_all_with_retry(
        db,
        sa.select(playlists, *_playlist_stats())
        .where(where)
        .order_by(playlists.c.updated_at.desc(), playlists.c.id)
        .offset(page.skip)
        .limit(page.limit),
    )
    return page_response([_playlist_response(row) for row in rows], page)


@router.get("/{playlist_id}", response_model=PlaylistDetailResponse)
async def get_playlist(
    playlist_id: str,
    current_user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_database),
) -> PlaylistDetailResponse:
    """A playlist with its owner and videos in playlist order."""
    playlist = await locate(db, ResourceKind.PLAYLIST, playlist_id)
    summary = await _load_playlist(db, playlist["id"])
    owner = await locate(db, ResourceKind.USER, playlist["owner_id"])

    visible = published()
    if current_user is not None:
        visible = sa.or_(visible, videos.c.owner_id == current_user["id"])

    rows = await fetch_all_with_retry(
        db,
        sa.select(
            videos.c.id,
            videos.c.title,
            videos.c.thumbnail_url,
            videos.c.duration,
            videos.c.views,
            videos.c.owner_id,
            playlist_videos.c.position,
            playlist_videos.c.added_at,
        )
        .select_from(playlist_videos.join(videos, playlist_videos.c.video_id == videos.c.id))
        .where(playlist_videos.c.playlist_id == playlist["id"], visible)
        .order_by(playlist_videos.c.position, playlist_videos.c.id),
    )

    return PlaylistDetailResponse(
        **summary.model_dump(),
        owner=OwnerSummary(
            id=owner["id"], username=owner["username"], full_name=owner["full_name"], avatar_url=owner["avatar_url"]
        ),
        videos=[
            PlaylistVideoInfo(
                id=row["id"],
                title=row["title"],
                thumbnail_url=row["thumbnail_url"],
                duration=row["duration"] or 0,
                views=row["views"] or 0,
                owner_id=row["owner_id"],
                position=row["position"],
                added_at=row["added_at"],
            )
            for row in rows
        ],
    )


@router.patch("/{playlist_id}", response_model=PlaylistResponse)
async def update_playlist(
    request: Request,
    playlist_id: str,
    data: PlaylistUpdate,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> PlaylistResponse:
    """Owner-only rename or description change."""
    playlist = await locate_owned(db, ResourceKind.PLAYLIST, playlist_id, current_user)

    values = {"updated_at": utcnow()}
    if data.name is not None:
        values["name"] = data.name
    if data.description is not None:
        values["description"] = data.description

    try:
        await db_execute_with_retry(db, playlists.update().where(playlists.c.id == playlist["id"]).values(**values))
    except Exception as e:
        if is_unique_violation(e):
            raise Conflict(DUPLICATE_NAME)
        raise

    log_audit(request, AuditAction.PLAYLIST_UPDATE, user=current_user, resource_type="playlist",
              resource_id=playlist["id"], resource_name=values.get("name", playlist["name"]))
    return await _load_playlist(db, playlist["id"])


@router.delete("/{playlist_id}", response_model=MessageResponse)
async def delete_playlist(
    request: Request,
    playlist_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> MessageResponse:
    """Owner-only delete. The videos themselves are untouched."""
    playlist = await locate_owned(db, ResourceKind.PLAYLIST, playlist_id, current_user)
    async with db.transaction():
        await db.execute(playlist_videos.delete().where(playlist_videos.c.playlist_id == playlist["id"]))
        await db.execute(playlists.delete().where(playlists.c.id == playlist["id"]))

    log_audit(request, AuditAction.PLAYLIST_DELETE, user=current_user, resource_type="playlist",
              resource_id=playlist["id"], resource_name=playlist["name"])
    return MessageResponse(message="Playlist deleted")


@router.put("/{playlist_id}/videos/{video_id}", response_model=PlaylistVideoChange)
async def add_video_to_playlist(
    request: Request,
    playlist_id: str,
    video_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> PlaylistVideoChange:
    """Owner-only: put a video at the top of the playlist. Adding it twice changes nothing."""
    playlist = await locate_owned(db, ResourceKind.PLAYLIST, playlist_id, current_user)
    video = await locate_visible_video(db, video_id, current_user)

    added = await _add_at_top(db, playlist["id"], video["id"])
    if added:
        await db_execute_with_retry(
            db, playlists.update().where(playlists.c.id == playlist["id"]).values(updated_at=utcnow())
        )
        log_audit(request, AuditAction.PLAYLIST_VIDEO_ADD, user=current_user, resource_type="playlist",
                  resource_id=playlist["id"], details={"video_id": video["id"]})

    return PlaylistVideoChange(
        playlist_id=playlist["id"],
        video_id=video["id"],
        changed=added,
        video_count=await _video_count(db, playlist["id"]),
    )


@router.delete("/{playlist_id}/videos/{video_id}", response_model=PlaylistVideoChange)
async def remove_video_from_playlist(
    request: Request,
    playlist_id: str,
    video_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> PlaylistVideoChange:
    """Owner-only: take a video out of the playlist."""
    playlist = await locate_owned(db, ResourceKind.PLAYLIST, playlist_id, current_user)
    video = await locate(db, ResourceKind.VIDEO, video_id)

    entry = await fetch_one_with_retry(
        db,
        sa.select(playlist_videos.c.id).where(
            playlist_videos.c.playlist_id == playlist["id"],
            playlist_videos.c.video_id == video["id"],
        ),
    )
    if entry is None:
        raise NotFound("Video is not in this playlist")

    await db_execute_with_retry(db, playlist_videos.delete().where(playlist_videos.c.id == entry["id"]))
    await db_execute_with_retry(
        db, playlists.update().where(playlists.c.id == playlist["id"]).values(updated_at=utcnow())
    )
    log_audit(request, AuditAction.PLAYLIST_VIDEO_REMOVE, user=current_user, resource_type="playlist",
              resource_id=playlist["id"], details={"video_id": video["id"]})

    return PlaylistVideoChange(
        playlist_id=playlist["id"],
        video_id=video["id"],
        changed=True,
        video_count=await _video_count(db, playlist["id"]),
    )
