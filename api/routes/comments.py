"""Comments and replies on videos."""

import logging
from typing import Optional

import sqlalchemy as sa
from databases import Database
from fastapi import APIRouter, Depends, Request

from api.audit import AuditAction, log_audit
from api.auth import get_current_user, get_optional_user
from api.common import get_database
from api.database import comments, likes, new_id, users, utcnow
from api.db_retry import db_execute_with_retry, fetch_all_with_retry, fetch_one_with_retry, fetch_val_with_retry
from api.enums import ResourceKind
from api.errors import NotFound, ValidationFailed
from api.ownership import locate_owned, locate_visible_video
from api.pagination import paginate
from api.queries import PageParams, like_count_subquery, owner_columns, owner_summary, page_params, page_response
from api.resources import locate
from api.schemas import CommentCreate, CommentResponse, CommentUpdate, MessageResponse, PageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/comments", tags=["comments"])

_replies = comments.alias("replies")


def _comment_select():
    reply_count = (
        sa.select(sa.func.count()).select_from(_replies).where(_replies.c.parent_id == comments.c.id).scalar_subquery()
    )
    return sa.select(
        comments,
        *owner_columns(),
        like_count_subquery(likes.c.comment_id, comments.c.id).label("like_count"),
        reply_count.label("reply_count"),
    ).select_from(comments.join(users, comments.c.owner_id == users.c.id))


def _comment_response(row) -> CommentResponse:
    return CommentResponse(
        id=row["id"],
        video_id=row["video_id"],
        parent_id=row["parent_id"],
        content=row["content"],
        owner=owner_summary(row),
        like_count=row["like_count"] or 0,
        reply_count=row["reply_count"] or 0,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


async def _load_comment(db: Database, comment_id: str) -> CommentResponse:
    row = await fetch_one_with_retry(db, _comment_select().where(comments.c.id == comment_id))
    if row is None:
        raise NotFound("Comment not found")
    return _comment_response(row)


async def _page_of_comments(db: Database, where, params: PageParams) -> PageResponse:
    total = await fetch_val_with_retry(db, sa.select(sa.func.count()).select_from(comments).where(where))
    page = paginate(params.page, params.limit, total, default_limit=params.default_limit)
    rows = await fetch_all_with_retry(
        db,
        _comment_select()
        .where(where)
        .order_by(comments.c.created_at.desc(), comments.c.id)
        .offset(page.skip)
        .limit(page.limit),
    )
    return page_response([_comment_response(row) for row in rows], page)


@router.get("/video/{video_id}", response_model=PageResponse[CommentResponse])
async def list_video_comments(
    video_id: str,
    params: PageParams = Depends(page_params),
    current_user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_database),
) -> PageResponse:
    """Top-level comments on a video, newest first, with like and reply counts."""
    video = await locate_visible_video(db, video_id, current_user)
    where = sa.and_(comments.c.video_id == video["id"], comments.c.parent_id.is_(None))
    return await _page_of_comments(db, where, params)


@router.post("/video/{video_id}", response_model=CommentResponse, status_code=201)
async def add_comment(
    request: Request,
    video_id: str,
    data: CommentCreate,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> CommentResponse:
    """Comment on a video, or reply to a comment on the same video with parent_id."""
    video = await locate_visible_video(db, video_id, current_user)

    parent_id = None
    if data.parent_id is not None:
        parent = await locate(db, ResourceKind.COMMENT, data.parent_id)
        if parent["video_id"] != video["id"]:
            raise ValidationFailed("parent_id must be a comment on the same video")
        parent_id = parent["id"]

    comment_id = new_id()
    now = utcnow()
    await db_execute_with_retry(
        db,
        comments.insert().values(
            id=comment_id,
            video_id=video["id"],
            owner_id=current_user["id"],
            parent_id=parent_id,
            content=data.content,
            created_at=now,
            updated_at=now,
        ),
    )
    log_audit(request, AuditAction.COMMENT_CREATE, user=current_user, resource_type="comment",
              resource_id=comment_id, details={"video_id": video["id"], "parent_id": parent_id})
    return await _load_comment(db, comment_id)


@router.get("/{comment_id}/replies", response_model=PageResponse[CommentResponse])
async def list_replies(
    comment_id: str,
    params: PageParams = Depends(page_params),
    current_user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_database),
) -> PageResponse:
    """Direct replies to a comment, newest first."""
    parent = await locate(db, ResourceKind.COMMENT, comment_id)
    await locate_visible_video(db, parent["video_id"], current_user)
    return await _page_of_comments(db, comments.c.parent_id == parent["id"], params)


@router.patch("/{comment_id}", response_model=CommentResponse)
async def update_comment(
    request: Request,
    comment_id: str,
    data: CommentUpdate,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> CommentResponse:
    """Owner-only edit of a comment's content."""
    comment = await locate_owned(db, ResourceKind.COMMENT, comment_id, current_user)
    await db_execute_with_retry(
        db,
        comments.update().where(comments.c.id == comment["id"]).values(content=data.content, updated_at=utcnow()),
    )
    log_audit(request, AuditAction.COMMENT_UPDATE, user=current_user, resource_type="comment",
              resource_id=comment["id"])
    return await _load_comment(db, comment["id"])


async def _collect_thread(db: Database, root_id: str) -> list:
    """Ids of a comment and every reply beneath it, parents first."""
    thread = [root_id]
    frontier = [root_id]
    while frontier:
        rows = await db.fetch_all(sa.select(comments.c.id).where(comments.c.parent_id.in_(frontier)))
        frontier = [row["id"] for row in rows]
        thread.extend(frontier)
    return thread


@router.delete("/{comment_id}", response_model=MessageResponse)
async def delete_comment(
    request: Request,
    comment_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> MessageResponse:
    """Owner-only delete. Replies and likes on the whole thread go with it."""
    comment = await locate_owned(db, ResourceKind.COMMENT, comment_id, current_user)
    async with db.transaction():
        thread = await _collect_thread(db, comment["id"])
        await db.execute(likes.delete().where(likes.c.comment_id.in_(thread)))
        # Deepest replies first so no row outlives its parent
        for cid in reversed(thread):
            await db.execute(comments.delete().where(comments.c.id == cid))

    log_audit(request, AuditAction.COMMENT_DELETE, user=current_user, resource_type="comment",
              resource_id=comment["id"], details={"replies_deleted": len(thread) - 1})
    return MessageResponse(message="Comment deleted")
