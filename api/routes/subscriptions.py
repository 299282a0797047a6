"""Channel subscriptions."""

import sqlalchemy as sa
from databases import Database
from fastapi import APIRouter, Depends

from api.auth import get_current_user
from api.common import get_database
from api.database import subscriptions, users
from api.db_retry import fetch_all_with_retry, fetch_val_with_retry
from api.enums import ResourceKind, ToggleKind
from api.pagination import paginate
from api.queries import PageParams, owner_columns, owner_summary, page_params, page_response
from api.resources import locate
from api.schemas import CountResponse, PageResponse, SubscribedChannel, ToggleResponse
from api.toggles import count_edges, toggle

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post("/c/{channel_id}", response_model=ToggleResponse)
async def toggle_subscription(
    channel_id: str,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> ToggleResponse:
    """Subscribe to a channel, or unsubscribe if already subscribed."""
    result = await toggle(db, ToggleKind.SUBSCRIPTION, current_user, channel_id)
    return ToggleResponse(
        target_id=result.target_id,
        kind=result.kind.value,
        state=result.state.value,
        active=result.active,
        total=result.total,
    )


@router.get("/c/{channel_id}", response_model=CountResponse)
async def subscriber_count(channel_id: str, db: Database = Depends(get_database)) -> CountResponse:
    channel = await locate(db, ResourceKind.USER, channel_id)
    return CountResponse(target_id=channel["id"], total=await count_edges(db, ToggleKind.SUBSCRIPTION, channel["id"]))


@router.get("/me", response_model=PageResponse[SubscribedChannel])
async def my_subscriptions(
    params: PageParams = Depends(page_params),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> PageResponse:
    """Channels the signed-in user subscribes to, most recent first."""
    where = subscriptions.c.subscriber_id == current_user["id"]
    total = await fetch_val_with_retry(db, sa.select(sa.func.count()).select_from(subscriptions).where(where))
    page = paginate(params.page, params.limit, total, default_limit=params.default_limit)

    rows = await fetch_all_with_retry(
        db,
        sa.select(subscriptions.c.channel_id, subscriptions.c.created_at, *owner_columns("channel"))
        .select_from(subscriptions.join(users, subscriptions.c.channel_id == users.c.id))
        .where(where)
        .order_by(subscriptions.c.created_at.desc(), subscriptions.c.id)
        .offset(page.skip)
        .limit(page.limit),
    )
    items = [
        SubscribedChannel(
            channel=owner_summary(row, id_key="channel_id", prefix="channel"),
            subscribed_at=row["created_at"],
        )
        for row in rows
    ]
    return page_response(items, page)
