"""
Like and subscription toggles.

A toggle edge is a row keyed by (principal, target). Toggling reads the edge:
no row means insert it and report ACTIVE, a row means delete that row by its
own id and report INACTIVE. The unique constraints on the edge tables make
concurrent duplicate toggles safe: the losing insert hits a unique violation,
which means the edge already exists and the state is ACTIVE.

Counts are always recomputed from the edge tables.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping

import sqlalchemy as sa
from databases import Database

from api.database import likes, new_id, subscriptions, utcnow
from api.db_retry import db_execute_with_retry, fetch_one_with_retry, fetch_val_with_retry
from api.enums import ResourceKind, ToggleKind, ToggleState
from api.errors import ValidationFailed, is_unique_violation
from api.metrics import TOGGLES_TOTAL
from api.resources import locate, parse_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EdgeSpec:
    """Where a toggle kind keeps its edges."""

    table: sa.Table
    principal_column: str
    target_column: str
    target_kind: ResourceKind


EDGES: Dict[ToggleKind, EdgeSpec] = {
    ToggleKind.VIDEO_LIKE: EdgeSpec(likes, "liked_by", "video_id", ResourceKind.VIDEO),
    ToggleKind.COMMENT_LIKE: EdgeSpec(likes, "liked_by", "comment_id", ResourceKind.COMMENT),
    ToggleKind.SUBSCRIPTION: EdgeSpec(subscriptions, "subscriber_id", "channel_id", ResourceKind.USER),
}


@dataclass(frozen=True)
class ToggleResult:
    kind: ToggleKind
    target_id: str
    state: ToggleState
    total: int

    @property
    def active(self) -> bool:
        return self.state == ToggleState.ACTIVE


def _edge_filter(spec: EdgeSpec, principal_id: str, target_id: str):
    return sa.and_(
        spec.table.c[spec.principal_column] == principal_id,
        spec.table.c[spec.target_column] == target_id,
    )


async def find_edge(db: Database, kind: ToggleKind, principal_id: str, target_id: str):
    """Return the edge row for (principal, target) or None."""
    spec = EDGES[kind]
    query = sa.select(spec.table.c.id).where(_edge_filter(spec, principal_id, target_id))
    return await fetch_one_with_retry(db, query)


async def count_edges(db: Database, kind: ToggleKind, target_id: str) -> int:
    """Number of active edges pointing at target_id."""
    spec = EDGES[kind]
    query = sa.select(sa.func.count()).select_from(spec.table).where(spec.table.c[spec.target_column] == target_id)
    return int(await fetch_val_with_retry(db, query) or 0)


async def is_active(db: Database, kind: ToggleKind, principal_id: str, target_id: str) -> bool:
    return await find_edge(db, kind, principal_id, target_id) is not None


async def toggle(
    db: Database,
    kind: ToggleKind,
    principal: Mapping[str, Any],
    raw_target_id: Any,
) -> ToggleResult:
    """
    Flip the edge between principal and a target.

    Raises:
        MalformedId: raw_target_id is not a UUID
        NotFound: the target does not exist (checked before any edge query)
        ValidationFailed: subscribing to yourself
    """
    spec = EDGES[kind]
    target_id = parse_id(raw_target_id, spec.target_kind)
    await locate(db, spec.target_kind, target_id)

    principal_id = principal["id"]
    if kind == ToggleKind.SUBSCRIPTION and parse_id(principal_id) == target_id:
        raise ValidationFailed("You cannot subscribe to your own channel")

    edge = await find_edge(db, kind, principal_id, target_id)

    if edge is None:
        values = {
            "id": new_id(),
            spec.principal_column: principal_id,
            spec.target_column: target_id,
            "created_at": utcnow(),
        }
        try:
            await db_execute_with_retry(db, spec.table.insert().values(**values))
        except Exception as e:
            if not is_unique_violation(e):
                raise
            # A concurrent identical toggle inserted first
            logger.info(f"Concurrent {kind.value} toggle for {principal_id} -> {target_id}; edge already active")
        state = ToggleState.ACTIVE
    else:
        # Delete by edge id; a concurrent delete makes this a no-op
        await db_execute_with_retry(db, spec.table.delete().where(spec.table.c.id == edge["id"]))
        state = ToggleState.INACTIVE

    TOGGLES_TOTAL.labels(kind.value, state.value).inc()
    total = await count_edges(db, kind, target_id)
    logger.debug(f"{kind.value} {principal_id} -> {target_id}: {state.value} (total {total})")
    return ToggleResult(kind=kind, target_id=target_id, state=state, total=total)
