"""
Resource lookup by kind and client-supplied identifier.

Identifiers are validated before any query is built: a string that is not a
UUID raises MalformedId without touching the database. A well-formed id with
no matching row raises NotFound. Every mutating route locates its target
through here first, so acting on a missing resource is never a silent no-op.
"""

import logging
import uuid
from typing import Any, Dict, Optional

import sqlalchemy as sa
from databases import Database

from api.database import comments, playlists, users, videos
from api.db_retry import fetch_one_with_retry
from api.enums import ResourceKind
from api.errors import MalformedId, NotFound

logger = logging.getLogger(__name__)

_TABLES = {
    ResourceKind.USER: users,
    ResourceKind.VIDEO: videos,
    ResourceKind.COMMENT: comments,
    ResourceKind.PLAYLIST: playlists,
}

# Columns never returned from a lookup
_PRIVATE_COLUMNS = {
    ResourceKind.USER: {"password_hash", "refresh_token"},
}

_LABELS = {
    ResourceKind.USER: "User",
    ResourceKind.VIDEO: "Video",
    ResourceKind.COMMENT: "Comment",
    ResourceKind.PLAYLIST: "Playlist",
}


def parse_id(raw: Any, kind: Optional[ResourceKind] = None) -> str:
    """
    Return the canonical text form of a UUID identifier.

    Accepts any spelling uuid.UUID accepts (upper case, no hyphens, braces).
    Raises MalformedId for anything else, including None and empty strings.
    """
    label = _LABELS[kind].lower() if kind else "resource"
    if raw is None or isinstance(raw, bool):
        raise MalformedId(f"Invalid {label} id")
    if isinstance(raw, uuid.UUID):
        return str(raw)
    try:
        return str(uuid.UUID(str(raw).strip()))
    except ValueError:
        raise MalformedId(f"Invalid {label} id: {str(raw)[:64]!r}")


def public_columns(kind: ResourceKind):
    """Columns of a resource table that may leave the process."""
    table = _TABLES[kind]
    hidden = _PRIVATE_COLUMNS.get(kind, set())
    return [column for column in table.c if column.name not in hidden]


def row_to_dict(row) -> Dict[str, Any]:
    return dict(row._mapping)


async def find(db: Database, kind: ResourceKind, resource_id: str) -> Optional[Dict[str, Any]]:
    """Look up an already-canonical id. Returns None when absent."""
    table = _TABLES[kind]
    query = sa.select(*public_columns(kind)).where(table.c.id == resource_id)
    row = await fetch_one_with_retry(db, query)
    return row_to_dict(row) if row else None


async def locate(db: Database, kind: ResourceKind, raw_id: Any) -> Dict[str, Any]:
    """
    Validate an identifier and fetch the resource it names.

    Raises:
        MalformedId: raw_id is not a UUID (no query is issued)
        NotFound: no row with that id
    """
    resource_id = parse_id(raw_id, kind)
    resource = await find(db, kind, resource_id)
    if resource is None:
        logger.debug(f"{kind.value} {resource_id} not found")
        raise NotFound(f"{_LABELS[kind]} not found")
    return resource
