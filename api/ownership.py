"""
Owner-only authorization for videos, comments and playlists.

Ownership is the only authorization axis: there are no roles or shared edit
rights. Owner ids are compared as parsed UUIDs so differently spelled forms
of the same id are equal.
"""

import logging
import uuid
from typing import Any, Dict, Mapping, Optional

from databases import Database

from api.enums import ResourceKind
from api.errors import Forbidden, NotFound
from api.resources import locate

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security.auth")

OWNED_KINDS = (ResourceKind.VIDEO, ResourceKind.COMMENT, ResourceKind.PLAYLIST)


def _canonical(value: Any):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def is_owner(resource: Mapping[str, Any], principal_id: Any) -> bool:
    """True when the resource's owner_id and principal_id name the same user."""
    owner = _canonical(resource.get("owner_id"))
    requester = _canonical(principal_id)
    return owner is not None and requester is not None and owner == requester


def ensure_owner(resource: Mapping[str, Any], principal: Mapping[str, Any], kind: ResourceKind) -> None:
    """Raise Forbidden unless principal owns resource."""
    if is_owner(resource, principal["id"]):
        return

    security_logger.warning(
        "Ownership check failed",
        extra={
            "event": "ownership_denied",
            "resource_type": kind.value,
            "resource_id": resource.get("id"),
            "principal_id": principal["id"],
        },
    )
    raise Forbidden(f"Only the owner can modify this {kind.value}")


async def locate_owned(
    db: Database,
    kind: ResourceKind,
    raw_id: Any,
    principal: Mapping[str, Any],
) -> Dict[str, Any]:
    """
    Locate a resource and require that principal owns it.

    Raises MalformedId, NotFound or Forbidden, in that order of checking.
    """
    if kind not in OWNED_KINDS:
        raise ValueError(f"{kind.value} resources have no owner")
    resource = await locate(db, kind, raw_id)
    ensure_owner(resource, principal, kind)
    return resource


async def locate_visible_video(
    db: Database,
    raw_id: Any,
    principal: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Locate a video the principal may see.

    Unpublished videos are reported as NotFound to everyone but their owner,
    so their existence does not leak.
    """
    video = await locate(db, ResourceKind.VIDEO, raw_id)
    if not video["is_published"] and not (principal and is_owner(video, principal["id"])):
        raise NotFound("Video not found")
    return video
