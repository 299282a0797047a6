"""
Centralized enums for values shared between routes, queries and schemas.
Using str-based enums for database compatibility.
"""

from enum import Enum


class ResourceKind(str, Enum):
    """Resource types the locator knows how to fetch."""

    USER = "user"  # also the target of subscriptions (a channel)
    VIDEO = "video"
    COMMENT = "comment"
    PLAYLIST = "playlist"


class ToggleKind(str, Enum):
    """Relations that flip on and off with repeated requests."""

    VIDEO_LIKE = "video_like"
    COMMENT_LIKE = "comment_like"
    SUBSCRIPTION = "subscription"


class ToggleState(str, Enum):
    """Edge presence after a toggle."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class SortBy(str, Enum):
    """Sort options for video listing."""

    CREATED_AT = "created_at"  # Upload date
    VIEWS = "views"  # View count
    DURATION = "duration"  # Video length
    TITLE = "title"  # Alphabetical


class SortOrder(str, Enum):
    """Sort order direction."""

    ASC = "asc"  # Ascending
    DESC = "desc"  # Descending
