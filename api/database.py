import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from databases import Database

metadata = sa.MetaData()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a primary key in canonical UUID text form."""
    return str(uuid.uuid4())


def create_database(database_url: str) -> Database:
    """
    Create the async database client for a URL.

    Works with PostgreSQL (asyncpg) or SQLite (aiosqlite). The caller owns the
    instance and is responsible for connect()/disconnect().
    """
    return Database(database_url)


async def configure_database(db: Database):
    """
    Configure database-specific settings after connection.
    SQLite needs foreign keys switched on per connection; PostgreSQL enforces them already.
    """
    if db.url.dialect == "sqlite":
        await db.execute("PRAGMA foreign_keys = ON")


def _id_column(name: str = "id") -> sa.Column:
    return sa.Column(name, sa.String(36), primary_key=True, default=new_id)


users = sa.Table(
    "users",
    metadata,
    _id_column(),
    sa.Column("username", sa.String(64), unique=True, nullable=False),
    sa.Column("email", sa.String(255), unique=True, nullable=False),
    sa.Column("full_name", sa.String(255), nullable=False),
    sa.Column("avatar_url", sa.String(1024), nullable=False),
    sa.Column("avatar_public_id", sa.String(255), nullable=True),
    sa.Column("cover_image_url", sa.String(1024), nullable=True),
    sa.Column("cover_image_public_id", sa.String(255), nullable=True),
    sa.Column("password_hash", sa.String(255), nullable=False),  # argon2id
    sa.Column("refresh_token", sa.Text, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), default=utcnow),
    sa.Column("updated_at", sa.DateTime(timezone=True), default=utcnow),
)

videos = sa.Table(
    "videos",
    metadata,
    _id_column(),
    sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("title", sa.String(255), nullable=False),
    sa.Column("description", sa.Text, nullable=False, default=""),
    sa.Column("video_url", sa.String(1024), nullable=False),
    sa.Column("video_public_id", sa.String(255), nullable=True),
    sa.Column("thumbnail_url", sa.String(1024), nullable=False),
    sa.Column("thumbnail_public_id", sa.String(255), nullable=True),
    sa.Column("duration", sa.Float, nullable=False, default=0),  # seconds
    sa.Column("views", sa.Integer, nullable=False, default=0),
    sa.Column("is_published", sa.Boolean, nullable=False, default=True),
    sa.Column("created_at", sa.DateTime(timezone=True), default=utcnow),
    sa.Column("updated_at", sa.DateTime(timezone=True), default=utcnow),
    sa.CheckConstraint("views >= 0", name="ck_videos_views_non_negative"),
    sa.Index("ix_videos_owner_id", "owner_id"),
    sa.Index("ix_videos_created_at", "created_at"),
)

comments = sa.Table(
    "comments",
    metadata,
    _id_column(),
    sa.Column("video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
    sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    # Reply target; always a comment on the same video
    sa.Column("parent_id", sa.String(36), sa.ForeignKey("comments.id", ondelete="CASCADE"), nullable=True),
    sa.Column("content", sa.Text, nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), default=utcnow),
    sa.Column("updated_at", sa.DateTime(timezone=True), default=utcnow),
    sa.Index("ix_comments_video_id", "video_id"),
    sa.Index("ix_comments_parent_id", "parent_id"),
)

# Toggle edges: one row per (principal, target); presence means active
likes = sa.Table(
    "likes",
    metadata,
    _id_column(),
    sa.Column("liked_by", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=True),
    sa.Column("comment_id", sa.String(36), sa.ForeignKey("comments.id", ondelete="CASCADE"), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), default=utcnow),
    sa.CheckConstraint(
        "(video_id IS NULL) <> (comment_id IS NULL)",
        name="ck_likes_single_target",
    ),
    sa.UniqueConstraint("liked_by", "video_id", name="uq_likes_user_video"),
    sa.UniqueConstraint("liked_by", "comment_id", name="uq_likes_user_comment"),
    sa.Index("ix_likes_video_id", "video_id"),
    sa.Index("ix_likes_comment_id", "comment_id"),
)

subscriptions = sa.Table(
    "subscriptions",
    metadata,
    _id_column(),
    sa.Column("subscriber_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("channel_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), default=utcnow),
    sa.UniqueConstraint("subscriber_id", "channel_id", name="uq_subscriptions_subscriber_channel"),
    sa.Index("ix_subscriptions_channel_id", "channel_id"),
)

playlists = sa.Table(
    "playlists",
    metadata,
    _id_column(),
    sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("name", sa.String(255), nullable=False),
    sa.Column("description", sa.Text, nullable=False, default=""),
    sa.Column("created_at", sa.DateTime(timezone=True), default=utcnow),
    sa.Column("updated_at", sa.DateTime(timezone=True), default=utcnow),
    sa.UniqueConstraint("owner_id", "name", name="uq_playlists_owner_name"),
)

# Ordered playlist entries; lowest position is shown first
playlist_videos = sa.Table(
    "playlist_videos",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("playlist_id", sa.String(36), sa.ForeignKey("playlists.id", ondelete="CASCADE"), nullable=False),
    sa.Column("video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
    sa.Column("position", sa.Integer, nullable=False),
    sa.Column("added_at", sa.DateTime(timezone=True), default=utcnow),
    sa.UniqueConstraint("playlist_id", "video_id", name="uq_playlist_videos_playlist_video"),
    sa.Index("ix_playlist_videos_playlist_position", "playlist_id", "position"),
)

watch_history = sa.Table(
    "watch_history",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("video_id", sa.String(36), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
    sa.Column("watched_at", sa.DateTime(timezone=True), default=utcnow),
    sa.Index("ix_watch_history_user_watched", "user_id", "watched_at"),
)


def create_tables(database_url: str):
    """
    Create database tables directly using SQLAlchemy metadata.
    This creates all tables if they don't exist.
    """
    engine = sa.create_engine(database_url)
    metadata.create_all(engine)
    engine.dispose()
