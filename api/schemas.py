import re
from datetime import datetime
from typing import Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator, model_validator

from api.errors import ValidationFailed

# Lowercase letters, digits, underscore and dot
USERNAME_PATTERN = re.compile(r"^[a-z0-9_.]{3,30}$")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


def _strip_required(v: str) -> str:
    v = v.strip() if isinstance(v, str) else v
    if not v:
        raise ValueError("must not be empty")
    return v


def _strip_optional(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    return _strip_required(v)


def normalize_username(v: str) -> str:
    """Lowercase a handle and drop a leading '@'."""
    v = _strip_required(v).lower().lstrip("@")
    if not USERNAME_PATTERN.match(v):
        raise ValueError("username must be 3-30 characters of a-z, 0-9, '_' or '.'")
    return v


def validate_form(model: Type[M], **data) -> M:
    """
    Validate multipart form fields against a model.

    Form routes can't take a pydantic body, so validation errors are raised
    here as ValidationFailed instead of FastAPI's RequestValidationError.
    """
    try:
        return model(**data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "request"
        raise ValidationFailed(f"{field}: {first.get('msg', 'invalid value')}")


# ============ User Models ============


class UserRegister(BaseModel):
    username: str = Field(..., max_length=64)
    email: EmailStr
    full_name: str = Field(..., max_length=255)
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        return normalize_username(v)

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class UserLogin(BaseModel):
    """Login with either username or email."""

    username: Optional[str] = Field(default=None, max_length=64)
    email: Optional[str] = Field(default=None, max_length=255)
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)

    @field_validator("username")
    @classmethod
    def clean_username(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip().lower().lstrip("@")

    @field_validator("email")
    @classmethod
    def clean_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip().lower()

    @model_validator(mode="after")
    def require_identifier(self):
        if not self.username and not self.email:
            raise ValueError("username or email is required")
        return self


class RefreshTokenRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class PasswordChange(BaseModel):
    old_password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)
    new_password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)
    confirm_password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("new_password and confirm_password do not match")
        return self


class AccountUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, v: Optional[str]) -> Optional[str]:
        return _strip_optional(v)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v

    @model_validator(mode="after")
    def require_field(self):
        if self.full_name is None and self.email is None:
            raise ValueError("full_name or email is required")
        return self


class OwnerSummary(BaseModel):
    """Public view of a user embedded in other responses."""

    id: str
    username: str
    full_name: str
    avatar_url: str


class UserResponse(BaseModel):
    id: str
    username: str
    email: str
    full_name: str
    avatar_url: str
    cover_image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    user: UserResponse
    access_token: str
    refresh_token: str


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str


class ChannelProfileResponse(BaseModel):
    id: str
    username: str
    full_name: str
    avatar_url: str
    cover_image_url: Optional[str] = None
    subscriber_count: int = 0
    subscribed_to_count: int = 0
    video_count: int = 0
    is_subscribed: bool = False
    created_at: Optional[datetime] = None


class MessageResponse(BaseModel):
    message: str


# ============ Video Models ============


class VideoCreate(BaseModel):
    title: str = Field(..., max_length=255)
    description: str = Field(default="", max_length=5000)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v):
        return v.strip() if isinstance(v, str) else ""


class VideoUpdate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _strip_optional(v)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else None


class VideoResponse(BaseModel):
    id: str
    title: str
    description: str = ""
    video_url: str
    thumbnail_url: str
    duration: float = 0
    views: int = 0
    is_published: bool = True
    owner: OwnerSummary
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v):
        return v if v is not None else ""


class VideoDetailResponse(VideoResponse):
    like_count: int = 0
    is_liked: bool = False


class WatchHistoryEntry(BaseModel):
    video: VideoResponse
    watched_at: datetime


# ============ Comment Models ============


class CommentCreate(BaseModel):
    content: str = Field(..., max_length=5000)
    parent_id: Optional[str] = Field(default=None, max_length=64)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        return _strip_required(v)


class CommentUpdate(BaseModel):
    content: str = Field(..., max_length=5000)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        return _strip_required(v)


class CommentResponse(BaseModel):
    id: str
    video_id: str
    parent_id: Optional[str] = None
    content: str
    owner: OwnerSummary
    like_count: int = 0
    reply_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============ Playlist Models ============


class PlaylistCreate(BaseModel):
    """Request to create a new playlist."""

    name: str = Field(..., max_length=255, description="Playlist name, unique per owner")
    description: str = Field(default="", max_length=5000)
    video_id: Optional[str] = Field(default=None, max_length=64, description="Optional first video")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v):
        return v.strip() if isinstance(v, str) else ""


class PlaylistUpdate(BaseModel):
    """Request to update a playlist."""

    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _strip_optional(v)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else None

    @model_validator(mode="after")
    def require_field(self):
        if self.name is None and self.description is None:
            raise ValueError("name or description is required")
        return self


class PlaylistVideoInfo(BaseModel):
    """Video info included in playlist responses."""

    id: str
    title: str
    thumbnail_url: str
    duration: float = 0
    views: int = 0
    owner_id: str
    position: int
    added_at: Optional[datetime] = None


class PlaylistResponse(BaseModel):
    """Response for a single playlist."""

    id: str
    name: str
    description: str = ""
    owner_id: str
    video_count: int = 0
    total_duration: float = 0  # seconds
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PlaylistDetailResponse(PlaylistResponse):
    """Response for playlist with owner and videos included."""

    owner: OwnerSummary
    videos: List[PlaylistVideoInfo] = []


class PlaylistVideoChange(BaseModel):
    playlist_id: str
    video_id: str
    changed: bool
    video_count: int


# ============ Likes and Subscriptions ============


class ToggleResponse(BaseModel):
    target_id: str
    kind: str
    state: str
    active: bool
    total: int


class CountResponse(BaseModel):
    target_id: str
    total: int


class SubscribedChannel(BaseModel):
    channel: OwnerSummary
    subscribed_at: Optional[datetime] = None


# ============ Pagination ============


class PageResponse(BaseModel, Generic[T]):
    items: List[T]
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool = False
    has_prev: bool = False
