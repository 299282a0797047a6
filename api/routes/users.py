"""Account, session and channel endpoints."""

import hmac
import logging
from typing import Optional

import sqlalchemy as sa
from databases import Database
from fastapi import APIRouter, Body, Depends, File, Form, Request, Response, UploadFile

from api.audit import AuditAction, log_audit
from api.auth import (
    REFRESH_TOKEN_TYPE,
    TokenManager,
    get_current_user,
    get_optional_user,
    hash_password,
    password_needs_rehash,
    security_logger,
    verify_password,
)
from api.common import get_database, get_request_context, get_settings
from api.database import new_id, subscriptions, users, utcnow, videos, watch_history
from api.db_retry import db_execute_with_retry, fetch_all_with_retry, fetch_one_with_retry, fetch_val_with_retry
from api.enums import ResourceKind
from api.errors import Conflict, NotFound, Unauthenticated, ValidationFailed, is_unique_violation
from api.media import MediaClient, MediaType, get_media_client, validate_upload
from api.pagination import paginate
from api.queries import (
    PageParams,
    page_params,
    page_response,
    published,
    user_response,
    video_response,
    video_select,
)
from api.resources import find
from api.schemas import (
    AccountUpdate,
    AuthResponse,
    ChannelProfileResponse,
    MessageResponse,
    PageResponse,
    PasswordChange,
    RefreshTokenRequest,
    TokenPairResponse,
    UserLogin,
    UserRegister,
    UserResponse,
    WatchHistoryEntry,
    normalize_username,
    validate_form,
)
from config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

INVALID_CREDENTIALS = "Invalid username/email or password"


def _set_auth_cookies(response: Response, settings: Settings, access_token: str, refresh_token: str) -> None:
    common = {"httponly": True, "secure": settings.secure_cookies, "samesite": "lax"}
    response.set_cookie(
        settings.access_cookie_name,
        access_token,
        max_age=settings.access_token_expire_minutes * 60,
        **common,
    )
    response.set_cookie(
        settings.refresh_cookie_name,
        refresh_token,
        max_age=settings.refresh_token_expire_days * 86400,
        **common,
    )


def _clear_auth_cookies(response: Response, settings: Settings) -> None:
    for name in (settings.access_cookie_name, settings.refresh_cookie_name):
        response.delete_cookie(name, httponly=True, secure=settings.secure_cookies, samesite="lax")


async def _issue_tokens(db: Database, settings: Settings, user: dict) -> TokenPairResponse:
    """Create a token pair and store the refresh token so it can be rotated or revoked."""
    tokens = TokenManager(settings)
    access_token = tokens.create_access_token(user)
    refresh_token = tokens.create_refresh_token(user["id"])
    await db_execute_with_retry(
        db,
        users.update().where(users.c.id == user["id"]).values(refresh_token=refresh_token),
    )
    return TokenPairResponse(access_token=access_token, refresh_token=refresh_token)


async def _require_user(db: Database, user_id: str) -> dict:
    user = await find(db, ResourceKind.USER, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


@router.post("/register", response_model=UserResponse, status_code=201)
async def register(
    request: Request,
    username: str = Form(...),
    email: str = Form(...),
    full_name: str = Form(...),
    password: str = Form(...),
    avatar: Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None),
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
    media: MediaClient = Depends(get_media_client),
) -> UserResponse:
    """Create an account. An avatar image is required, a cover image is optional."""
    data = validate_form(UserRegister, username=username, email=email, full_name=full_name, password=password)

    existing = await fetch_one_with_retry(
        db,
        sa.select(users.c.id).where(sa.or_(users.c.username == data.username, users.c.email == data.email)),
    )
    if existing:
        raise Conflict("A user with this username or email already exists")

    validate_upload(avatar, MediaType.IMAGE, settings, "avatar")
    if cover_image is not None and cover_image.filename:
        validate_upload(cover_image, MediaType.IMAGE, settings, "cover_image")
    else:
        cover_image = None

    avatar_asset = await media.upload(avatar, MediaType.IMAGE)
    cover_asset = await media.upload(cover_image, MediaType.IMAGE) if cover_image else None

    user_id = new_id()
    now = utcnow()
    try:
        await db_execute_with_retry(
            db,
            users.insert().values(
                id=user_id,
                username=data.username,
                email=data.email,
                full_name=data.full_name,
                avatar_url=avatar_asset.url,
                avatar_public_id=avatar_asset.public_id,
                cover_image_url=cover_asset.url if cover_asset else None,
                cover_image_public_id=cover_asset.public_id if cover_asset else None,
                password_hash=hash_password(data.password),
                created_at=now,
                updated_at=now,
            ),
        )
    except Exception as e:
        await media.destroy(avatar_asset.public_id, MediaType.IMAGE)
        if cover_asset:
            await media.destroy(cover_asset.public_id, MediaType.IMAGE)
        if is_unique_violation(e):
            raise Conflict("A user with this username or email already exists")
        raise

    user = await _require_user(db, user_id)
    log_audit(request, AuditAction.USER_REGISTER, user=user, resource_type="user", resource_id=user_id,
              resource_name=data.username)
    return user_response(user)


@router.post("/login", response_model=AuthResponse)
async def login(
    request: Request,
    response: Response,
    data: UserLogin,
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
) -> AuthResponse:
    """Log in with username or email. Tokens are returned and also set as http-only cookies."""
    if data.username:
        condition = users.c.username == data.username
    else:
        condition = users.c.email == data.email
    record = await fetch_one_with_retry(db, sa.select(users).where(condition))

    if record is None or not verify_password(record["password_hash"], data.password):
        security_logger.warning(
            "Login failed",
            extra={
                "event": "login_failure",
                "reason": "unknown_user" if record is None else "bad_password",
                **get_request_context(request, settings),
            },
        )
        log_audit(request, AuditAction.USER_LOGIN_FAILED, resource_type="user",
                  resource_name=data.username or data.email, success=False)
        raise Unauthenticated(INVALID_CREDENTIALS)

    if password_needs_rehash(record["password_hash"]):
        await db_execute_with_retry(
            db,
            users.update().where(users.c.id == record["id"]).values(password_hash=hash_password(data.password)),
        )

    user = await _require_user(db, record["id"])
    tokens = await _issue_tokens(db, settings, user)
    _set_auth_cookies(response, settings, tokens.access_token, tokens.refresh_token)
    log_audit(request, AuditAction.USER_LOGIN, user=user, resource_type="user", resource_id=user["id"])

    return AuthResponse(user=user_response(user), access_token=tokens.access_token,
                        refresh_token=tokens.refresh_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
) -> MessageResponse:
    """Revoke the stored refresh token and clear auth cookies."""
    await db_execute_with_retry(
        db,
        users.update().where(users.c.id == current_user["id"]).values(refresh_token=None),
    )
    _clear_auth_cookies(response, settings)
    log_audit(request, AuditAction.USER_LOGOUT, user=current_user, resource_type="user",
              resource_id=current_user["id"])
    return MessageResponse(message="Logged out")


@router.post("/refresh-token", response_model=TokenPairResponse)
async def refresh_token(
    request: Request,
    response: Response,
    data: Optional[RefreshTokenRequest] = Body(default=None),
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
) -> TokenPairResponse:
    """
    Exchange a refresh token for a new token pair.

    The presented token must match the one stored for the user, so each
    refresh token works once.
    """
    presented = request.cookies.get(settings.refresh_cookie_name) or (data.refresh_token if data else None)
    if not presented:
        raise Unauthenticated("Refresh token required")

    user_id = TokenManager(settings).verify(presented, REFRESH_TOKEN_TYPE)
    record = await fetch_one_with_retry(db, sa.select(users.c.id, users.c.refresh_token).where(users.c.id == user_id))
    if record is None:
        raise Unauthenticated("Invalid refresh token")

    stored = record["refresh_token"] or ""
    if not hmac.compare_digest(stored.encode(), presented.encode()):
        security_logger.warning(
            "Refresh token reuse or mismatch",
            extra={"event": "refresh_rejected", "reason": "token_mismatch", "user_id": user_id,
                   **get_request_context(request, settings)},
        )
        raise Unauthenticated("Refresh token is expired or already used")

    user = await _require_user(db, user_id)
    tokens = await _issue_tokens(db, settings, user)
    _set_auth_cookies(response, settings, tokens.access_token, tokens.refresh_token)
    log_audit(request, AuditAction.USER_TOKEN_REFRESH, user=user, resource_type="user", resource_id=user_id)
    return tokens


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    request: Request,
    data: PasswordChange,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> MessageResponse:
    """Change the password. Existing refresh tokens stop working."""
    stored_hash = await fetch_val_with_retry(
        db, sa.select(users.c.password_hash).where(users.c.id == current_user["id"])
    )
    if not stored_hash or not verify_password(stored_hash, data.old_password):
        raise ValidationFailed("Old password is incorrect")

    await db_execute_with_retry(
        db,
        users.update()
        .where(users.c.id == current_user["id"])
        .values(password_hash=hash_password(data.new_password), refresh_token=None, updated_at=utcnow()),
    )
    log_audit(request, AuditAction.USER_PASSWORD_CHANGE, user=current_user, resource_type="user",
              resource_id=current_user["id"])
    return MessageResponse(message="Password changed")


@router.get("/current-user", response_model=UserResponse)
async def current_user_profile(current_user: dict = Depends(get_current_user)) -> UserResponse:
    return user_response(current_user)


@router.patch("/update-account", response_model=UserResponse)
async def update_account(
    request: Request,
    data: AccountUpdate,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> UserResponse:
    """Update full name and/or email."""
    values = {"updated_at": utcnow()}
    if data.full_name is not None:
        values["full_name"] = data.full_name
    if data.email is not None:
        values["email"] = data.email

    try:
        await db_execute_with_retry(db, users.update().where(users.c.id == current_user["id"]).values(**values))
    except Exception as e:
        if is_unique_violation(e):
            raise Conflict("Email is already in use")
        raise

    user = await _require_user(db, current_user["id"])
    log_audit(request, AuditAction.USER_ACCOUNT_UPDATE, user=user, resource_type="user", resource_id=user["id"],
              details={"fields": sorted(k for k in values if k != "updated_at")})
    return user_response(user)


async def _replace_image(
    db: Database,
    media: MediaClient,
    settings: Settings,
    current_user: dict,
    upload: Optional[UploadFile],
    field: str,
    url_column: str,
    public_id_column: str,
) -> dict:
    """Upload a new profile image, point the user at it, then delete the old one."""
    validate_upload(upload, MediaType.IMAGE, settings, field)

    old_public_id = await fetch_val_with_retry(
        db, sa.select(users.c[public_id_column]).where(users.c.id == current_user["id"])
    )
    asset = await media.upload(upload, MediaType.IMAGE)
    await db_execute_with_retry(
        db,
        users.update()
        .where(users.c.id == current_user["id"])
        .values({url_column: asset.url, public_id_column: asset.public_id, "updated_at": utcnow()}),
    )
    if old_public_id and old_public_id != asset.public_id:
        await media.destroy(old_public_id, MediaType.IMAGE)

    return await _require_user(db, current_user["id"])


@router.patch("/avatar", response_model=UserResponse)
async def update_avatar(
    request: Request,
    avatar: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
    media: MediaClient = Depends(get_media_client),
) -> UserResponse:
    user = await _replace_image(db, media, settings, current_user, avatar, "avatar", "avatar_url", "avatar_public_id")
    log_audit(request, AuditAction.USER_AVATAR_UPDATE, user=user, resource_type="user", resource_id=user["id"])
    return user_response(user)


@router.patch("/cover-image", response_model=UserResponse)
async def update_cover_image(
    request: Request,
    cover_image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
    media: MediaClient = Depends(get_media_client),
) -> UserResponse:
    user = await _replace_image(
        db, media, settings, current_user, cover_image, "cover_image", "cover_image_url", "cover_image_public_id"
    )
    log_audit(request, AuditAction.USER_COVER_UPDATE, user=user, resource_type="user", resource_id=user["id"])
    return user_response(user)


@router.get("/c/{username}", response_model=ChannelProfileResponse)
async def channel_profile(
    username: str,
    current_user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_database),
) -> ChannelProfileResponse:
    """Public channel page: profile plus subscriber and video counts."""
    try:
        handle = normalize_username(username)
    except ValueError:
        raise NotFound("Channel not found")

    channel = await fetch_one_with_retry(
        db,
        sa.select(
            users.c.id,
            users.c.username,
            users.c.full_name,
            users.c.avatar_url,
            users.c.cover_image_url,
            users.c.created_at,
        ).where(users.c.username == handle),
    )
    if channel is None:
        raise NotFound("Channel not found")

    channel_id = channel["id"]
    subscriber_count = await fetch_val_with_retry(
        db, sa.select(sa.func.count()).select_from(subscriptions).where(subscriptions.c.channel_id == channel_id)
    )
    subscribed_to_count = await fetch_val_with_retry(
        db, sa.select(sa.func.count()).select_from(subscriptions).where(subscriptions.c.subscriber_id == channel_id)
    )
    video_count = await fetch_val_with_retry(
        db,
        sa.select(sa.func.count())
        .select_from(videos)
        .where(videos.c.owner_id == channel_id, published()),
    )

    is_subscribed = False
    if current_user is not None:
        edge = await fetch_one_with_retry(
            db,
            sa.select(subscriptions.c.id).where(
                subscriptions.c.channel_id == channel_id,
                subscriptions.c.subscriber_id == current_user["id"],
            ),
        )
        is_subscribed = edge is not None

    return ChannelProfileResponse(
        id=channel_id,
        username=channel["username"],
        full_name=channel["full_name"],
        avatar_url=channel["avatar_url"],
        cover_image_url=channel["cover_image_url"],
        subscriber_count=subscriber_count or 0,
        subscribed_to_count=subscribed_to_count or 0,
        video_count=video_count or 0,
        is_subscribed=is_subscribed,
        created_at=channel["created_at"],
    )


@router.get("/history", response_model=PageResponse[WatchHistoryEntry])
async def watch_history_list(
    params: PageParams = Depends(page_params),
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> PageResponse:
    """Videos the current user has watched, most recent first."""
    visible = sa.and_(
        watch_history.c.user_id == current_user["id"],
        sa.or_(published(), videos.c.owner_id == current_user["id"]),
    )
    total = await fetch_val_with_retry(
        db,
        sa.select(sa.func.count())
        .select_from(watch_history.join(videos, watch_history.c.video_id == videos.c.id))
        .where(visible),
    )
    page = paginate(params.page, params.limit, total, default_limit=params.default_limit)

    query = (
        video_select(watch_history.c.watched_at, joins=[(watch_history, watch_history.c.video_id == videos.c.id)])
        .where(visible)
        .order_by(watch_history.c.watched_at.desc(), watch_history.c.id.desc())
        .offset(page.skip)
        .limit(page.limit)
    )
    rows = await fetch_all_with_retry(db, query)
    items = [WatchHistoryEntry(video=video_response(row), watched_at=row["watched_at"]) for row in rows]
    return page_response(items, page)
