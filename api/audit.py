"""
Audit logging for user actions that change data.

Provides structured audit logging for security and operational tracking.
Logs to a file with JSON-formatted entries for easy parsing and analysis.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from typing import Any, Mapping, Optional

from fastapi import Request

from api.common import get_real_ip, get_request_id
from api.errors import truncate_string
from config import Settings

logger = logging.getLogger(__name__)

AUDIT_LOGGER_NAME = "vidshare.audit"


class AuditAction(str, Enum):
    """Audit action types for categorization."""

    # Account actions
    USER_REGISTER = "user_register"
    USER_LOGIN = "user_login"
    USER_LOGIN_FAILED = "user_login_failed"
    USER_LOGOUT = "user_logout"
    USER_TOKEN_REFRESH = "user_token_refresh"
    USER_PASSWORD_CHANGE = "user_password_change"
    USER_ACCOUNT_UPDATE = "user_account_update"
    USER_AVATAR_UPDATE = "user_avatar_update"
    USER_COVER_UPDATE = "user_cover_update"

    # Video actions
    VIDEO_UPLOAD = "video_upload"
    VIDEO_UPDATE = "video_update"
    VIDEO_DELETE = "video_delete"
    VIDEO_PUBLISH_TOGGLE = "video_publish_toggle"

    # Comment actions
    COMMENT_CREATE = "comment_create"
    COMMENT_UPDATE = "comment_update"
    COMMENT_DELETE = "comment_delete"

    # Playlist actions
    PLAYLIST_CREATE = "playlist_create"
    PLAYLIST_UPDATE = "playlist_update"
    PLAYLIST_DELETE = "playlist_delete"
    PLAYLIST_VIDEO_ADD = "playlist_video_add"
    PLAYLIST_VIDEO_REMOVE = "playlist_video_remove"


class AuditLogger:
    """
    Structured audit logger.

    Logs events in JSON format for easy parsing and analysis.
    Falls back to console logging if the log file can't be opened.
    """

    def __init__(self, settings: Settings):
        self.enabled = settings.audit_log_enabled
        self.detail_max_length = settings.error_detail_max_length
        self.logger = logging.getLogger(AUDIT_LOGGER_NAME)
        self.logger.setLevel(getattr(logging, settings.audit_log_level, logging.INFO))
        self.logger.propagate = False

        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()
        self._setup_handlers(settings)

    def _setup_handlers(self, settings: Settings):
        formatter = logging.Formatter("%(message)s")  # Raw JSON output

        if not self.enabled:
            self.logger.addHandler(logging.NullHandler())
            return

        try:
            settings.audit_log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                settings.audit_log_path,
                maxBytes=settings.audit_log_max_bytes,
                backupCount=settings.audit_log_backup_count,
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning(f"Audit log file {settings.audit_log_path} unavailable ({e}); logging to console")
            handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

    def log(
        self,
        action: AuditAction,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
        resource_name: Optional[str] = None,
        details: Optional[dict] = None,
        success: bool = True,
        error: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        """
        Log an audit event.

        Args:
            action: The type of action being performed
            client_ip: IP address of the client making the request
            user_agent: User-Agent header from the request
            user_id: The acting user, when authenticated
            resource_type: Type of resource (video, comment, playlist, user)
            resource_id: ID of the affected resource
            resource_name: Human-readable name of the resource (title, name)
            details: Additional action-specific details
            success: Whether the action succeeded
            error: Error message if action failed
            request_id: Unique request ID for tracing
        """
        if not self.enabled:
            return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action.value,
            "success": success,
        }

        if request_id:
            entry["request_id"] = request_id
        if client_ip:
            entry["client_ip"] = client_ip
        if user_agent:
            entry["user_agent"] = truncate_string(user_agent, self.detail_max_length)
        if user_id:
            entry["user_id"] = user_id
        if resource_type:
            entry["resource_type"] = resource_type
        if resource_id is not None:
            entry["resource_id"] = resource_id
        if resource_name:
            entry["resource_name"] = truncate_string(resource_name, self.detail_max_length)
        if details:
            entry["details"] = details
        if error:
            entry["error"] = truncate_string(error, 500)

        self.logger.info(json.dumps(entry, default=str))


def log_audit(
    request: Request,
    action: AuditAction,
    user: Optional[Mapping[str, Any]] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[Any] = None,
    resource_name: Optional[str] = None,
    details: Optional[dict] = None,
    success: bool = True,
    error: Optional[str] = None,
):
    """
    Log an audit event for the current request.

    Example usage:
        log_audit(
            request,
            AuditAction.VIDEO_UPLOAD,
            user=current_user,
            resource_type="video",
            resource_id=video_id,
            resource_name=title,
        )
    """
    audit_logger: Optional[AuditLogger] = getattr(request.app.state, "audit", None)
    if audit_logger is None:
        return

    audit_logger.log(
        action=action,
        client_ip=get_real_ip(request),
        user_agent=request.headers.get("user-agent"),
        user_id=user["id"] if user else None,
        resource_type=resource_type,
        resource_id=resource_id,
        resource_name=resource_name,
        details=details,
        success=success,
        error=error,
        request_id=get_request_id(request),
    )
