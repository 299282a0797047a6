"""
Signed-token authentication for users.

Access and refresh tokens are HS256 JWTs signed with separate secrets. A
request authenticates with the access token from the Authorization header
(Bearer) or, failing that, from the access-token cookie. The resolved
principal is the user's row without password_hash or refresh_token.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from databases import Database
from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt

from api.common import get_database, get_request_context, get_settings
from api.enums import ResourceKind
from api.errors import PrincipalNotFound, Unauthenticated
from api.metrics import AUTH_FAILURES_TOTAL
from api.resources import find
from config import Settings

# Security event logger - separate from regular application logging
security_logger = logging.getLogger("security.auth")

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

_password_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    """Hash a password with argon2id."""
    return _password_hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    """Check a password against a stored argon2 hash. Never raises."""
    try:
        return _password_hasher.verify(password_hash, password)
    except VerifyMismatchError:
        return False
    except (VerificationError, InvalidHashError) as e:
        logger.warning(f"Password hash could not be verified: {type(e).__name__}")
        return False


def password_needs_rehash(password_hash: str) -> bool:
    return _password_hasher.check_needs_rehash(password_hash)


class TokenManager:
    """Issues and verifies access and refresh tokens."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.algorithm = settings.token_algorithm

    def _secret(self, token_type: str) -> str:
        if token_type == REFRESH_TOKEN_TYPE:
            return self.settings.refresh_token_secret
        return self.settings.access_token_secret

    def create_access_token(self, user: Mapping[str, Any]) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": str(user["id"]),
            "username": user["username"],
            "email": user["email"],
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + timedelta(minutes=self.settings.access_token_expire_minutes),
        }
        return jwt.encode(claims, self._secret(ACCESS_TOKEN_TYPE), algorithm=self.algorithm)

    def create_refresh_token(self, user_id: str) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": str(user_id),
            "type": REFRESH_TOKEN_TYPE,
            # Unique per issue so rotation always yields a new value
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + timedelta(days=self.settings.refresh_token_expire_days),
        }
        return jwt.encode(claims, self._secret(REFRESH_TOKEN_TYPE), algorithm=self.algorithm)

    def verify(self, token: str, token_type: str = ACCESS_TOKEN_TYPE) -> str:
        """
        Verify signature, expiry and type, and return the subject as a canonical id.

        Raises Unauthenticated for any failure.
        """
        try:
            payload = jwt.decode(token, self._secret(token_type), algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise Unauthenticated("Token has expired")
        except JWTError:
            raise Unauthenticated("Invalid token")

        if payload.get("type") != token_type:
            raise Unauthenticated("Invalid token type")

        try:
            return str(uuid.UUID(str(payload.get("sub"))))
        except ValueError:
            raise Unauthenticated("Invalid token subject")


def extract_token(request: Request, settings: Settings) -> Optional[str]:
    """Return the bearer token from the Authorization header or the access cookie."""
    auth_header = request.headers.get("authorization")
    if auth_header:
        scheme, _, credentials = auth_header.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()

    cookie = request.cookies.get(settings.access_cookie_name)
    if cookie:
        return cookie
    return None


async def verify_access_token(
    db: Database,
    settings: Settings,
    token: Optional[str],
    request: Optional[Request] = None,
) -> Dict[str, Any]:
    """
    Resolve an access token to its principal.

    Raises:
        Unauthenticated: token missing, malformed, expired or wrongly signed
        PrincipalNotFound: token is valid but the user no longer exists
    """
    ctx = get_request_context(request, settings)

    if not token:
        security_logger.info(
            "Authentication failed: missing token",
            extra={"event": "auth_failure", "reason": "missing_token", **ctx},
        )
        AUTH_FAILURES_TOTAL.labels("missing_token").inc()
        raise Unauthenticated("Authentication required")

    try:
        user_id = TokenManager(settings).verify(token, ACCESS_TOKEN_TYPE)
    except Unauthenticated as e:
        security_logger.warning(
            "Authentication failed: token rejected",
            extra={"event": "auth_failure", "reason": e.detail, **ctx},
        )
        AUTH_FAILURES_TOTAL.labels("token_rejected").inc()
        raise

    principal = await find(db, ResourceKind.USER, user_id)
    if principal is None:
        security_logger.warning(
            "Authentication failed: user no longer exists",
            extra={"event": "auth_failure", "reason": "principal_not_found", "user_id": user_id, **ctx},
        )
        AUTH_FAILURES_TOTAL.labels("principal_not_found").inc()
        raise PrincipalNotFound()

    return principal


async def get_current_user(
    request: Request,
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """FastAPI dependency requiring an authenticated user."""
    token = extract_token(request, settings)
    return await verify_access_token(db, settings, token, request)


async def get_optional_user(
    request: Request,
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
) -> Optional[Dict[str, Any]]:
    """
    FastAPI dependency for routes that behave differently for signed-in users.

    A missing token gives None. A token that is present but invalid is still
    rejected rather than silently treated as anonymous.
    """
    token = extract_token(request, settings)
    if not token:
        return None
    return await verify_access_token(db, settings, token, request)
