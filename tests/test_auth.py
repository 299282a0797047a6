"""Tests for password hashing, token issue/verify and the request token verifier."""

import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from jose import jwt

from api.auth import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    TokenManager,
    extract_token,
    hash_password,
    verify_access_token,
    verify_password,
)
from api.errors import ErrorKind, PrincipalNotFound, Unauthenticated
from config import Settings
from conftest import insert_user

SETTINGS = Settings(access_token_secret="access-secret", refresh_token_secret="refresh-secret")


def _user(**overrides):
    user = {"id": str(uuid.uuid4()), "username": "alice", "email": "alice@example.com"}
    user.update(overrides)
    return user


def _request(headers=None, cookies=None):
    request = MagicMock()
    request.headers = headers or {}
    request.cookies = cookies or {}
    return request


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert verify_password(hashed, "s3cret-pass") is True
        assert verify_password(hashed, "wrong") is False

    def test_garbage_hash_never_raises(self):
        assert verify_password("not-an-argon2-hash", "anything") is False


class TestTokenManager:
    """Tests for TokenManager."""

    def test_access_token_round_trip(self):
        user = _user()
        token = TokenManager(SETTINGS).create_access_token(user)
        assert TokenManager(SETTINGS).verify(token) == user["id"]

        claims = jwt.get_unverified_claims(token)
        assert claims["type"] == ACCESS_TOKEN_TYPE
        assert claims["username"] == "alice"

    def test_subject_is_canonicalized(self):
        user = _user()
        token = TokenManager(SETTINGS).create_access_token({**user, "id": user["id"].upper()})
        assert TokenManager(SETTINGS).verify(token) == user["id"]

    def test_refresh_tokens_are_unique(self):
        manager = TokenManager(SETTINGS)
        user_id = str(uuid.uuid4())
        assert manager.create_refresh_token(user_id) != manager.create_refresh_token(user_id)

    def test_refresh_token_is_not_an_access_token(self):
        manager = TokenManager(SETTINGS)
        refresh = manager.create_refresh_token(str(uuid.uuid4()))
        with pytest.raises(Unauthenticated):
            manager.verify(refresh, ACCESS_TOKEN_TYPE)

    def test_access_token_is_not_a_refresh_token(self):
        """Different secrets, so the signature check fails first."""
        manager = TokenManager(SETTINGS)
        access = manager.create_access_token(_user())
        with pytest.raises(Unauthenticated):
            manager.verify(access, REFRESH_TOKEN_TYPE)

    def test_expired_token(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": ACCESS_TOKEN_TYPE, "iat": now - timedelta(hours=2),
             "exp": now - timedelta(hours=1)},
            SETTINGS.access_token_secret,
            algorithm="HS256",
        )
        with pytest.raises(Unauthenticated) as exc_info:
            TokenManager(SETTINGS).verify(token)
        assert exc_info.value.detail == "Token has expired"

    def test_wrong_secret(self):
        token = TokenManager(replace(SETTINGS, access_token_secret="other")).create_access_token(_user())
        with pytest.raises(Unauthenticated):
            TokenManager(SETTINGS).verify(token)

    @pytest.mark.parametrize("token", ["", "abc", "a.b.c"])
    def test_garbage_token(self, token):
        with pytest.raises(Unauthenticated):
            TokenManager(SETTINGS).verify(token)

    def test_non_uuid_subject(self):
        token = jwt.encode(
            {"sub": "42", "type": ACCESS_TOKEN_TYPE, "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            SETTINGS.access_token_secret,
            algorithm="HS256",
        )
        with pytest.raises(Unauthenticated):
            TokenManager(SETTINGS).verify(token)


class TestExtractToken:
    """Tests for extract_token."""

    def test_bearer_header(self):
        assert extract_token(_request(headers={"authorization": "Bearer abc"}), SETTINGS) == "abc"

    def test_scheme_is_case_insensitive(self):
        assert extract_token(_request(headers={"authorization": "bearer abc"}), SETTINGS) == "abc"

    def test_cookie(self):
        assert extract_token(_request(cookies={"accessToken": "from-cookie"}), SETTINGS) == "from-cookie"

    def test_header_wins_over_cookie(self):
        request = _request(headers={"authorization": "Bearer from-header"}, cookies={"accessToken": "from-cookie"})
        assert extract_token(request, SETTINGS) == "from-header"

    def test_non_bearer_header_falls_back_to_cookie(self):
        request = _request(headers={"authorization": "Basic dXNlcjpwYXNz"}, cookies={"accessToken": "c"})
        assert extract_token(request, SETTINGS) == "c"

    def test_nothing(self):
        assert extract_token(_request(headers={"authorization": "Bearer "}), SETTINGS) is None


class TestVerifyAccessToken:
    """Tests for verify_access_token."""

    async def test_missing_token_does_no_lookup(self):
        db = MagicMock()
        db.fetch_one = AsyncMock()
        with pytest.raises(Unauthenticated) as exc_info:
            await verify_access_token(db, SETTINGS, None)
        assert exc_info.value.kind == ErrorKind.UNAUTHENTICATED
        db.fetch_one.assert_not_called()

    async def test_invalid_token_does_no_lookup(self):
        db = MagicMock()
        db.fetch_one = AsyncMock()
        with pytest.raises(Unauthenticated):
            await verify_access_token(db, SETTINGS, "garbage")
        db.fetch_one.assert_not_called()

    async def test_deleted_user(self):
        db = MagicMock()
        db.fetch_one = AsyncMock(return_value=None)
        token = TokenManager(SETTINGS).create_access_token(_user())
        with pytest.raises(PrincipalNotFound) as exc_info:
            await verify_access_token(db, SETTINGS, token)
        assert exc_info.value.status_code == 401

    async def test_resolves_principal_without_secrets(self, test_database):
        user = await insert_user(test_database, "erin")
        token = TokenManager(SETTINGS).create_access_token(user)

        principal = await verify_access_token(test_database, SETTINGS, token)

        assert principal["id"] == user["id"]
        assert "password_hash" not in principal
        assert "refresh_token" not in principal
