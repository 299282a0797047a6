"""
Pytest fixtures for VidShare tests.
Provides a per-test SQLite database, a TestClient, a fake media host and helpers
for registering and signing in users.

SQLite keeps the suite free of external services; the schema is the same
metadata used for PostgreSQL.
"""

import itertools
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Tuple

import pytest
from databases import Database

from api.database import comments, create_tables, users, videos
from api.media import MediaAsset, MediaType, get_media_client
from config import Settings

TEST_PASSWORD = "correct-horse-battery"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 128


class FakeMediaClient:
    """Stands in for the media host: hands out predictable URLs and records deletions."""

    configured = True

    def __init__(self):
        self._counter = itertools.count(1)
        self.uploaded: List[Tuple[str, str]] = []
        self.destroyed: List[Tuple[str, str]] = []

    async def upload(self, upload, media_type: MediaType) -> MediaAsset:
        n = next(self._counter)
        public_id = f"vidshare/{media_type.value}-{n}"
        self.uploaded.append((public_id, upload.filename))
        return MediaAsset(
            url=f"https://media.test/{public_id}",
            public_id=public_id,
            resource_type=media_type.value,
            duration=42.0 if media_type == MediaType.VIDEO else 0.0,
        )

    async def destroy(self, public_id, media_type: MediaType) -> bool:
        if not public_id:
            return False
        self.destroyed.append((public_id, media_type.value))
        return True

    async def aclose(self) -> None:
        return None


@pytest.fixture(scope="function")
def test_db_url(tmp_path: Path) -> str:
    """Create a fresh SQLite database file with all tables."""
    db_url = f"sqlite:///{tmp_path / 'test.db'}"
    create_tables(db_url)
    return db_url


@pytest.fixture(scope="function")
def test_settings(test_db_url: str, tmp_path: Path) -> Settings:
    return Settings(
        database_url=test_db_url,
        access_token_secret="test-access-secret",
        refresh_token_secret="test-refresh-secret",
        secure_cookies=False,
        rate_limit_enabled=False,
        audit_log_enabled=False,
        audit_log_path=tmp_path / "audit.log",
    )


@pytest.fixture(scope="function")
async def test_database(test_db_url: str) -> AsyncGenerator[Database, None]:
    """Connected Database for direct inserts and assertions."""
    db = Database(test_db_url)
    await db.connect()
    yield db
    await db.disconnect()


@pytest.fixture(scope="function")
def fake_media() -> FakeMediaClient:
    return FakeMediaClient()


@pytest.fixture(scope="function")
def app(test_settings: Settings, fake_media: FakeMediaClient):
    from api.app import create_app

    application = create_app(test_settings)
    application.dependency_overrides[get_media_client] = lambda: fake_media
    return application


@pytest.fixture(scope="function")
def client(app):
    """TestClient for the full API."""
    from fastapi.testclient import TestClient

    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


def register_user(client, username: str, password: str = TEST_PASSWORD, **extra) -> dict:
    """Register a user through the API and return the response body."""
    data = {
        "username": username,
        "email": extra.pop("email", f"{username}@example.com"),
        "full_name": extra.pop("full_name", username.title()),
        "password": password,
    }
    files = {"avatar": ("avatar.png", PNG_BYTES, "image/png")}
    response = client.post("/api/v1/users/register", data=data, files=files)
    assert response.status_code == 201, response.text
    return response.json()


def login_user(client, username: str, password: str = TEST_PASSWORD) -> Dict[str, str]:
    """Log in and return an Authorization header for the access token."""
    response = client.post("/api/v1/users/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    # Drop the cookies so each request authenticates only with the header it sends
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def upload_video(client, headers: Dict[str, str], title: str = "My video", description: str = "") -> dict:
    files = {
        "video_file": ("clip.mp4", MP4_BYTES, "video/mp4"),
        "thumbnail": ("thumb.png", PNG_BYTES, "image/png"),
    }
    response = client.post(
        "/api/v1/videos", data={"title": title, "description": description}, files=files, headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture(scope="function")
def alice(client) -> dict:
    """A registered user with auth headers under the "headers" key."""
    user = register_user(client, "alice")
    return {**user, "headers": login_user(client, "alice")}


@pytest.fixture(scope="function")
def bob(client) -> dict:
    user = register_user(client, "bob")
    return {**user, "headers": login_user(client, "bob")}


@pytest.fixture(scope="function")
def alice_video(client, alice) -> dict:
    return upload_video(client, alice["headers"], title="Alice's first video", description="Hello")


async def insert_user(db: Database, username: str) -> dict:
    """Insert a user row directly, bypassing the API."""
    now = datetime.now(timezone.utc)
    values = {
        "id": str(uuid.uuid4()),
        "username": username,
        "email": f"{username}@example.com",
        "full_name": username.title(),
        "avatar_url": f"https://media.test/{username}.png",
        "password_hash": "not-a-real-hash",
        "created_at": now,
        "updated_at": now,
    }
    await db.execute(users.insert().values(**values))
    return values


async def insert_video(db: Database, owner_id: str, title: str = "Video", is_published: bool = True) -> dict:
    now = datetime.now(timezone.utc)
    values = {
        "id": str(uuid.uuid4()),
        "owner_id": owner_id,
        "title": title,
        "description": "",
        "video_url": "https://media.test/v.mp4",
        "thumbnail_url": "https://media.test/t.png",
        "duration": 10.0,
        "views": 0,
        "is_published": is_published,
        "created_at": now,
        "updated_at": now,
    }
    await db.execute(videos.insert().values(**values))
    return values


async def insert_comment(db: Database, video_id: str, owner_id: str, content: str = "Nice") -> dict:
    now = datetime.now(timezone.utc)
    values = {
        "id": str(uuid.uuid4()),
        "video_id": video_id,
        "owner_id": owner_id,
        "content": content,
        "created_at": now,
        "updated_at": now,
    }
    await db.execute(comments.insert().values(**values))
    return values
