"""
Tests for account, session and channel endpoints.
"""

from conftest import PNG_BYTES, TEST_PASSWORD, login_user, register_user, upload_video

USERS = "/api/v1/users"


class TestRegister:
    def test_register(self, client, fake_media):
        user = register_user(client, "@Alice_1", email="ALICE@Example.com", full_name="  Alice  ")

        assert user["username"] == "alice_1"
        assert user["email"] == "alice@example.com"
        assert user["full_name"] == "Alice"
        assert user["avatar_url"].startswith("https://media.test/")
        assert "password_hash" not in user
        assert "refresh_token" not in user
        assert len(fake_media.uploaded) == 1

    def test_avatar_required(self, client):
        response = client.post(
            f"{USERS}/register",
            data={"username": "alice", "email": "a@example.com", "full_name": "A", "password": TEST_PASSWORD},
        )
        assert response.status_code == 422
        assert "avatar" in response.json()["detail"]

    def test_duplicate_username(self, client):
        register_user(client, "alice")
        response = client.post(
            f"{USERS}/register",
            data={"username": "alice", "email": "other@example.com", "full_name": "A", "password": TEST_PASSWORD},
            files={"avatar": ("a.png", PNG_BYTES, "image/png")},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_invalid_fields(self, client):
        response = client.post(
            f"{USERS}/register",
            data={"username": "a b", "email": "not-an-email", "full_name": "A", "password": "short"},
            files={"avatar": ("a.png", PNG_BYTES, "image/png")},
        )
        assert response.status_code == 422


class TestLogin:
    def test_login_with_username_sets_cookies(self, client):
        register_user(client, "alice")
        response = client.post(f"{USERS}/login", json={"username": "alice", "password": TEST_PASSWORD})

        assert response.status_code == 200
        body = response.json()
        assert body["user"]["username"] == "alice"
        assert body["access_token"]
        assert body["refresh_token"]
        assert response.cookies.get("accessToken") == body["access_token"]
        assert response.cookies.get("refreshToken") == body["refresh_token"]

    def test_login_with_email(self, client):
        register_user(client, "alice")
        response = client.post(f"{USERS}/login", json={"email": "ALICE@example.com", "password": TEST_PASSWORD})
        assert response.status_code == 200

    def test_wrong_password_and_unknown_user_look_the_same(self, client):
        register_user(client, "alice")
        wrong = client.post(f"{USERS}/login", json={"username": "alice", "password": "nope-nope"})
        unknown = client.post(f"{USERS}/login", json={"username": "nobody", "password": "nope-nope"})

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_identifier_required(self, client):
        response = client.post(f"{USERS}/login", json={"password": TEST_PASSWORD})
        assert response.status_code == 422


class TestSession:
    def test_cookie_authentication(self, client):
        register_user(client, "alice")
        client.post(f"{USERS}/login", json={"username": "alice", "password": TEST_PASSWORD})

        response = client.get(f"{USERS}/current-user")
        assert response.status_code == 200
        assert response.json()["username"] == "alice"

    def test_no_token(self, client):
        response = client.get(f"{USERS}/current-user")
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    def test_garbage_token(self, client):
        response = client.get(f"{USERS}/current-user", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401

    def test_refresh_rotates_tokens(self, client):
        register_user(client, "alice")
        login = client.post(f"{USERS}/login", json={"username": "alice", "password": TEST_PASSWORD}).json()
        client.cookies.clear()

        refreshed = client.post(f"{USERS}/refresh-token", json={"refresh_token": login["refresh_token"]})
        assert refreshed.status_code == 200
        assert refreshed.json()["refresh_token"] != login["refresh_token"]
        client.cookies.clear()

        # The old refresh token was used up
        reused = client.post(f"{USERS}/refresh-token", json={"refresh_token": login["refresh_token"]})
        assert reused.status_code == 401

    def test_refresh_from_cookie(self, client):
        register_user(client, "alice")
        client.post(f"{USERS}/login", json={"username": "alice", "password": TEST_PASSWORD})
        response = client.post(f"{USERS}/refresh-token")
        assert response.status_code == 200

    def test_refresh_requires_token(self, client):
        assert client.post(f"{USERS}/refresh-token").status_code == 401

    def test_access_token_cannot_refresh(self, client):
        register_user(client, "alice")
        login = client.post(f"{USERS}/login", json={"username": "alice", "password": TEST_PASSWORD}).json()
        client.cookies.clear()
        response = client.post(f"{USERS}/refresh-token", json={"refresh_token": login["access_token"]})
        assert response.status_code == 401

    def test_logout_revokes_refresh_token(self, client):
        register_user(client, "alice")
        login = client.post(f"{USERS}/login", json={"username": "alice", "password": TEST_PASSWORD}).json()
        client.cookies.clear()
        headers = {"Authorization": f"Bearer {login['access_token']}"}

        assert client.post(f"{USERS}/logout", headers=headers).status_code == 200
        response = client.post(f"{USERS}/refresh-token", json={"refresh_token": login["refresh_token"]})
        assert response.status_code == 401


class TestAccount:
    def test_change_password(self, client, alice):
        response = client.post(
            f"{USERS}/change-password",
            json={"old_password": TEST_PASSWORD, "new_password": "brand-new-pass", "confirm_password": "brand-new-pass"},
            headers=alice["headers"],
        )
        assert response.status_code == 200
        login_user(client, "alice", "brand-new-pass")
        failed = client.post(f"{USERS}/login", json={"username": "alice", "password": TEST_PASSWORD})
        assert failed.status_code == 401

    def test_change_password_wrong_old_password(self, client, alice):
        response = client.post(
            f"{USERS}/change-password",
            json={"old_password": "wrong-pass", "new_password": "brand-new-pass", "confirm_password": "brand-new-pass"},
            headers=alice["headers"],
        )
        assert response.status_code == 422

    def test_change_password_mismatch(self, client, alice):
        response = client.post(
            f"{USERS}/change-password",
            json={"old_password": TEST_PASSWORD, "new_password": "brand-new-pass", "confirm_password": "different"},
            headers=alice["headers"],
        )
        assert response.status_code == 422

    def test_update_account(self, client, alice):
        response = client.patch(
            f"{USERS}/update-account", json={"full_name": "Alice Liddell"}, headers=alice["headers"]
        )
        assert response.status_code == 200
        assert response.json()["full_name"] == "Alice Liddell"
        assert response.json()["email"] == "alice@example.com"

    def test_update_account_email_taken(self, client, alice, bob):
        response = client.patch(
            f"{USERS}/update-account", json={"email": "bob@example.com"}, headers=alice["headers"]
        )
        assert response.status_code == 409

    def test_update_account_requires_a_field(self, client, alice):
        response = client.patch(f"{USERS}/update-account", json={}, headers=alice["headers"])
        assert response.status_code == 422

    def test_replace_avatar_deletes_old_one(self, client, alice, fake_media):
        old_url = alice["avatar_url"]
        response = client.patch(
            f"{USERS}/avatar", files={"avatar": ("new.png", PNG_BYTES, "image/png")}, headers=alice["headers"]
        )
        assert response.status_code == 200
        assert response.json()["avatar_url"] != old_url
        assert fake_media.destroyed == [(old_url.rsplit("media.test/", 1)[1], "image")]

    def test_cover_image(self, client, alice):
        response = client.patch(
            f"{USERS}/cover-image",
            files={"cover_image": ("cover.jpg", PNG_BYTES, "image/jpeg")},
            headers=alice["headers"],
        )
        assert response.status_code == 200
        assert response.json()["cover_image_url"]


class TestChannel:
    def test_channel_profile(self, client, alice, bob):
        upload_video(client, alice["headers"])
        client.post(f"/api/v1/subscriptions/c/{alice['id']}", headers=bob["headers"])

        response = client.get(f"{USERS}/c/Alice", headers=bob["headers"])
        assert response.status_code == 200
        data = response.json()
        assert data["username"] == "alice"
        assert data["subscriber_count"] == 1
        assert data["subscribed_to_count"] == 0
        assert data["video_count"] == 1
        assert data["is_subscribed"] is True

    def test_anonymous_channel_profile(self, client, alice):
        data = client.get(f"{USERS}/c/alice").json()
        assert data["is_subscribed"] is False

    def test_unknown_channel(self, client):
        assert client.get(f"{USERS}/c/nobody").status_code == 404
        assert client.get(f"{USERS}/c/x").status_code == 404


class TestWatchHistory:
    def test_history_is_most_recent_first(self, client, alice, bob):
        first = upload_video(client, alice["headers"], title="First")
        second = upload_video(client, alice["headers"], title="Second")

        client.get(f"/api/v1/videos/{first['id']}", headers=bob["headers"])
        client.get(f"/api/v1/videos/{second['id']}", headers=bob["headers"])
        client.get(f"/api/v1/videos/{first['id']}", headers=bob["headers"])

        data = client.get(f"{USERS}/history", headers=bob["headers"]).json()
        assert data["total"] == 2
        assert [entry["video"]["title"] for entry in data["items"]] == ["First", "Second"]

    def test_anonymous_views_are_not_recorded(self, client, alice, alice_video):
        client.get(f"/api/v1/videos/{alice_video['id']}")
        data = client.get(f"{USERS}/history", headers=alice["headers"]).json()
        assert data["total"] == 0
