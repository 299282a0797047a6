"""
Tests for playlists and owner-only playlist editing.
"""

import uuid

from conftest import upload_video

PLAYLISTS = "/api/v1/playlists"


def _create(client, user, name="Favourites", **extra):
    response = client.post(PLAYLISTS, json={"name": name, **extra}, headers=user["headers"])
    assert response.status_code == 201, response.text
    return response.json()


class TestCreate:
    def test_create_empty(self, client, alice):
        playlist = _create(client, alice, "  Road trip  ", description="Songs")
        assert playlist["name"] == "Road trip"
        assert playlist["description"] == "Songs"
        assert playlist["owner_id"] == alice["id"]
        assert playlist["video_count"] == 0
        assert playlist["total_duration"] == 0

    def test_create_with_first_video(self, client, bob, alice_video):
        playlist = _create(client, bob, video_id=alice_video["id"])
        assert playlist["video_count"] == 1
        assert playlist["total_duration"] == 42.0

    def test_duplicate_name_for_same_owner(self, client, alice, bob):
        _create(client, alice, "Mix")
        response = client.post(PLAYLISTS, json={"name": "Mix"}, headers=alice["headers"])
        assert response.status_code == 409
        # Another user may reuse the name
        _create(client, bob, "Mix")

    def test_missing_video(self, client, alice):
        response = client.post(PLAYLISTS, json={"name": "x", "video_id": str(uuid.uuid4())}, headers=alice["headers"])
        assert response.status_code == 404

    def test_malformed_video(self, client, alice):
        response = client.post(PLAYLISTS, json={"name": "x", "video_id": "nope"}, headers=alice["headers"])
        assert response.status_code == 400

    def test_requires_auth(self, client):
        assert client.post(PLAYLISTS, json={"name": "x"}).status_code == 401


class TestRead:
    def test_malformed_id(self, client):
        response = client.get(f"{PLAYLISTS}/not-a-valid-id")
        assert response.status_code == 400
        assert response.json()["error"] == "malformed_id"

    def test_missing(self, client):
        assert client.get(f"{PLAYLISTS}/{uuid.uuid4()}").status_code == 404

    def test_detail_lists_videos_newest_added_first(self, client, alice):
        first = upload_video(client, alice["headers"], title="First")
        second = upload_video(client, alice["headers"], title="Second")
        playlist = _create(client, alice, video_id=first["id"])
        client.put(f"{PLAYLISTS}/{playlist['id']}/videos/{second['id']}", headers=alice["headers"])

        data = client.get(f"{PLAYLISTS}/{playlist['id']}").json()

        assert data["owner"]["username"] == "alice"
        assert data["video_count"] == 2
        assert data["total_duration"] == 84.0
        assert [v["title"] for v in data["videos"]] == ["Second", "First"]

    def test_unpublished_videos_hidden_from_others(self, client, alice, bob, alice_video):
        playlist = _create(client, alice, video_id=alice_video["id"])
        client.patch(f"/api/v1/videos/{alice_video['id']}/publish", headers=alice["headers"])

        assert client.get(f"{PLAYLISTS}/{playlist['id']}", headers=bob["headers"]).json()["videos"] == []
        assert len(client.get(f"{PLAYLISTS}/{playlist['id']}", headers=alice["headers"]).json()["videos"]) == 1

    def test_user_playlists(self, client, alice, bob):
        _create(client, alice, "One")
        _create(client, alice, "Two")
        _create(client, bob, "Bob's")

        data = client.get(f"{PLAYLISTS}/user/{alice['id']}").json()
        assert data["total"] == 2
        assert {p["name"] for p in data["items"]} == {"One", "Two"}

    def test_user_playlists_unknown_user(self, client):
        assert client.get(f"{PLAYLISTS}/user/{uuid.uuid4()}").status_code == 404


class TestUpdate:
    def test_owner_renames(self, client, alice):
        playlist = _create(client, alice)
        response = client.patch(f"{PLAYLISTS}/{playlist['id']}", json={"name": "Renamed"}, headers=alice["headers"])
        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"

    def test_rename_to_existing_name(self, client, alice):
        _create(client, alice, "Taken")
        playlist = _create(client, alice, "Other")
        response = client.patch(f"{PLAYLISTS}/{playlist['id']}", json={"name": "Taken"}, headers=alice["headers"])
        assert response.status_code == 409

    def test_non_owner_forbidden(self, client, alice, bob):
        playlist = _create(client, alice)
        response = client.patch(f"{PLAYLISTS}/{playlist['id']}", json={"name": "Mine"}, headers=bob["headers"])
        assert response.status_code == 403
        assert client.get(f"{PLAYLISTS}/{playlist['id']}").json()["name"] == "Favourites"

    def test_requires_a_field(self, client, alice):
        playlist = _create(client, alice)
        assert client.patch(f"{PLAYLISTS}/{playlist['id']}", json={}, headers=alice["headers"]).status_code == 422

    def test_unauthenticated(self, client, alice):
        playlist = _create(client, alice)
        assert client.patch(f"{PLAYLISTS}/{playlist['id']}", json={"name": "x"}).status_code == 401


class TestPlaylistVideos:
    def test_add_and_remove(self, client, alice, bob, alice_video):
        playlist = _create(client, bob)
        url = f"{PLAYLISTS}/{playlist['id']}/videos/{alice_video['id']}"

        added = client.put(url, headers=bob["headers"]).json()
        assert added == {
            "playlist_id": playlist["id"],
            "video_id": alice_video["id"],
            "changed": True,
            "video_count": 1,
        }

        again = client.put(url, headers=bob["headers"]).json()
        assert again["changed"] is False
        assert again["video_count"] == 1

        removed = client.delete(url, headers=bob["headers"]).json()
        assert removed["changed"] is True
        assert removed["video_count"] == 0

        assert client.delete(url, headers=bob["headers"]).status_code == 404

    def test_non_owner_cannot_add_or_remove(self, client, alice, bob, alice_video):
        playlist = _create(client, alice, video_id=alice_video["id"])
        url = f"{PLAYLISTS}/{playlist['id']}/videos/{alice_video['id']}"

        assert client.put(url, headers=bob["headers"]).status_code == 403
        assert client.delete(url, headers=bob["headers"]).status_code == 403
        assert client.get(f"{PLAYLISTS}/{playlist['id']}").json()["video_count"] == 1

    def test_cannot_add_someone_elses_unpublished_video(self, client, alice, bob, alice_video):
        client.patch(f"/api/v1/videos/{alice_video['id']}/publish", headers=alice["headers"])
        playlist = _create(client, bob)
        response = client.put(f"{PLAYLISTS}/{playlist['id']}/videos/{alice_video['id']}", headers=bob["headers"])
        assert response.status_code == 404

    def test_missing_video(self, client, alice):
        playlist = _create(client, alice)
        response = client.put(f"{PLAYLISTS}/{playlist['id']}/videos/{uuid.uuid4()}", headers=alice["headers"])
        assert response.status_code == 404


class TestDelete:
    def test_owner_deletes(self, client, alice, alice_video):
        playlist = _create(client, alice, video_id=alice_video["id"])
        assert client.delete(f"{PLAYLISTS}/{playlist['id']}", headers=alice["headers"]).status_code == 200
        assert client.get(f"{PLAYLISTS}/{playlist['id']}").status_code == 404
        # The video itself survives
        assert client.get(f"/api/v1/videos/{alice_video['id']}").status_code == 200

    def test_non_owner_forbidden(self, client, alice, bob):
        playlist = _create(client, alice)
        assert client.delete(f"{PLAYLISTS}/{playlist['id']}", headers=bob["headers"]).status_code == 403
        assert client.get(f"{PLAYLISTS}/{playlist['id']}").status_code == 200
