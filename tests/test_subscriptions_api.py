"""
Tests for channel subscriptions.
"""

import uuid

SUBSCRIPTIONS = "/api/v1/subscriptions"


class TestToggleSubscription:
    def test_subscribe_and_unsubscribe(self, client, alice, bob):
        url = f"{SUBSCRIPTIONS}/c/{alice['id']}"

        subscribed = client.post(url, headers=bob["headers"]).json()
        assert subscribed["kind"] == "subscription"
        assert subscribed["state"] == "active"
        assert subscribed["total"] == 1

        unsubscribed = client.post(url, headers=bob["headers"]).json()
        assert unsubscribed["state"] == "inactive"
        assert client.get(url).json()["total"] == 0

    def test_cannot_subscribe_to_self(self, client, alice):
        response = client.post(f"{SUBSCRIPTIONS}/c/{alice['id']}", headers=alice["headers"])
        assert response.status_code == 422
        assert client.get(f"{SUBSCRIPTIONS}/c/{alice['id']}").json()["total"] == 0

    def test_unknown_channel(self, client, bob):
        assert client.post(f"{SUBSCRIPTIONS}/c/{uuid.uuid4()}", headers=bob["headers"]).status_code == 404
        assert client.get(f"{SUBSCRIPTIONS}/c/alice").status_code == 400

    def test_requires_auth(self, client, alice):
        assert client.post(f"{SUBSCRIPTIONS}/c/{alice['id']}").status_code == 401


class TestMySubscriptions:
    def test_lists_channels(self, client, alice, bob):
        from conftest import login_user, register_user

        register_user(client, "carol")
        carol_headers = login_user(client, "carol")
        client.post(f"{SUBSCRIPTIONS}/c/{alice['id']}", headers=carol_headers)
        client.post(f"{SUBSCRIPTIONS}/c/{bob['id']}", headers=carol_headers)

        data = client.get(f"{SUBSCRIPTIONS}/me", headers=carol_headers).json()

        assert data["total"] == 2
        assert [item["channel"]["username"] for item in data["items"]] == ["bob", "alice"]
        assert data["items"][0]["channel"]["id"] == bob["id"]

    def test_empty(self, client, alice):
        data = client.get(f"{SUBSCRIPTIONS}/me", headers=alice["headers"]).json()
        assert data["items"] == []
        assert data["total_pages"] == 0
