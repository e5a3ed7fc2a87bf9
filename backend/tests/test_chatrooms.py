"""Tests for the chatroom REST API and the health endpoint."""
from gamerz.auth.schemas import ApprovalStatus


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_health(api_client):
    response = api_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "connected"}


def test_list_is_public_and_seeded(api_client):
    response = api_client.get("/api/chatrooms")

    assert response.status_code == 200
    names = [room["name"] for room in response.json()["data"]]
    assert names == ["battle-royale", "fps-legends", "mmo-guild-hall", "moba-arena"]


def test_get_room_requires_login(api_client, make_user):
    assert api_client.get("/api/chatrooms/fps-legends").status_code == 401

    _, token = make_user(status=ApprovalStatus.PENDING)
    response = api_client.get("/api/chatrooms/fps-legends", headers=auth(token))

    assert response.status_code == 200
    assert response.json()["data"]["game"] == "Counter-Strike 2"


def test_get_unknown_room(api_client, make_user):
    _, token = make_user()
    assert api_client.get("/api/chatrooms/nope", headers=auth(token)).status_code == 404


def test_admin_creates_room(api_client, admin_token):
    response = api_client.post(
        "/api/chatrooms",
        json={"name": "speedrunners", "game": "Celeste"},
        headers=auth(admin_token),
    )

    assert response.status_code == 201
    room_id = response.json()["data"]["id"]
    assert api_client.app.state.chatrooms.exists(room_id)

    duplicate = api_client.post(
        "/api/chatrooms",
        json={"name": "speedrunners", "game": "Celeste"},
        headers=auth(admin_token),
    )
    assert duplicate.status_code == 400


def test_player_cannot_create_room(api_client, make_user):
    _, token = make_user()
    response = api_client.post(
        "/api/chatrooms", json={"name": "mine", "game": "Tetris"}, headers=auth(token)
    )
    assert response.status_code == 403


class TestMessagesEndpoint:
    def test_post_then_history(self, api_client, make_user):
        _, token = make_user("alice")

        for text in ("first", "second"):
            response = api_client.post(
                "/api/chatrooms/fps-legends/messages",
                json={"content": text},
                headers=auth(token),
            )
            assert response.status_code == 201
            assert response.json()["senderUsername"] == "alice"

        history = api_client.get("/api/chatrooms/fps-legends/messages", headers=auth(token))

        assert history.status_code == 200
        body = history.json()
        assert body["count"] == 2
        assert [m["content"] for m in body["messages"]] == ["first", "second"]

    def test_history_limit(self, api_client, make_user):
        _, token = make_user()
        for n in range(3):
            api_client.post(
                "/api/chatrooms/moba-arena/messages", json={"content": f"m{n}"}, headers=auth(token)
            )

        body = api_client.get(
            "/api/chatrooms/moba-arena/messages", params={"limit": 2}, headers=auth(token)
        ).json()

        assert [m["content"] for m in body["messages"]] == ["m1", "m2"]

    def test_pending_user_cannot_post(self, api_client, make_user):
        _, token = make_user(status=ApprovalStatus.PENDING)

        response = api_client.post(
            "/api/chatrooms/fps-legends/messages", json={"content": "hi"}, headers=auth(token)
        )

        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "not_approved"

    def test_empty_message_rejected(self, api_client, make_user):
        _, token = make_user()

        response = api_client.post(
            "/api/chatrooms/fps-legends/messages", json={"content": "   "}, headers=auth(token)
        )

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "invalid_message"

    def test_unknown_room(self, api_client, make_user):
        _, token = make_user()

        assert api_client.get("/api/chatrooms/nope/messages", headers=auth(token)).status_code == 404
        assert api_client.post(
            "/api/chatrooms/nope/messages", json={"content": "hi"}, headers=auth(token)
        ).status_code == 404
