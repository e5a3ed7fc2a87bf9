"""Tests for join/leave and persist-then-broadcast messaging."""
import time
from datetime import datetime, timezone

import pytest

from gamerz.auth.schemas import ApprovalStatus, Identity
from gamerz.chat.connection import Connection
from gamerz.chat.errors import (
    CLOSE_ACCOUNT_BLOCKED,
    InvalidMessage,
    NotFound,
    PermissionDenied,
    PersistenceError,
)
from gamerz.chat.hub import ChatHub
from gamerz.chat.membership import JoinResult
from gamerz.chat.schemas import StoredMessage
from gamerz.config import RealtimeSettings

ROOM = "fps-legends"


class MemoryStore:
    def __init__(self):
        self.messages = []

    def append(self, room_id, sender_id, sender_username, content):
        message = StoredMessage(
            id=f"msg-{len(self.messages) + 1}",
            roomId=room_id,
            senderId=sender_id,
            senderUsername=sender_username,
            content=content,
            createdAt=datetime.now(timezone.utc),
        )
        self.messages.append(message)
        return message


class FailingStore:
    def append(self, room_id, sender_id, sender_username, content):
        raise PersistenceError("Message could not be saved")


class SlowStore(MemoryStore):
    def append(self, room_id, sender_id, sender_username, content):
        time.sleep(0.3)
        return super().append(room_id, sender_id, sender_username, content)


class Rooms:
    def __init__(self, *room_ids):
        self.room_ids = set(room_ids)

    def exists(self, room_id):
        return room_id in self.room_ids


def make_hub(store=None, **settings):
    return ChatHub(
        store if store is not None else MemoryStore(),
        resolver=None,
        directory=Rooms(ROOM, "moba-arena"),
        settings=RealtimeSettings(**settings),
    )


def connect(hub, username, status=ApprovalStatus.APPROVED) -> Connection:
    conn = hub.new_connection()
    hub.registry.register(
        conn, Identity(user_id=f"id-{username}", username=username, approval_status=status)
    )
    return conn


def drain(conn):
    frames = []
    while conn.pending:
        frames.append(conn._queue.get_nowait())
    return frames


class TestJoinLeave:
    def test_join_announces_to_existing_members(self):
        hub = make_hub()
        alice, bob = connect(hub, "alice"), connect(hub, "bob")

        assert hub.chat.join_room(alice, ROOM) == JoinResult.OK
        assert hub.chat.join_room(bob, ROOM) == JoinResult.OK

        assert drain(bob) == []
        assert drain(alice) == [
            {"type": "member_joined", "roomId": ROOM, "userId": "id-bob", "username": "bob"}
        ]

    def test_rejoin_is_silent(self):
        hub = make_hub()
        alice, bob = connect(hub, "alice"), connect(hub, "bob")
        hub.chat.join_room(alice, ROOM)
        hub.chat.join_room(bob, ROOM)
        drain(alice)

        assert hub.chat.join_room(bob, ROOM) == JoinResult.ALREADY_MEMBER
        assert drain(alice) == []

    def test_join_unknown_room(self):
        hub = make_hub()
        with pytest.raises(NotFound):
            hub.chat.join_room(connect(hub, "alice"), "no-such-room")

    def test_pending_user_cannot_join(self):
        hub = make_hub()
        pending = connect(hub, "pending", ApprovalStatus.PENDING)

        with pytest.raises(PermissionDenied) as exc_info:
            hub.chat.join_room(pending, ROOM)

        assert exc_info.value.reason == PermissionDenied.NOT_APPROVED
        assert hub.membership.members_of(ROOM) == []

    def test_approval_checked_before_room_lookup(self):
        hub = make_hub()
        banned = connect(hub, "banned", ApprovalStatus.BANNED)

        with pytest.raises(PermissionDenied) as exc_info:
            hub.chat.join_room(banned, "no-such-room")
        assert exc_info.value.reason == PermissionDenied.BLOCKED

    def test_leave_announces_only_when_member(self):
        hub = make_hub()
        alice, bob = connect(hub, "alice"), connect(hub, "bob")
        hub.chat.join_room(alice, ROOM)
        hub.chat.join_room(bob, ROOM)
        drain(alice)

        assert hub.chat.leave_room(bob, ROOM) is True
        assert hub.chat.leave_room(bob, ROOM) is False
        assert drain(alice) == [
            {"type": "member_left", "roomId": ROOM, "userId": "id-bob", "username": "bob"}
        ]


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_persist_then_broadcast(self):
        store = MemoryStore()
        hub = make_hub(store)
        alice, bob = connect(hub, "alice"), connect(hub, "bob")
        hub.chat.join_room(alice, ROOM)
        hub.chat.join_room(bob, ROOM)
        drain(alice)

        message = await hub.chat.send_message(alice, ROOM, "  gg wp  ")

        assert message.content == "gg wp"
        assert store.messages == [message]
        for conn in (alice, bob):
            (frame,) = drain(conn)
            assert frame["type"] == "new_message"
            assert frame["id"] == message.id
            assert frame["senderUsername"] == "alice"

    @pytest.mark.asyncio
    async def test_sender_must_be_member(self):
        store = MemoryStore()
        hub = make_hub(store)
        alice = connect(hub, "alice")

        with pytest.raises(NotFound):
            await hub.chat.send_message(alice, ROOM, "hello?")
        assert store.messages == []

    @pytest.mark.asyncio
    async def test_pending_user_cannot_send(self):
        store = MemoryStore()
        hub = make_hub(store)
        pending = connect(hub, "pending", ApprovalStatus.PENDING)

        with pytest.raises(PermissionDenied):
            await hub.chat.send_message(pending, ROOM, "let me in")
        assert store.messages == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   ", "x" * 11])
    async def test_invalid_content(self, content):
        store = MemoryStore()
        hub = make_hub(store, max_message_length=10)
        alice = connect(hub, "alice")
        hub.chat.join_room(alice, ROOM)

        with pytest.raises(InvalidMessage):
            await hub.chat.send_message(alice, ROOM, content)
        assert store.messages == []

    @pytest.mark.asyncio
    async def test_store_failure_broadcasts_nothing(self):
        hub = make_hub(FailingStore())
        alice, bob = connect(hub, "alice"), connect(hub, "bob")
        hub.chat.join_room(alice, ROOM)
        hub.chat.join_room(bob, ROOM)
        drain(alice)

        with pytest.raises(PersistenceError):
            await hub.chat.send_message(alice, ROOM, "lost")

        assert drain(alice) == []
        assert drain(bob) == []

    @pytest.mark.asyncio
    async def test_store_timeout_broadcasts_nothing(self):
        hub = make_hub(SlowStore(), persist_timeout_seconds=0.05)
        alice, bob = connect(hub, "alice"), connect(hub, "bob")
        hub.chat.join_room(alice, ROOM)
        hub.chat.join_room(bob, ROOM)
        drain(alice)

        with pytest.raises(PersistenceError, match="Timed out"):
            await hub.chat.send_message(alice, ROOM, "too slow")

        assert drain(alice) == []
        assert drain(bob) == []

    @pytest.mark.asyncio
    async def test_broadcast_runs_after_sender_disconnects(self):
        hub = make_hub()
        alice, bob = connect(hub, "alice"), connect(hub, "bob")
        hub.chat.join_room(alice, ROOM)
        hub.chat.join_room(bob, ROOM)
        drain(alice)
        alice.close()

        message = await hub.chat.send_message(alice, ROOM, "last words")

        (frame,) = drain(bob)
        assert frame["id"] == message.id


class TestPostMessage:
    @pytest.mark.asyncio
    async def test_post_reaches_live_members(self):
        hub = make_hub()
        alice = connect(hub, "alice")
        hub.chat.join_room(alice, ROOM)
        poster = Identity(user_id="id-bob", username="bob", approval_status=ApprovalStatus.APPROVED)

        message = await hub.chat.post_message(poster, ROOM, "from the web")

        (frame,) = drain(alice)
        assert frame["content"] == "from the web"
        assert message.senderId == "id-bob"

    @pytest.mark.asyncio
    async def test_post_to_unknown_room(self):
        hub = make_hub()
        poster = Identity(user_id="id-bob", username="bob", approval_status=ApprovalStatus.APPROVED)

        with pytest.raises(NotFound):
            await hub.chat.post_message(poster, "no-such-room", "hello")


def test_connection_uses_configured_queue_size():
    hub = make_hub(outbound_queue_size=1)
    conn = hub.new_connection()
    assert isinstance(conn, Connection)
    conn.send_direct({"type": "pong"})
    assert conn.pending == 1


class TestApplyStatus:
    def test_ban_leaves_rooms_and_closes(self):
        hub = make_hub()
        alice, troll = connect(hub, "alice"), connect(hub, "troll")
        hub.chat.join_room(alice, ROOM)
        hub.chat.join_room(troll, ROOM)
        hub.chat.join_room(troll, "moba-arena")
        drain(alice)

        banned = Identity(user_id="id-troll", username="troll", approval_status=ApprovalStatus.BANNED)

        assert hub.apply_status(banned) == 1
        assert drain(alice) == [
            {"type": "member_left", "roomId": ROOM, "userId": "id-troll", "username": "troll"}
        ]
        assert hub.membership.rooms_of(troll) == []
        assert troll.closed
        assert troll.close_code == CLOSE_ACCOUNT_BLOCKED
        assert troll.close_reason == "Your account has been banned"

    @pytest.mark.asyncio
    async def test_banned_connection_cannot_send(self):
        store = MemoryStore()
        hub = make_hub(store)
        troll = connect(hub, "troll")
        hub.chat.join_room(troll, ROOM)

        hub.apply_status(
            Identity(user_id="id-troll", username="troll", approval_status=ApprovalStatus.BANNED)
        )

        with pytest.raises(PermissionDenied) as exc_info:
            await hub.chat.send_message(troll, ROOM, "spam")
        assert exc_info.value.reason == PermissionDenied.BLOCKED
        assert store.messages == []

    def test_pending_is_notified_and_stays_open(self):
        hub = make_hub()
        bob = connect(hub, "bob")
        hub.chat.join_room(bob, ROOM)

        hub.apply_status(
            Identity(user_id="id-bob", username="bob", approval_status=ApprovalStatus.PENDING)
        )

        (notice,) = drain(bob)
        assert notice["kind"] == "permission_denied"
        assert notice["reason"] == PermissionDenied.NOT_APPROVED
        assert not bob.closed
        assert hub.membership.room_size(ROOM) == 0

    def test_approval_lets_pending_connection_join(self):
        hub = make_hub()
        newbie = connect(hub, "newbie", ApprovalStatus.PENDING)

        hub.apply_status(
            Identity(user_id="id-newbie", username="newbie", approval_status=ApprovalStatus.APPROVED)
        )

        assert hub.chat.join_room(newbie, ROOM) == JoinResult.OK
        assert drain(newbie) == []

    def test_user_without_connections(self):
        assert make_hub().apply_status(
            Identity(user_id="id-ghost", username="ghost", approval_status=ApprovalStatus.APPROVED)
        ) == 0
