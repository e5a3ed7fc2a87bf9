"""Tests for room broadcast fan-out."""
from datetime import datetime, timezone

import pytest

from gamerz.auth.schemas import ApprovalStatus, Identity
from gamerz.chat.broadcast import BroadcastEngine
from gamerz.chat.connection import Connection
from gamerz.chat.membership import RoomMembershipTable
from gamerz.chat.registry import ConnectionRegistry
from gamerz.chat.schemas import MembershipChange, StoredMessage

ROOM = "fps-legends"


def drain(conn: Connection) -> list:
    frames = []
    while conn.pending:
        frames.append(conn._queue.get_nowait())
    return frames


def stored(content="gg", sender="alice") -> StoredMessage:
    return StoredMessage(
        id=f"msg-{content}",
        roomId=ROOM,
        senderId=f"id-{sender}",
        senderUsername=sender,
        content=content,
        createdAt=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def membership(registry):
    return RoomMembershipTable(registry)


@pytest.fixture
def engine(membership):
    return BroadcastEngine(membership)


@pytest.fixture
def member(registry, membership):
    def _member(username, queue_size=256):
        conn = Connection(queue_size=queue_size)
        registry.register(
            conn,
            Identity(user_id=f"id-{username}", username=username, approval_status=ApprovalStatus.APPROVED),
        )
        membership.join(ROOM, conn)
        return conn
    return _member


def test_message_reaches_every_member_including_sender(engine, member):
    alice, bob = member("alice"), member("bob")

    assert engine.broadcast_message(stored()) == 2

    for conn in (alice, bob):
        (frame,) = drain(conn)
        assert frame["type"] == "new_message"
        assert frame["content"] == "gg"
        assert frame["senderId"] == "id-alice"
        assert frame["createdAt"].startswith("2026-01-01T00:00:00")


def test_message_to_empty_room(engine):
    assert engine.broadcast_message(stored()) == 0


def test_closed_member_is_skipped(engine, member):
    alice, bob, carol = member("alice"), member("bob"), member("carol")
    bob.close()

    assert engine.broadcast_message(stored()) == 2
    assert len(drain(alice)) == 1
    assert len(drain(carol)) == 1


def test_full_member_channel_is_skipped(engine, member):
    alice = member("alice")
    slow = member("slow", queue_size=1)
    slow.send_direct({"type": "pong"})

    assert engine.broadcast_message(stored()) == 1
    assert len(drain(alice)) == 1
    assert drain(slow) == [{"type": "pong"}]


def test_unexpected_delivery_error_does_not_stop_fan_out(engine, member, monkeypatch):
    alice, broken, carol = member("alice"), member("broken"), member("carol")

    def explode(event):
        raise RuntimeError("socket gone")

    monkeypatch.setattr(broken, "deliver", explode)

    assert engine.broadcast_message(stored()) == 2
    assert len(drain(alice)) == 1
    assert len(drain(carol)) == 1


def test_membership_change_excludes_subject(engine, member):
    alice, bob = member("alice"), member("bob")

    assert engine.broadcast_membership_change(ROOM, bob, MembershipChange.JOINED) == 1

    assert drain(bob) == []
    assert drain(alice) == [
        {"type": "member_joined", "roomId": ROOM, "userId": "id-bob", "username": "bob"}
    ]


def test_membership_change_for_unidentified_connection(engine, member):
    member("alice")
    assert engine.broadcast_membership_change(ROOM, Connection(), MembershipChange.LEFT) == 0


def test_events_keep_enqueue_order(engine, member):
    alice, bob = member("alice"), member("bob")

    engine.broadcast_membership_change(ROOM, bob, MembershipChange.JOINED)
    engine.broadcast_message(stored("first", sender="bob"))
    engine.broadcast_message(stored("second", sender="bob"))

    assert [f["type"] for f in drain(alice)] == ["member_joined", "new_message", "new_message"]
    assert [f["content"] for f in drain(bob)] == ["first", "second"]
