"""Tests for the server-side connection lifecycle."""
import pytest

from gamerz.auth.schemas import ApprovalStatus, Identity
from gamerz.chat.errors import AuthenticationError, InvalidTransition
from gamerz.chat.hub import ChatHub
from gamerz.chat.lifecycle import ConnectionState, check_transition


class FakeResolver:
    """Maps tokens to identities; anything else is rejected."""

    def __init__(self, **identities):
        self.identities = identities

    async def resolve_async(self, credential):
        try:
            return self.identities[credential]
        except KeyError:
            raise AuthenticationError("Invalid token")


class NullStore:
    def append(self, room_id, sender_id, sender_username, content):
        raise AssertionError("not used")


def player(username, status=ApprovalStatus.APPROVED):
    return Identity(user_id=f"id-{username}", username=username, approval_status=status)


@pytest.fixture
def hub():
    resolver = FakeResolver(
        alice=player("alice"),
        bob=player("bob"),
        pending=player("pending", ApprovalStatus.PENDING),
    )
    return ChatHub(NullStore(), resolver)


def drain(conn):
    frames = []
    while conn.pending:
        frames.append(conn._queue.get_nowait())
    return frames


@pytest.mark.asyncio
async def test_authenticate_registers_connection(hub):
    lifecycle = hub.lifecycle_for(hub.new_connection())
    assert lifecycle.state == ConnectionState.CONNECTING

    identity = await lifecycle.authenticate("alice")

    assert identity.username == "alice"
    assert lifecycle.state == ConnectionState.READY
    assert hub.registry.lookup(lifecycle.connection) == identity


@pytest.mark.asyncio
async def test_pending_user_still_connects(hub):
    lifecycle = hub.lifecycle_for(hub.new_connection())

    identity = await lifecycle.authenticate("pending")

    assert lifecycle.state == ConnectionState.READY
    assert identity.approval_status == ApprovalStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.parametrize("credential", [None, "", "forged"])
async def test_failed_authentication_disconnects(hub, credential):
    lifecycle = hub.lifecycle_for(hub.new_connection())

    with pytest.raises(AuthenticationError):
        await lifecycle.authenticate(credential)

    assert lifecycle.state == ConnectionState.DISCONNECTED
    assert lifecycle.connection.closed
    assert lifecycle.connection not in hub.registry
    assert hub.membership.active_rooms() == []


@pytest.mark.asyncio
async def test_disconnect_notifies_rooms_and_purges(hub):
    alice = hub.lifecycle_for(hub.new_connection())
    bob = hub.lifecycle_for(hub.new_connection())
    await alice.authenticate("alice")
    await bob.authenticate("bob")
    for room in ("fps-legends", "moba-arena"):
        hub.membership.join(room, alice.connection)
        hub.membership.join(room, bob.connection)

    rooms = bob.disconnect()

    assert rooms == ["fps-legends", "moba-arena"]
    assert bob.state == ConnectionState.DISCONNECTED
    assert bob.connection.closed
    assert bob.connection not in hub.registry
    assert hub.membership.rooms_of(bob.connection) == []
    assert drain(alice.connection) == [
        {"type": "member_left", "roomId": "fps-legends", "userId": "id-bob", "username": "bob"},
        {"type": "member_left", "roomId": "moba-arena", "userId": "id-bob", "username": "bob"},
    ]


@pytest.mark.asyncio
async def test_disconnect_runs_once(hub):
    alice = hub.lifecycle_for(hub.new_connection())
    bob = hub.lifecycle_for(hub.new_connection())
    await alice.authenticate("alice")
    await bob.authenticate("bob")
    hub.membership.join("fps-legends", alice.connection)
    hub.membership.join("fps-legends", bob.connection)

    bob.disconnect()
    assert bob.disconnect() == []
    assert len(drain(alice.connection)) == 1


def test_disconnect_before_authentication(hub):
    lifecycle = hub.lifecycle_for(hub.new_connection())

    assert lifecycle.disconnect() == []
    assert lifecycle.state == ConnectionState.DISCONNECTED


@pytest.mark.parametrize(
    "current, target",
    [
        (ConnectionState.CONNECTING, ConnectionState.READY),
        (ConnectionState.READY, ConnectionState.AUTHENTICATING),
        (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
    ],
)
def test_illegal_transitions(current, target):
    with pytest.raises(InvalidTransition):
        check_transition(current, target)
