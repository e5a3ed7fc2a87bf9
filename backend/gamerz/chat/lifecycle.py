"""Connection Lifecycle Controller.

State machine for one real-time session:

    CONNECTING ──► AUTHENTICATING ──► READY ──► DISCONNECTED
         ▲                │              │
         └────────────────┼──────────────┘  (client reconnect only)
                          └──────────────────► DISCONNECTED (auth failed)

On the server a transport drop always ends the connection: a client that
reconnects gets a brand-new connection with no memberships and must re-join
its rooms. The client-side controller (``gamerz.chat.client``) uses the
READY → CONNECTING edge for its retry loop.
"""
import logging
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Protocol

from gamerz.auth.schemas import Identity

from .broadcast import BroadcastEngine
from .connection import Connection
from .errors import AuthenticationError, InvalidTransition
from .membership import RoomMembershipTable
from .registry import ConnectionRegistry
from .schemas import MembershipChange

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    DISCONNECTED = "disconnected"


TRANSITIONS: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    ConnectionState.CONNECTING: frozenset({ConnectionState.AUTHENTICATING, ConnectionState.DISCONNECTED}),
    ConnectionState.AUTHENTICATING: frozenset({ConnectionState.READY, ConnectionState.DISCONNECTED}),
    ConnectionState.READY: frozenset({ConnectionState.CONNECTING, ConnectionState.DISCONNECTED}),
    ConnectionState.DISCONNECTED: frozenset(),
}


def check_transition(current: ConnectionState, target: ConnectionState) -> None:
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(f"Cannot move from {current.value} to {target.value}")


class Resolver(Protocol):
    async def resolve_async(self, credential: str) -> Identity: ...


class ConnectionLifecycle:
    """Owns one server-side connection from accept to teardown."""

    def __init__(
        self,
        connection: Connection,
        registry: ConnectionRegistry,
        membership: RoomMembershipTable,
        broadcast: BroadcastEngine,
        resolver: Resolver,
    ) -> None:
        self.connection = connection
        self._registry = registry
        self._membership = membership
        self._broadcast = broadcast
        self._resolver = resolver
        self._state = ConnectionState.CONNECTING

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _move(self, target: ConnectionState) -> None:
        check_transition(self._state, target)
        logger.debug("[Lifecycle] %s %s -> %s", self.connection, self._state.value, target.value)
        self._state = target

    async def authenticate(self, credential: Optional[str]) -> Identity:
        """Resolve *credential* and register the connection.

        Raises:
            AuthenticationError: Resolution failed. The lifecycle is then
                DISCONNECTED; no membership was ever created.
        """
        self._move(ConnectionState.AUTHENTICATING)
        try:
            if not credential:
                raise AuthenticationError("No token provided")
            identity = await self._resolver.resolve_async(credential)
        except AuthenticationError:
            self._move(ConnectionState.DISCONNECTED)
            self.connection.close()
            raise

        self._registry.register(self.connection, identity)
        self._move(ConnectionState.READY)
        return identity

    def disconnect(self) -> List[str]:
        """Tear the connection down exactly once.

        For a READY connection: notify each joined room with ``member_left``,
        purge memberships, then drop the identity record. Repeat calls are
        no-ops.

        Returns:
            The rooms the connection was removed from.
        """
        if self._state == ConnectionState.DISCONNECTED:
            return []

        rooms: List[str] = []
        if self._state == ConnectionState.READY:
            rooms = self._membership.rooms_of(self.connection)
            for room_id in rooms:
                self._broadcast.broadcast_membership_change(
                    room_id, self.connection, MembershipChange.LEFT
                )
            self._membership.purge_connection(self.connection)
            self._registry.unregister(self.connection)

        self._move(ConnectionState.DISCONNECTED)
        self.connection.close()
        logger.info("[Lifecycle] %s disconnected (left %d room(s))", self.connection, len(rooms))
        return rooms
