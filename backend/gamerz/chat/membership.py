"""Room Membership Table: which live connections receive broadcasts for a room.

All operations are synchronous so no other event-loop turn can interleave
with a read-modify-write of a roster. ``members_of`` returns a copy, so a
broadcast iterating it is unaffected by a concurrent ``purge_connection``:
the purged connection is either in the snapshot (and its closed channel
fails delivery) or not in it at all.

Empty rosters are dropped from the dict. That is memory housekeeping only;
the chatroom directory owns whether a room exists.
"""
import logging
from enum import Enum
from typing import Dict, List

from .connection import Connection
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class JoinResult(str, Enum):
    OK = "ok"
    ALREADY_MEMBER = "already_member"


class RoomMembershipTable:
    """Room id → live member connections.

    The table holds non-owning references; connection objects belong to the
    lifecycle controller.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry
        # room_id -> {connection_id -> Connection}; dicts keep join order
        self._rooms: Dict[str, Dict[str, Connection]] = {}

    def join(self, room_id: str, connection: Connection) -> JoinResult:
        """Add *connection* to *room_id*.

        Raises:
            NotFound: The connection is not registered.
            PermissionDenied: The registered identity is not approved.
        """
        self._registry.require_approved(connection)

        roster = self._rooms.setdefault(room_id, {})
        if connection.connection_id in roster:
            return JoinResult.ALREADY_MEMBER

        roster[connection.connection_id] = connection
        connection.rooms.add(room_id)
        logger.debug("[Membership] %s joined %s (%d members)", connection, room_id, len(roster))
        return JoinResult.OK

    def leave(self, room_id: str, connection: Connection) -> bool:
        """Remove *connection* from *room_id*. Returns False if it was not a member."""
        connection.rooms.discard(room_id)
        roster = self._rooms.get(room_id)
        if not roster or roster.pop(connection.connection_id, None) is None:
            return False
        if not roster:
            del self._rooms[room_id]
        logger.debug("[Membership] %s left %s", connection, room_id)
        return True

    def is_member(self, room_id: str, connection: Connection) -> bool:
        return connection.connection_id in self._rooms.get(room_id, {})

    def members_of(self, room_id: str) -> List[Connection]:
        """Snapshot of the current members, taken at call time."""
        return list(self._rooms.get(room_id, {}).values())

    def rooms_of(self, connection: Connection) -> List[str]:
        return sorted(
            room_id for room_id, roster in self._rooms.items()
            if connection.connection_id in roster
        )

    def purge_connection(self, connection: Connection) -> List[str]:
        """Remove *connection* from every room. Returns the rooms it was in."""
        left = self.rooms_of(connection)
        for room_id in left:
            self.leave(room_id, connection)
        connection.rooms.clear()
        if left:
            logger.info("[Membership] Purged %s from %d room(s)", connection, len(left))
        return left

    def room_size(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, {}))

    def active_rooms(self) -> List[str]:
        return sorted(self._rooms)
