"""Join, leave and send: the request side of the real-time layer.

``send_message`` is the only path that produces a ``new_message`` event:

    1. check approval (registry identity, never the payload)
    2. append to the message store under a deadline
    3. on success, hand the stored message to the broadcast engine

A failed or timed-out append raises ``PersistenceError`` and nothing is
broadcast. Once the append succeeded the fan-out always runs, even if the
sending connection has gone away in the meantime.
"""
import asyncio
import functools
import logging
from typing import Optional, Protocol

from gamerz.auth.schemas import Identity

from .broadcast import BroadcastEngine
from .connection import Connection
from .errors import InvalidMessage, NotFound, PersistenceError
from .membership import JoinResult, RoomMembershipTable
from .registry import ConnectionRegistry, check_approved
from .schemas import MembershipChange, StoredMessage

logger = logging.getLogger(__name__)


class MessageAppender(Protocol):
    def append(
        self, room_id: str, sender_id: str, sender_username: str, content: str
    ) -> StoredMessage: ...


class RoomDirectory(Protocol):
    def exists(self, room_id: str) -> bool: ...


class ChatService:
    """Coordinates the registry, membership table, store and broadcast engine.

    Args:
        directory: Room existence check. ``None`` accepts any room id.
        persist_timeout: Seconds an append may take before the send fails.
        max_message_length: Longest accepted content after stripping.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        membership: RoomMembershipTable,
        broadcast: BroadcastEngine,
        store: MessageAppender,
        directory: Optional[RoomDirectory] = None,
        *,
        persist_timeout: float = 5.0,
        max_message_length: int = 2000,
    ) -> None:
        self._registry = registry
        self._membership = membership
        self._broadcast = broadcast
        self._store = store
        self._directory = directory
        self._persist_timeout = persist_timeout
        self._max_message_length = max_message_length

    # =========================================================================
    # Membership
    # =========================================================================

    def join_room(self, connection: Connection, room_id: str) -> JoinResult:
        """Join *connection* to *room_id* and announce it to existing members.

        Raises:
            PermissionDenied: The connection's identity is not approved.
            NotFound: The room is unknown to the chatroom directory.
        """
        self._registry.require_approved(connection)
        self._require_room(room_id)

        result = self._membership.join(room_id, connection)
        if result == JoinResult.OK:
            self._broadcast.broadcast_membership_change(room_id, connection, MembershipChange.JOINED)
        return result

    def leave_room(self, connection: Connection, room_id: str) -> bool:
        """Leave *room_id*. Not being a member is fine."""
        left = self._membership.leave(room_id, connection)
        if left:
            self._broadcast.broadcast_membership_change(room_id, connection, MembershipChange.LEFT)
        return left

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_message(self, connection: Connection, room_id: str, content: str) -> StoredMessage:
        """Persist then broadcast a message from a live connection.

        Raises:
            PermissionDenied: Identity not approved.
            NotFound: The connection has not joined *room_id*.
            InvalidMessage: Empty or over-long content.
            PersistenceError: The append failed or exceeded the deadline.
        """
        identity = self._registry.require_approved(connection)
        if not self._membership.is_member(room_id, connection):
            raise NotFound(f"Join room {room_id} before sending to it")
        return await self._persist_and_broadcast(identity, room_id, content)

    async def post_message(self, identity: Identity, room_id: str, content: str) -> StoredMessage:
        """Persist then broadcast a message submitted over HTTP.

        Raises:
            PermissionDenied, NotFound, InvalidMessage, PersistenceError
        """
        check_approved(identity)
        self._require_room(room_id)
        return await self._persist_and_broadcast(identity, room_id, content)

    async def _persist_and_broadcast(self, identity: Identity, room_id: str, content: str) -> StoredMessage:
        text = self._validate_content(content)
        message = await self._persist(identity, room_id, text)
        self._broadcast.broadcast_message(message)
        return message

    def _validate_content(self, content: str) -> str:
        text = (content or "").strip()
        if not text:
            raise InvalidMessage("Invalid message format: content is required")
        if len(text) > self._max_message_length:
            raise InvalidMessage(
                f"Message too long ({len(text)} > {self._max_message_length} characters)"
            )
        return text

    async def _persist(self, identity: Identity, room_id: str, content: str) -> StoredMessage:
        loop = asyncio.get_running_loop()
        append = functools.partial(
            self._store.append, room_id, identity.user_id, identity.username, content
        )
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, append),
                timeout=self._persist_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "[Chat] Persisting message from %s to %s timed out after %.1fs",
                identity.user_id,
                room_id,
                self._persist_timeout,
            )
            raise PersistenceError("Timed out saving message")

    def _require_room(self, room_id: str) -> None:
        if self._directory is not None and not self._directory.exists(room_id):
            raise NotFound(f"Chatroom {room_id} not found")
