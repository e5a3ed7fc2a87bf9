"""Wiring for the real-time layer.

One ``ChatHub`` per application, created in the lifespan hook and kept on
``app.state``. Everything that needs the registry or the membership table
gets it from the hub instead of a module-level global.
"""
import logging
from typing import Optional

from starlette.requests import HTTPConnection

from gamerz.auth.schemas import Identity
from gamerz.config import RealtimeSettings

from .broadcast import BroadcastEngine
from .connection import Connection
from .errors import CLOSE_ACCOUNT_BLOCKED, DeliveryFailure
from .lifecycle import ConnectionLifecycle, Resolver
from .membership import RoomMembershipTable
from .registry import ConnectionRegistry, approval_error
from .service import ChatService, MessageAppender, RoomDirectory

logger = logging.getLogger(__name__)


class ChatHub:
    """Registry, membership table, broadcast engine and chat service for one process."""

    def __init__(
        self,
        store: MessageAppender,
        resolver: Resolver,
        directory: Optional[RoomDirectory] = None,
        settings: Optional[RealtimeSettings] = None,
    ) -> None:
        self.settings = settings or RealtimeSettings()
        self.resolver = resolver
        self.registry = ConnectionRegistry()
        self.membership = RoomMembershipTable(self.registry)
        self.broadcast = BroadcastEngine(self.membership)
        self.chat = ChatService(
            self.registry,
            self.membership,
            self.broadcast,
            store,
            directory,
            persist_timeout=self.settings.persist_timeout_seconds,
            max_message_length=self.settings.max_message_length,
        )

    def new_connection(self) -> Connection:
        return Connection(queue_size=self.settings.outbound_queue_size)

    def lifecycle_for(self, connection: Connection) -> ConnectionLifecycle:
        return ConnectionLifecycle(
            connection,
            self.registry,
            self.membership,
            self.broadcast,
            self.resolver,
        )

    def apply_status(self, identity: Identity) -> int:
        """Push an account status change to the user's live connections.

        Every connection picks up *identity* at once. A connection that is no
        longer approved leaves all its rooms (members get ``member_left``). A
        pending one is sent the ``not_approved`` error frame; a rejected or
        banned one is closed with ``CLOSE_ACCOUNT_BLOCKED``.

        Returns:
            The number of live connections updated.
        """
        connections = self.registry.refresh(identity)
        error = approval_error(identity)
        if error is None:
            return len(connections)

        for connection in connections:
            for room_id in self.membership.rooms_of(connection):
                self.chat.leave_room(connection, room_id)
            if identity.approval_status.is_blocked:
                connection.close(code=CLOSE_ACCOUNT_BLOCKED, reason=error.message)
                continue
            try:
                connection.send_direct(error.to_frame())
            except DeliveryFailure as exc:
                logger.debug("[Hub] Could not notify %s: %s", connection, exc)
        return len(connections)


def get_hub(conn: HTTPConnection) -> ChatHub:
    """FastAPI dependency: the application's chat hub (HTTP and WebSocket)."""
    return conn.app.state.hub
