"""Room Broadcast Engine: best-effort fan-out of persisted messages.

Delivery means enqueueing on each member's outbound channel, which never
suspends. Because of that:

    - a broadcast runs to completion over its membership snapshot in one
      event-loop turn;
    - a join notification enqueued before a later ``broadcast_message`` is
      ahead of it in every peer's channel;
    - one slow or dead peer cannot hold up the others.

Failed deliveries are logged and skipped. Nothing is retried; stale
connections are cleaned up by the lifecycle controller on disconnect.
"""
import logging

from .connection import Connection
from .errors import DeliveryFailure
from .membership import RoomMembershipTable
from .schemas import MemberEvent, MembershipChange, NewMessageEvent, StoredMessage

logger = logging.getLogger(__name__)


class BroadcastEngine:
    """Fans events out to the current members of a room."""

    def __init__(self, membership: RoomMembershipTable) -> None:
        self._membership = membership

    def broadcast_message(self, message: StoredMessage) -> int:
        """Deliver a persisted message to every current member of its room.

        The sender's own connections are included; echo suppression is up to
        the receiving client.

        Args:
            message: A message that has already been appended to the store.

        Returns:
            Number of members the event was enqueued for.
        """
        event = NewMessageEvent.from_message(message)
        members = self._membership.members_of(message.roomId)
        delivered = self._fan_out(event, members)
        logger.info(
            "[Broadcast] Message %s to room %s: %d/%d delivered",
            message.id,
            message.roomId,
            delivered,
            len(members),
        )
        return delivered

    def broadcast_membership_change(
        self, room_id: str, connection: Connection, kind: MembershipChange
    ) -> int:
        """Tell the other members of *room_id* that *connection* joined or left.

        Returns:
            Number of members notified.
        """
        if connection.identity is None:
            logger.warning("[Broadcast] Skipping %s notice for unidentified %s", kind.value, connection)
            return 0
        event = MemberEvent.build(kind, room_id, connection.identity)
        members = [
            m for m in self._membership.members_of(room_id)
            if m.connection_id != connection.connection_id
        ]
        return self._fan_out(event, members)

    def _fan_out(self, event, members) -> int:
        delivered = 0
        for member in members:
            try:
                member.deliver(event)
            except DeliveryFailure as exc:
                logger.debug("[Broadcast] Delivery to %s failed: %s", member, exc)
                continue
            except Exception as exc:
                logger.warning("[Broadcast] Unexpected delivery error for %s: %s", member, exc)
                continue
            delivered += 1
        return delivered
