"""DuckDB-backed message log.

Appends are durable once ``append`` returns; the broadcast engine is only
ever handed messages that came back from here. ``recent`` is a plain range
read by room (last N, oldest first) for the history endpoint.
"""
import logging
import uuid
from typing import List

import duckdb

from gamerz.store import Database, as_utc, utcnow

from .errors import PersistenceError
from .schemas import StoredMessage

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200


class MessageStore:
    """Append-only message log, one table shared by all rooms."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def append(
        self, room_id: str, sender_id: str, sender_username: str, content: str
    ) -> StoredMessage:
        """Durably store a message.

        Raises:
            PersistenceError: DuckDB rejected the write or is unavailable.
        """
        message_id = str(uuid.uuid4())
        created_at = utcnow()
        try:
            self._db.execute(
                """
                INSERT INTO messages (id, room_id, sender_id, sender_username, content, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [message_id, room_id, sender_id, sender_username, content, created_at],
            )
        except duckdb.Error as exc:
            logger.error("[Store] Append to room %s failed: %s", room_id, exc)
            raise PersistenceError("Message could not be saved") from exc

        return StoredMessage(
            id=message_id,
            roomId=room_id,
            senderId=sender_id,
            senderUsername=sender_username,
            content=content,
            createdAt=as_utc(created_at),
        )

    def recent(self, room_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[StoredMessage]:
        """Return the last *limit* messages of a room, oldest first."""
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        try:
            rows = self._db.fetchall(
                """
                SELECT id, room_id, sender_id, sender_username, content, created_at
                FROM (
                    SELECT * FROM messages
                    WHERE room_id = ?
                    ORDER BY seq DESC
                    LIMIT ?
                )
                ORDER BY seq ASC
                """,
                [room_id, limit],
            )
        except duckdb.Error as exc:
            logger.error("[Store] Reading room %s failed: %s", room_id, exc)
            raise PersistenceError("Message history unavailable") from exc

        return [
            StoredMessage(
                id=row[0],
                roomId=row[1],
                senderId=row[2],
                senderUsername=row[3],
                content=row[4],
                createdAt=as_utc(row[5]),
            )
            for row in rows
        ]

    def count(self, room_id: str) -> int:
        row = self._db.fetchone("SELECT COUNT(*) FROM messages WHERE room_id = ?", [room_id])
        return row[0] if row else 0
