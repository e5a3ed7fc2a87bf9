"""Chatroom directory.

Rooms are created by seeding or by an administrator and are never removed
by the real-time layer. The membership table asks ``exists`` before letting
a connection join.
"""
import logging
import uuid
from typing import Iterable, List, Optional

import duckdb

from gamerz.config import ChatroomSeed
from gamerz.store import Database, as_utc, utcnow

from .schemas import Chatroom

logger = logging.getLogger(__name__)


class ChatroomExists(Exception):
    pass


class ChatroomDirectory:
    """Chatroom records backed by the shared DuckDB database."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def list_rooms(self) -> List[Chatroom]:
        """All chatrooms sorted by name."""
        rows = self._db.fetchall("SELECT id, name, game, created_at FROM chatrooms ORDER BY name")
        return [self._to_room(r) for r in rows]

    def get(self, room_id: str) -> Optional[Chatroom]:
        row = self._db.fetchone(
            "SELECT id, name, game, created_at FROM chatrooms WHERE id = ?", [room_id]
        )
        return self._to_room(row) if row else None

    def get_by_name(self, name: str) -> Optional[Chatroom]:
        row = self._db.fetchone(
            "SELECT id, name, game, created_at FROM chatrooms WHERE name = ?", [name]
        )
        return self._to_room(row) if row else None

    def exists(self, room_id: str) -> bool:
        return self._db.fetchone("SELECT 1 FROM chatrooms WHERE id = ?", [room_id]) is not None

    def create(self, name: str, game: str, room_id: Optional[str] = None) -> Chatroom:
        """Create a chatroom. Names are unique.

        Args:
            room_id: Explicit id; a UUID is generated when omitted.

        Raises:
            ChatroomExists: A room with this name or id already exists.
        """
        room_id = room_id or str(uuid.uuid4())
        now = utcnow()
        try:
            self._db.execute(
                "INSERT INTO chatrooms (id, name, game, created_at) VALUES (?, ?, ?, ?)",
                [room_id, name, game, now],
            )
        except duckdb.ConstraintException:
            raise ChatroomExists(f"Chatroom {name} already exists")
        logger.info("Created chatroom %s (%s) for %s", name, room_id, game)
        return Chatroom(id=room_id, name=name, game=game, createdAt=as_utc(now))

    def seed(self, defaults: Iterable[ChatroomSeed]) -> int:
        """Create any missing default rooms, using the room name as its id.

        Returns:
            Number of rooms created.
        """
        created = 0
        for entry in defaults:
            if self.get_by_name(entry.name) is None and not self.exists(entry.name):
                self.create(entry.name, entry.game, room_id=entry.name)
                created += 1
        if created:
            logger.info("Seeded %d chatroom(s)", created)
        return created

    @staticmethod
    def _to_room(row: tuple) -> Chatroom:
        return Chatroom(id=row[0], name=row[1], game=row[2], createdAt=as_utc(row[3]))
