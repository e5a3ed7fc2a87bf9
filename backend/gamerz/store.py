"""DuckDB storage shared by the account, chatroom and message services.

This module owns the single DuckDB connection for the process and the schema
of the three collections the application persists. The service implements
the singleton pattern so every store works against the same connection.

Database Schema:
    users table:
        - id, username (unique), email (unique), password_hash
        - role: 'player' or 'admin'
        - status: 'pending', 'approved', 'rejected' or 'banned'
        - motivation, created_at, updated_at
    chatrooms table:
        - id, name (unique), game, created_at
    messages table:
        - seq: Auto-incrementing insertion order
        - id, room_id, sender_id, sender_username, content, created_at

Thread Safety:
    The DuckDB connection is NOT thread-safe. Message appends run in the
    default executor, so every statement goes through ``_lock``.

Timestamps:
    Stored as naive UTC in TIMESTAMP columns; ``utcnow()`` produces them and
    ``as_utc()`` reattaches the timezone on read.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

import duckdb

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in DuckDB."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a naive timestamp read back from DuckDB."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Database:
    """Singleton wrapper around the process DuckDB connection.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["Database"] = None
    _db_path: str = "gamerz.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open the database and create the schema if it doesn't exist.

        Args:
            db_path: Path to DuckDB file, or ":memory:". Defaults to "gamerz.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._lock = threading.RLock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "Database":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).

        Returns:
            The singleton Database instance.
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and clear the singleton.

        Primarily used for testing to ensure a clean state.
        """
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    @property
    def path(self) -> str:
        return self._db_path

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
            logger.info("Opened DuckDB database at %s", self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create tables and sequences. Safe to call multiple times."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id VARCHAR PRIMARY KEY,
                    username VARCHAR NOT NULL UNIQUE,
                    email VARCHAR NOT NULL UNIQUE,
                    password_hash VARCHAR NOT NULL,
                    role VARCHAR NOT NULL,
                    status VARCHAR NOT NULL,
                    motivation VARCHAR,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS chatrooms (
                    id VARCHAR PRIMARY KEY,
                    name VARCHAR NOT NULL UNIQUE,
                    game VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE SEQUENCE IF NOT EXISTS messages_seq START 1;
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    seq BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
                    id VARCHAR NOT NULL UNIQUE,
                    room_id VARCHAR NOT NULL,
                    sender_id VARCHAR NOT NULL,
                    sender_username VARCHAR NOT NULL,
                    content VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        with self._lock:
            self._get_connection().execute(sql, list(params))

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        with self._lock:
            return self._get_connection().execute(sql, list(params)).fetchone()

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        with self._lock:
            return self._get_connection().execute(sql, list(params)).fetchall()

    def ping(self) -> bool:
        """Return True if the connection answers a trivial query."""
        try:
            return self.fetchone("SELECT 1") == (1,)
        except duckdb.Error as exc:
            logger.warning("Database ping failed: %s", exc)
            return False

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
