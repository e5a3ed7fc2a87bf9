"""One live, authenticated real-time session and its outbound channel.

The broadcast engine never touches the transport directly. It enqueues
events on the connection's channel without suspending; the transport pump
(``events()``) drains the channel and writes to the socket. A closed or
full channel raises ``DeliveryFailure`` to the caller of ``deliver``.
"""
import asyncio
import logging
import uuid
from typing import AsyncIterator, Optional, Set

from pydantic import BaseModel

from gamerz.auth.schemas import Identity

from .errors import DeliveryFailure

logger = logging.getLogger(__name__)

_CLOSED = object()


class Connection:
    """A transport session known to the chat layer.

    Attributes:
        connection_id: Opaque id assigned by the server on accept.
        identity: Resolved identity, set by the lifecycle once authenticated.
        rooms: Room ids this connection has joined (kept in step with the
            membership table).
    """

    def __init__(self, connection_id: Optional[str] = None, queue_size: int = 256) -> None:
        self.connection_id = connection_id or str(uuid.uuid4())
        self.identity: Optional[Identity] = None
        self.rooms: Set[str] = set()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self.close_code: Optional[int] = None
        self.close_reason = ""

    def __repr__(self) -> str:
        user = self.identity.username if self.identity else "?"
        return f"<Connection {self.connection_id[:8]} user={user}>"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of events waiting to be written to the transport."""
        return self._queue.qsize()

    def deliver(self, event: BaseModel) -> None:
        """Enqueue *event* for the transport without suspending.

        Raises:
            DeliveryFailure: The channel is closed or full.
        """
        if self._closed:
            raise DeliveryFailure(f"connection {self.connection_id} is closed")
        try:
            self._queue.put_nowait(event.model_dump(mode="json"))
        except asyncio.QueueFull:
            raise DeliveryFailure(f"outbound channel full for connection {self.connection_id}")

    def send_direct(self, frame: dict) -> None:
        """Enqueue a reply frame (acks, errors) addressed to this connection only."""
        if self._closed:
            raise DeliveryFailure(f"connection {self.connection_id} is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            raise DeliveryFailure(f"outbound channel full for connection {self.connection_id}")

    def close(self, code: Optional[int] = None, reason: str = "") -> None:
        """Stop accepting events and wake the drain loop. Idempotent.

        A *code* asks the transport pump to close the socket itself with that
        close code; without one the transport is already going away.
        """
        if self._closed:
            return
        self._closed = True
        self.close_code = code
        self.close_reason = reason
        # Drop undelivered events so the sentinel always fits.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[dict]:
        """Yield outbound frames in FIFO order until the channel is closed."""
        while True:
            frame = await self._queue.get()
            if frame is _CLOSED:
                return
            yield frame
