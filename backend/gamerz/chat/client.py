"""Client for the Gamerz real-time chat protocol.

Mirrors the server lifecycle (connecting → authenticating → ready) and adds
the reconnect loop the server leaves to clients:

    - after a transport drop the client waits (exponential backoff) and
      reconnects with the same token;
    - the server does not restore memberships, so after every successful
      (re)connect the client re-issues ``join_room`` for each room the user
      asked for;
    - an authentication rejection is final and is not retried, whether it
      arrives as an error frame or only as a 4401 close; a 4403 close (account
      rejected or banned) is final too;
    - when the retry budget runs out the client is DISCONNECTED.

Usage:
    client = GamerzClient("ws://localhost:3000/ws/chat", token)
    client.on("new_message", print)
    task = asyncio.create_task(client.run())
    await client.wait_ready()
    await client.join_room("fps-legends")
    await client.send_message("fps-legends", "gg")
"""
import asyncio
import inspect
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Set, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from .errors import (
    CLOSE_ACCOUNT_BLOCKED,
    CLOSE_AUTH_FAILED,
    AuthenticationError,
    ChatError,
    InvalidMessage,
    NotFound,
    PermissionDenied,
    PersistenceError,
)
from .lifecycle import TRANSITIONS, ConnectionState

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Union[None, Awaitable[None]]]

# A drop while waiting for the "connected" frame is retried like any other drop.
CLIENT_TRANSITIONS = {
    **TRANSITIONS,
    ConnectionState.AUTHENTICATING: TRANSITIONS[ConnectionState.AUTHENTICATING] | {ConnectionState.CONNECTING},
}

_ERROR_KINDS = {
    AuthenticationError.kind: AuthenticationError,
    PermissionDenied.kind: PermissionDenied,
    PersistenceError.kind: PersistenceError,
    NotFound.kind: NotFound,
    InvalidMessage.kind: InvalidMessage,
}


def error_from_frame(frame: dict) -> ChatError:
    """Rebuild the server's error as the matching ``ChatError`` subclass."""
    cls = _ERROR_KINDS.get(frame.get("kind"), ChatError)
    message = frame.get("error", "")
    if cls is PermissionDenied:
        return PermissionDenied(message, reason=frame.get("reason"))
    return cls(message)


def error_from_close(exc: ConnectionClosed) -> Optional[ChatError]:
    """The final rejection a server close code stands for, or None if retryable."""
    close = exc.rcvd
    if close is None:
        return None
    if close.code == CLOSE_AUTH_FAILED:
        return AuthenticationError(close.reason or "Authentication failed")
    if close.code == CLOSE_ACCOUNT_BLOCKED:
        return PermissionDenied(close.reason or "Account blocked", reason=PermissionDenied.BLOCKED)
    return None


@dataclass
class ReconnectPolicy:
    """Exponential backoff between reconnect attempts.

    Attributes:
        initial_delay: Seconds before the first retry.
        max_delay: Upper bound for any single wait.
        multiplier: Growth factor per failed attempt.
        max_attempts: Consecutive failures allowed; ``None`` retries forever.
    """
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    max_attempts: Optional[int] = 8

    def delay_for(self, attempt: int) -> float:
        """Wait before retry number *attempt* (1-based)."""
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt > self.max_attempts

    def delays(self) -> Iterator[float]:
        for attempt in itertools.count(1):
            if self.exhausted(attempt):
                return
            yield self.delay_for(attempt)


class GamerzClient:
    """Reconnecting WebSocket client for one user session."""

    def __init__(
        self,
        url: str,
        token: str,
        *,
        policy: Optional[ReconnectPolicy] = None,
        connect: Callable[[str], Any] = websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._url = url
        self._token = token
        self.policy = policy or ReconnectPolicy()
        self._connect = connect
        self._sleep = sleep

        self._state = ConnectionState.CONNECTING
        self._ws = None
        self._stopped = False
        self._ready = asyncio.Event()
        self._handlers: Dict[str, List[Handler]] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._request_ids = itertools.count(1)

        self.rooms: Set[str] = set()
        self.user: Optional[dict] = None
        self.connection_id: Optional[str] = None
        self.connects = 0

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _move(self, target: ConnectionState) -> None:
        if self._state == target:
            return
        if target not in CLIENT_TRANSITIONS[self._state]:
            raise ChatError(f"Cannot move from {self._state.value} to {target.value}")
        logger.debug("[Client] %s -> %s", self._state.value, target.value)
        self._state = target
        if target == ConnectionState.READY:
            self._ready.set()
        else:
            self._ready.clear()

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._ready.wait(), timeout)

    # =========================================================================
    # Event handlers
    # =========================================================================

    def on(self, event_type: str, handler: Handler) -> None:
        """Register *handler* for server events of *event_type* (e.g. "new_message")."""
        self._handlers.setdefault(event_type, []).append(handler)

    async def _dispatch(self, frame: dict) -> None:
        request_id = frame.get("requestId")
        if request_id is not None and request_id in self._pending:
            future = self._pending.pop(request_id)
            if not future.done():
                if frame.get("type") == "error":
                    future.set_exception(error_from_frame(frame))
                else:
                    future.set_result(frame)
            return

        for handler in self._handlers.get(frame.get("type", ""), []):
            try:
                result = handler(frame)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("[Client] Handler for %s failed: %s", frame.get("type"), exc)

    # =========================================================================
    # Requests
    # =========================================================================

    async def _request(self, payload: dict) -> dict:
        if self._state != ConnectionState.READY or self._ws is None:
            raise ConnectionError("Not connected")
        request_id = str(next(self._request_ids))
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._ws.send(json.dumps({**payload, "requestId": request_id}))
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def join_room(self, room_id: str) -> Optional[dict]:
        """Join *room_id* now (if connected) and after every reconnect."""
        self.rooms.add(room_id)
        if self._state != ConnectionState.READY:
            return None
        try:
            return await self._request({"type": "join_room", "roomId": room_id})
        except ChatError:
            self.rooms.discard(room_id)
            raise

    async def leave_room(self, room_id: str) -> Optional[dict]:
        self.rooms.discard(room_id)
        if self._state != ConnectionState.READY:
            return None
        return await self._request({"type": "leave_room", "roomId": room_id})

    async def send_message(self, room_id: str, content: str) -> dict:
        """Send a message; returns the ``message_saved`` ack.

        Raises:
            ChatError: The server rejected the message.
            ConnectionError: Not connected.
        """
        return await self._request({"type": "send_message", "roomId": room_id, "content": content})

    async def _rejoin(self) -> None:
        for room_id in sorted(self.rooms):
            try:
                await self._request({"type": "join_room", "roomId": room_id})
            except ChatError as exc:
                logger.warning("[Client] Re-join of %s failed: %s", room_id, exc.message)
                self.rooms.discard(room_id)

    # =========================================================================
    # Connection loop
    # =========================================================================

    def _connect_url(self) -> str:
        separator = "&" if "?" in self._url else "?"
        return f"{self._url}{separator}{urlencode({'token': self._token})}"

    async def run(self) -> None:
        """Connect and keep reconnecting until closed, rejected or out of retries.

        Raises:
            AuthenticationError: The server refused the token.
            PermissionDenied: The server closed the session because the
                account was rejected or banned.
        """
        attempt = 0
        while not self._stopped:
            self._move(ConnectionState.CONNECTING)
            connects_before = self.connects
            try:
                async with self._connect(self._connect_url()) as ws:
                    self._ws = ws
                    await self._session(ws)
            except AuthenticationError:
                self._move(ConnectionState.DISCONNECTED)
                raise
            except ConnectionClosed as exc:
                final = error_from_close(exc)
                if final is not None:
                    self._move(ConnectionState.DISCONNECTED)
                    raise final from exc
                logger.info("[Client] Connection lost: %s", exc)
            except OSError as exc:
                logger.info("[Client] Connection lost: %s", exc)
            finally:
                self._ws = None
                self._fail_pending()

            if self._stopped:
                break
            if self.connects > connects_before:
                attempt = 0
            attempt += 1
            if self.policy.exhausted(attempt):
                logger.warning("[Client] Giving up after %d attempt(s)", attempt - 1)
                break
            delay = self.policy.delay_for(attempt)
            logger.info("[Client] Reconnecting in %.1fs (attempt %d)", delay, attempt)
            await self._sleep(delay)

        if self._state != ConnectionState.DISCONNECTED:
            self._move(ConnectionState.DISCONNECTED)

    async def _session(self, ws) -> None:
        self._move(ConnectionState.AUTHENTICATING)
        first = json.loads(await ws.recv())
        if first.get("type") == "error":
            raise error_from_frame(first)
        if first.get("type") != "connected":
            raise ConnectionError(f"Unexpected first frame: {first.get('type')}")

        self.user = first.get("user")
        self.connection_id = first.get("connectionId")
        self.connects += 1
        self._move(ConnectionState.READY)
        logger.info("[Client] Connected as %s", (self.user or {}).get("username"))

        rejoin = asyncio.create_task(self._rejoin())
        try:
            async for raw in ws:
                await self._dispatch(json.loads(raw))
        finally:
            if not rejoin.done():
                rejoin.cancel()

    def _fail_pending(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError("Connection lost"))
        self._pending.clear()

    async def close(self) -> None:
        """Stop reconnecting and close the socket."""
        self._stopped = True
        if self._ws is not None:
            await self._ws.close()
