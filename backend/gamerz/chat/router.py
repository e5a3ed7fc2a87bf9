"""Real-time chat WebSocket endpoint.

This module provides:
    - WebSocket /ws/chat: one connection per client, any number of rooms

Protocol Flow:
    1. Client connects with its session token (cookie, Bearer header or
       ?token=). Server accepts, then authenticates.
       → on failure: {type: "error", kind: "authentication_error"}, close 4401
       → on success: {type: "connected", connectionId, user: {...}}
    2. Client sends: {type: "join_room", roomId}
       → Server replies: {type: "joined", roomId, alreadyMember}
       → Other members get: {type: "member_joined", roomId, userId, username}
    3. Client sends: {type: "send_message", roomId, content}
       → Every member (sender included) gets: {type: "new_message", ...}
       → Sender then gets: {type: "message_saved", id, roomId, createdAt}
    4. Client sends: {type: "leave_room", roomId}
       → Server replies: {type: "left", roomId}
       → Other members get: {type: "member_left", ...}
    5. On disconnect → remaining members of each joined room get member_left.
    6. An admin changes the account status → live connections pick it up at
       once. Pending: rooms are left and {type: "error", kind:
       "permission_denied", reason: "not_approved"} is pushed. Rejected or
       banned: rooms are left and the socket is closed with 4403.

SECURITY MODEL:
    - Identity and approval status come from the token, resolved at connect
      time and refreshed only by an admin status change. Any userId/status
      fields in client frames are ignored.
    - Only text frames carry requests; a binary frame gets invalid_message.
    - Memberships are not restored on reconnect; clients re-join.

Every frame a client sends may carry a ``requestId``; it is echoed on the
reply (ack or error) for that request.
"""
import asyncio
import contextlib
import json
import logging
from typing import Annotated

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import Field, TypeAdapter, ValidationError

from gamerz.auth.dependencies import extract_credential

from .connection import Connection
from .errors import (
    CLOSE_AUTH_FAILED,
    AuthenticationError,
    ChatError,
    DeliveryFailure,
    InvalidMessage,
)
from .hub import ChatHub
from .membership import JoinResult
from .schemas import (
    ClientRequest,
    JoinRoomRequest,
    LeaveRoomRequest,
    PingRequest,
    SendMessageRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_request_adapter = TypeAdapter(Annotated[ClientRequest, Field(discriminator="type")])


def parse_request(raw: str) -> ClientRequest:
    """Parse one client frame.

    Raises:
        InvalidMessage: Not JSON, unknown ``type``, or missing fields.
    """
    try:
        return _request_adapter.validate_json(raw)
    except ValidationError as exc:
        try:
            frame_type = json.loads(raw).get("type")
        except (ValueError, AttributeError):
            raise InvalidMessage("Invalid message format: expected a JSON object")
        if not frame_type:
            raise InvalidMessage("Invalid message format: type is required")
        logger.debug("[WS] Rejected %s frame: %s", frame_type, exc.errors())
        raise InvalidMessage(f"Invalid {frame_type} request")


def _reply(connection: Connection, frame: dict, request_id=None) -> None:
    if request_id is not None:
        frame["requestId"] = request_id
    try:
        connection.send_direct(frame)
    except DeliveryFailure as exc:
        logger.debug("[WS] Could not reply to %s: %s", connection, exc)


async def handle_request(hub: ChatHub, connection: Connection, request: ClientRequest) -> dict:
    """Run one client request and return the ack frame.

    Raises:
        ChatError: The request failed; the caller turns it into an error frame.
    """
    if isinstance(request, JoinRoomRequest):
        result = hub.chat.join_room(connection, request.roomId)
        return {
            "type": "joined",
            "roomId": request.roomId,
            "alreadyMember": result == JoinResult.ALREADY_MEMBER,
        }

    if isinstance(request, LeaveRoomRequest):
        hub.chat.leave_room(connection, request.roomId)
        return {"type": "left", "roomId": request.roomId}

    if isinstance(request, SendMessageRequest):
        message = await hub.chat.send_message(connection, request.roomId, request.content)
        return {
            "type": "message_saved",
            "id": message.id,
            "roomId": message.roomId,
            "createdAt": message.model_dump(mode="json")["createdAt"],
        }

    if isinstance(request, PingRequest):
        return {"type": "pong"}

    raise InvalidMessage(f"Unsupported request type: {request.type}")


async def _pump(websocket: WebSocket, connection: Connection) -> None:
    """Drain the connection's outbound channel onto the socket."""
    try:
        async for frame in connection.events():
            await websocket.send_json(frame)
        if connection.close_code is not None:
            await websocket.close(code=connection.close_code, reason=connection.close_reason)
    except Exception as exc:
        # The socket went away mid-write; the receive loop sees the disconnect.
        logger.debug("[WS] Pump for %s stopped: %s", connection, exc)


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time room messaging.

    Args:
        websocket: The WebSocket connection.
    """
    hub: ChatHub = websocket.app.state.hub
    connection = hub.new_connection()
    lifecycle = hub.lifecycle_for(connection)

    await websocket.accept()

    try:
        identity = await lifecycle.authenticate(extract_credential(websocket))
    except AuthenticationError as exc:
        logger.info("[WS] Authentication failed for %s: %s", connection.connection_id, exc.message)
        await websocket.send_json(exc.to_frame())
        await websocket.close(code=CLOSE_AUTH_FAILED)
        return

    logger.info(
        "[WS] %s connected as %s (%s)",
        connection.connection_id,
        identity.username,
        identity.approval_status.value,
    )
    _reply(connection, {
        "type": "connected",
        "connectionId": connection.connection_id,
        "user": identity.to_wire(),
    })
    pump = asyncio.create_task(_pump(websocket, connection))

    try:
        while not connection.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            request_id = None
            try:
                if raw is None:
                    raise InvalidMessage("Invalid message format: expected a text frame")
                request = parse_request(raw)
                request_id = request.requestId
                ack = await handle_request(hub, connection, request)
            except ChatError as exc:
                logger.info("[WS] %s request failed: %s", connection, exc.message)
                _reply(connection, exc.to_frame(), request_id)
                continue
            _reply(connection, ack, request_id)
    except WebSocketDisconnect:
        logger.info("[WS] %s disconnected by client", connection)
    finally:
        lifecycle.disconnect()
        pump.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pump
