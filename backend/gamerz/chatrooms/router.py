"""Chatroom REST API.

Endpoints:
    GET  /api/chatrooms                      - List chatrooms (public)
    POST /api/chatrooms                      - Create a chatroom (admin)
    GET  /api/chatrooms/{room_id}            - One chatroom (authenticated)
    GET  /api/chatrooms/{room_id}/messages   - Recent messages (authenticated)
    POST /api/chatrooms/{room_id}/messages   - Send a message (approved users)
    GET  /api/chatrooms/{room_id}/members    - Live members (authenticated)

Messages posted here take the same persist-then-broadcast path as
``send_message`` over the WebSocket, so live members see them immediately.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from gamerz.auth.dependencies import get_current_identity, require_admin
from gamerz.auth.schemas import Identity
from gamerz.chat.errors import ChatError, PermissionDenied
from gamerz.chat.hub import ChatHub, get_hub
from gamerz.chat.schemas import PostMessageRequest, StoredMessage
from gamerz.chat.store import DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT, MessageStore

from .schemas import (
    ChatroomCreate,
    ChatroomListResponse,
    ChatroomResponse,
    MessageListResponse,
    RoomMember,
    RoomMembersResponse,
)
from .service import ChatroomDirectory, ChatroomExists

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chatrooms", tags=["chatrooms"])


def get_directory(request: Request) -> ChatroomDirectory:
    return request.app.state.chatrooms


def get_message_store(request: Request) -> MessageStore:
    return request.app.state.messages


def _http_error(exc: ChatError) -> HTTPException:
    detail = {"kind": exc.kind, "message": exc.message}
    if isinstance(exc, PermissionDenied) and exc.reason:
        detail["reason"] = exc.reason
    return HTTPException(status_code=exc.status_code, detail=detail)


@router.get("", response_model=ChatroomListResponse)
async def list_chatrooms(directory: ChatroomDirectory = Depends(get_directory)) -> ChatroomListResponse:
    """List all chatrooms sorted by name. Public."""
    return ChatroomListResponse(
        message="Chatrooms retrieved successfully",
        data=directory.list_rooms(),
    )


@router.post("", response_model=ChatroomResponse, status_code=status.HTTP_201_CREATED)
async def create_chatroom(
    body: ChatroomCreate,
    _admin: Identity = Depends(require_admin),
    directory: ChatroomDirectory = Depends(get_directory),
) -> ChatroomResponse:
    try:
        room = directory.create(body.name, body.game)
    except ChatroomExists as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return ChatroomResponse(message="Chatroom created successfully", data=room)


@router.get("/{room_id}", response_model=ChatroomResponse)
async def get_chatroom(
    room_id: str,
    _identity: Identity = Depends(get_current_identity),
    directory: ChatroomDirectory = Depends(get_directory),
) -> ChatroomResponse:
    room = directory.get(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Chatroom not found")
    return ChatroomResponse(message="Chatroom retrieved successfully", data=room)


@router.get("/{room_id}/messages", response_model=MessageListResponse)
async def get_messages(
    room_id: str,
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
    _identity: Identity = Depends(get_current_identity),
    directory: ChatroomDirectory = Depends(get_directory),
    store: MessageStore = Depends(get_message_store),
) -> MessageListResponse:
    """Most recent messages of a room, oldest first."""
    if not directory.exists(room_id):
        raise HTTPException(status_code=404, detail="Chatroom not found")
    try:
        messages = store.recent(room_id, limit)
    except ChatError as exc:
        raise _http_error(exc)
    return MessageListResponse(messages=messages, count=len(messages))


@router.post("/{room_id}/messages", response_model=StoredMessage, status_code=status.HTTP_201_CREATED)
async def post_message(
    room_id: str,
    body: PostMessageRequest,
    identity: Identity = Depends(get_current_identity),
    hub: ChatHub = Depends(get_hub),
) -> StoredMessage:
    """Persist a message and broadcast it to the room's live members."""
    try:
        message = await hub.chat.post_message(identity, room_id, body.content)
    except ChatError as exc:
        logger.info("Message from %s to %s rejected: %s", identity.username, room_id, exc.kind)
        raise _http_error(exc)
    return message


@router.get("/{room_id}/members", response_model=RoomMembersResponse)
async def get_members(
    room_id: str,
    _identity: Identity = Depends(get_current_identity),
    hub: ChatHub = Depends(get_hub),
) -> RoomMembersResponse:
    """Users with at least one live connection in the room."""
    connections = hub.membership.members_of(room_id)
    seen = {}
    for conn in connections:
        if conn.identity and conn.identity.user_id not in seen:
            seen[conn.identity.user_id] = RoomMember(
                userId=conn.identity.user_id,
                username=conn.identity.username,
            )
    return RoomMembersResponse(
        roomId=room_id,
        members=list(seen.values()),
        connections=len(connections),
    )
