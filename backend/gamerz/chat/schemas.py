"""Wire schemas for the real-time chat protocol.

Client requests (client → server):
    - join_room:    {type, roomId, requestId?}
    - leave_room:   {type, roomId, requestId?}
    - send_message: {type, roomId, content, requestId?}
    - ping:         {type}

Server push events (server → client):
    - new_message:   a persisted message in a joined room
    - member_joined: another connection joined a room you are in
    - member_left:   another connection left a room you are in

Identity and approval fields sent by clients are ignored; extra keys in
requests are dropped by pydantic.
"""
from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from gamerz.auth.schemas import Identity


class EventType(str, Enum):
    NEW_MESSAGE = "new_message"
    MEMBER_JOINED = "member_joined"
    MEMBER_LEFT = "member_left"


class MembershipChange(str, Enum):
    JOINED = "joined"
    LEFT = "left"


# =============================================================================
# Persisted message
# =============================================================================


class StoredMessage(BaseModel):
    """A message after a successful append to the message store."""
    id: str = Field(..., description="Message ID assigned by the store")
    roomId: str = Field(..., description="Room this message belongs to")
    senderId: str = Field(..., description="User ID of the sender")
    senderUsername: str = Field(default="", description="Sender username at send time")
    content: str = Field(..., description="Message content")
    createdAt: datetime = Field(..., description="Creation time (UTC)")


# =============================================================================
# Push events
# =============================================================================


class NewMessageEvent(BaseModel):
    type: Literal["new_message"] = EventType.NEW_MESSAGE.value
    id: str
    roomId: str
    senderId: str
    senderUsername: str
    content: str
    createdAt: datetime

    @classmethod
    def from_message(cls, message: StoredMessage) -> "NewMessageEvent":
        return cls(**message.model_dump())


class MemberEvent(BaseModel):
    type: Literal["member_joined", "member_left"]
    roomId: str
    userId: str
    username: str

    @classmethod
    def build(cls, kind: MembershipChange, room_id: str, identity: Identity) -> "MemberEvent":
        event_type = EventType.MEMBER_JOINED if kind == MembershipChange.JOINED else EventType.MEMBER_LEFT
        return cls(
            type=event_type.value,
            roomId=room_id,
            userId=identity.user_id,
            username=identity.username,
        )


ChatEvent = Union[NewMessageEvent, MemberEvent]


# =============================================================================
# Client requests
# =============================================================================


class JoinRoomRequest(BaseModel):
    type: Literal["join_room"]
    roomId: str = Field(..., min_length=1)
    requestId: Optional[str] = None


class LeaveRoomRequest(BaseModel):
    type: Literal["leave_room"]
    roomId: str = Field(..., min_length=1)
    requestId: Optional[str] = None


class SendMessageRequest(BaseModel):
    type: Literal["send_message"]
    roomId: str = Field(..., min_length=1)
    content: str = ""
    requestId: Optional[str] = None


class PingRequest(BaseModel):
    type: Literal["ping"]
    requestId: Optional[str] = None


ClientRequest = Union[JoinRoomRequest, LeaveRoomRequest, SendMessageRequest, PingRequest]


# =============================================================================
# REST bodies
# =============================================================================


class PostMessageRequest(BaseModel):
    """Body of POST /api/chatrooms/{room_id}/messages. Identity comes from the cookie."""
    content: str = Field(..., description="Message content")
