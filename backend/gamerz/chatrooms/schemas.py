"""Pydantic schemas for the chatroom REST API."""
from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from gamerz.chat.schemas import StoredMessage


class Chatroom(BaseModel):
    id: str = Field(..., description="Room ID used in join_room / send_message")
    name: str = Field(..., description="Unique room name")
    game: str = Field(..., description="Game this room is about")
    createdAt: datetime


class ChatroomCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    game: str = Field(..., min_length=1, max_length=64)


class ChatroomListResponse(BaseModel):
    message: str
    data: List[Chatroom]


class ChatroomResponse(BaseModel):
    message: str
    data: Chatroom


class MessageListResponse(BaseModel):
    messages: List[StoredMessage]
    count: int


class RoomMember(BaseModel):
    userId: str
    username: str


class RoomMembersResponse(BaseModel):
    roomId: str
    members: List[RoomMember]
    connections: int = Field(..., description="Live connections in the room")
