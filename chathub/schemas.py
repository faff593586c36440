"""Pydantic data schemas used across the service.

This module centralises the REST payloads and the socket frame protocol so
that routers, the hub and the tests import them from one place.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from .constants import EVENT_TYPING, FRAME_PONG


def _room_id_to_str(value: Any) -> Any:
    # Clients may send numeric room ids; rooms are keyed by string.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


# -----------------------------
# Socket frames: client -> server
# -----------------------------

class PingFrame(BaseModel):
    type: Literal["ping"]


class TypingFrame(BaseModel):
    type: Literal["typing"]
    chat_room_id: str = Field(min_length=1)
    is_typing: bool

    @field_validator("chat_room_id", mode="before")
    @classmethod
    def _coerce_room_id(cls, value: Any) -> Any:
        return _room_id_to_str(value)


class SubscribeFrame(BaseModel):
    """Legacy per-room subscription; membership decides delivery now."""

    type: Literal["messages.subscribe", "messages.unsubscribe"]
    chat_room_id: Optional[str] = None

    @field_validator("chat_room_id", mode="before")
    @classmethod
    def _coerce_room_id(cls, value: Any) -> Any:
        return _room_id_to_str(value)


ClientFrame = Annotated[Union[PingFrame, TypingFrame, SubscribeFrame], Field(discriminator="type")]

client_frame_adapter: TypeAdapter[ClientFrame] = TypeAdapter(ClientFrame)


# -----------------------------
# Socket frames: server -> client
# -----------------------------

class PongFrame(BaseModel):
    type: Literal["pong"] = FRAME_PONG


class TypingNotice(BaseModel):
    type: Literal["messages.typing"] = EVENT_TYPING
    chat_room_id: str
    user_id: str
    is_typing: bool


# -----------------------------
# Internal broadcast trigger
# -----------------------------

class BroadcastRequest(BaseModel):
    type: str
    message: Dict[str, Any] = Field(default_factory=dict)


class BroadcastResponse(BaseModel):
    ok: bool = True
    delivered: int = 0


# -----------------------------
# REST: auth
# -----------------------------

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    display_name: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    created_at: Optional[datetime] = None


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    password: str
    display_name: Optional[str] = Field(default=None, alias="displayName")


class LoginRequest(BaseModel):
    username: str
    password: str


class AuthResponse(BaseModel):
    token: str
    user: UserOut


class MeResponse(BaseModel):
    user: UserOut


# -----------------------------
# REST: rooms & messages
# -----------------------------

class RoomOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: str
    description: Optional[str] = None
    avatar_url: Optional[str] = None
    member_count: int = 0
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class RoomResponse(BaseModel):
    room: RoomOut


class RoomListResponse(BaseModel):
    rooms: List[RoomOut]


class CreateRoomRequest(BaseModel):
    name: str
    type: Optional[str] = None
    description: Optional[str] = None
    member_ids: List[str] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    content: str = ""
    nonce: Optional[str] = None
    attachments: List[Any] = Field(default_factory=list)
    reply_id: Optional[str] = None
    forwarded_id: Optional[str] = None
    meta: Optional[Any] = None


class EditMessageRequest(BaseModel):
    content: str = ""


class SenderOut(BaseModel):
    id: str
    username: str
    display_name: str
    avatar_url: Optional[str] = None


class MessageOut(BaseModel):
    id: str
    room_id: str
    sender_id: str
    content: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    nonce: Optional[str] = None
    reply_id: Optional[str] = None
    forwarded_id: Optional[str] = None
    attachments: List[Any] = Field(default_factory=list)
    reactions: Dict[str, List[str]] = Field(default_factory=dict)
    meta: Optional[Any] = None
    reply_message: Optional["MessageOut"] = None
    sender: Optional[SenderOut] = None


class MessageResponse(BaseModel):
    message: MessageOut


class MessageListResponse(BaseModel):
    messages: List[MessageOut]


__all__ = [
    # frames
    "PingFrame",
    "TypingFrame",
    "SubscribeFrame",
    "ClientFrame",
    "client_frame_adapter",
    "PongFrame",
    "TypingNotice",
    "BroadcastRequest",
    "BroadcastResponse",
    # auth
    "UserOut",
    "RegisterRequest",
    "LoginRequest",
    "AuthResponse",
    "MeResponse",
    # chat
    "RoomOut",
    "RoomResponse",
    "RoomListResponse",
    "CreateRoomRequest",
    "SendMessageRequest",
    "EditMessageRequest",
    "SenderOut",
    "MessageOut",
    "MessageResponse",
    "MessageListResponse",
]
