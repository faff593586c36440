from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from tortoise.exceptions import IntegrityError

from ..auth_utils import get_current_user_id
from ..constants import (
    EVENT_DELETE,
    EVENT_NEW,
    EVENT_REACTION_ADDED,
    EVENT_REACTION_REMOVED,
    EVENT_UPDATE,
    MESSAGES_PAGE_DEFAULT,
    MESSAGES_PAGE_MAX,
    ROOM_TYPES,
)
from ..exceptions import ChatHubError, ConflictError, NotFoundError, PermissionDeniedError
from ..hub import ChatHub
from ..messaging import (
    add_reaction,
    create_room,
    find_direct_room,
    is_member,
    remove_reaction,
    serialize_message,
)
from ..models import ChatRoom, ChatRoomMember, ChatRoomMessage, User
from ..schemas import (
    CreateRoomRequest,
    EditMessageRequest,
    MessageListResponse,
    MessageResponse,
    RoomListResponse,
    RoomOut,
    RoomResponse,
    SendMessageRequest,
)
from .broadcast import broadcast_room_event, get_hub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messager/chat", tags=["chat"])


async def _require_member(room_id: str, user_id: str) -> None:
    if not await is_member(room_id, user_id):
        raise PermissionDeniedError("Not a member of this room")


async def _own_message(room_id: str, message_id: str, user_id: str, action: str) -> ChatRoomMessage:
    row = await ChatRoomMessage.get_or_none(id=message_id, room_id=room_id)
    if row is None:
        raise NotFoundError("Message not found")
    if row.sender_id != user_id:
        raise PermissionDeniedError(f"You can only {action} your own messages")
    return row


async def _find_nonce(nonce: str) -> Optional[ChatRoomMessage]:
    return await ChatRoomMessage.get_or_none(id=nonce)


def _check_retry(stored: ChatRoomMessage, room_id: str, user_id: str) -> ChatRoomMessage:
    if stored.room_id != room_id or stored.sender_id != user_id:
        raise ConflictError("nonce already used")
    return stored


# ---------------------------------------------------------------------------
# Rooms
# ---------------------------------------------------------------------------


@router.get("", response_model=RoomListResponse)
async def list_rooms(user_id: str = Depends(get_current_user_id)):
    room_ids = await ChatRoomMember.filter(user_id=user_id).values_list("room_id", flat=True)
    rooms = await ChatRoom.filter(id__in=list(room_ids)).order_by("-last_message_at", "-created_at")
    return RoomListResponse(rooms=[RoomOut.model_validate(r) for r in rooms])


@router.post("", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
async def create_chat_room(req: CreateRoomRequest, user_id: str = Depends(get_current_user_id)):
    name = req.name.strip()
    if not name:
        raise ChatHubError("name is required", code="invalid_name")
    room_type = req.type if req.type in ROOM_TYPES else "direct"
    room = await create_room(user_id, name, room_type, req.description, req.member_ids)
    logger.info("User %s created %s room %s", user_id, room_type, room.id)
    return RoomResponse(room=RoomOut.model_validate(room))


@router.post("/direct/{peer_id}", response_model=RoomResponse)
async def open_direct_room(peer_id: str, user_id: str = Depends(get_current_user_id)):
    if not peer_id or peer_id == user_id:
        raise ChatHubError("Invalid peer_id", code="invalid_peer")
    existing = await find_direct_room(user_id, peer_id)
    if existing is not None:
        return RoomResponse(room=RoomOut.model_validate(existing))
    peer = await User.get_or_none(id=peer_id)
    if peer is None:
        raise NotFoundError("User not found")
    room = await create_room(user_id, peer.display_name or peer.username, "direct", None, [peer_id])
    body = RoomResponse(room=RoomOut.model_validate(room))
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=body.model_dump(mode="json"))


@router.get("/{room_id}", response_model=RoomResponse)
async def get_room(room_id: str, user_id: str = Depends(get_current_user_id)):
    room = await ChatRoom.get_or_none(id=room_id)
    if room is None:
        raise NotFoundError("Room not found")
    await _require_member(room_id, user_id)
    return RoomResponse(room=RoomOut.model_validate(room))


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get("/{room_id}/messages", response_model=MessageListResponse)
async def list_messages(
    room_id: str,
    offset: int = Query(default=0, ge=0),
    take: int = Query(default=MESSAGES_PAGE_DEFAULT),
    user_id: str = Depends(get_current_user_id),
):
    await _require_member(room_id, user_id)
    take = min(MESSAGES_PAGE_MAX, max(1, take))
    rows = await ChatRoomMessage.filter(room_id=room_id).order_by("created_at", "id").offset(offset).limit(take)
    return MessageListResponse(messages=[await serialize_message(r) for r in rows])


@router.post("/{room_id}/messages", response_model=MessageResponse)
async def send_message(
    room_id: str,
    req: SendMessageRequest,
    user_id: str = Depends(get_current_user_id),
    hub: ChatHub = Depends(get_hub),
):
    await _require_member(room_id, user_id)
    nonce = (req.nonce or "").strip()
    if nonce:
        stored = await _find_nonce(nonce)
        if stored is not None:
            # Client retry of an already-stored message; no second broadcast.
            return MessageResponse(message=await serialize_message(_check_retry(stored, room_id, user_id)))
    fields = dict(
        room_id=room_id,
        sender_id=user_id,
        content=req.content.strip(),
        nonce=nonce or None,
        attachments=req.attachments,
        reply_id=req.reply_id,
        forwarded_id=req.forwarded_id,
        meta=req.meta,
    )
    if nonce:
        fields["id"] = nonce
    try:
        row = await ChatRoomMessage.create(**fields)
    except IntegrityError:
        # A concurrent send with the same nonce stored it first.
        stored = await _find_nonce(nonce) if nonce else None
        if stored is None:
            raise
        return MessageResponse(message=await serialize_message(_check_retry(stored, room_id, user_id)))
    await ChatRoom.filter(id=room_id).update(last_message_at=datetime.now(timezone.utc))
    message = await serialize_message(row)
    await broadcast_room_event(hub, room_id, EVENT_NEW, message.model_dump(mode="json"))
    return MessageResponse(message=message)


@router.patch("/{room_id}/messages/{message_id}", response_model=MessageResponse)
async def edit_message(
    room_id: str,
    message_id: str,
    req: EditMessageRequest,
    user_id: str = Depends(get_current_user_id),
    hub: ChatHub = Depends(get_hub),
):
    row = await _own_message(room_id, message_id, user_id, "edit")
    content = req.content.strip()
    if not content:
        raise ChatHubError("Content must not be empty", code="empty_content")
    row.content = content
    await row.save(update_fields=["content", "updated_at"])
    message = await serialize_message(row)
    await broadcast_room_event(hub, room_id, EVENT_UPDATE, message.model_dump(mode="json"))
    return MessageResponse(message=message)


@router.delete("/{room_id}/messages/{message_id}")
async def delete_message(
    room_id: str,
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    hub: ChatHub = Depends(get_hub),
):
    row = await _own_message(room_id, message_id, user_id, "delete")
    row.deleted_at = datetime.now(timezone.utc)
    await row.save(update_fields=["deleted_at"])
    await broadcast_room_event(hub, room_id, EVENT_DELETE, {"message_id": message_id, "room_id": room_id})
    return {"deleted": True}


@router.put("/{room_id}/messages/{message_id}/reactions/{emoji}")
async def put_reaction(
    room_id: str,
    message_id: str,
    emoji: str,
    user_id: str = Depends(get_current_user_id),
    hub: ChatHub = Depends(get_hub),
):
    await _require_member(room_id, user_id)
    row = await ChatRoomMessage.get_or_none(id=message_id, room_id=room_id)
    if row is None:
        raise NotFoundError("Message not found")
    row.reactions = add_reaction(row.reactions, emoji, user_id)
    await row.save(update_fields=["reactions"])
    await broadcast_room_event(
        hub,
        room_id,
        EVENT_REACTION_ADDED,
        {"message_id": message_id, "room_id": room_id, "emoji": emoji, "user_id": user_id},
    )
    return {"ok": True}


@router.delete("/{room_id}/messages/{message_id}/reactions/{emoji}")
async def delete_reaction(
    room_id: str,
    message_id: str,
    emoji: str,
    user_id: str = Depends(get_current_user_id),
    hub: ChatHub = Depends(get_hub),
):
    await _require_member(room_id, user_id)
    row = await ChatRoomMessage.get_or_none(id=message_id, room_id=room_id)
    if row is None:
        raise NotFoundError("Message not found")
    row.reactions = remove_reaction(row.reactions, emoji, user_id)
    await row.save(update_fields=["reactions"])
    await broadcast_room_event(
        hub,
        room_id,
        EVENT_REACTION_REMOVED,
        {"message_id": message_id, "room_id": room_id, "emoji": emoji, "user_id": user_id},
    )
    return {"ok": True}
