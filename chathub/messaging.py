"""Chat persistence helpers.

Everything here talks to the ORM only; the routers call these helpers,
persist first, and only then hand the stored event to the broadcast hub.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from .models import ChatRoom, ChatRoomMember, ChatRoomMessage, User
from .schemas import MessageOut, SenderOut


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------

async def is_member(room_id: str, user_id: str) -> bool:
    return await ChatRoomMember.filter(room_id=room_id, user_id=user_id).exists()


async def add_members(room_id: str, user_ids: List[str], role: str = "member") -> None:
    existing = set(await ChatRoomMember.filter(room_id=room_id).values_list("user_id", flat=True))
    for uid in user_ids:
        if uid in existing:
            continue
        await ChatRoomMember.create(room_id=room_id, user_id=uid, role=role)
        existing.add(uid)
    await refresh_member_count(room_id)


async def refresh_member_count(room_id: str) -> int:
    count = await ChatRoomMember.filter(room_id=room_id).count()
    await ChatRoom.filter(id=room_id).update(member_count=count)
    return count


async def create_room(
    owner_id: str,
    name: str,
    room_type: str = "direct",
    description: Optional[str] = None,
    member_ids: Optional[List[str]] = None,
) -> ChatRoom:
    """Create a room owned by *owner_id* and add the other members."""
    room = await ChatRoom.create(name=name, type=room_type, description=description)
    await ChatRoomMember.create(room_id=room.id, user_id=owner_id, role="owner")
    others = [uid for uid in (member_ids or []) if uid and uid != owner_id]
    await add_members(room.id, others)
    await room.refresh_from_db()
    return room


async def find_direct_room(user_id: str, peer_id: str) -> Optional[ChatRoom]:
    """Return the two-person direct room shared by both users, if any."""
    mine = await ChatRoomMember.filter(user_id=user_id).values_list("room_id", flat=True)
    if not mine:
        return None
    shared = await ChatRoomMember.filter(user_id=peer_id, room_id__in=list(mine)).values_list("room_id", flat=True)
    if not shared:
        return None
    return await ChatRoom.filter(id__in=list(shared), type="direct", member_count=2).first()


# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------

def add_reaction(reactions: Optional[Dict[str, List[str]]], emoji: str, user_id: str) -> Dict[str, List[str]]:
    """Return a copy of *reactions* with *user_id* reacting *emoji* (idempotent)."""
    result = {k: list(v) for k, v in (reactions or {}).items() if isinstance(v, list)}
    users = result.setdefault(emoji, [])
    if user_id not in users:
        users.append(user_id)
    return result


def remove_reaction(reactions: Optional[Dict[str, List[str]]], emoji: str, user_id: str) -> Dict[str, List[str]]:
    """Return a copy of *reactions* without *user_id* on *emoji*; empty emojis vanish."""
    result = {k: list(v) for k, v in (reactions or {}).items() if isinstance(v, list)}
    if emoji in result:
        result[emoji] = [uid for uid in result[emoji] if uid != user_id]
        if not result[emoji]:
            del result[emoji]
    return result


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

async def _sender(user_id: str) -> Optional[SenderOut]:
    user = await User.get_or_none(id=user_id)
    if user is None:
        return None
    return SenderOut(id=user.id, username=user.username, display_name=user.display_name, avatar_url=user.avatar_url)


def _message_fields(row: ChatRoomMessage) -> dict:
    return {
        "id": row.id,
        "room_id": row.room_id,
        "sender_id": row.sender_id,
        "content": row.content,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
        "deleted_at": row.deleted_at,
        "nonce": row.nonce,
        "reply_id": row.reply_id,
        "forwarded_id": row.forwarded_id,
        "attachments": row.attachments or [],
        "reactions": row.reactions or {},
        "meta": row.meta,
    }


async def serialize_message(row: ChatRoomMessage) -> MessageOut:
    """Build the client representation of *row*, with sender and one level of reply."""
    reply: Optional[MessageOut] = None
    if row.reply_id:
        replied = await ChatRoomMessage.get_or_none(id=row.reply_id)
        if replied is not None:
            reply = MessageOut(**_message_fields(replied), sender=await _sender(replied.sender_id))
    return MessageOut(**_message_fields(row), reply_message=reply, sender=await _sender(row.sender_id))


__all__ = [
    "is_member",
    "add_members",
    "refresh_member_count",
    "create_room",
    "find_direct_room",
    "add_reaction",
    "remove_reaction",
    "serialize_message",
]
