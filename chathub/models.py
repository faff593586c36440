import uuid

from tortoise import fields
from tortoise.models import Model


def new_id() -> str:
    return str(uuid.uuid4())


class User(Model):
    """User account; ``id`` is the identity carried in bearer tokens."""

    id = fields.CharField(max_length=64, pk=True, default=new_id)
    username = fields.CharField(max_length=50, unique=True, index=True)
    password_hash = fields.CharField(max_length=255)
    display_name = fields.CharField(max_length=100)
    avatar_url = fields.CharField(max_length=512, null=True)
    bio = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "users"


class ChatRoom(Model):
    id = fields.CharField(max_length=64, pk=True, default=new_id)
    name = fields.CharField(max_length=200)
    type = fields.CharField(max_length=16, default="direct")  # direct | group
    description = fields.TextField(null=True)
    avatar_url = fields.CharField(max_length=512, null=True)
    member_count = fields.IntField(default=0)
    last_message_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "chat_rooms"


class ChatRoomMember(Model):
    """Membership row; the only room property the broadcast hub reads."""

    id = fields.CharField(max_length=64, pk=True, default=new_id)
    room_id = fields.CharField(max_length=64, index=True)
    user_id = fields.CharField(max_length=64, index=True)
    role = fields.CharField(max_length=16, default="member")  # owner | member
    joined_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "chat_room_members"
        unique_together = (("room_id", "user_id"),)


class ChatRoomMessage(Model):
    id = fields.CharField(max_length=64, pk=True, default=new_id)
    room_id = fields.CharField(max_length=64, index=True)
    sender_id = fields.CharField(max_length=64)
    content = fields.TextField(default="")
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)
    deleted_at = fields.DatetimeField(null=True)
    nonce = fields.CharField(max_length=128, null=True, index=True)
    reply_id = fields.CharField(max_length=64, null=True)
    forwarded_id = fields.CharField(max_length=64, null=True)
    # List of attachment descriptors
    attachments = fields.JSONField(default=list)
    # Mapping emoji -> list of user ids
    reactions = fields.JSONField(default=dict)
    meta = fields.JSONField(null=True)

    class Meta:
        table = "chat_room_messages"
        ordering = ["created_at"]
