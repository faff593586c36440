"""Room membership lookups used by the broadcast hub.

The hub never caches membership: every broadcast and typing relay asks the
store again, so joins and leaves take effect on the very next event.
"""
from __future__ import annotations

import logging
from typing import List, Protocol

from tortoise.exceptions import BaseORMException

from .exceptions import MembershipUnavailableError
from .models import ChatRoomMember

logger = logging.getLogger(__name__)


class MembershipStore(Protocol):
    async def member_ids(self, room_id: str) -> List[str]:
        """Return the user ids currently in *room_id*.

        Raises ``MembershipUnavailableError`` when the store cannot answer.
        """
        ...


class TortoiseMembershipStore:
    """Reads the ``chat_room_members`` table through Tortoise ORM."""

    async def member_ids(self, room_id: str) -> List[str]:
        try:
            rows = await ChatRoomMember.filter(room_id=room_id).values_list("user_id", flat=True)
        except (BaseORMException, OSError) as exc:
            raise MembershipUnavailableError(f"Membership lookup failed for room {room_id}") from exc
        return [str(uid) for uid in rows]


__all__ = ["MembershipStore", "TortoiseMembershipStore"]
