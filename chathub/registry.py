"""Connection registry: user identity <-> live websockets.

Presence lives in process memory only. If the process restarts every
registration is lost and clients must reconnect; nothing is persisted.

Each socket also carries its own presence tag (``websocket.state.user_id``)
so teardown can resolve the owner from the connection object alone.

All methods are synchronous and never await, which makes each of them
atomic with respect to the event loop. Lookups return fresh lists, so a
fan-out iterating a snapshot is unaffected by concurrent admissions or
teardowns.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set

from fastapi import WebSocket

TAG_ATTR = "user_id"


def tag_connection(ws: WebSocket, user_id: str) -> None:
    setattr(ws.state, TAG_ATTR, user_id)


def connection_tag(ws: WebSocket) -> Optional[str]:
    return getattr(ws.state, TAG_ATTR, None)


class ConnectionRegistry:
    """In-memory map of user id to that user's open sockets (multi-device)."""

    def __init__(self) -> None:
        self._by_user: Dict[str, Set[WebSocket]] = {}

    def add(self, user_id: str, ws: WebSocket) -> None:
        tag_connection(ws, user_id)
        self._by_user.setdefault(user_id, set()).add(ws)

    def remove(self, ws: WebSocket) -> Optional[str]:
        """Drop *ws* under its tagged user; returns that user id, if any."""
        user_id = connection_tag(ws)
        if user_id is None:
            return None
        sockets = self._by_user.get(user_id)
        if sockets is not None:
            sockets.discard(ws)
            if not sockets:
                self._by_user.pop(user_id, None)
        return user_id

    def connections_for(self, user_id: str) -> List[WebSocket]:
        return list(self._by_user.get(user_id, ()))

    def connections_for_users(self, user_ids: Iterable[str], exclude: Optional[str] = None) -> List[WebSocket]:
        """Snapshot the sockets of every user in *user_ids* except *exclude*."""
        seen: Set[str] = set()
        result: List[WebSocket] = []
        for uid in user_ids:
            if uid in seen or uid == exclude:
                continue
            seen.add(uid)
            result.extend(self._by_user.get(uid, ()))
        return result

    def is_online(self, user_id: str) -> bool:
        return bool(self._by_user.get(user_id))

    def online_users(self) -> List[str]:
        return list(self._by_user)

    def __len__(self) -> int:
        return sum(len(s) for s in self._by_user.values())


__all__ = ["ConnectionRegistry", "tag_connection", "connection_tag"]
