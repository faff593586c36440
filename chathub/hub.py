"""The chat hub: one per application, owner of all live chat sockets.

The hub admits authenticated sockets, answers heartbeats, relays typing
indicators and fans persisted chat events out to every connected member of
a room. Delivery is at-most-once and best effort: there is no ack, no
retry and no queue for offline members; clients catch up through the REST
message history.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Set, Union

from fastapi import WebSocket
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .auth_utils import extract_bearer
from .constants import WS_CLOSE_UNAUTHENTICATED
from .exceptions import MembershipUnavailableError, error_payload
from .membership import MembershipStore
from .registry import ConnectionRegistry, connection_tag
from .schemas import (
    PingFrame,
    PongFrame,
    SubscribeFrame,
    TypingFrame,
    TypingNotice,
    client_frame_adapter,
)

logger = logging.getLogger(__name__)

# Turns a bearer credential into a user id, or None to reject it.
CredentialVerifier = Callable[[Optional[str]], Optional[str]]


class ChatHub:
    """Single fan-out authority for the deployment (``app.state.hub``)."""

    def __init__(
        self,
        membership: MembershipStore,
        verify_credential: CredentialVerifier,
        registry: Optional[ConnectionRegistry] = None,
        send_timeout: float = 5.0,
    ) -> None:
        self.membership = membership
        self.verify_credential = verify_credential
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.send_timeout = send_timeout
        # Typing relays in flight; the receive loop never waits on them.
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def admit(self, ws: WebSocket) -> Optional[str]:
        """Authenticate an upgrade request and, if valid, accept and register it.

        A missing or invalid credential is refused with a 401 before the
        socket is accepted, and leaves the registry untouched. Returns the
        admitted user id, or None when rejected.
        """
        token = extract_bearer(ws.headers, ws.query_params)
        user_id = self.verify_credential(token)
        if not user_id:
            logger.info("Rejected websocket upgrade: %s", "invalid token" if token else "missing token")
            await self._deny(ws, "Invalid token" if token else "Missing token")
            return None
        await ws.accept()
        self.registry.add(user_id, ws)
        logger.info("User %s connected (%d open sockets)", user_id, len(self.registry))
        return user_id

    async def _deny(self, ws: WebSocket, reason: str) -> None:
        if "websocket.http.response" in ws.scope.get("extensions", {}):
            await ws.send_denial_response(JSONResponse(error_payload(reason, "unauthenticated"), status_code=401))
        else:
            await ws.close(code=WS_CLOSE_UNAUTHENTICATED, reason=reason)

    def discard(self, ws: WebSocket) -> None:
        """Forget *ws*; other sockets of the same user stay registered."""
        user_id = self.registry.remove(ws)
        if user_id is not None:
            logger.info("User %s disconnected (%d open sockets)", user_id, len(self.registry))

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------

    async def handle_frame(self, ws: WebSocket, raw: Union[str, bytes]) -> None:
        """Dispatch one inbound frame. Unknown or malformed frames are ignored."""
        try:
            frame = client_frame_adapter.validate_json(raw)
        except ValidationError:
            logger.debug("Ignoring malformed frame from %s", connection_tag(ws))
            return

        if isinstance(frame, PingFrame):
            await self._send(ws, PongFrame().model_dump_json())
        elif isinstance(frame, TypingFrame):
            self._spawn(self.relay_typing(ws, frame))
        elif isinstance(frame, SubscribeFrame):
            # Delivery follows room membership; nothing to record.
            logger.debug("Legacy %s from %s ignored", frame.type, connection_tag(ws))

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Typing relay failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait for every in-flight typing relay to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def relay_typing(self, ws: WebSocket, frame: TypingFrame) -> int:
        """Tell the other members of the room that the sender is (not) typing."""
        sender = connection_tag(ws)
        if sender is None:
            return 0
        try:
            members = await self.membership.member_ids(frame.chat_room_id)
        except MembershipUnavailableError:
            logger.exception("Typing relay for room %s abandoned", frame.chat_room_id)
            return 0
        if sender not in members:
            logger.debug("User %s is not in room %s; typing not relayed", sender, frame.chat_room_id)
            return 0
        notice = TypingNotice(chat_room_id=frame.chat_room_id, user_id=sender, is_typing=frame.is_typing)
        targets = self.registry.connections_for_users(members, exclude=sender)
        return await self._fan_out(targets, notice.model_dump_json())

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    async def broadcast(self, room_id: str, event_type: str, payload: Mapping[str, Any]) -> int:
        """Send ``{"type": event_type, **payload}`` to every connected member.

        Membership is read fresh on each call. Returns the number of sockets
        written successfully. Failures never propagate to the caller.
        """
        try:
            members = await self.membership.member_ids(room_id)
        except MembershipUnavailableError:
            logger.exception("Broadcast of %s to room %s abandoned", event_type, room_id)
            return 0
        targets = self.registry.connections_for_users(members)
        if not targets:
            logger.debug("No connected members in room %s for %s", room_id, event_type)
            return 0
        text = json.dumps({**payload, "type": event_type}, default=str)
        delivered = await self._fan_out(targets, text)
        logger.debug("Broadcast %s to room %s: %d/%d sockets", event_type, room_id, delivered, len(targets))
        return delivered

    async def _fan_out(self, targets: Iterable[WebSocket], text: str) -> int:
        sockets: List[WebSocket] = list(targets)
        if not sockets:
            return 0
        results = await asyncio.gather(*(self._send(ws, text) for ws in sockets))
        return sum(1 for ok in results if ok)

    async def _send(self, ws: WebSocket, text: str) -> bool:
        # No retry: a failed or timed-out write drops this event for this socket only.
        try:
            await asyncio.wait_for(ws.send_text(text), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Send to user %s timed out after %.1fs", connection_tag(ws), self.send_timeout)
            return False
        except Exception as exc:
            logger.warning("Send to user %s failed: %s", connection_tag(ws), exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def is_online(self, user_id: str) -> bool:
        return self.registry.is_online(user_id)


__all__ = ["ChatHub"]
