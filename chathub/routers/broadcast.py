"""Broadcast trigger: how the REST layer hands stored chat events to the hub."""
from __future__ import annotations

import hmac
import logging
from typing import Any, Mapping, Optional

from fastapi import APIRouter, Depends, Header, Request

from ..auth_utils import get_app_settings
from ..config import Settings
from ..constants import BROADCAST_EVENTS
from ..exceptions import ChatHubError, PermissionDeniedError
from ..hub import ChatHub
from ..schemas import BroadcastRequest, BroadcastResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["internal"], include_in_schema=False)


def get_hub(request: Request) -> ChatHub:
    return request.app.state.hub


async def broadcast_room_event(hub: ChatHub, room_id: str, event_type: str, message: Mapping[str, Any]) -> int:
    """Relay an already-persisted event to the room; never raises.

    Only call this after the event has been stored: the hub does not
    persist anything and a failed broadcast is not retried.
    """
    try:
        return await hub.broadcast(room_id, event_type, {"message": message})
    except Exception:
        logger.exception("broadcast_room_event failed for room %s (%s)", room_id, event_type)
        return 0


def require_internal_token(
    settings: Settings = Depends(get_app_settings),
    x_internal_token: Optional[str] = Header(default=None),
) -> None:
    expected = settings.internal_token
    if not expected or not x_internal_token:
        raise PermissionDeniedError("Internal route")
    if not hmac.compare_digest(expected.encode("utf-8"), x_internal_token.encode("utf-8")):
        raise PermissionDeniedError("Internal route")


@router.post(
    "/broadcast/{room_id}",
    response_model=BroadcastResponse,
    dependencies=[Depends(require_internal_token)],
)
async def broadcast(room_id: str, req: BroadcastRequest, hub: ChatHub = Depends(get_hub)):
    if req.type not in BROADCAST_EVENTS:
        raise ChatHubError(f"Unsupported event type: {req.type}", code="unsupported_event", status_code=422)
    delivered = await broadcast_room_event(hub, room_id, req.type, req.message)
    return BroadcastResponse(ok=True, delivered=delivered)
