from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from starlette.websockets import WebSocketState

from ..hub import ChatHub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["ws"])


@router.websocket("/ws")
async def chat_socket(ws: WebSocket):
    """Chat socket; authenticate with ``?token=`` or ``Authorization: Bearer``."""
    hub: ChatHub = ws.app.state.hub
    user_id = await hub.admit(ws)
    if user_id is None:
        return
    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            await hub.handle_frame(ws, raw)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Websocket error for user %s", user_id)
        if ws.application_state == WebSocketState.CONNECTED and ws.client_state == WebSocketState.CONNECTED:
            await ws.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        hub.discard(ws)
