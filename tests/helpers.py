"""Helpers shared by the API and websocket tests."""
from __future__ import annotations

import asyncio
import contextlib
import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

from fastapi.testclient import TestClient

from chathub.exceptions import MembershipUnavailableError

INTERNAL_TOKEN = "internal-test-token"


def register(client: TestClient, username: str, password: str = "secret123") -> Tuple[str, str]:
    """Create an account and return ``(token, user_id)``."""
    resp = client.post("/api/auth/register", json={"username": username, "password": password})
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return body["token"], body["user"]["id"]


def auth(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def create_group(client: TestClient, token: str, member_ids: List[str], name: str = "room") -> str:
    resp = client.post(
        "/messager/chat",
        json={"name": name, "type": "group", "member_ids": member_ids},
        headers=auth(token),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["room"]["id"]


def trigger_broadcast(
    client: TestClient,
    room_id: str,
    event_type: str,
    message: Dict[str, Any],
    token: Optional[str] = INTERNAL_TOKEN,
):
    headers = {"X-Internal-Token": token} if token else {}
    return client.post(f"/broadcast/{room_id}", json={"type": event_type, "message": message}, headers=headers)


@contextlib.contextmanager
def chat_socket(client: TestClient, token: str):
    """Open ``/ws`` and complete one ping round-trip so the socket is registered."""
    with client.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}
        yield ws


def assert_no_pending_frames(ws) -> None:
    """A ping answered directly by a pong proves nothing else was queued."""
    ws.send_json({"type": "ping"})
    assert ws.receive_json() == {"type": "pong"}


# ---------------------------------------------------------------------------
# Fakes for driving the hub without a server
# ---------------------------------------------------------------------------


class FakeSocket:
    def __init__(self, token: Optional[str] = None, denial_supported: bool = True, fail: bool = False, delay: float = 0.0):
        self.state = SimpleNamespace()
        self.headers: Dict[str, str] = {}
        self.query_params: Dict[str, str] = {"token": token} if token else {}
        self.scope: Dict[str, Any] = {"extensions": {"websocket.http.response": {}} if denial_supported else {}}
        self.fail = fail
        self.delay = delay
        self.accepted = False
        self.denial = None
        self.close_code: Optional[int] = None
        self.sent: List[Dict[str, Any]] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, text: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.sent.append(json.loads(text))

    async def send_denial_response(self, response) -> None:
        self.denial = response

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.close_code = code


class FakeMembership:
    """Room -> members map that counts lookups and can be made to fail."""

    def __init__(self, rooms: Optional[Dict[str, List[str]]] = None):
        self.rooms: Dict[str, List[str]] = {k: list(v) for k, v in (rooms or {}).items()}
        self.calls = 0
        self.unavailable = False
        self.error: Optional[Exception] = None

    async def member_ids(self, room_id: str) -> List[str]:
        self.calls += 1
        if self.unavailable:
            raise MembershipUnavailableError("store down")
        if self.error is not None:
            raise self.error
        return list(self.rooms.get(room_id, []))


def token_verifier(tokens: Dict[str, str]):
    """Credential verifier backed by a fixed token -> user id table."""

    def verify(token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        return tokens.get(token)

    return verify
