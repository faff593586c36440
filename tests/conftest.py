from __future__ import annotations

import os
import socket
from typing import Any, Iterator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("CHATHUB_LOG_LEVEL", "WARNING")

from chathub.app import create_app  # noqa: E402
from chathub.config import Settings  # noqa: E402
from helpers import INTERNAL_TOKEN  # noqa: E402


class NetworkBlockedError(RuntimeError):
    pass


def _blocked(*_args: Any, **_kwargs: Any) -> Any:
    raise NetworkBlockedError("Network access is disabled during tests.")


@pytest.fixture(autouse=True)
def _disable_network(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent accidental outbound network calls in unit tests."""
    monkeypatch.setattr(socket, "create_connection", _blocked)
    monkeypatch.setattr(socket, "getaddrinfo", _blocked)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://:memory:",
        jwt_secret="test-secret-0123456789",
        internal_token=INTERNAL_TOKEN,
        send_timeout_seconds=2.0,
        log_level="WARNING",
    )


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    # Entering the client runs the lifespan (Tortoise init) and shares one
    # event loop between HTTP requests and websocket sessions.
    with TestClient(create_app(settings)) as c:
        yield c
