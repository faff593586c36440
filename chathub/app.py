from __future__ import annotations

import logging
from functools import partial
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from tortoise.contrib.fastapi import register_tortoise

from .auth_utils import verify_credential
from .config import DEV_JWT_SECRET, Settings, get_settings
from .exceptions import register_exception_handlers
from .hub import ChatHub
from .logging_config import setup_logging
from .membership import TortoiseMembershipStore
from .routers import broadcast as broadcast_router
from .routers import rooms as rooms_router
from .routers import users as users_router
from .routers import websockets as ws_router

logger = logging.getLogger(__name__)


def tortoise_config(settings: Settings) -> Dict[str, Any]:
    return {
        "connections": {"default": settings.database_url},
        "apps": {"models": {"models": ["chathub.models"], "default_connection": "default"}},
        "use_tz": True,
        "timezone": "UTC",
    }


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)
    if settings.jwt_secret == DEV_JWT_SECRET:
        logger.warning("CHATHUB_JWT_SECRET is not set; using the development secret")

    app = FastAPI(title="chathub")
    app.state.settings = settings
    # One hub per application: every socket and every broadcast goes through it.
    app.state.hub = ChatHub(
        membership=TortoiseMembershipStore(),
        verify_credential=partial(verify_credential, settings=settings),
        send_timeout=settings.send_timeout_seconds,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=86400,
    )
    register_exception_handlers(app)

    @app.get("/", include_in_schema=False)
    @app.get("/health")
    async def health():
        return {"ok": True}

    app.include_router(users_router.router)
    app.include_router(rooms_router.router)
    app.include_router(broadcast_router.router)
    app.include_router(ws_router.router)

    register_tortoise(
        app,
        config=tortoise_config(settings),
        generate_schemas=settings.generate_schemas,
    )
    return app


__all__ = ["create_app", "tortoise_config"]
