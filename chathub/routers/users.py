from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from tortoise.exceptions import IntegrityError

from ..auth_utils import get_app_settings, get_current_user, hash_password, sign_token, verify_password
from ..config import Settings
from ..exceptions import AuthenticationError, ChatHubError, ConflictError
from ..models import User
from ..schemas import AuthResponse, LoginRequest, MeResponse, RegisterRequest, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["users"])


def _auth_response(user: User, settings: Settings) -> AuthResponse:
    token = sign_token(user.id, settings.jwt_secret, settings.jwt_ttl_seconds)
    return AuthResponse(token=token, user=UserOut.model_validate(user))


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(req: RegisterRequest, settings: Settings = Depends(get_app_settings)):
    username = req.username.strip().lower()
    if len(username) < 2:
        raise ChatHubError("Username must be at least 2 characters", code="invalid_username")
    if len(req.password) < 6:
        raise ChatHubError("Password must be at least 6 characters", code="invalid_password")
    if await User.filter(username=username).exists():
        raise ConflictError("Username already taken")
    display_name = (req.display_name or "").strip() or username
    try:
        user = await User.create(
            username=username,
            password_hash=hash_password(req.password),
            display_name=display_name,
        )
    except IntegrityError:
        raise ConflictError("Username already taken")
    logger.info("Registered user %s (%s)", user.id, username)
    return _auth_response(user, settings)


@router.post("/login", response_model=AuthResponse)
async def login(req: LoginRequest, settings: Settings = Depends(get_app_settings)):
    user = await User.filter(username=req.username.strip().lower()).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise AuthenticationError("Invalid credentials", code="invalid_credentials")
    return _auth_response(user, settings)


@router.get("/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)):
    return MeResponse(user=UserOut.model_validate(current_user))
