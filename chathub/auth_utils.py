import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Mapping, Optional

from fastapi import Depends, Request
from passlib.context import CryptContext

from .config import Settings, get_settings
from .exceptions import AuthenticationError
from .models import User

logger = logging.getLogger(__name__)

# -----------------------------
# Password hashing helpers
# -----------------------------

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    """Return a salted PBKDF2-SHA256 hash of *password*."""
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Verify *password* against a stored hash."""
    try:
        return pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        return False


# -----------------------------
# HS256 bearer tokens
# -----------------------------

def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    pad = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode((data + pad).encode("ascii"))


def _sign(message: bytes, secret: str) -> str:
    return _b64url(hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest())


def sign_token(user_id: str, secret: str, ttl_seconds: int, now: Optional[int] = None) -> str:
    """Issue a JWT whose ``sub`` is *user_id*."""
    issued = int(time.time()) if now is None else now
    header = {"alg": "HS256", "typ": "JWT"}
    payload = {"sub": user_id, "iat": issued, "exp": issued + ttl_seconds}
    header_b64 = _b64url(json.dumps(header, separators=(",", ":")).encode())
    payload_b64 = _b64url(json.dumps(payload, separators=(",", ":")).encode())
    message = f"{header_b64}.{payload_b64}".encode("ascii")
    return f"{header_b64}.{payload_b64}.{_sign(message, secret)}"


def decode_token(token: str, secret: str, now: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """Return the token payload, or None if it is malformed, forged or expired."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    header_b64, payload_b64, sig_b64 = parts
    try:
        message = f"{header_b64}.{payload_b64}".encode("ascii")
    except UnicodeEncodeError:
        return None
    if not hmac.compare_digest(_sign(message, secret).encode("ascii"), sig_b64.encode("utf-8")):
        return None
    try:
        payload = json.loads(_b64url_decode(payload_b64))
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("sub"), str) or not payload["sub"]:
        return None
    exp = payload.get("exp")
    current = int(time.time()) if now is None else now
    if exp is not None and (not isinstance(exp, (int, float)) or exp < current):
        return None
    return payload


def verify_credential(token: Optional[str], settings: Settings) -> Optional[str]:
    """Turn a bearer credential into a user id, or None if it is rejected."""
    if not token:
        return None
    payload = decode_token(token, settings.jwt_secret)
    if payload is None:
        logger.debug("Rejected bearer credential")
        return None
    return payload["sub"]


def extract_bearer(headers: Mapping[str, str], query_params: Mapping[str, str]) -> Optional[str]:
    """Pull a credential from ``Authorization: Bearer`` or ``?token=``."""
    auth = headers.get("authorization") or ""
    scheme, _, value = auth.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    token = (query_params.get("token") or "").strip()
    return token or None


# -----------------------------
# FastAPI dependency helpers
# -----------------------------

def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


async def get_current_user_id(request: Request, settings: Settings = Depends(get_app_settings)) -> str:
    """Resolve the caller's user id from the Authorization header.

    Raises
    ------
    AuthenticationError
        If the header is missing or the token is invalid.
    """
    auth = request.headers.get("authorization") or ""
    scheme, _, value = auth.partition(" ")
    token = value.strip() if scheme.lower() == "bearer" else ""
    user_id = verify_credential(token, settings)
    if not user_id:
        raise AuthenticationError("Not logged in")
    return user_id


async def get_current_user(user_id: str = Depends(get_current_user_id)) -> User:
    user = await User.get_or_none(id=user_id)
    if user is None:
        raise AuthenticationError("Not logged in")
    return user


__all__ = [
    "pwd_context",
    "hash_password",
    "verify_password",
    "sign_token",
    "decode_token",
    "verify_credential",
    "extract_bearer",
    "get_app_settings",
    "get_current_user_id",
    "get_current_user",
]
