"""Operator authentication for the RadioStack admin API.

JWT-based auth with bcrypt password hashing. There is a single operator
account taken from configuration (``admin_username`` /
``admin_password_hash``). When no hash is configured the default password
``radiostack-admin`` is accepted and a warning is logged; set a real hash
before exposing the API.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from radiostack.config import RadioStackConfig

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
DEFAULT_ADMIN_PASSWORD = "radiostack-admin"

_bearer = HTTPBearer(auto_error=False)


@dataclass
class AuthSettings:
    username: str = "admin"
    password_hash: str = ""
    secret: str = "radiostack-change-me"
    expiry_seconds: int = 86400


_settings: AuthSettings | None = None


def configure(config: RadioStackConfig | None = None) -> AuthSettings:
    """Load operator credentials and JWT settings from *config*."""
    global _settings
    config = config or RadioStackConfig()
    password_hash = config.admin_password_hash
    if not password_hash:
        logger.warning(
            "No admin password hash configured; default password is active. "
            "Set admin_password_hash in the configuration."
        )
        password_hash = hash_password(DEFAULT_ADMIN_PASSWORD)
    _settings = AuthSettings(
        username=config.admin_username,
        password_hash=password_hash,
        secret=config.jwt_secret,
        expiry_seconds=config.jwt_expiry_seconds,
    )
    return _settings


def _current() -> AuthSettings:
    return _settings or configure()


# ── Password helpers ──────────────────────────────────────────────

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        logger.error("Configured admin password hash is not a valid bcrypt hash")
        return False


def authenticate(username: str, password: str) -> dict | None:
    """Validate operator credentials and return a user dict, or *None*."""
    settings = _current()
    if username != settings.username:
        return None
    if not verify_password(password, settings.password_hash):
        return None
    return {"username": username}


# ── JWT helpers ───────────────────────────────────────────────────

def create_token(username: str) -> str:
    settings = _current()
    now = int(time.time())
    payload = {
        "sub": username,
        "username": username,
        "iat": now,
        "exp": now + settings.expiry_seconds,
    }
    return jwt.encode(payload, settings.secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, _current().secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


# ── FastAPI dependency ────────────────────────────────────────────

async def require_admin(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> dict:
    """Dependency that ensures the caller has a valid operator JWT."""
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return decode_token(creds.credentials)
