from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Header, HTTPException, status

from constants import JWT_ALGORITHM, JWT_SECRET
from logging_config import get_logger

logger = get_logger(__name__)

GUEST_NAME = "Guest"


@dataclass(frozen=True)
class ConnectionIdentity:
    user_id: Optional[str]
    name: str

    @property
    def is_guest(self) -> bool:
        return self.user_id is None


def decode_token(token: str) -> dict:
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])


def verify_connection_credential(token: Optional[str], display_name: Optional[str] = None) -> ConnectionIdentity:
    """Resolve a WebSocket connection's credential to an identity.

    A missing or invalid token never rejects the connection; it simply makes
    the connection a guest.
    """
    guest_name = display_name.strip() if display_name and display_name.strip() else GUEST_NAME
    if not token:
        return ConnectionIdentity(user_id=None, name=guest_name)

    try:
        claims = decode_token(token)
    except jwt.PyJWTError as e:
        logger.info(f"Connection token rejected, continuing as guest: {e}")
        return ConnectionIdentity(user_id=None, name=guest_name)

    user_id = claims.get("userId") or claims.get("sub")
    if not user_id:
        logger.info("Connection token has no user id, continuing as guest")
        return ConnectionIdentity(user_id=None, name=guest_name)
    return ConnectionIdentity(user_id=str(user_id), name=claims.get("name") or GUEST_NAME)


async def get_current_user(authorization: Optional[str] = Header(None)) -> ConnectionIdentity:
    """FastAPI dependency for routes that need an authenticated user."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")

    token = authorization.split(" ", 1)[1]
    try:
        claims = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user_id = claims.get("userId") or claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return ConnectionIdentity(user_id=str(user_id), name=claims.get("name") or GUEST_NAME)
