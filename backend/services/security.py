"""
BrokerDesk - Token handling

Both bearer schemes end up as a Principal:
- admin JWT (HS256, issued by /auth/admin/login)  -> InternalPrincipal
- Firebase ID token (mobile / web customers)      -> ExternalPrincipal
"""

import logging
from datetime import timedelta

import jwt
from starlette.concurrency import run_in_threadpool

from config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRE_HOURS, utcnow
from firebase_app import is_firebase_ready, require_firebase
from models.auth import ExternalPrincipal, InternalPrincipal, Principal

logger = logging.getLogger("security")


class AuthenticationFailed(Exception):
    pass


def create_admin_token(user: dict) -> str:
    payload = {
        "id": user["id"],
        "email": user.get("email", ""),
        "role": user.get("role", "admin"),
        "exp": utcnow() + timedelta(hours=JWT_EXPIRE_HOURS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_admin_token(token: str) -> InternalPrincipal:
    """Raises jwt.ExpiredSignatureError / jwt.InvalidTokenError"""
    payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    if not payload.get("id"):
        raise jwt.InvalidTokenError("Token has no id claim")
    return InternalPrincipal(id=payload["id"], email=payload.get("email"), role=payload.get("role", "admin"))


async def verify_firebase_token(token: str) -> ExternalPrincipal:
    from firebase_admin import auth

    decoded = await run_in_threadpool(auth.verify_id_token, token, require_firebase())
    return ExternalPrincipal(
        uid=decoded["uid"],
        email=decoded.get("email"),
        role="admin" if decoded.get("admin") is True else "user",
    )


async def resolve_principal(token: str) -> Principal:
    """Admin JWT first, then Firebase; raises AuthenticationFailed"""
    try:
        return decode_admin_token(token)
    except jwt.ExpiredSignatureError:
        raise AuthenticationFailed("Token expired")
    except jwt.InvalidTokenError:
        pass

    if not is_firebase_ready():
        raise AuthenticationFailed("Invalid token")

    try:
        return await verify_firebase_token(token)
    except Exception as e:
        logger.info(f"[AUTH] Firebase token rejected: {e}")
        raise AuthenticationFailed("Invalid or expired token")
