"""
Password hashing, JWT issuing and the request guards built on them.

Tokens are HS256 JWTs carrying the user id (``sub``, mirrored as ``userId``),
``email`` and ``role``.
They are read from a Bearer header first and then from the auth cookies.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

import config
from context import StoreContext, get_context
from database import find_by_id
from errors import Forbidden, Unauthorized
from logger import get_logger

logger = get_logger("auth")

security = HTTPBearer(auto_error=False)
password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

TOKEN_COOKIES = (config.AUTH_COOKIE_NAME, "token", config.ADMIN_COOKIE_NAME)


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return password_ctx.verify(password, hashed)


def create_token(user: Dict[str, Any], expires_minutes: int = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "userId": str(user["_id"]),
        "email": user.get("email") or "",
        "role": user.get("role", "user"),
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MIN),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")


def token_from_request(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials.strip()
    for name in TOKEN_COOKIES:
        value = request.cookies.get(name)
        if value:
            return value
    return None


def get_token_payload(request: Request,
                      credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Dict[str, Any]:
    token = token_from_request(request, credentials)
    if not token:
        raise Unauthorized()
    payload = decode_token(token)
    if not payload.get("sub"):
        raise Unauthorized("Invalid token")
    return payload


def get_current_user(payload: Dict[str, Any] = Depends(get_token_payload),
                     ctx: StoreContext = Depends(get_context)) -> Dict[str, Any]:
    user = find_by_id(ctx.db, "user", payload["sub"])
    if not user or user.get("is_active") is False:
        raise Unauthorized("User not found")
    return user


def require_admin(payload: Dict[str, Any] = Depends(get_token_payload),
                  user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if payload.get("role") != "admin" or user.get("role") != "admin":
        raise Forbidden("Admin access required")
    return user


def set_token_cookie(response: Response, name: str, token: str) -> None:
    response.set_cookie(
        key=name,
        value=token,
        max_age=config.JWT_EXPIRES_MIN * 60,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="strict",
        path="/",
    )


def clear_token_cookie(response: Response, name: str) -> None:
    response.delete_cookie(
        key=name,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="strict",
        path="/",
    )


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "phone": user.get("phone"),
        "role": user.get("role", "user"),
        "is_active": user.get("is_active", True),
        "is_verified": user.get("is_email_verified", True),
        "image": user.get("image"),
    }
