from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from fastapi import Depends, Request, Response
from jose import ExpiredSignatureError, JWTError, jwt

from config import settings
from database import serialize
from errors import Forbidden, NotAuthenticated
from logger import logger
from schemas import Role

COOKIE_NAME = "token"
PRIVATE_USER_FIELDS = ("password", "verificationToken", "verificationTokenExpires")


@dataclass
class CurrentUser:
    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(settings.BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # malformed hash
        return False


def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=settings.JWT_EXPIRES_IN_DAYS))
    payload = {"sub": str(user_id), "role": role, "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.ALGORITHM)


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        max_age=settings.JWT_EXPIRES_IN_DAYS * 24 * 60 * 60,
        path="/",
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(
        COOKIE_NAME, path="/", secure=settings.cookie_secure, httponly=True, samesite=settings.cookie_samesite
    )


def _token_from_request(request: Request) -> Optional[str]:
    cookie_token = request.cookies.get(COOKIE_NAME)
    if cookie_token:
        return cookie_token
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):]
    return None


def decode_token(token: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise NotAuthenticated("Token expired")
    except JWTError as e:
        logger.warning("JWT validation error: %s", e)
        raise NotAuthenticated()

    user_id = payload.get("sub")
    if not user_id:
        raise NotAuthenticated()
    try:
        role = Role(payload.get("role") or Role.BUYER.value)
    except ValueError:
        raise NotAuthenticated()
    return CurrentUser(id=user_id, role=role)


async def get_current_user(request: Request) -> CurrentUser:
    token = _token_from_request(request)
    if not token:
        raise NotAuthenticated()
    return decode_token(token)


def require_roles(*roles: Role):
    """Dependency factory admitting only callers whose role is in `roles`"""
    allowed = frozenset(roles)

    async def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            logger.warning("Role %s denied, requires one of %s", user.role.value, sorted(r.value for r in allowed))
            raise Forbidden()
        return user

    return checker


def ensure_owner_or_admin(user: CurrentUser, owner_id: Any, message: str = "Forbidden") -> None:
    if user.is_admin or str(owner_id) == user.id:
        return
    raise Forbidden(message)


def public_user(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """User document safe to return to clients"""
    if doc is None:
        return None
    return serialize({k: v for k, v in doc.items() if k not in PRIVATE_USER_FIELDS})
