from __future__ import annotations

from typing import Optional

import jwt
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from storyloom.core.db import get_db
from storyloom.core.errors import AuthError
from storyloom.core.security import decode_access_token
from storyloom.models.user import User


ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def _token_from_request(request: Request) -> Optional[str]:
    # JWT from cookie `access_token` or header `Authorization: Bearer <token>`
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = _token_from_request(request)
    if not token:
        raise AuthError("Unauthorized")
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub"))
    except (jwt.PyJWTError, TypeError, ValueError):
        raise AuthError("Unauthorized")
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if user is None:
        raise AuthError("Unauthorized")
    return user
