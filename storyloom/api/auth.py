from __future__ import annotations

import logging

import jwt
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from storyloom.core.config import get_settings
from storyloom.core.db import get_db
from storyloom.core.errors import AuthError, ConflictError
from storyloom.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    verify_password,
)
from storyloom.deps.auth import ACCESS_COOKIE, REFRESH_COOKIE, get_current_user
from storyloom.models.user import User
from storyloom.schemas.auth import AuthResponse, LoginRequest, RegisterRequest, UserOut


router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _issue_cookies(response: Response, user: User) -> None:
    settings = get_settings()
    access_token = create_access_token(user.id, claims={"email": user.email, "username": user.username})
    refresh_token = create_refresh_token(user.id)
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=settings.jwt_access_token_expires_minutes * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        max_age=settings.jwt_refresh_token_expires_minutes * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, response: Response, db: Session = Depends(get_db)) -> AuthResponse:
    exists = db.execute(
        select(User).where(or_(User.email == payload.email, User.username == payload.username))
    ).scalars().first()
    if exists is not None:
        raise ConflictError("Email or username already exists")
    user = User(email=payload.email, username=payload.username, password_hash=hash_password(payload.password))
    db.add(user)
    db.commit()
    db.refresh(user)
    _issue_cookies(response, user)
    logger.info("auth.register user=%s username=%s", user.id, user.username)
    return AuthResponse(user=UserOut.model_validate(user))


@router.post("/login", response_model=AuthResponse)
def login(payload: LoginRequest, response: Response, db: Session = Depends(get_db)) -> AuthResponse:
    user = db.execute(select(User).where(User.email == payload.email)).scalar_one_or_none()
    if user is None or not verify_password(payload.password, user.password_hash):
        raise AuthError("Invalid credentials")
    _issue_cookies(response, user)
    return AuthResponse(user=UserOut.model_validate(user))


@router.post("/refresh", response_model=AuthResponse)
def refresh(request: Request, response: Response, db: Session = Depends(get_db)) -> AuthResponse:
    """使用 refresh token cookie 换取新的 token 对"""
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise AuthError("No refresh token")
    try:
        user_id = int(decode_refresh_token(token).get("sub"))
    except (jwt.PyJWTError, TypeError, ValueError):
        raise AuthError("Invalid refresh token")
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if user is None:
        raise AuthError("User not found")
    _issue_cookies(response, user)
    return AuthResponse(user=UserOut.model_validate(user))


@router.post("/logout")
def logout(response: Response) -> dict:
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path="/")
    return {"success": True}


@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.model_validate(current_user)
