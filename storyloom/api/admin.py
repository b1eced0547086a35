from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storyloom.core.config import settings
from storyloom.core.db import get_db
from storyloom.core.errors import AuthError, BadRequestError, NotFoundError
from storyloom.models.usage_log import UsageLog
from storyloom.models.user import User
from storyloom.services.quota import quota_status


router = APIRouter(prefix="/api/admin", tags=["admin"])


def _require_admin(secret: str) -> None:
    if secret != settings.admin_secret:
        raise AuthError("invalid admin_secret")


def _get_user(db: Session, username: str) -> User:
    user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
    if not user:
        raise NotFoundError("user_not_found")
    return user


@router.get("/usage")
def usage_get(
    username: str,
    admin_secret: str = Query(...),
    days: int = Query(7, ge=1, le=90),
    db: Session = Depends(get_db),
) -> dict:
    _require_admin(admin_secret)
    user = _get_user(db, username)
    day_col = func.date(UsageLog.created_at)
    rows = db.execute(
        select(day_col, func.count(UsageLog.id), func.sum(UsageLog.total_tokens))
        .where(UsageLog.user_id == user.id)
        .group_by(day_col)
        .order_by(day_col.desc())
        .limit(days)
    ).all()
    status = quota_status(db, user)
    return {
        "status": "ok",
        "username": username,
        "daily_quota": status.daily_quota,
        "used_today": status.used_today,
        "is_premium": user.is_premium,
        # days are UTC dates of the ledger rows
        "data": [{"day": str(day), "requests": int(cnt), "total_tokens": int(total or 0)} for day, cnt, total in rows],
    }


@router.post("/quota")
def quota_set(
    username: str,
    admin_secret: str = Query(...),
    daily_quota: Optional[int] = Query(None, ge=0),
    is_premium: Optional[bool] = None,
    db: Session = Depends(get_db),
) -> dict:
    _require_admin(admin_secret)
    if daily_quota is None and is_premium is None:
        raise BadRequestError("nothing to update")
    user = _get_user(db, username)
    if is_premium is not None:
        user.is_premium = is_premium
        if daily_quota is None:
            user.daily_quota = settings.daily_quota_premium if is_premium else settings.daily_quota_default
    if daily_quota is not None:
        user.daily_quota = daily_quota
    db.add(user)
    db.commit()
    return {"status": "ok", "username": username, "daily_quota": user.daily_quota, "is_premium": user.is_premium}
