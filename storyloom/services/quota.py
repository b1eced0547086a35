from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storyloom.models.usage_log import UsageLog
from storyloom.models.user import User


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaStatus:
    daily_quota: int
    used_today: int
    remaining: int
    reset_at: datetime

    @property
    def exceeded(self) -> bool:
        return self.used_today >= self.daily_quota


def _local_now(now: Optional[datetime] = None) -> datetime:
    """Timezone-aware local time; naive inputs are taken as UTC."""
    if now is None:
        return datetime.now(timezone.utc).astimezone()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone()


def _to_utc_naive(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def local_midnight(now: Optional[datetime] = None) -> datetime:
    """Start of the current local day (aware)."""
    return _local_now(now).replace(hour=0, minute=0, second=0, microsecond=0)


def used_today(db: Session, user_id: int, now: Optional[datetime] = None) -> int:
    since = _to_utc_naive(local_midnight(now))
    total = db.execute(
        select(func.coalesce(func.sum(UsageLog.total_tokens), 0)).where(
            UsageLog.user_id == user_id,
            UsageLog.created_at >= since,
        )
    ).scalar()
    return int(total or 0)


def remaining(daily_quota: int, used: int) -> int:
    # usage can overshoot the quota (check-then-act), never report negative
    return max(0, daily_quota - used)


def refresh_reset_marker(db: Session, user: User, now: Optional[datetime] = None) -> bool:
    """Move quota_reset_at to now when the local calendar day has rolled over.

    Ledger rows are never touched; a new day simply matches no usage rows.
    Returns True when the marker was updated.
    """
    local_now = _local_now(now)
    last = _local_now(user.quota_reset_at) if user.quota_reset_at else None
    if last is not None and (last.year, last.month, last.day) == (local_now.year, local_now.month, local_now.day):
        return False
    user.quota_reset_at = _to_utc_naive(local_now)
    db.add(user)
    db.commit()
    logger.info("quota.reset_marker user=%s day=%s", user.id, local_now.date().isoformat())
    return True


def quota_status(db: Session, user: User, now: Optional[datetime] = None) -> QuotaStatus:
    used = used_today(db, user.id, now)
    reset_at = user.quota_reset_at.replace(tzinfo=timezone.utc) if user.quota_reset_at else _local_now(now)
    return QuotaStatus(
        daily_quota=int(user.daily_quota),
        used_today=used,
        remaining=remaining(int(user.daily_quota), used),
        reset_at=reset_at,
    )
