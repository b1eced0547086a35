from __future__ import annotations

import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from storyloom.core.db import get_db
from storyloom.core.errors import QuotaExceededError
from storyloom.deps.auth import get_current_user
from storyloom.models.user import User
from storyloom.services.quota import quota_status


logger = logging.getLogger(__name__)


def check_quota(current_user: User, db: Session) -> None:
    """Gate on today's usage. Checked, not reserved: a request that passes may
    still push the total past the limit once its usage is logged."""
    status = quota_status(db, current_user)
    if status.exceeded:
        logger.info("quota.exceeded user=%s used=%s limit=%s", current_user.id, status.used_today, status.daily_quota)
        raise QuotaExceededError("Daily quota exceeded")


def quota_guard(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    check_quota(current_user, db)
