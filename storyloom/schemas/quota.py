from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class QuotaOut(BaseModel):
    dailyQuota: int
    usedToday: int
    remaining: int
    resetAt: datetime
