from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storyloom.core.config import get_settings
from storyloom.core.db import Base, utcnow

if TYPE_CHECKING:
    from storyloom.models.api_config import UserApiConfig
    from storyloom.models.novel import Novel


def _default_daily_quota() -> int:
    return get_settings().daily_quota_default


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    # 每日 token 上限
    daily_quota: Mapped[int] = mapped_column(Integer, default=_default_daily_quota, nullable=False)
    # 最近一次观察到的配额日（仅用于展示，实际用量按日志时间区间统计）
    quota_reset_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    novels: Mapped[list["Novel"]] = relationship(back_populates="owner", cascade="all, delete-orphan")
    api_config: Mapped[Optional["UserApiConfig"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", uselist=False
    )
