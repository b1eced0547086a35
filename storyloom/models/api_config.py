from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storyloom.core.db import Base, utcnow

if TYPE_CHECKING:
    from storyloom.models.user import User


class UserApiConfig(Base):
    __tablename__ = "user_api_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # 每个用户最多一条
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True, nullable=False
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    # AES-GCM 密文（hex）
    api_key_enc: Mapped[str] = mapped_column(String(2048), nullable=False)
    base_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user: Mapped["User"] = relationship(back_populates="api_config")
