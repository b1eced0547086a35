from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from storyloom.core.db import Base, utcnow


class UsageLog(Base):
    """Append-only ledger; daily usage is always a range query over created_at."""

    __tablename__ = "usage_logs"
    __table_args__ = (
        Index("idx_usage_logs_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # 小说删除后日志保留
    novel_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("novels.id", ondelete="SET NULL"), index=True, nullable=True
    )
    # generate | continue | rewrite
    request_type: Mapped[str] = mapped_column(String(16), nullable=False, default="generate")
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
