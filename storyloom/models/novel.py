from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storyloom.core.db import Base, utcnow

if TYPE_CHECKING:
    from storyloom.models.chapter import Chapter
    from storyloom.models.user import User


class Novel(Base):
    __tablename__ = "novels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    genre: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    synopsis: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # draft | published | archived
    status: Mapped[str] = mapped_column(String(16), default="draft", nullable=False)
    # 自由格式设置（style/tone/targetAudience/wordCountPerChapter），JSON 文本
    settings_json: Mapped[Optional[str]] = mapped_column("settings", Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    owner: Mapped["User"] = relationship(back_populates="novels")
    chapters: Mapped[list["Chapter"]] = relationship(
        back_populates="novel",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Chapter.chapter_number",
    )

    @property
    def settings(self) -> Optional[dict[str, Any]]:
        if not self.settings_json:
            return None
        try:
            return json.loads(self.settings_json)
        except ValueError:
            return None

    @settings.setter
    def settings(self, value: Optional[dict[str, Any]]) -> None:
        self.settings_json = json.dumps(value, ensure_ascii=False) if value is not None else None
