from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


NovelStatus = Literal["draft", "published", "archived"]


class NovelCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    genre: Optional[str] = Field(None, max_length=64)
    synopsis: Optional[str] = None
    settings: Optional[dict[str, Any]] = None


class NovelUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    genre: Optional[str] = Field(None, max_length=64)
    synopsis: Optional[str] = None
    status: Optional[NovelStatus] = None
    settings: Optional[dict[str, Any]] = None


class ChapterSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    chapter_number: int
    title: Optional[str] = None
    tokens_used: int
    created_at: datetime


class NovelOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    title: str
    genre: Optional[str] = None
    synopsis: Optional[str] = None
    status: str
    settings: Optional[dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class NovelListItem(NovelOut):
    chapter_count: int = 0


class NovelDetail(NovelOut):
    chapters: list[ChapterSummary] = []


class ChapterCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=255)
    content: str
    prompt_used: str = Field(alias="promptUsed")
    tokens_used: int = Field(0, ge=0, alias="tokensUsed")
    model: str = "moonshot-v1-128k"
    temperature: float = Field(0.7, ge=0, le=2)

    model_config = ConfigDict(populate_by_name=True)


class ChapterUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=255)
    content: Optional[str] = None


class ChapterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    novel_id: int
    chapter_number: int
    title: Optional[str] = None
    content: str
    prompt_used: str
    tokens_used: int
    model: str
    temperature: float
    created_at: datetime
    updated_at: datetime
