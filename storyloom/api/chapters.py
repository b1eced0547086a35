from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from storyloom.api.novels import require_owned_novel
from storyloom.core.db import get_db
from storyloom.core.errors import NotFoundError
from storyloom.deps.auth import get_current_user
from storyloom.models.chapter import Chapter
from storyloom.models.user import User
from storyloom.schemas.novel import ChapterCreate, ChapterOut, ChapterUpdate
from storyloom.services.chapters import create_chapter


router = APIRouter(prefix="/api/novels", tags=["chapters"])
logger = logging.getLogger(__name__)


@router.get("/{novel_id}/chapters")
def list_chapters(novel_id: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    require_owned_novel(db, novel_id, current)
    chapters = db.execute(
        select(Chapter).where(Chapter.novel_id == novel_id).order_by(Chapter.chapter_number.asc())
    ).scalars().all()
    return {"chapters": [ChapterOut.model_validate(c).model_dump(mode="json") for c in chapters]}


@router.post("/{novel_id}/chapters", status_code=status.HTTP_201_CREATED)
def add_chapter(
    novel_id: int,
    payload: ChapterCreate,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    require_owned_novel(db, novel_id, current)
    chapter = create_chapter(
        db,
        novel_id,
        title=payload.title,
        content=payload.content,
        prompt_used=payload.prompt_used,
        tokens_used=payload.tokens_used,
        model=payload.model,
        temperature=payload.temperature,
    )
    logger.info("chapters.create novel=%s number=%s", novel_id, chapter.chapter_number)
    return {"chapter": ChapterOut.model_validate(chapter).model_dump(mode="json")}


@router.put("/{novel_id}/chapters/{chapter_id}")
def update_chapter(
    novel_id: int,
    chapter_id: int,
    payload: ChapterUpdate,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    require_owned_novel(db, novel_id, current)
    chapter = db.execute(
        select(Chapter).where(Chapter.id == chapter_id, Chapter.novel_id == novel_id)
    ).scalar_one_or_none()
    if chapter is None:
        raise NotFoundError("Chapter not found")
    # only title and content are editable once a chapter exists
    if payload.title is not None:
        chapter.title = payload.title
    if payload.content is not None:
        chapter.content = payload.content
    db.add(chapter)
    db.commit()
    db.refresh(chapter)
    return {"chapter": ChapterOut.model_validate(chapter).model_dump(mode="json")}
