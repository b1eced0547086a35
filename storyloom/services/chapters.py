from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storyloom.models.chapter import Chapter
from storyloom.models.novel import Novel
from storyloom.models.usage_log import UsageLog


logger = logging.getLogger(__name__)

# attempts at "max + 1" before giving up on a contended novel
MAX_NUMBERING_ATTEMPTS = 5


def next_chapter_number(db: Session, novel_id: int) -> int:
    current = db.execute(
        select(func.max(Chapter.chapter_number)).where(Chapter.novel_id == novel_id)
    ).scalar()
    return int(current or 0) + 1


def recent_chapters(db: Session, novel_id: int, limit: int = 3) -> list[Chapter]:
    """Newest first."""
    return list(
        db.execute(
            select(Chapter)
            .where(Chapter.novel_id == novel_id)
            .order_by(Chapter.chapter_number.desc())
            .limit(limit)
        ).scalars()
    )


def get_owned_novel(db: Session, novel_id: int, user_id: int) -> Optional[Novel]:
    # one query for both conditions: a foreign novel looks exactly like a missing one
    return db.execute(
        select(Novel).where(Novel.id == novel_id, Novel.user_id == user_id)
    ).scalar_one_or_none()


def create_chapter(
    db: Session,
    novel_id: int,
    *,
    content: str,
    prompt_used: str,
    model: str,
    temperature: float,
    tokens_used: int = 0,
    title: Optional[str] = None,
    usage: Optional[UsageLog] = None,
) -> Chapter:
    """Insert a chapter numbered max + 1 within its novel.

    The unique (novel_id, chapter_number) constraint rejects a number taken by a
    concurrent writer; the read and insert are then retried. A usage log row,
    when given, is committed in the same transaction as the chapter.
    """
    for attempt in range(1, MAX_NUMBERING_ATTEMPTS + 1):
        number = next_chapter_number(db, novel_id)
        chapter = Chapter(
            novel_id=novel_id,
            chapter_number=number,
            title=title,
            content=content,
            prompt_used=prompt_used,
            tokens_used=tokens_used,
            model=model,
            temperature=temperature,
        )
        db.add(chapter)
        if usage is not None:
            db.add(usage)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning("chapters.number_conflict novel=%s number=%s attempt=%s", novel_id, number, attempt)
            if attempt == MAX_NUMBERING_ATTEMPTS:
                raise
            continue
        db.refresh(chapter)
        return chapter
    raise RuntimeError("unreachable")
