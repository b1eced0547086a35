from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storyloom.core.db import get_db
from storyloom.core.errors import NotFoundError
from storyloom.deps.auth import get_current_user
from storyloom.models.chapter import Chapter
from storyloom.models.novel import Novel
from storyloom.models.user import User
from storyloom.schemas.novel import NovelCreate, NovelDetail, NovelListItem, NovelOut, NovelUpdate
from storyloom.services.chapters import get_owned_novel


router = APIRouter(prefix="/api/novels", tags=["novels"])
logger = logging.getLogger(__name__)


def require_owned_novel(db: Session, novel_id: int, user: User) -> Novel:
    novel = get_owned_novel(db, novel_id, user.id)
    if novel is None:
        raise NotFoundError("Novel not found")
    return novel


@router.get("")
def list_novels(current: User = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    chapter_count = (
        select(Chapter.novel_id, func.count(Chapter.id).label("cnt"))
        .group_by(Chapter.novel_id)
        .subquery()
    )
    rows = db.execute(
        select(Novel, func.coalesce(chapter_count.c.cnt, 0))
        .outerjoin(chapter_count, chapter_count.c.novel_id == Novel.id)
        .where(Novel.user_id == current.id)
        .order_by(Novel.updated_at.desc(), Novel.id.desc())
    ).all()
    novels = []
    for novel, cnt in rows:
        item = NovelListItem.model_validate(novel)
        item.chapter_count = int(cnt)
        novels.append(item.model_dump(mode="json"))
    return {"novels": novels}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_novel(payload: NovelCreate, current: User = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    novel = Novel(
        user_id=current.id,
        title=payload.title,
        genre=payload.genre,
        synopsis=payload.synopsis,
        status="draft",
    )
    novel.settings = payload.settings
    db.add(novel)
    db.commit()
    db.refresh(novel)
    logger.info("novels.create user=%s novel=%s", current.id, novel.id)
    return {"novel": NovelOut.model_validate(novel).model_dump(mode="json")}


@router.get("/{novel_id}")
def get_novel(novel_id: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    novel = require_owned_novel(db, novel_id, current)
    return {"novel": NovelDetail.model_validate(novel).model_dump(mode="json")}


@router.put("/{novel_id}")
def update_novel(
    novel_id: int,
    payload: NovelUpdate,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    novel = require_owned_novel(db, novel_id, current)
    data = payload.model_dump(exclude_unset=True)
    settings = data.pop("settings", None)
    for key, value in data.items():
        if value is None and key in ("title", "status"):
            continue
        setattr(novel, key, value)
    if settings is not None:
        novel.settings = settings
    db.add(novel)
    db.commit()
    db.refresh(novel)
    return {"novel": NovelOut.model_validate(novel).model_dump(mode="json")}


@router.delete("/{novel_id}")
def delete_novel(novel_id: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    novel = require_owned_novel(db, novel_id, current)
    db.delete(novel)
    db.commit()
    logger.info("novels.delete user=%s novel=%s", current.id, novel_id)
    return {"success": True}
