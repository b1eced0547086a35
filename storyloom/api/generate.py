from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from storyloom.core.config import AIDefaults, get_ai_defaults
from storyloom.core.db import get_db, get_session_factory
from storyloom.deps.ai import get_ai_client_factory
from storyloom.deps.auth import get_current_user
from storyloom.deps.quota import quota_guard
from storyloom.models.user import User
from storyloom.schemas.generate import GenerateRequest
from storyloom.services.ai_client import AIClientFactory
from storyloom.services.generation import GenerationService


router = APIRouter(prefix="/api/novels", tags=["generate"])


@router.post("/{novel_id}/generate", dependencies=[Depends(quota_guard)])
def generate_chapter(
    novel_id: int,
    payload: GenerateRequest,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    defaults: AIDefaults = Depends(get_ai_defaults),
    client_factory: AIClientFactory = Depends(get_ai_client_factory),
) -> StreamingResponse:
    """Stream a new chapter as newline-delimited JSON events.

    Failures up to and including provider resolution return a JSON error with
    a status code; after the first ``start`` event they arrive as an ``error``
    event on the open stream.
    """
    service = GenerationService(db, defaults, session_factory=get_session_factory(), client_factory=client_factory)
    plan = service.prepare(current, novel_id, payload)
    return StreamingResponse(
        service.stream(plan),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
