"""
Chapter generation.

``GenerationService.prepare`` runs every check that can still fail with an
ordinary status-coded response (ownership, provider configuration, prompt
assembly). ``GenerationService.stream`` is the body of the streamed response:
newline-delimited JSON events ``start`` / ``chunk`` / ``done`` or ``error``.
Once the stream is open every failure is reported in-band.
"""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from storyloom.core.config import AIDefaults
from storyloom.core.errors import NotFoundError, ServiceError
from storyloom.models.chapter import Chapter
from storyloom.models.usage_log import UsageLog
from storyloom.models.user import User
from storyloom.schemas.generate import GenerateRequest
from storyloom.services.ai_client import AIClientFactory, create_ai_client
from storyloom.services.chapters import create_chapter, get_owned_novel, recent_chapters
from storyloom.services.credentials import CredentialStore
from storyloom.services.prompts import CONTEXT_CHAPTERS, build_messages, estimate_input_tokens, estimate_tokens
from storyloom.services.providers import AIConfig, ChatMessage, GenerateOptions, get_adapter, resolve_base_url


logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Generation failed"


def encode_event(event: dict[str, Any]) -> str:
    return json.dumps(event, ensure_ascii=False) + "\n"


@dataclass(frozen=True)
class GenerationPlan:
    user_id: int
    novel_id: int
    config: AIConfig
    messages: list[ChatMessage]
    prompt: str
    temperature: float
    max_tokens: int


@dataclass(frozen=True)
class GenerationResult:
    chapter_id: int
    chapter_number: int
    input_tokens: int
    output_tokens: int
    total_tokens: int


class GenerationService:
    def __init__(
        self,
        db: Session,
        defaults: AIDefaults,
        session_factory: sessionmaker,
        client_factory: Optional[AIClientFactory] = None,
    ) -> None:
        self.db = db
        self.defaults = defaults
        self.session_factory = session_factory
        self.client_factory = client_factory or create_ai_client

    def prepare(self, user: User, novel_id: int, payload: GenerateRequest) -> GenerationPlan:
        """Ownership, provider resolution and prompt assembly. Quota is gated before this."""
        novel = get_owned_novel(self.db, novel_id, user.id)
        if novel is None:
            raise NotFoundError("Novel not found")

        config = CredentialStore(self.db).resolve(user.id, self.defaults)
        # unsupported provider or missing base URL fails here, before the stream opens
        get_adapter(config.provider)
        resolve_base_url(config)

        chapters = recent_chapters(self.db, novel.id, CONTEXT_CHAPTERS)
        messages = build_messages(
            novel,
            chapters,
            payload.prompt,
            genre=payload.genre,
            style=payload.style,
            previous_context=payload.previous_context,
        )
        return GenerationPlan(
            user_id=user.id,
            novel_id=novel.id,
            config=config,
            messages=messages,
            prompt=payload.prompt,
            temperature=payload.temperature,
            max_tokens=payload.max_tokens or self.defaults.max_tokens,
        )

    async def stream(self, plan: GenerationPlan) -> AsyncIterator[str]:
        logger.info(
            "generation.start user=%s novel=%s provider=%s model=%s",
            plan.user_id, plan.novel_id, plan.config.provider, plan.config.model,
        )
        yield encode_event({"type": "start"})
        parts: list[str] = []
        output_tokens = 0
        try:
            client = self.client_factory(plan.config)
            options = GenerateOptions(temperature=plan.temperature, max_tokens=plan.max_tokens)
            fragments = client.stream_generate(plan.messages, options)
            # closes the upstream request as soon as this generator is closed
            async with aclosing(fragments):
                async for fragment in fragments:
                    parts.append(fragment)
                    output_tokens += estimate_tokens(fragment)
                    yield encode_event({"type": "chunk", "content": fragment})

            result = await run_in_threadpool(self._persist, plan, "".join(parts), output_tokens)
            logger.info(
                "generation.done user=%s novel=%s chapter=%s number=%s input=%s output=%s total=%s",
                plan.user_id, plan.novel_id, result.chapter_id, result.chapter_number,
                result.input_tokens, result.output_tokens, result.total_tokens,
            )
            yield encode_event({
                "type": "done",
                "tokensUsed": result.total_tokens,
                "chapterNumber": result.chapter_number,
            })
        except asyncio.CancelledError:
            # caller went away; nothing partial is persisted
            logger.info("generation.cancelled user=%s novel=%s chars=%s", plan.user_id, plan.novel_id, sum(map(len, parts)))
            raise
        except ServiceError as e:
            logger.warning("generation.failed user=%s novel=%s error=%s", plan.user_id, plan.novel_id, e.detail)
            yield encode_event({"type": "error", "message": e.detail})
        except Exception:
            logger.exception("generation.failed user=%s novel=%s", plan.user_id, plan.novel_id)
            yield encode_event({"type": "error", "message": GENERIC_FAILURE})

    def _persist(self, plan: GenerationPlan, content: str, output_tokens: int) -> GenerationResult:
        input_tokens = estimate_input_tokens(plan.messages)
        total_tokens = input_tokens + output_tokens
        with self.session_factory() as db:
            usage = UsageLog(
                user_id=plan.user_id,
                novel_id=plan.novel_id,
                request_type="generate",
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=total_tokens,
            )
            chapter: Chapter = create_chapter(
                db,
                plan.novel_id,
                content=content,
                prompt_used=plan.prompt,
                model=plan.config.model,
                temperature=plan.temperature,
                tokens_used=total_tokens,
                usage=usage,
            )
            return GenerationResult(
                chapter_id=chapter.id,
                chapter_number=chapter.chapter_number,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=total_tokens,
            )
