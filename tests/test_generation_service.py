import json

import httpx
import pytest
from sqlalchemy import select

from conftest import TrackedStream, sse_body
from storyloom.core.config import AIDefaults
from storyloom.core.db import SessionLocal
from storyloom.core.errors import ConfigurationError
from storyloom.models.chapter import Chapter
from storyloom.models.usage_log import UsageLog
from storyloom.models.user import User
from storyloom.schemas.generate import GenerateRequest
from storyloom.services.ai_client import AIClient
from storyloom.services.credentials import CredentialStore
from storyloom.services.generation import GenerationService


DEFAULTS = AIDefaults(
    provider="kimi", api_key="sk-env", base_url=None, model="moonshot-v1-128k", max_tokens=4096, connect_timeout_seconds=5
)


def _service(db, stream: httpx.AsyncByteStream) -> GenerationService:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, stream=stream))
    return GenerationService(
        db,
        DEFAULTS,
        session_factory=SessionLocal,
        client_factory=lambda config: AIClient(config, transport=transport),
    )


@pytest.mark.asyncio
async def test_closing_after_first_chunk_persists_nothing(db, author, novel):
    stream = TrackedStream(sse_body("开头", "中段", "结尾"))
    service = _service(db, stream)
    plan = service.prepare(db.get(User, author["id"]), novel["id"], GenerateRequest(prompt="起笔"))

    events = service.stream(plan)
    assert json.loads(await events.__anext__()) == {"type": "start"}
    assert json.loads(await events.__anext__()) == {"type": "chunk", "content": "开头"}
    await events.aclose()

    assert stream.closed is True
    assert db.execute(select(Chapter)).first() is None
    assert db.execute(select(UsageLog)).first() is None


@pytest.mark.asyncio
async def test_full_stream_persists_chapter_and_usage(db, author, novel):
    service = _service(db, TrackedStream(sse_body("甲乙", "丙")))
    plan = service.prepare(db.get(User, author["id"]), novel["id"], GenerateRequest(prompt="起笔"))

    events = [json.loads(e) async for e in service.stream(plan)]

    done = events[-1]
    assert done["type"] == "done"
    chapter = db.execute(select(Chapter)).scalar_one()
    usage = db.execute(select(UsageLog)).scalar_one()
    assert chapter.content == "甲乙丙"
    assert chapter.tokens_used == usage.total_tokens == done["tokensUsed"]
    assert usage.output_tokens == 2
    assert usage.request_type == "generate"


def test_custom_provider_without_base_url_fails_in_prepare(db, author, novel):
    CredentialStore(db).save(author["id"], "custom", "sk-x", "local-model")
    service = _service(db, TrackedStream([]))

    with pytest.raises(ConfigurationError) as exc:
        service.prepare(db.get(User, author["id"]), novel["id"], GenerateRequest(prompt="起笔"))

    assert exc.value.status_code == 500
    assert "base URL" in exc.value.detail
