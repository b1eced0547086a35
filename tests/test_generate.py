import json

from fastapi.testclient import TestClient
from sqlalchemy import select

from conftest import sse_body
from storyloom.core.config import AIDefaults, get_ai_defaults
from storyloom.main import app
from storyloom.models.chapter import Chapter
from storyloom.models.usage_log import UsageLog
from storyloom.models.user import User
from storyloom.services.credentials import MISSING_KEY_MESSAGE, CredentialStore


def _events(resp) -> list[dict]:
    return [json.loads(line) for line in resp.text.splitlines() if line.strip()]


def _generate(client, novel_id, **body):
    body.setdefault("prompt", "主角登上飞船")
    return client.post(f"/api/novels/{novel_id}/generate", json=body)


def _log_usage(db, user_id, tokens):
    db.add(UsageLog(user_id=user_id, request_type="generate", input_tokens=0, output_tokens=tokens, total_tokens=tokens))
    db.commit()


def test_streams_events_and_persists_chapter(client, novel, upstream, db):
    resp = _generate(client, novel["id"], temperature=0.9, maxTokens=2048)

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = _events(resp)
    assert [e["type"] for e in events] == ["start", "chunk", "chunk", "done"]
    assert [e["content"] for e in events[1:3]] == ["第一段", "第二段"]
    done = events[-1]
    assert done["chapterNumber"] == 1

    request = upstream.requests[0]
    assert str(request.url) == "https://api.moonshot.cn/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-default-test"
    sent = json.loads(request.content)
    assert sent["model"] == "moonshot-v1-128k"
    assert sent["temperature"] == 0.9
    assert sent["max_tokens"] == 2048
    assert "小说类型：科幻" in sent["messages"][1]["content"]
    assert sent["messages"][1]["content"].endswith("主角登上飞船")

    chapter = db.execute(select(Chapter).where(Chapter.novel_id == novel["id"])).scalar_one()
    assert chapter.content == "第一段第二段"
    assert chapter.chapter_number == 1
    assert chapter.prompt_used == "主角登上飞船"
    assert chapter.temperature == 0.9
    assert chapter.tokens_used == done["tokensUsed"]

    usage = db.execute(select(UsageLog)).scalar_one()
    assert usage.novel_id == novel["id"]
    assert usage.output_tokens == 4
    assert usage.total_tokens == done["tokensUsed"]
    assert usage.input_tokens + usage.output_tokens == usage.total_tokens


def test_next_generation_sees_previous_chapter(client, novel, upstream):
    _generate(client, novel["id"])
    events = _events(_generate(client, novel["id"], prompt="继续"))

    assert events[-1]["type"] == "done"
    assert events[-1]["chapterNumber"] == 2
    assert "第1章：第一段第二段..." in json.loads(upstream.requests[1].content)["messages"][1]["content"]


def test_usage_just_under_quota_is_accepted(client, author, novel, upstream, db):
    user = db.get(User, author["id"])
    user.daily_quota = 1000
    db.commit()
    _log_usage(db, author["id"], 950)

    resp = _generate(client, novel["id"])

    assert resp.status_code == 200
    assert _events(resp)[-1]["type"] == "done"


def test_exhausted_quota_is_rejected_before_any_upstream_call(client, author, novel, upstream, db):
    user = db.get(User, author["id"])
    user.daily_quota = 1000
    db.commit()
    _log_usage(db, author["id"], 1000)

    resp = _generate(client, novel["id"])

    assert resp.status_code == 429
    assert resp.json() == {"error": "Daily quota exceeded"}
    assert upstream.requests == []


def test_invalid_body_is_rejected_without_upstream_call(client, novel, upstream):
    assert _generate(client, novel["id"], temperature=3.0).status_code == 400
    assert _generate(client, novel["id"], prompt="").status_code == 400
    assert "error" in _generate(client, novel["id"], maxTokens=0).json()
    assert upstream.requests == []


def test_foreign_novel_is_not_found(client, novel, other_client, upstream):
    resp = _generate(other_client, novel["id"])

    assert resp.status_code == 404
    assert resp.json() == {"error": "Novel not found"}
    assert upstream.requests == []


def test_requires_login(novel, upstream):
    with TestClient(app) as anonymous:
        assert _generate(anonymous, novel["id"]).status_code == 401


def test_upstream_failure_is_reported_in_band(client, novel, upstream, db):
    upstream.status_code = 500
    upstream.chunks = ['{"error": "server overloaded"}']

    resp = _generate(client, novel["id"])

    assert resp.status_code == 200
    events = _events(resp)
    assert [e["type"] for e in events] == ["start", "error"]
    assert events[1]["message"].startswith("API error: ")
    assert "server overloaded" in events[1]["message"]
    assert db.execute(select(Chapter)).first() is None
    assert db.execute(select(UsageLog)).first() is None


def test_error_mid_stream_keeps_earlier_chunks_and_persists_nothing(client, novel, upstream, db):
    upstream.chunks = sse_body("开头", done=False) + ['data: {"error": {"message": "rate limited"}}\n']

    events = _events(_generate(client, novel["id"]))

    assert [e["type"] for e in events] == ["start", "chunk", "error"]
    assert "rate limited" in events[-1]["message"]
    assert db.execute(select(Chapter)).first() is None


def test_missing_key_fails_before_stream(client, novel, upstream):
    app.dependency_overrides[get_ai_defaults] = lambda: AIDefaults(
        provider="kimi", api_key="", base_url=None, model="moonshot-v1-128k", max_tokens=4096, connect_timeout_seconds=5
    )
    try:
        resp = _generate(client, novel["id"])
    finally:
        app.dependency_overrides.pop(get_ai_defaults, None)

    assert resp.status_code == 500
    assert resp.json() == {"error": MISSING_KEY_MESSAGE}
    assert upstream.requests == []


def test_user_credentials_take_precedence(client, novel, upstream):
    client.post(
        "/api/user/api-config",
        json={"provider": "anthropic", "apiKey": "sk-ant-user", "model": "claude-3-haiku-20240307"},
    )
    upstream.chunks = [
        'data: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "自有密钥"}}\n',
        'data: {"type": "message_stop"}\n',
    ]

    events = _events(_generate(client, novel["id"]))

    assert events[1] == {"type": "chunk", "content": "自有密钥"}
    request = upstream.requests[0]
    assert str(request.url) == "https://api.anthropic.com/v1/messages"
    assert request.headers["x-api-key"] == "sk-ant-user"
    assert json.loads(request.content)["model"] == "claude-3-haiku-20240307"


def test_custom_provider_without_base_url_fails_before_stream(client, author, novel, upstream, db):
    # rows saved before baseUrl became mandatory for custom providers
    CredentialStore(db).save(author["id"], "custom", "sk-x", "local-model")

    resp = _generate(client, novel["id"])

    assert resp.status_code == 500
    assert resp.json() == {"error": "Provider 'custom' requires a base URL"}
    assert upstream.requests == []
