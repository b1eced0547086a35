import json
import os

# 必须在导入 storyloom 之前设置: 配置与引擎在导入时创建
os.environ.setdefault("APP_DATABASE_URL", "sqlite://")
os.environ.setdefault("APP_DEFAULT_AI_API_KEY", "sk-default-test")
os.environ.setdefault("APP_ENC_MASTER_KEY", "unit-test-master-key")
os.environ.setdefault("APP_ADMIN_SECRET", "admin-test-secret")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

from typing import Iterable, Optional  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from storyloom.core.db import Base, SessionLocal, engine  # noqa: E402
from storyloom.deps.ai import get_ai_client_factory  # noqa: E402
from storyloom.main import app  # noqa: E402
from storyloom.services.ai_client import AIClient  # noqa: E402


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in the given pieces, as a network read would."""

    def __init__(self, chunks: Iterable[str]):
        self._chunks = list(chunks)

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk.encode("utf-8")


class TrackedStream(ChunkedStream):
    """ChunkedStream that records whether httpx closed it."""

    def __init__(self, chunks: Iterable[str]):
        super().__init__(chunks)
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


def sse_body(*fragments: str, done: bool = True) -> list[str]:
    """OpenAI-style stream lines, one network chunk per event."""
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": f}}]}, ensure_ascii=False) + "\n\n"
        for f in fragments
    ]
    if done:
        lines.append("data: [DONE]\n\n")
    return lines


class FakeUpstream:
    """Scriptable provider endpoint backed by httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.chunks: list[str] = sse_body("第一段", "第二段")
        self.json_body: Optional[dict] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.json_body is not None:
            return httpx.Response(self.status_code, json=self.json_body)
        return httpx.Response(self.status_code, stream=ChunkedStream(self.chunks))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client_factory(self):
        transport = self.transport
        return lambda config: AIClient(config, transport=transport)


@pytest.fixture(autouse=True)
def _fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def upstream():
    fake = FakeUpstream()
    app.dependency_overrides[get_ai_client_factory] = fake.client_factory
    yield fake
    app.dependency_overrides.pop(get_ai_client_factory, None)


@pytest.fixture()
def client():
    with TestClient(app) as c:
        yield c


def register(c: TestClient, username: str = "writer", password: str = "secret123") -> dict:
    resp = c.post(
        "/api/auth/register",
        json={"email": f"{username}@example.com", "username": username, "password": password},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["user"]


def create_novel(c: TestClient, title: str = "星河纪元", **fields) -> dict:
    resp = c.post("/api/novels", json={"title": title, **fields})
    assert resp.status_code == 201, resp.text
    return resp.json()["novel"]


@pytest.fixture()
def author(client):
    """Registered user whose session cookies live on ``client``."""
    return register(client)


@pytest.fixture()
def novel(client, author):
    return create_novel(client, genre="科幻", synopsis="人类第一次离开太阳系")


@pytest.fixture()
def other_client():
    with TestClient(app) as c:
        register(c, username="stranger")
        yield c
