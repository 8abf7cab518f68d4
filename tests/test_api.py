"""Tests for API routes."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from mailscout.errors import NotFoundError
from mailscout.main import create_app
from mailscout.models.schemas import Pagination, ResponseEnvelope
from mailscout.services.cache import FileCacheStore, InMemoryCacheStore
from mailscout.services.rate_limiter import SlidingWindowRateLimiter


@pytest.fixture
def orchestrator():
    fake = MagicMock()
    fake.handle = AsyncMock(return_value=ResponseEnvelope(type="message", response="Hello!"))
    return fake


@pytest.fixture
def client(orchestrator):
    app = create_app(orchestrator=orchestrator, rate_limiter=SlidingWindowRateLimiter(max_requests=100, window=60))
    return TestClient(app, raise_server_exceptions=False)


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "mailscout"}


def test_chat_returns_envelope(client, orchestrator):
    response = client.post(
        "/api/chat",
        json={"message": "hi", "history": [{"role": "assistant", "content": "Welcome"}]},
    )

    assert response.status_code == 200
    assert response.json() == {"type": "message", "response": "Hello!", "images": [], "alternativeResults": []}
    args = orchestrator.handle.await_args
    assert args.args[0] == "hi"
    assert args.args[1][0].content == "Welcome"
    assert args.kwargs == {"page": 1, "limit": 5}


def test_chat_uses_camel_case_keys(client, orchestrator):
    orchestrator.handle.return_value = ResponseEnvelope(
        type="business_info",
        response="Report",
        pagination=Pagination(total=7, page=2, limit=3, has_more=True),
    )

    response = client.post("/api/chat?page=2&limit=3", json={"message": "pizza"})

    assert response.json()["pagination"] == {"total": 7, "page": 2, "limit": 3, "hasMore": True}
    assert orchestrator.handle.await_args.kwargs == {"page": 2, "limit": 3}


def test_chat_rejects_empty_message(client, orchestrator):
    response = client.post("/api/chat", json={"message": ""})

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["type"] == "ValidationError"
    assert error["status"] == 400
    assert error["details"][0]["path"] == "body.message"
    orchestrator.handle.assert_not_awaited()


def test_chat_rejects_limit_above_maximum(client):
    response = client.post("/api/chat?limit=50", json={"message": "pizza"})

    assert response.status_code == 400


def test_chat_renders_app_errors(client, orchestrator):
    orchestrator.handle.side_effect = NotFoundError("No business information found")

    response = client.post("/api/chat", json={"message": "Nowhere Pizza"})

    assert response.status_code == 404
    assert response.json() == {
        "error": {
            "type": "NotFoundError",
            "message": "No business information found",
            "details": None,
            "status": 404,
        }
    }


def test_chat_hides_unexpected_errors(client, orchestrator):
    orchestrator.handle.side_effect = RuntimeError("secret stack detail")

    response = client.post("/api/chat", json={"message": "boom"})

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["type"] == "InternalError"
    assert "secret" not in error["message"]


def test_chat_rate_limit(orchestrator):
    app = create_app(orchestrator=orchestrator, rate_limiter=SlidingWindowRateLimiter(max_requests=2, window=60))
    client = TestClient(app)

    assert client.post("/api/chat", json={"message": "one"}).status_code == 200
    assert client.post("/api/chat", json={"message": "two"}).status_code == 200
    response = client.post("/api/chat", json={"message": "three"})

    assert response.status_code == 429
    assert response.json()["error"]["type"] == "RateLimitError"
    assert 1 <= int(response.headers["Retry-After"]) <= 60
    assert orchestrator.handle.await_count == 2


@pytest.mark.parametrize(
    "fmt, expected",
    [
        ("markdown", "### User\nhello\n\n### Assistant\nhi there\n"),
        ("text", "USER: hello\n\nASSISTANT: hi there"),
    ],
)
def test_export(client, fmt, expected):
    history = [{"role": "user", "content": "hello"}, {"role": "assistant", "content": "hi there"}]

    response = client.post("/api/export", json={"history": history, "format": fmt})

    assert response.status_code == 200
    assert response.json() == {"data": expected}


def test_export_rejects_unknown_format(client):
    response = client.post("/api/export", json={"history": [], "format": "pdf"})

    assert response.status_code == 400


def test_rate_limiter_stays_in_memory_with_file_cache(tmp_path):
    with patch("mailscout.main.build_store", return_value=FileCacheStore(tmp_path)):
        app = create_app()

    assert isinstance(app.state.orchestrator.cache.store, FileCacheStore)
    assert isinstance(app.state.rate_limiter.store, InMemoryCacheStore)
