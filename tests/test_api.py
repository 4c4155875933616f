"""Tests for the FastAPI server."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi import FastAPI
from helpers import answering, descriptor, sleeping
from httpx import ASGITransport, AsyncClient

from switchboard.api.server import app as default_app
from switchboard.api.server import create_app
from switchboard.delegation import DelegationEngine, HandlerRegistry, RequestContext, Response

pytestmark = pytest.mark.anyio


@pytest.fixture
def app() -> FastAPI:
    registry = HandlerRegistry()
    registry.register(
        descriptor("sec", ["security.review"], name="Security", description="Reviews code"),
        answering("Looks safe", confidence=0.8),
    )

    async def whoami(query: str, context: RequestContext) -> Response:
        identity = context.identity.id if context.identity else "anonymous"
        return Response.of_answer(f"{identity}:{context.metadata.get('team', '-')}")

    registry.register(descriptor("whoami", ["identity"], name="Whoami"), whoami)
    registry.register(descriptor("slow", ["slow"], name="Slow"), sleeping(0.2))
    return create_app(DelegationEngine(registry))


async def _post(app: FastAPI, path: str, body: dict):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post(path, json=body)


async def _get(app: FastAPI, path: str):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get(path)


async def test_health(app: FastAPI) -> None:
    response = await _get(app, "/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["handlers"] == 3
    assert "version" in data
    assert "uptime_seconds" in data


async def test_default_app_serves_builtin_handlers() -> None:
    response = await _get(default_app, "/api/handlers")
    assert response.status_code == 200
    ids = [h["id"] for h in response.json()["handlers"]]
    assert ids == ["hello", "echo", "assistant"]


async def test_list_handlers(app: FastAPI) -> None:
    response = await _get(app, "/api/handlers")
    data = response.json()
    assert data["count"] == 3
    assert data["handlers"][0] == {
        "id": "sec",
        "name": "Security",
        "description": "Reviews code",
        "capabilities": ["security.review"],
        "team": None,
        "parent": None,
    }


async def test_route(app: FastAPI) -> None:
    response = await _post(app, "/api/route", {"query": "review the security of my code"})
    assert response.status_code == 200
    data = response.json()
    assert data["answer"] == "Looks safe"
    assert data["confidence"] == 0.8
    assert data["metadata"]["delegation_chain"] == ["sec"]
    assert data["metadata"]["delegation"]["strategy"] == "heuristic"


async def test_route_requires_query(app: FastAPI) -> None:
    response = await _post(app, "/api/route", {"timeout_ms": 100})
    assert response.status_code == 400
    assert "query" in response.json()["detail"]


async def test_route_rejects_bad_timeout(app: FastAPI) -> None:
    response = await _post(app, "/api/route", {"query": "q", "timeout_ms": -1})
    assert response.status_code == 400


async def test_route_no_match_is_an_error_body(app: FastAPI) -> None:
    response = await _post(app, "/api/route", {"query": "zzz"})
    assert response.status_code == 200
    assert response.json()["error"]["code"] == "NO_MATCH"


async def test_route_with_timeout(app: FastAPI) -> None:
    response = await _post(app, "/api/handlers/slow/query", {"query": "q", "timeout_ms": 30})
    assert response.status_code == 200
    assert response.json()["error"]["code"] == "LIBRARIAN_TIMEOUT"


async def test_direct_query_passes_identity_and_metadata(app: FastAPI) -> None:
    response = await _post(
        app,
        "/api/handlers/whoami/query",
        {"query": "who", "identity": {"id": "u42", "teams": ["core"]}, "metadata": {"team": "core"}},
    )
    assert response.status_code == 200
    assert response.json()["answer"] == "u42:core"


async def test_direct_query_unknown_handler(app: FastAPI) -> None:
    response = await _post(app, "/api/handlers/ghost/query", {"query": "q"})
    assert response.status_code == 404
    error = response.json()["error"]
    assert error["code"] == "HANDLER_NOT_FOUND"
    assert error["details"]["available_handlers"] == ["sec", "whoami", "slow"]


async def test_direct_query_rejects_bad_identity(app: FastAPI) -> None:
    response = await _post(app, "/api/handlers/whoami/query", {"query": "q", "identity": {}})
    assert response.status_code == 400


async def test_direct_query_encodes_rich_metadata() -> None:
    registry = HandlerRegistry()
    stamp = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

    async def reporting(query: str, context: RequestContext) -> Response:
        return Response.of_answer(
            "report ready", metadata={"generated_at": stamp, "path": Path("/tmp/report.csv")}
        )

    registry.register(descriptor("report", ["reports"], name="Report"), reporting)
    app = create_app(DelegationEngine(registry))

    response = await _post(app, "/api/handlers/report/query", {"query": "q"})

    assert response.status_code == 200
    metadata = response.json()["metadata"]
    assert metadata["generated_at"] == "2024-05-01T12:30:00+00:00"
    assert metadata["path"] == "/tmp/report.csv"
