"""FastAPI server exposing the routing engine over HTTP."""

from __future__ import annotations

import time
from typing import Any

import click
from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from switchboard import __version__
from switchboard.config import load_settings
from switchboard.delegation import (
    DelegationEngine,
    ErrorCode,
    HandlerRegistry,
    Identity,
    RequestContext,
)
from switchboard.handlers import register_builtin_handlers
from switchboard.logger import configure_logging, get_logger

logger = get_logger(__name__)


def _default_engine() -> DelegationEngine:
    registry = register_builtin_handlers(HandlerRegistry())
    return DelegationEngine.from_settings(registry, load_settings())


def _context_from_request(request: dict[str, Any]) -> RequestContext:
    timeout_ms = request.get("timeout_ms")
    if timeout_ms is not None and (not isinstance(timeout_ms, (int, float)) or timeout_ms <= 0):
        raise HTTPException(status_code=400, detail="timeout_ms must be a positive number")

    metadata = request.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise HTTPException(status_code=400, detail="metadata must be an object")

    identity = None
    raw_identity = request.get("identity")
    if raw_identity is not None:
        if not isinstance(raw_identity, dict) or not raw_identity.get("id"):
            raise HTTPException(status_code=400, detail="identity.id is required")
        identity = Identity(
            id=str(raw_identity["id"]),
            email=raw_identity.get("email"),
            teams=tuple(raw_identity.get("teams", ())),
            roles=tuple(raw_identity.get("roles", ())),
        )

    return RequestContext(identity=identity, metadata=metadata, deadline_ms=timeout_ms)


def _require_query(request: dict[str, Any]) -> str:
    query = request.get("query")
    if not isinstance(query, str) or not query.strip():
        raise HTTPException(status_code=400, detail="query is required")
    return query


def create_app(engine: DelegationEngine | None = None) -> FastAPI:
    """
    Build the API around `engine`.

    Args:
        engine: Engine to serve; defaults to the built-in handlers configured
            from ~/.switchboard/config.toml and SWITCHBOARD_* variables

    Returns:
        FastAPI application with the engine on `app.state.engine`
    """
    app = FastAPI(
        title="Switchboard API",
        version=__version__,
        description="Route natural-language queries to specialist handlers",
    )
    app.state.engine = engine or _default_engine()
    start_time = time.monotonic()

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Health check."""
        uptime = time.monotonic() - start_time
        return {
            "status": "ok",
            "version": __version__,
            "uptime_seconds": round(uptime, 1),
            "handlers": len(app.state.engine.registry),
        }

    @app.get("/api/handlers")
    async def handlers() -> dict[str, Any]:
        """Registered handler descriptors, in registration order."""
        descriptors = [d.to_dict() for d in app.state.engine.registry.descriptors()]
        return {"handlers": descriptors, "count": len(descriptors)}

    @app.post("/api/route")
    async def route(request: dict[str, Any]) -> dict[str, Any]:
        """Route a query to the best matching handler(s)."""
        query = _require_query(request)
        context = _context_from_request(request)
        response = await app.state.engine.route(query, context)
        logger.info("api_route", response_error=response.is_error)
        return response.to_dict()

    @app.post("/api/handlers/{handler_id}/query")
    async def query_handler(handler_id: str, request: dict[str, Any]) -> JSONResponse:
        """Send a query directly to one handler."""
        query = _require_query(request)
        context = _context_from_request(request)
        response = await app.state.engine.route_direct(query, handler_id, context)
        error = response.error
        status_code = 200
        if error is not None and error.code == ErrorCode.HANDLER_NOT_FOUND:
            status_code = 404
        content = jsonable_encoder(response.to_dict())
        return JSONResponse(status_code=status_code, content=content)

    return app


app = create_app()


@click.command()
@click.option("--port", default=3848, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
def main(port: int, host: str) -> None:
    """Start the Switchboard API server."""
    import uvicorn

    settings = load_settings()
    configure_logging(settings.log_level, settings.log_format)
    uvicorn.run(app, host=host, port=port)
