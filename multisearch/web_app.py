"""
FastAPI web application for MultiSearch.
Serves per-user query history and proxied as-you-type suggestions.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from multisearch.aggregator import SuggestionAggregator
from multisearch.config import Settings, settings as default_settings
from multisearch.history_service import HistoryService, ValidationError
from multisearch.middleware import BodySizeLimitMiddleware
from multisearch.models import HistoryWriteRequest
from multisearch.normalize import norm_user
from multisearch.providers import SuggestionClient
from multisearch.store import HistoryStore

logger = logging.getLogger(__name__)


def create_app(
    cfg: Optional[Settings] = None,
    store: Optional[HistoryStore] = None,
    client: Optional[SuggestionClient] = None,
) -> FastAPI:
    """
    Build the application and its services.

    The store and suggestion client are created once here and shared by all
    requests. Tests pass their own to point at a temp file or a mock transport.
    """
    cfg = cfg or default_settings
    store = store or HistoryStore(cfg.store_path, flush_delay=cfg.flush_delay_sec)
    client = client or SuggestionClient(
        timeout=cfg.provider_timeout_sec,
        default_provider=cfg.default_engine,
    )
    history = HistoryService(store, max_history=cfg.max_history, recent_limit=cfg.recent_limit)
    aggregator = SuggestionAggregator(
        history,
        client,
        default_engine=cfg.default_engine,
        match_limit=cfg.history_match_limit,
        limit=cfg.suggest_limit,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # StoreStartupError propagates: no serving without a working store
        store.ensure_exists()
        store.load()
        logger.info(f"MultiSearch running on http://{cfg.host}:{cfg.port}")
        logger.info(f"History stored at: {store.path}")
        yield
        store.flush_now()
        client.close()

    app = FastAPI(
        title="MultiSearch",
        description="Query history and aggregated autocomplete suggestions.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.store = store
    app.state.history = history
    app.state.aggregator = aggregator

    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=cfg.max_body_bytes)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def malformed_request_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.get("/health")
    def health_check() -> JSONResponse:
        """Health check endpoint for deployment."""
        return JSONResponse(content={"status": "ok", "service": "multisearch"})

    @app.get("/api/history")
    def get_history(u: Optional[str] = None) -> JSONResponse:
        """Return the user's latest history entries, newest first."""
        items = history.get_recent(u)
        return JSONResponse(content={"user": norm_user(u), "items": [e.to_dict() for e in items]})

    @app.post("/api/history")
    def add_history(payload: Optional[HistoryWriteRequest] = None) -> JSONResponse:
        """Remember a submitted query."""
        payload = payload or HistoryWriteRequest()
        history.append(payload.u, payload.q, payload.engine)
        return JSONResponse(content={"ok": True})

    @app.delete("/api/history")
    def clear_history(u: Optional[str] = None) -> JSONResponse:
        history.clear(u)
        return JSONResponse(content={"ok": True})

    @app.get("/api/suggest")
    def get_suggestions(
        u: Optional[str] = None,
        engine: Optional[str] = None,
        q: Optional[str] = None,
    ) -> JSONResponse:
        """Provider suggestions merged with matching history."""
        return JSONResponse(content=aggregator.suggest(u, engine, q))

    public_dir = Path(cfg.public_dir)
    if public_dir.is_dir():
        app.mount("/", StaticFiles(directory=public_dir, html=True), name="public")

    return app


app = create_app()
