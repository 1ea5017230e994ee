"""FastAPI app factory.

The WebSocket endpoint is a thin transport adapter over `TrackerHub`; the REST
endpoints are read-only views of the same state.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles

from collab_issues import __version__
from collab_issues.config import TrackerSettings
from collab_issues.server.models import Health
from collab_issues.tracker import events
from collab_issues.tracker.audit import AuditEntry
from collab_issues.tracker.errors import NotFoundError
from collab_issues.tracker.hub import TrackerHub, build_hub
from collab_issues.tracker.models import Issue, UserRecord

logger = logging.getLogger(__name__)

NOT_JSON_NOTICE = "Messages must be JSON objects"


def create_app(settings: TrackerSettings | None = None) -> FastAPI:
    settings = settings or TrackerSettings()
    hub = build_hub(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Tracker starting", extra={"data_dir": str(settings.data_dir)})
        yield
        await hub.broadcaster.close()
        logger.info("Tracker stopped")

    app = FastAPI(
        title="Collaborative Issue Tracker",
        version=__version__,
        description="Real-time issue tracking over WebSocket, with read-only REST views.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    # Expose for request handlers and tests.
    app.state.settings = settings
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/api/health", response_model=Health)
    def health() -> Health:
        return Health(
            status="ok",
            version=__version__,
            connections=len(hub.broadcaster),
            issues=len(hub.store),
        )

    @app.get("/api/issues", response_model=list[Issue])
    def list_issues() -> list[Issue]:
        # Newest first, same as the snapshot sent to joining clients.
        return list(reversed(hub.snapshot()))

    @app.get("/api/issues/{issue_id}", response_model=Issue)
    def get_issue(issue_id: str) -> Issue:
        try:
            return hub.store.get(issue_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=e.notice) from e

    @app.get("/api/audit", response_model=list[AuditEntry])
    def audit_history(limit: int | None = Query(default=None, ge=1)) -> list[AuditEntry]:
        if hub.audit is None:
            return []
        return hub.audit.entries(limit=limit)

    @app.get("/api/users", response_model=list[UserRecord])
    def users() -> list[UserRecord]:
        return hub.registry.roster()

    @app.websocket("/ws")
    async def event_channel(ws: WebSocket) -> None:
        await ws.accept()
        connection_id = uuid.uuid4().hex
        await _serve_connection(hub, ws, connection_id)

    _maybe_mount_client(app, settings)
    return app


async def _serve_connection(hub: TrackerHub, ws: WebSocket, connection_id: str) -> None:
    hub.connect(connection_id, ws.send_json)
    logger.info("Client connected", extra={"connection_id": connection_id})
    try:
        while True:
            frame = await ws.receive()
            if frame["type"] == "websocket.disconnect":
                return
            text = frame.get("text")
            if text is None:
                # Binary frames carry no JSON text.
                hub.broadcaster.send_to(connection_id, events.error_notice(NOT_JSON_NOTICE))
                continue
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                hub.broadcaster.send_to(connection_id, events.error_notice(NOT_JSON_NOTICE))
                continue
            await hub.dispatch(connection_id, message)
    finally:
        await hub.disconnect(connection_id)
        logger.info("Client disconnected", extra={"connection_id": connection_id})


def _maybe_mount_client(app: FastAPI, settings: TrackerSettings) -> None:
    """Serve the browser client from the same process when it is present.

    The mount goes last so `/api/*` and `/ws` keep precedence.
    """

    static = Path(settings.static_dir)
    if (static / "index.html").exists():
        app.mount("/", StaticFiles(directory=static, html=True), name="client")
        return

    @app.get("/", include_in_schema=False)
    def client_missing() -> PlainTextResponse:
        return PlainTextResponse(
            f"No browser client found in {static}. Connect a client to /ws, "
            "or set TRACKER_STATIC_DIR.\n",
            status_code=200,
        )
