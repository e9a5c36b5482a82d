"""HTTP surface: the HTML status page and the OpenMetrics endpoint."""

from __future__ import annotations

import hmac
import logging

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from rabbit_monitor import __version__
from rabbit_monitor.config import Settings
from rabbit_monitor.metrics import CONTENT_TYPE, render_metrics
from rabbit_monitor.status_page import render_status_page
from rabbit_monitor.store import SnapshotStore

STATUS_PAGE_DISABLED = (
    "The status page is disabled while bearer token authentication is enabled. "
    "Use /metrics with an Authorization header instead.\n"
)
UNAUTHORIZED = "Unauthorized\n"


def is_authorized(header: str | None, token: str | None) -> bool:
    """Exact, byte-for-byte match of the Authorization header against the token."""
    if token is None:
        return True
    if header is None:
        return False
    # Starlette decodes header values as latin-1; encoding back gives the raw bytes.
    presented = header.encode("latin-1")
    expected = f"Bearer {token}".encode("utf-8")
    return hmac.compare_digest(presented, expected)


def create_app(store: SnapshotStore, settings: Settings, token: str | None = None) -> FastAPI:
    app = FastAPI(
        title="Rabbit Monitor",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    logger = logging.getLogger("rabbit_monitor.server")

    # Sync handlers run in the worker thread pool, so waiting on the
    # snapshot lock never stalls the event loop.
    @app.get("/")
    def index() -> Response:
        if token is not None:
            return PlainTextResponse(STATUS_PAGE_DISABLED, status_code=404)
        body = store.with_read(lambda snapshot: render_status_page(snapshot, settings))
        return HTMLResponse(body)

    @app.get("/metrics")
    def metrics(request: Request) -> Response:
        if not is_authorized(request.headers.get("authorization"), token):
            logger.debug("Rejected /metrics request from %s.", request.client)
            return PlainTextResponse(
                UNAUTHORIZED,
                status_code=401,
                headers={"WWW-Authenticate": "Bearer"},
            )
        body = store.with_read(lambda snapshot: render_metrics(snapshot, settings))
        return Response(content=body, media_type=CONTENT_TYPE)

    return app
