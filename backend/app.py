"""Agent Pulse API Server — FastAPI application.

GET  /health, /api/health  — liveness
GET  /api/events           — current snapshot
POST /api/events           — ingest one activity payload
GET  /api/alerts           — newest alerts
WS   /api/stream           — snapshot, then every accepted event

Run with: uvicorn backend.app:app --port 5050
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.config import Settings, load_settings
from backend.distributor import LiveDistributor
from backend.middleware import ApiKeyMiddleware
from backend.normalize import parse_body
from backend.store import AggregationStore
from collector import StoreSubmitter, build_collector
from shared.enums import ALERTS_ENDPOINT_LIMIT, MAX_BODY_BYTES
from shared.errors import MalformedInput
from shared.models import ErrorResponse, IngestAck, to_wire

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  APP LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════

def install_state(app: FastAPI, settings: Settings) -> AggregationStore:
    """Build the store and distributor for ``settings`` and hang them on app.state."""
    store = AggregationStore(settings.recent_capacity, settings.alert_capacity)
    app.state.settings = settings
    app.state.store = store
    app.state.distributor = LiveDistributor(
        store, settings.viewer_queue_size, settings.keepalive_seconds,
    )
    app.state.api_key = settings.api_key
    return store


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    store = install_state(app, settings)

    collectors = []
    for kind in settings.collectors:
        home = settings.claude_home if kind == "claude" else settings.codex_home
        try:
            c = build_collector(
                kind, StoreSubmitter(store), home=home,
                poll_interval=settings.poll_ms / 1000.0,
                backfill_lines=settings.backfill_lines,
                start_at_end=settings.start_at_end,
            )
        except ValueError as e:
            logger.error("Skipping collector: %s", e)
            continue
        await asyncio.to_thread(c.start)
        collectors.append(c)

    keepalive_task = asyncio.create_task(_keepalive_loop(app))
    logger.info("Agent Pulse ready (collectors: %s)", ", ".join(settings.collectors) or "none")
    yield
    keepalive_task.cancel()
    for c in collectors:
        await asyncio.to_thread(c.stop)
    app.state.distributor.close_all()


async def _keepalive_loop(app: FastAPI):
    """Nudge every viewer so idle connections are not reaped."""
    distributor: LiveDistributor = app.state.distributor
    while True:
        await asyncio.sleep(distributor.keepalive_seconds)
        distributor.keepalive_all()


app = FastAPI(
    title="Agent Pulse",
    version="0.1.0",
    description="Live activity monitor for local AI agents",
    lifespan=lifespan,
)

# CORS — local dashboards are served from other ports
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ApiKeyMiddleware)


# ═══════════════════════════════════════════════════════════════════════════
#  ERROR HANDLING
# ═══════════════════════════════════════════════════════════════════════════

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail if isinstance(exc.detail, str) else "error",
            "message": str(exc.detail),
            "status": exc.status_code,
        },
    )


@app.exception_handler(MalformedInput)
async def malformed_input_handler(request: Request, exc: MalformedInput):
    return JSONResponse(
        status_code=exc.status,
        content=ErrorResponse(
            error="malformed_input", message=exc.message, status=exc.status,
        ).model_dump(exclude_none=True),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  HEALTH
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/health")
@app.get("/api/health")
async def health():
    return {"ok": True, "now": datetime.now(timezone.utc).isoformat()}


# ═══════════════════════════════════════════════════════════════════════════
#  EVENTS
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/api/events")
async def get_snapshot(request: Request):
    store: AggregationStore = request.app.state.store
    return to_wire(store.snapshot())


@app.post("/api/events", status_code=202)
async def ingest_event(request: Request):
    """Accept one loosely typed activity payload.

    The body is read in chunks and abandoned as soon as it passes the size
    cap. Normalization never fails on field content; only oversized,
    unparsable or non-object bodies are rejected.
    """
    raw = bytearray()
    async for chunk in request.stream():
        raw.extend(chunk)
        if len(raw) > MAX_BODY_BYTES:
            raise MalformedInput("Payload too large")

    payload = parse_body(bytes(raw))
    store: AggregationStore = request.app.state.store
    event = store.accept(payload)
    return to_wire(IngestAck(id=event.id))


@app.get("/api/alerts")
async def get_alerts(request: Request):
    store: AggregationStore = request.app.state.store
    alerts = store.recent_alerts(ALERTS_ENDPOINT_LIMIT)
    return {"alerts": [to_wire(a) for a in alerts]}


# ═══════════════════════════════════════════════════════════════════════════
#  LIVE STREAM
# ═══════════════════════════════════════════════════════════════════════════

@app.websocket("/api/stream")
async def websocket_stream(ws: WebSocket):
    """Snapshot first, then events and keepalives. Client may send
    ``{"action": "resync"}`` or ``{"action": "ping"}``."""
    distributor: LiveDistributor = ws.app.state.distributor
    await distributor.serve(ws)
