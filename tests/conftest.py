"""Shared test fixtures.

Provides a fresh AggregationStore per test, an httpx client bound to the
FastAPI app without running its lifespan, and a mock HTTP server that
captures POST /api/events requests for collector tests.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from backend.app import app, install_state
from backend.config import Settings
from backend.store import AggregationStore, ReceiptClock


class StepClock:
    """Deterministic receipt clock: each call advances one millisecond."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(milliseconds=1)
        return self.current


@pytest.fixture
def store() -> AggregationStore:
    return AggregationStore(clock=ReceiptClock(StepClock()))


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
async def client(settings: Settings):
    """Test client with a fresh store per test."""
    install_state(app, settings)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def write_lines(path: Path, *records: Any, newline: bool = True) -> None:
    """Append JSON records (or raw strings) as lines."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "ab") as f:
        for i, rec in enumerate(records):
            text = rec if isinstance(rec, str) else json.dumps(rec)
            last = i == len(records) - 1
            f.write(text.encode("utf-8"))
            if newline or not last:
                f.write(b"\n")


class _IngestHandler(BaseHTTPRequestHandler):
    """Mock monitor endpoint that captures payloads."""

    def do_POST(self) -> None:
        if self.path != "/api/events":
            self.send_response(404)
            self.end_headers()
            return

        content_length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(content_length)
        self.server.payloads.append(json.loads(body))  # type: ignore[attr-defined]
        self.server.headers.append(dict(self.headers))  # type: ignore[attr-defined]

        error_queue = self.server.error_queue  # type: ignore[attr-defined]
        if error_queue:
            status_code, response_body = error_queue.pop(0)
            self.send_response(status_code)
            self.send_header("Content-Type", "application/json")
            self.end_headers()
            self.wfile.write(json.dumps(response_body).encode())
            return

        self.send_response(202)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps({"accepted": True, "id": "mock"}).encode())

    def log_message(self, format: str, *args: Any) -> None:
        """Suppress request logging during tests."""
        pass


class MockMonitorServer:
    """A mock HTTP server standing in for a running monitor."""

    def __init__(self) -> None:
        self.server = HTTPServer(("127.0.0.1", 0), _IngestHandler)
        self.server.payloads = []  # type: ignore[attr-defined]
        self.server.headers = []  # type: ignore[attr-defined]
        self.server.error_queue = []  # type: ignore[attr-defined]
        self.port = self.server.server_address[1]
        self.url = f"http://127.0.0.1:{self.port}/api/events"
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self.server.shutdown()
        self._thread.join(timeout=5)

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return self.server.payloads  # type: ignore[attr-defined]

    @property
    def headers(self) -> list[dict[str, str]]:
        return self.server.headers  # type: ignore[attr-defined]

    def enqueue_error(self, status_code: int, body: dict[str, Any] | None = None) -> None:
        """Queue an error response for the next request."""
        if body is None:
            body = {"error": "test_error", "message": "Test error", "status": status_code}
        self.server.error_queue.append((status_code, body))  # type: ignore[attr-defined]


@pytest.fixture
def mock_server():
    """Fixture providing a mock monitor server."""
    server = MockMonitorServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def append_lines():
    return write_lines
