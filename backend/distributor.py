"""Live distribution — snapshot on connect, then every accepted event.

Endpoint: ws://localhost:5050/api/stream

Each connected viewer is a small state machine::

    connecting --connect()--> streaming --close()--> closed

``connect()`` subscribes the viewer to the store and takes its snapshot in
the same critical section, so the snapshot plus the events that follow it
reproduce the store exactly. Store listeners run under the store lock, often
on a collector thread, so ``Viewer.offer`` only appends to a bounded deque
and wakes the viewer's task on its own event loop.

Overflow policy: a viewer whose backlog reaches ``queue_size`` events has
that backlog dropped and is resynced with a fresh snapshot on its next send.
Ingestion and other viewers never wait on a slow viewer.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from typing import Any
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect

from shared.enums import KEEPALIVE_SECONDS, VIEWER_QUEUE_SIZE, ViewerState
from shared.models import (
    KEEPALIVE_MESSAGE,
    PONG_MESSAGE,
    Event,
    event_message,
    snapshot_message,
)

from backend.store import AggregationStore

logger = logging.getLogger(__name__)


class Viewer:
    """Per-connection queue and state."""

    def __init__(
        self,
        store: AggregationStore,
        queue_size: int = VIEWER_QUEUE_SIZE,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.viewer_id = uuid4().hex[:12]
        self.state = ViewerState.CONNECTING
        self.resyncs = 0
        self.dropped = 0
        self._store = store
        self._queue_size = max(1, queue_size)
        self._pending: deque[Event] = deque()
        self._needs_resync = False
        self._keepalive_due = False
        self._pong_due = False
        self._lock = threading.Lock()
        self._loop = loop or asyncio.get_running_loop()
        self._wakeup = asyncio.Event()

    # ── State transitions ─────────────────────────────

    def connect(self) -> dict[str, Any]:
        """connecting -> streaming. Returns the initial snapshot message."""
        if self.state != ViewerState.CONNECTING:
            raise RuntimeError(f"viewer {self.viewer_id} is {self.state}")
        snapshot = self._store.subscribe(self.offer)
        self.state = ViewerState.STREAMING
        return snapshot_message(snapshot)

    def resync(self) -> dict[str, Any]:
        """Drop queued events and start over from a fresh snapshot."""
        self._store.unsubscribe(self.offer)
        with self._lock:
            self._pending.clear()
            self._needs_resync = False
        snapshot = self._store.subscribe(self.offer)
        self.resyncs += 1
        return snapshot_message(snapshot)

    def close(self) -> None:
        """Any state -> closed. Idempotent, never raises."""
        if self.state == ViewerState.CLOSED:
            return
        self.state = ViewerState.CLOSED
        self._store.unsubscribe(self.offer)
        with self._lock:
            self._pending.clear()
        self._wake()

    # ── Producer side (store lock held) ───────────────

    def offer(self, event: Event) -> None:
        if self.state != ViewerState.STREAMING:
            return
        with self._lock:
            if self._needs_resync:
                self.dropped += 1
                return
            if len(self._pending) >= self._queue_size:
                self.dropped += len(self._pending) + 1
                self._pending.clear()
                self._needs_resync = True
                logger.warning(
                    "Viewer %s fell %d events behind; resyncing",
                    self.viewer_id, self._queue_size,
                )
            else:
                self._pending.append(event)
        self._wake()

    def request_keepalive(self) -> None:
        if self.state != ViewerState.STREAMING:
            return
        with self._lock:
            self._keepalive_due = True
        self._wake()

    def request_resync(self) -> None:
        """Ask for a fresh snapshot; served by the viewer task in order."""
        with self._lock:
            self._pending.clear()
            self._needs_resync = True
        self._wake()

    def request_pong(self) -> None:
        with self._lock:
            self._pong_due = True
        self._wake()

    def _wake(self) -> None:
        try:
            self._loop.call_soon_threadsafe(self._wakeup.set)
        except RuntimeError:
            # Loop already closed; the viewer is gone with it
            pass

    # ── Consumer side (viewer task) ───────────────────

    async def next_messages(self) -> list[dict[str, Any]]:
        """Wait for work, then return the messages to send in order.

        Returns an empty list once the viewer is closed.
        """
        while True:
            if self.state == ViewerState.CLOSED:
                return []
            messages = self.drain()
            if messages:
                return messages
            await self._wakeup.wait()
            self._wakeup.clear()

    def drain(self) -> list[dict[str, Any]]:
        with self._lock:
            needs_resync = self._needs_resync
            events = list(self._pending)
            self._pending.clear()
            keepalive = self._keepalive_due
            self._keepalive_due = False
            pong = self._pong_due
            self._pong_due = False
        if self.state != ViewerState.STREAMING:
            return []
        messages = [PONG_MESSAGE] if pong else []
        if needs_resync:
            return messages + [self.resync()]
        messages.extend(event_message(e) for e in events)
        if keepalive and not messages:
            messages.append(KEEPALIVE_MESSAGE)
        return messages


class LiveDistributor:
    """Tracks viewers and drives their WebSocket connections."""

    def __init__(
        self,
        store: AggregationStore,
        queue_size: int = VIEWER_QUEUE_SIZE,
        keepalive_seconds: float = KEEPALIVE_SECONDS,
    ) -> None:
        self._store = store
        self._queue_size = queue_size
        self.keepalive_seconds = keepalive_seconds
        self._viewers: dict[str, Viewer] = {}

    @property
    def viewer_count(self) -> int:
        return len(self._viewers)

    def open_viewer(self) -> tuple[Viewer, dict[str, Any]]:
        viewer = Viewer(self._store, self._queue_size)
        first = viewer.connect()
        self._viewers[viewer.viewer_id] = viewer
        return viewer, first

    def release(self, viewer: Viewer) -> None:
        viewer.close()
        self._viewers.pop(viewer.viewer_id, None)

    def keepalive_all(self) -> None:
        for viewer in list(self._viewers.values()):
            viewer.request_keepalive()

    def close_all(self) -> None:
        for viewer in list(self._viewers.values()):
            self.release(viewer)

    async def serve(self, ws: WebSocket) -> None:
        """Run one viewer connection until either side goes away.

        Client actions are read on the handler's own task; only the sender
        runs as a separate task, cancelled as soon as the client leaves.
        """
        await ws.accept()
        viewer, first = self.open_viewer()
        logger.debug("Viewer %s connected", viewer.viewer_id)
        sender: asyncio.Task | None = None
        try:
            await ws.send_json(first)
            sender = asyncio.create_task(self._pump(viewer, ws))
            await self._listen(viewer, ws)
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.debug("Viewer %s transport error", viewer.viewer_id, exc_info=True)
        finally:
            self.release(viewer)
            if sender is not None:
                sender.cancel()
                try:
                    await sender
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.debug("Viewer %s send failed", viewer.viewer_id, exc_info=True)
            logger.debug("Viewer %s closed", viewer.viewer_id)

    async def _pump(self, viewer: Viewer, ws: WebSocket) -> None:
        while True:
            messages = await viewer.next_messages()
            if not messages:
                # Closed from the server side, e.g. at shutdown
                await ws.close()
                return
            for message in messages:
                await ws.send_json(message)

    async def _listen(self, viewer: Viewer, ws: WebSocket) -> None:
        """Handle client actions: resync and ping. Returns on disconnect."""
        while viewer.state != ViewerState.CLOSED:
            try:
                data = await ws.receive_json()
            except WebSocketDisconnect:
                return
            except ValueError:
                continue
            if not isinstance(data, dict):
                continue
            action = data.get("action", "")
            if action == "resync":
                viewer.request_resync()
            elif action == "ping":
                viewer.request_pong()
