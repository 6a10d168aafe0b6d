"""Aggregation store — the single authoritative in-memory state.

Recent-events ring buffer, alerts ring buffer, per-agent and per-source
rollup maps. Mutated only through ``append_event`` (and ``accept``, which
normalizes then appends). Every public method holds the store lock for its
whole critical section, so rollup updates, buffer truncation, snapshot reads
and listener registration never interleave. Collector threads and the event
loop both call in here.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

from shared.enums import (
    ALERT_CAPACITY,
    ALERT_STATUSES,
    NO_MESSAGE,
    RECENT_CAPACITY,
    SNAPSHOT_ALERT_LIMIT,
    SNAPSHOT_RECENT_LIMIT,
)
from shared.models import AgentRollup, Alert, Event, Snapshot, SourceRollup
from shared.rollups import compute_totals, derive_status, record_event

from backend.normalize import normalize_event

logger = logging.getLogger(__name__)

EventListener = Callable[[Event], None]


class ReceiptClock:
    """Wall-clock UTC time that never goes backwards."""

    def __init__(self, now: Callable[[], datetime] | None = None) -> None:
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._last: datetime | None = None

    def tick(self) -> datetime:
        current = self._now()
        if self._last is not None and current < self._last:
            current = self._last
        self._last = current
        return current


class AggregationStore:
    """Rollups plus bounded history, behind one lock."""

    def __init__(
        self,
        recent_capacity: int = RECENT_CAPACITY,
        alert_capacity: int = ALERT_CAPACITY,
        clock: ReceiptClock | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._recent: deque[Event] = deque(maxlen=max(recent_capacity, RECENT_CAPACITY))
        self._alerts: deque[Alert] = deque(maxlen=max(alert_capacity, ALERT_CAPACITY))
        self._by_agent: dict[str, AgentRollup] = {}
        self._by_source: dict[str, SourceRollup] = {}
        self._listeners: list[EventListener] = []
        self._clock = clock or ReceiptClock()

    # ── Capacities ────────────────────────────────────

    @property
    def recent_capacity(self) -> int:
        return self._recent.maxlen or 0

    @property
    def alert_capacity(self) -> int:
        return self._alerts.maxlen or 0

    # ── Writes ────────────────────────────────────────

    def accept(self, payload: dict[str, Any]) -> Event:
        """Normalize a submitted payload and append it.

        Receipt time is taken inside the lock so ``receivedAt`` follows
        acceptance order. Raises MalformedInput without touching state.
        """
        with self._lock:
            event = normalize_event(payload, self._clock.tick())
            self.append_event(event)
            return event

    def append_event(self, event: Event) -> None:
        with self._lock:
            # deque(maxlen) drops from the right: oldest past the cap
            self._recent.appendleft(event)

            agent = self._by_agent.get(event.agent_id)
            if agent is None:
                agent = AgentRollup(agent_id=event.agent_id)
                self._by_agent[event.agent_id] = agent
            record_event(agent, event)

            source_key = event.source
            source = self._by_source.get(source_key)
            if source is None:
                source = SourceRollup(source=source_key)
                self._by_source[source_key] = source
            record_event(source, event)

            if event.status in ALERT_STATUSES:
                self._alerts.appendleft(Alert(
                    id=str(uuid4()),
                    severity=event.status,
                    agent_id=event.agent_id,
                    event=event.event,
                    message=event.message or NO_MESSAGE,
                    created_at=event.received_at,
                ))

            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception("Listener failed for event %s", event.id)

    # ── Listeners ─────────────────────────────────────

    def subscribe(self, listener: EventListener) -> Snapshot:
        """Register a listener and return the snapshot it starts from.

        Both happen in one critical section: every event accepted before
        the snapshot is inside it, every event after it reaches the listener.
        """
        with self._lock:
            self._listeners.append(listener)
            return self._build_snapshot()

    def unsubscribe(self, listener: EventListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    # ── Reads ─────────────────────────────────────────

    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._build_snapshot()

    def recent_alerts(self, limit: int) -> list[Alert]:
        with self._lock:
            return [a.model_copy() for a in list(self._alerts)[:limit]]

    def agent(self, agent_id: str) -> AgentRollup | None:
        with self._lock:
            row = self._by_agent.get(agent_id)
            return row.model_copy() if row else None

    def source(self, source: str) -> SourceRollup | None:
        with self._lock:
            row = self._by_source.get(source)
            return row.model_copy() if row else None

    def recent_events(self) -> list[Event]:
        with self._lock:
            return list(self._recent)

    def _build_snapshot(self) -> Snapshot:
        # Copies, so a serialized snapshot never shares mutable rollups
        agents = [
            self._by_agent[key].model_copy() for key in sorted(self._by_agent)
        ]
        sources = [
            self._by_source[key].model_copy() for key in sorted(self._by_source)
        ]
        return Snapshot(
            generated_at=datetime.now(timezone.utc),
            totals=compute_totals(agents),
            agents=agents,
            sources=sources,
            recent=list(self._recent)[:SNAPSHOT_RECENT_LIMIT],
            alerts=[a.model_copy() for a in list(self._alerts)[:SNAPSHOT_ALERT_LIMIT]],
            workflow_progress=[derive_status(row.agent_id, row) for row in agents],
        )
