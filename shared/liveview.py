"""Client-side incremental merge for /api/stream consumers.

A LiveView starts from a snapshot message and folds every following event
message into local copies of the rollups with the same ``record_event`` and
``derive_status`` the server uses, so its ``state()`` matches a snapshot
taken at the same point. Keepalive and unknown messages are ignored. After
losing the feed, call ``reset()`` and feed it a fresh snapshot.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from .enums import (
    ALERT_STATUSES,
    NO_MESSAGE,
    SNAPSHOT_ALERT_LIMIT,
    SNAPSHOT_RECENT_LIMIT,
    MessageType,
)
from .models import AgentRollup, Alert, Event, Snapshot, SourceRollup, StatusRow
from .rollups import compute_totals, derive_status, record_event


class LiveView:
    """Local replica of the aggregated state, driven by stream messages."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Discard everything, including partially applied events."""
        self.synced = False
        self.events_applied = 0
        self._agents: dict[str, AgentRollup] = {}
        self._sources: dict[str, SourceRollup] = {}
        self._recent: list[Event] = []
        self._alerts: list[Alert] = []
        self._generated_at: datetime | None = None

    def handle(self, message: dict[str, Any]) -> bool:
        """Apply one stream message. Returns True if state changed."""
        kind = message.get("type")
        if kind == MessageType.SNAPSHOT:
            self.apply_snapshot(Snapshot.model_validate(message["payload"]))
            return True
        if kind == MessageType.EVENT:
            if not self.synced:
                return False
            self.apply_event(Event.model_validate(message["payload"]))
            return True
        return False

    def apply_snapshot(self, snapshot: Snapshot) -> None:
        self.reset()
        self._agents = {row.agent_id: row.model_copy() for row in snapshot.agents}
        self._sources = {row.source: row.model_copy() for row in snapshot.sources}
        self._recent = list(snapshot.recent)
        self._alerts = list(snapshot.alerts)
        self._generated_at = snapshot.generated_at
        self.synced = True

    def apply_event(self, event: Event) -> None:
        agent = self._agents.get(event.agent_id)
        if agent is None:
            agent = AgentRollup(agent_id=event.agent_id)
            self._agents[event.agent_id] = agent
        record_event(agent, event)

        source = self._sources.get(event.source)
        if source is None:
            source = SourceRollup(source=event.source)
            self._sources[event.source] = source
        record_event(source, event)

        self._recent.insert(0, event)
        del self._recent[SNAPSHOT_RECENT_LIMIT:]

        if event.status in ALERT_STATUSES:
            # Local id; the server's alert id never reaches the stream
            self._alerts.insert(0, Alert(
                id=f"inline-{uuid4().hex[:8]}",
                severity=event.status,
                agent_id=event.agent_id,
                event=event.event,
                message=event.message or NO_MESSAGE,
                created_at=event.received_at,
            ))
            del self._alerts[SNAPSHOT_ALERT_LIMIT:]

        self.events_applied += 1

    def state(self) -> Snapshot:
        agents = [self._agents[k].model_copy() for k in sorted(self._agents)]
        return Snapshot(
            generated_at=self._generated_at or datetime.now(timezone.utc),
            totals=compute_totals(agents),
            agents=agents,
            sources=[self._sources[k].model_copy() for k in sorted(self._sources)],
            recent=list(self._recent),
            alerts=list(self._alerts),
            workflow_progress=[derive_status(row.agent_id, row) for row in agents],
        )

    def status_of(self, agent_id: str) -> StatusRow:
        return derive_status(agent_id, self._agents.get(agent_id))
