"""Polling collectors — tail local agent logs and submit what they produce.

A Collector owns a DeltaTailer, a set of LogSources and a Submitter. Each
cycle it reads every source's delta, one task per path on a thread pool,
transforms the lines and submits the payloads in file order. A background
thread repeats the cycle every ``poll_interval`` seconds until ``stop()``.

On start-up the last ``backfill_lines`` lines of each history source are
submitted once, then every existing file is seeked to its end so older
content is not replayed. Files that show up later are read from byte 0.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from shared.enums import MAX_MESSAGE_CHARS, MAX_READ_BYTES, MAX_STATS_CACHE_BYTES
from shared.errors import ReadFailure, SubmissionFailure

from .submitter import Submitter
from .tailer import DeltaTailer, walk_jsonl_files
from .transformers import (
    LEAD_AGENT,
    SOURCE_COLLECTOR,
    Payload,
    Transform,
    claude_history_to_events,
    claude_session_to_events,
    codex_history_to_events,
    codex_log_to_events,
    cost_update,
    stats_cost_total,
    transform_lines,
)

logger = logging.getLogger("pulse.collector")


@dataclass
class LogSource:
    path: Path
    transform: Transform
    backfill: bool = False          # replay the tail once at start-up
    report_errors: bool = False     # post collector_error on read failure
    error_agent: str = LEAD_AGENT


def collector_error(path: Path, reason: str, agent_id: str = LEAD_AGENT) -> Payload:
    return {
        "agentId": agent_id,
        "event": "collector_error",
        "status": "error",
        "message": f"{path}: {reason}"[:MAX_MESSAGE_CHARS],
        "metadata": {"source": SOURCE_COLLECTOR},
    }


class Collector:
    """Base polling collector. Subclasses list their sources."""

    name = "collector"

    def __init__(
        self,
        submitter: Submitter,
        poll_interval: float = 2.5,
        backfill_lines: int = 25,
        start_at_end: bool = True,
        max_read_bytes: int = MAX_READ_BYTES,
        max_workers: int = 4,
    ):
        self.submitter = submitter
        self.poll_interval = poll_interval
        self.backfill_lines = backfill_lines
        self.start_at_end = start_at_end
        self.tailer = DeltaTailer(max_read_bytes)

        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=f"pulse-{self.name}",
        )
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._primed = False
        self._failing: dict[str, str] = {}

    # ── Sources (override) ────────────────────────────

    def sources(self) -> list[LogSource]:
        return []

    def poll_extras(self) -> list[Payload]:
        """Payloads that do not come from tailing, e.g. cost polling."""
        return []

    # ── Lifecycle ─────────────────────────────────────

    def start(self) -> None:
        if self._thread is not None:
            return
        self.prime()
        self._thread = threading.Thread(
            target=self._loop, name=f"pulse-{self.name}", daemon=True,
        )
        self._thread.start()
        logger.info("%s collector started (poll every %.1fs)", self.name, self.poll_interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._pool.shutdown(wait=True)
        self.submitter.close()

    def _loop(self) -> None:
        while not self._stop.wait(self.poll_interval):
            try:
                self.poll_once()
            except Exception:
                logger.exception("%s poll cycle failed", self.name)

    # ── Cycles ────────────────────────────────────────

    def prime(self) -> int:
        """Backfill history sources and position cursors. Returns payloads sent."""
        if self._primed:
            return 0
        self._primed = True
        sent = 0
        for source in self.sources():
            if not source.path.is_file():
                continue
            if source.backfill and self.backfill_lines > 0:
                try:
                    lines = self.tailer.read_tail_lines(source.path, self.backfill_lines)
                except ReadFailure as e:
                    logger.warning("Backfill skipped for %s: %s", e.path, e.reason)
                else:
                    sent += self._submit_all(transform_lines(source.transform, lines))
            if self.start_at_end:
                try:
                    self.tailer.seek_to_end(source.path)
                except ReadFailure as e:
                    # Removed between listing and seeking
                    logger.debug("Could not seek %s: %s", e.path, e.reason)
        sent += self._submit_all(self.poll_extras())
        return sent

    def poll_once(self) -> int:
        """Run one cycle. Returns the number of payloads submitted."""
        if not self._primed:
            self.prime()

        sources = [s for s in self.sources() if s.path.is_file()]
        self._prune(sources)

        batches = list(self._pool.map(self._read_source, sources))
        sent = 0
        for payloads in batches:
            sent += self._submit_all(payloads)
        sent += self._submit_all(self.poll_extras())
        return sent

    def _read_source(self, source: LogSource) -> list[Payload]:
        key = str(source.path)
        try:
            lines = self.tailer.read_delta(source.path)
        except ReadFailure as e:
            logger.warning("Read failed for %s: %s", e.path, e.reason)
            if source.report_errors and self._failing.get(key) != e.reason:
                self._failing[key] = e.reason
                return [collector_error(source.path, e.reason, source.error_agent)]
            return []
        self._failing.pop(key, None)
        return transform_lines(source.transform, lines)

    def _prune(self, sources: list[LogSource]) -> None:
        live = {os.path.abspath(s.path) for s in sources}
        for path in self.tailer.tracked_paths():
            if path not in live:
                self.tailer.forget(path)

    def _submit_all(self, payloads: list[Payload]) -> int:
        sent = 0
        for payload in payloads:
            try:
                self.submitter.submit(payload)
                sent += 1
            except SubmissionFailure as e:
                logger.error("Dropping %s event: %s", payload.get("event"), e)
        return sent


class ClaudeCollector(Collector):
    """~/.claude: prompt history, per-project session transcripts, stats cache."""

    name = "claude"

    def __init__(self, submitter: Submitter, claude_home: Path | str, **kwargs: Any):
        self.home = Path(claude_home).expanduser()
        self.history_file = self.home / "history.jsonl"
        self.projects_dir = self.home / "projects"
        self.stats_cache = self.home / "stats-cache.json"
        self._stats_mtime: float | None = None
        self._cost_total: float | None = None
        super().__init__(submitter, **kwargs)

    def sources(self) -> list[LogSource]:
        found = [LogSource(
            self.history_file, claude_history_to_events,
            backfill=True, report_errors=True,
        )]
        found.extend(
            LogSource(path, claude_session_to_events)
            for path in walk_jsonl_files(self.projects_dir)
        )
        return found

    def poll_extras(self) -> list[Payload]:
        """Cost already spent at first sight, then a cost_update per increase."""
        try:
            st = self.stats_cache.stat()
        except OSError:
            return []
        if st.st_mtime == self._stats_mtime:
            return []
        if st.st_size > MAX_STATS_CACHE_BYTES:
            self._stats_mtime = st.st_mtime
            logger.warning("Stats cache too large (%d bytes), skipping", st.st_size)
            return []
        try:
            with open(self.stats_cache, encoding="utf-8") as f:
                total = stats_cost_total(json.load(f))
        except (OSError, ValueError) as e:
            # mtime left alone so a file caught mid-write is read again
            logger.warning("Stats cache read failed: %s", e)
            return []
        self._stats_mtime = st.st_mtime

        previous, self._cost_total = self._cost_total, total
        if previous is None:
            return [cost_update(total, total, baseline=True)] if total > 0 else []
        if total <= previous:
            return []
        return [cost_update(total - previous, total)]


class CodexCollector(Collector):
    """~/.codex: prompt history and the TUI log."""

    name = "codex"

    def __init__(self, submitter: Submitter, codex_home: Path | str, **kwargs: Any):
        self.home = Path(codex_home).expanduser()
        self.history_file = self.home / "history.jsonl"
        self.log_file = self.home / "log" / "codex-tui.log"
        super().__init__(submitter, **kwargs)

    def sources(self) -> list[LogSource]:
        return [
            LogSource(
                self.history_file, codex_history_to_events,
                backfill=True, report_errors=True, error_agent="backend",
            ),
            LogSource(
                self.log_file, codex_log_to_events,
                backfill=True, report_errors=True, error_agent="backend",
            ),
        ]


COLLECTORS: dict[str, type[Collector]] = {
    "claude": ClaudeCollector,
    "codex": CodexCollector,
}


def build_collector(kind: str, submitter: Submitter, home: Path | str | None = None,
                    **kwargs: Any) -> Collector:
    """Construct a collector by name (``claude`` or ``codex``)."""
    if kind not in COLLECTORS:
        raise ValueError(f"Unknown collector {kind!r}; expected one of {sorted(COLLECTORS)}")
    default_home = Path.home() / f".{kind}"
    home = Path(home) if home else default_home
    if kind == "claude":
        return ClaudeCollector(submitter, claude_home=home, **kwargs)
    return CodexCollector(submitter, codex_home=home, **kwargs)
