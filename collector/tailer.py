"""Delta tailer — new complete lines from growing append-only files.

Each path has one Cursor: the byte offset already consumed plus the trailing
fragment of a line whose newline has not been written yet. Files are read in
binary mode so offsets stay comparable to ``st_size`` and a multi-byte
character split across two reads decodes correctly once the line completes.

Edge policy:

* file smaller than the offset: truncated or rotated, start again at byte 0;
* file size equal to the offset: nothing to do, the file is not opened;
* more than ``max_read_bytes`` unread: only the newest window is read, the
  pending fragment and the window's leading partial line are discarded, and
  a synthetic gap marker line is returned first;
* any OSError raises ReadFailure and leaves the cursor as it was.

Different paths may be read from different threads at once. Reads of the
same path must be serialized by the caller.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from shared.enums import MAX_READ_BYTES
from shared.errors import ReadFailure

logger = logging.getLogger("pulse.collector.tailer")

GAP_MARKER_KIND = "collector_warning"

PathLike = str | os.PathLike


@dataclass
class Cursor:
    offset: int = 0
    partial: bytes = b""


def gap_marker(path: str, skipped: int) -> str:
    """The self-describing line announcing that bytes were skipped."""
    return json.dumps({
        "synthetic": True,
        "kind": GAP_MARKER_KIND,
        "message": f"collector skipped {skipped} old bytes for {path}",
        "path": path,
        "skippedBytes": skipped,
    })


def is_gap_marker(record: Any) -> bool:
    return isinstance(record, dict) and record.get("synthetic") is True


class DeltaTailer:
    """Per-path cursors and bounded incremental reads."""

    def __init__(self, max_read_bytes: int = MAX_READ_BYTES) -> None:
        self.max_read_bytes = max(1, int(max_read_bytes))
        self._cursors: dict[str, Cursor] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(path: PathLike) -> str:
        return os.path.abspath(os.fspath(path))

    # ── Cursor management ─────────────────────────────

    def cursor(self, path: PathLike) -> Cursor:
        """The cursor for ``path``, created on first access."""
        key = self._key(path)
        with self._lock:
            cur = self._cursors.get(key)
            if cur is None:
                cur = Cursor()
                self._cursors[key] = cur
            return cur

    def seek_to_end(self, path: PathLike) -> Cursor:
        """Skip the backlog: the next read only sees lines completed after now.

        A line still being written at the end of the file is kept as the
        pending fragment, so it is delivered whole once its newline lands.
        """
        key = self._key(path)
        try:
            size = os.stat(key).st_size
            start = max(0, size - self.max_read_bytes)
            with open(key, "rb") as fh:
                fh.seek(start)
                tail = fh.read(size - start)
        except OSError as exc:
            raise ReadFailure(key, exc.strerror or str(exc)) from exc
        newline = tail.rfind(b"\n")
        if newline >= 0:
            fragment = tail[newline + 1:]
        else:
            fragment = tail if start == 0 else b""
        cur = self.cursor(key)
        cur.offset = start + len(tail)
        cur.partial = fragment
        return cur

    def forget(self, path: PathLike) -> None:
        with self._lock:
            self._cursors.pop(self._key(path), None)

    def tracked_paths(self) -> list[str]:
        with self._lock:
            return list(self._cursors)

    # ── Reads ─────────────────────────────────────────

    def read_delta(self, path: PathLike) -> list[str]:
        """Complete lines appended since the last call, oldest first."""
        key = self._key(path)
        cur = self.cursor(key)

        try:
            size = os.stat(key).st_size
        except OSError as exc:
            raise ReadFailure(key, exc.strerror or str(exc)) from exc

        offset, partial = cur.offset, cur.partial
        if size < offset:
            logger.info("%s shrank from %d to %d bytes; rereading", key, offset, size)
            offset, partial = 0, b""

        if size == offset:
            cur.offset, cur.partial = offset, partial
            return []

        start = offset
        skipped = 0
        if size - offset > self.max_read_bytes:
            start = size - self.max_read_bytes
            skipped = start - offset
            partial = b""

        try:
            with open(key, "rb") as fh:
                aligned = True
                if skipped:
                    fh.seek(start - 1)
                    aligned = fh.read(1) == b"\n"
                else:
                    fh.seek(start)
                data = fh.read(size - start)
        except OSError as exc:
            raise ReadFailure(key, exc.strerror or str(exc)) from exc

        buf = partial + data
        if not aligned:
            # The window opens mid-line; that line began before the drop point
            newline = buf.find(b"\n")
            buf = buf[newline + 1:] if newline >= 0 else b""

        pieces = buf.split(b"\n")
        new_partial = pieces.pop()
        lines = [p.decode("utf-8", errors="replace").rstrip("\r") for p in pieces]
        lines = [line for line in lines if line.strip()]

        cur.offset = start + len(data)
        cur.partial = new_partial

        if skipped:
            logger.warning("%s: skipped %d unread bytes", key, skipped)
            lines.insert(0, gap_marker(key, skipped))
        return lines

    def read_tail_lines(self, path: PathLike, limit: int) -> list[str]:
        """The last ``limit`` complete lines, without touching the cursor."""
        if limit <= 0:
            return []
        key = self._key(path)
        try:
            size = os.stat(key).st_size
            start = max(0, size - self.max_read_bytes)
            with open(key, "rb") as fh:
                fh.seek(start)
                data = fh.read(size - start)
        except OSError as exc:
            raise ReadFailure(key, exc.strerror or str(exc)) from exc

        if start > 0:
            newline = data.find(b"\n")
            data = data[newline + 1:] if newline >= 0 else b""
        if not data.endswith(b"\n"):
            # Last line still being written
            cut = data.rfind(b"\n")
            data = data[:cut + 1] if cut >= 0 else b""

        lines = [
            p.decode("utf-8", errors="replace").rstrip("\r")
            for p in data.split(b"\n")
        ]
        return [line for line in lines if line.strip()][-limit:]


def walk_jsonl_files(root: PathLike) -> list[Path]:
    """``*.jsonl`` files exactly one directory below ``root``."""
    base = Path(root)
    found: list[Path] = []
    try:
        subdirs = sorted(p for p in base.iterdir() if p.is_dir())
    except OSError:
        return found
    for sub in subdirs:
        try:
            entries = sorted(sub.iterdir())
        except OSError:
            continue
        found.extend(p for p in entries if p.is_file() and p.suffix == ".jsonl")
    return found
