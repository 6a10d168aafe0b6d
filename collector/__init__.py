"""Agent Pulse collector — tails local agent logs into a monitor.

Usage::

    from collector import HttpSubmitter, build_collector

    c = build_collector("claude", HttpSubmitter(resolve_monitor_url()))
    c.start()
    ...
    c.stop()

Or from a shell: ``pulse-collector claude``.
"""

from __future__ import annotations

import configparser
import logging
import os
from pathlib import Path

from .poller import COLLECTORS, ClaudeCollector, Collector, CodexCollector, build_collector
from .submitter import DEFAULT_MONITOR_URL, HttpSubmitter, StoreSubmitter
from .tailer import DeltaTailer

__all__ = [
    "COLLECTORS",
    "ClaudeCollector",
    "CodexCollector",
    "Collector",
    "DeltaTailer",
    "HttpSubmitter",
    "StoreSubmitter",
    "build_collector",
    "resolve_monitor_url",
]

logger = logging.getLogger("pulse.collector")


def resolve_monitor_url(explicit: str | None = None) -> str:
    """Resolve where events are posted.

    Search order:
      1. ``explicit`` (the --monitor-url flag)
      2. PULSE_MONITOR_URL environment variable
      3. ./pulse.cfg  (current working directory)
      4. ~/.pulse/pulse.cfg  (user home)
      5. http://localhost:5050/api/events
    """
    if explicit:
        return explicit.strip()
    env = os.environ.get("PULSE_MONITOR_URL")
    if env:
        return env.strip()
    candidates = [
        Path.cwd() / "pulse.cfg",
        Path.home() / ".pulse" / "pulse.cfg",
    ]
    for path in candidates:
        if path.is_file():
            cfg = configparser.ConfigParser()
            cfg.read(path)
            url = cfg.get("pulse", "monitor_url", fallback=None)
            if url:
                logger.debug("Monitor URL resolved from %s: %s", path, url)
                return url.strip()
    return DEFAULT_MONITOR_URL
