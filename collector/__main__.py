"""Collector CLI.

Usage:
  pulse-collector claude
  python -m collector codex --poll-ms 1000 --monitor-url http://host:5050/api/events
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import threading
from typing import Optional, Sequence

from . import COLLECTORS, HttpSubmitter, build_collector, resolve_monitor_url


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Tail local agent logs and post them to an Agent Pulse monitor.")
    p.add_argument("kind", choices=sorted(COLLECTORS), help="Which agent's logs to tail.")
    p.add_argument("--monitor-url", type=str, default="", help="Ingest URL (default: resolved from env/pulse.cfg).")
    p.add_argument("--api-key", type=str, default=os.environ.get("PULSE_API_KEY", ""),
                   help="Value for X-API-Key (default: $PULSE_API_KEY).")
    p.add_argument("--home", type=str, default="", help="Agent home directory (default: ~/.claude or ~/.codex).")
    p.add_argument("--poll-ms", type=int, default=2500, help="Poll interval in milliseconds (minimum 100).")
    p.add_argument("--backfill-lines", type=int, default=25, help="History lines replayed at start-up.")
    p.add_argument("--replay", action="store_true", help="Read existing files from the start instead of the end.")
    p.add_argument("--timeout", type=float, default=5.0, help="HTTP timeout in seconds.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    log = logging.getLogger("pulse.collector")

    url = resolve_monitor_url(args.monitor_url or None)
    submitter = HttpSubmitter(url, api_key=args.api_key, timeout=args.timeout)
    collector = build_collector(
        args.kind, submitter, home=args.home or None,
        poll_interval=max(100, args.poll_ms) / 1000.0,
        backfill_lines=max(0, args.backfill_lines),
        start_at_end=not args.replay,
    )
    log.info("%s collector -> %s (home %s)", args.kind, url, collector.home)

    done = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: done.set())
    signal.signal(signal.SIGTERM, lambda *_: done.set())

    collector.start()
    done.wait()
    log.info("Stopping %s collector", args.kind)
    collector.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
