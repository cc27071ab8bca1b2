#!/usr/bin/env python3
"""Live probe for the pylingoloop sync engine.

Connects to the Remote API configured through ``LINGOLOOP_*`` variables,
runs one full sync, then keeps the change feed open and prints status
changes and snapshot sizes as they happen.

Use this to check that list responses, feed events and mutation replay line
up against a real deployment.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
import time
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pylingoloop import ConnectionStatus, EntityKind, LingoLoopConfig, SyncEngine  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Live probe for the pylingoloop sync engine.",
    )
    parser.add_argument(
        "--token",
        default=os.environ.get("LINGOLOOP_ACCESS_TOKEN"),
        help="Bearer token (default: $LINGOLOOP_ACCESS_TOKEN).",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds after the first sync (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Pretty-print every snapshot instead of only its size.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_status(status: ConnectionStatus) -> None:
    print(f"[probe] {time.strftime('%H:%M:%S')} status -> {status}")


def _snapshot_printer(pretty: bool) -> Any:
    def _print(kind: EntityKind, records: list[dict[str, Any]]) -> None:
        print(f"[probe] {time.strftime('%H:%M:%S')} {kind}: {len(records)} records")
        if pretty:
            print(json.dumps(records, indent=2, ensure_ascii=False, default=str))

    return _print


async def _run(args: argparse.Namespace) -> int:
    config = LingoLoopConfig.from_env()
    if not config.base_url:
        print("[probe] LINGOLOOP_API_BASE is not set", file=sys.stderr)
        return 2

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    async with SyncEngine(
        config,
        credential=args.token,
        on_status=_print_status,
        on_snapshot=_snapshot_printer(args.json),
    ) as engine:
        print(f"[probe] initial status: {engine.status}")
        print(f"[probe] pending mutations: {len(engine.pending_mutations)}")
        await engine.sync()
        print(f"[probe] synced {len(engine.audio_files)} audio files, {len(engine.transcript_runs)} runs")
        try:
            await asyncio.wait_for(stop.wait(), timeout=args.duration or None)
        except TimeoutError:
            pass
        print(f"[probe] final status: {engine.status}")
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # pragma: no cover - network/system interaction
        print(f"[probe] Failed: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(_main())
