#!/usr/bin/env python3
"""
LED-Sync CLI

Inspect and update the LED state log directly, without going through
the HTTP server. Useful on the host where the server runs, e.g. to see
what the microcontroller will pick up next or to recover from a bad
update.

Commands:

1) latest
   - Print the latest state record (or the default all-OFF record).

2) history
   - Print up to --limit records, newest first. By default the latest
     record is left out, like the HTTP history; --include-latest keeps it.

3) set
   - Merge channel values onto the latest state, e.g.:
       ledsync set led1=on led2=OFF

4) trim
   - Apply the retention limit now instead of on the next append.

The HTTP server is started separately, e.g.:

    uvicorn runtime.api.server:app --reload
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List

# Ensure project root is on sys.path when running as a script
ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from configs.settings import settings
from exceptions.exceptions import StateLogError
from runtime.models.led_models import channel_update
from runtime.store.state_log import StateLog


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _parse_assignments(assignments: List[str]) -> Dict[str, str]:
    """Turn ['led1=ON', 'led2=off'] into a payload dict."""
    payload: Dict[str, str] = {}
    for item in assignments:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Expected CHANNEL=VALUE, got {item!r}")
        payload[name.strip()] = value
    return payload


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_latest(state_log: StateLog) -> None:
    _print_json(state_log.read_latest())


def cmd_history(state_log: StateLog, limit: int, include_latest: bool) -> None:
    records = state_log.read_history(limit, exclude_latest=not include_latest)
    print(f"[ledsync] {len(records)} record(s) from {state_log.path}", file=sys.stderr)
    _print_json(records)


def cmd_set(state_log: StateLog, assignments: List[str]) -> None:
    """
    Apply CHANNEL=VALUE assignments. Values are normalized like the HTTP
    endpoint does; unknown channels and values other than ON/OFF are
    reported and skipped.
    """
    payload = _parse_assignments(assignments)
    update = channel_update(payload, state_log.channels)

    ignored = sorted(set(payload) - set(update))
    if ignored:
        print(f"[ledsync] Ignoring: {', '.join(ignored)}", file=sys.stderr)

    stored = state_log.append(update)
    print(f"[ledsync] ✓ State written → {state_log.path}", file=sys.stderr)
    _print_json(stored)


def cmd_trim(state_log: StateLog) -> None:
    if state_log.max_entries is None:
        print("[ledsync] Retention is disabled; nothing to trim", file=sys.stderr)
        return
    if state_log.trim():
        print(f"[ledsync] ✓ Trimmed to {state_log.max_entries} entries", file=sys.stderr)
    else:
        print("[ledsync] Nothing trimmed", file=sys.stderr)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LED-Sync CLI")
    parser.add_argument(
        "--log-file",
        default=str(settings.log_file),
        help="State log path (default: LEDSYNC_LOG_FILE or 'runtime/data/result.txt')",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("latest", help="Print the latest state")

    p_history = subparsers.add_parser("history", help="Print recent states, newest first")
    p_history.add_argument(
        "--limit",
        type=int,
        default=settings.default_history,
        help="Maximum number of records (default: LEDSYNC_DEFAULT_HISTORY or 50)",
    )
    p_history.add_argument(
        "--include-latest",
        action="store_true",
        help="Include the latest record in the history",
    )

    p_set = subparsers.add_parser("set", help="Merge channel values onto the latest state")
    p_set.add_argument(
        "assignments",
        nargs="+",
        metavar="CHANNEL=VALUE",
        help="e.g. led1=ON led2=off",
    )

    subparsers.add_parser("trim", help="Apply the retention limit now")

    return parser


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    state_log = StateLog.from_settings(settings, path=args.log_file)
    command: str = args.command

    try:
        if command == "latest":
            cmd_latest(state_log)
        elif command == "history":
            cmd_history(state_log, limit=args.limit, include_latest=args.include_latest)
        elif command == "set":
            cmd_set(state_log, assignments=args.assignments)
        elif command == "trim":
            cmd_trim(state_log)
        else:
            parser.error(f"Unknown command: {command}")
    except ValueError as exc:
        parser.error(str(exc))
    except StateLogError as exc:
        print(f"[ledsync] ✗ {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
