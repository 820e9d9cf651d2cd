#!/usr/bin/env python3
"""
TeleGuard -- Security telemetry at a glance, from the terminal.

Usage:
  python main.py overview
  python main.py logs --range day
  python main.py logs --filter ids --severity critical
  python main.py logs --sort severity --asc
  python main.py analytics --json
  python main.py logs --watch
  python main.py overview --no-color

Environment variables (see core/config.py for the full list):
  TELEGUARD_SOURCE_BASE_URL   Upstream telemetry API (default http://localhost:5000/api)
  TELEGUARD_SOURCE_API_KEY    Optional Bearer token for the upstream API
"""

import argparse
import asyncio
from typing import Optional

from cache.store import SnapshotStore
from core.config import get_settings
from core.fetcher import SourceClient
from core.formatter import disable_color, print_analytics, print_logs, print_overview, print_sources, to_data, to_json
from core.models import Snapshot, SourceKind, TimeRange
from core.pipeline import LogQuery, SortField, view
from core.scheduler import RefreshContext, build_scheduler

CONTEXTS = ("overview", "logs", "analytics")


def render(name: str, snapshot: Snapshot, query: LogQuery, output_format: str) -> None:
    """Print one context snapshot in the requested format."""
    if name == "logs":
        all_logs = snapshot.payload(SourceKind.logs, ())
        rows = view(all_logs, query)
        if output_format == "json":
            print(to_json({"updated_at": to_data(snapshot.updated_at), "total": len(all_logs), "logs": to_data(rows)}))
        else:
            print_logs(rows, total=len(all_logs))
            print_sources(snapshot)
        return

    if output_format == "json":
        print(to_json(snapshot))
    elif name == "overview":
        print_overview(snapshot)
    else:
        print_analytics(snapshot)


async def run(context: RefreshContext, query: LogQuery, output_format: str, watch: bool) -> None:
    """Refresh once and print, or keep the context's timer running and print every publish."""
    if not watch:
        snapshot = await context.refresh_now()
        render(context.name, snapshot, query, output_format)
        return

    context.subscribe(lambda name, snap: render(name, snap, query, output_format))
    context.start()
    try:
        await asyncio.Event().wait()
    finally:
        context.stop()
        await context.wait_idle()


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="teleguard",
        description="Poll security telemetry sources and print the latest state.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py overview
  python main.py logs --range six_hours --filter auth
  python main.py logs --severity high --sort source --asc
  python main.py analytics --json > analytics.json
  TELEGUARD_SOURCE_BASE_URL=http://ids.local/api python main.py logs --watch
        """,
    )
    parser.add_argument("context", choices=CONTEXTS, help="Which view to refresh")
    window = parser.add_mutually_exclusive_group()
    window.add_argument(
        "--window",
        type=int,
        metavar="SECONDS",
        help="Query window for metrics/network/logs, in seconds",
    )
    window.add_argument(
        "--range",
        choices=[r.name for r in TimeRange],
        metavar="PRESET",
        help="Query window preset: hour, six_hours, day, or week",
    )
    parser.add_argument("--filter", default="", metavar="TEXT", help="Case-insensitive text filter (logs only)")
    parser.add_argument(
        "--severity",
        choices=["critical", "high", "medium", "low"],
        default=None,
        metavar="LEVEL",
        help="Only show logs of this severity (logs only)",
    )
    parser.add_argument(
        "--sort",
        choices=[f.value for f in SortField],
        default="timestamp",
        metavar="FIELD",
        help="Sort logs by timestamp, source, or severity (default: timestamp)",
    )
    parser.add_argument("--asc", action="store_true", help="Sort ascending (default: descending)")
    parser.add_argument("--json", action="store_true", help="Output structured JSON")
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI color codes in terminal output")
    parser.add_argument("--watch", action="store_true", help="Keep refreshing on the context's interval until Ctrl-C")
    args = parser.parse_args()
    if args.window is not None and args.window <= 0:
        parser.error("--window must be a positive number of seconds")

    # Apply color preference before any output
    if args.no_color:
        disable_color()

    settings = get_settings()
    client = SourceClient(settings.source_base_url, api_key=settings.source_api_key, timeout=settings.http_timeout_seconds)
    scheduler = build_scheduler(settings, client, SnapshotStore())
    context = scheduler.get(args.context)

    window_seconds: Optional[int] = args.window or (TimeRange[args.range].value if args.range else None)
    if window_seconds:
        context.set_window(window_seconds)

    query = LogQuery(
        text=args.filter.strip(),
        severity=args.severity,
        sort_field=SortField(args.sort),
        descending=not args.asc,
    )

    try:
        asyncio.run(run(context, query, "json" if args.json else "terminal", args.watch))
    except KeyboardInterrupt:
        print("\n  Stopped.\n")
    finally:
        scheduler.close()


if __name__ == "__main__":
    main()
