"""
formatter.py -- Renders snapshots and log views to terminal output or JSON.
"""

import json
import os
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .models import UNKNOWN, LogRecord, MetricSample, NetworkSample, Slot, SlotState, Snapshot, SourceKind
from .pipeline import alert_breakdown, count_by_severity, latest_metrics, latest_network, severity_distribution

W = 78  # output width

# ---------------------------------------------------------------------------
# ANSI color control
# ---------------------------------------------------------------------------

def _use_color() -> bool:
    """Return True if stdout is a TTY and color has not been disabled.

    Respects NO_COLOR env var (https://no-color.org) and checks sys.stdout.isatty().
    Can be overridden by calling disable_color().
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


_color_enabled: Optional[bool] = None  # None = auto-detect


def disable_color() -> None:
    """Force-disable color output (called when --no-color flag is set)."""
    global _color_enabled
    _color_enabled = False


def _color_active() -> bool:
    if _color_enabled is not None:
        return _color_enabled
    return _use_color()


# ---------------------------------------------------------------------------
# ANSI code helpers -- return empty string when color is off
# ---------------------------------------------------------------------------

SEVERITY_COLORS = {
    "critical": "\033[91m",  # red
    "high": "\033[33m",  # orange-ish yellow
    "medium": "\033[93m",  # yellow
    "low": "\033[92m",  # green
}

STATE_COLORS = {
    SlotState.fresh: "\033[92m",
    SlotState.stale: "\033[93m",
    SlotState.unpopulated: "\033[2m",
}


def _reset() -> str:
    return "\033[0m" if _color_active() else ""


def _bold() -> str:
    return "\033[1m" if _color_active() else ""


def _dim() -> str:
    return "\033[2m" if _color_active() else ""


def _sev_color(severity: Optional[str]) -> str:
    return SEVERITY_COLORS.get(severity or "", "") if _color_active() else ""


def _state_color(state: SlotState) -> str:
    return STATE_COLORS.get(state, "") if _color_active() else ""


# ---------------------------------------------------------------------------
# Layout helpers
# ---------------------------------------------------------------------------


def _bar(char: str = "═") -> str:
    return char * W


def _section(title: str) -> str:
    bold = _bold()
    reset = _reset()
    return f"\n  {bold}{title}{reset}\n  {'─' * (W - 2)}"


def _num(value: Optional[float], unit: str = "", places: int = 2) -> str:
    """Format a measured value; None renders as an explicit no-data marker."""
    if value is None:
        return "—"
    return f"{round(value, places)}{unit}"


def _when(ts: Optional[datetime]) -> str:
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "never"


# ---------------------------------------------------------------------------
# Terminal renderers
# ---------------------------------------------------------------------------


def format_slot_line(kind: SourceKind, slot: Slot) -> str:
    color = _state_color(slot.state)
    reset = _reset()
    line = f"    {kind.value:<10} {color}{slot.state.value:<12}{reset} fetched {_when(slot.fetched_at)}"
    if slot.last_error is not None:
        line += f"  [{slot.last_error.kind.value} x{slot.consecutive_failures}] {slot.last_error.detail}"
    return line


def print_sources(snapshot: Snapshot, kinds: Optional[list[SourceKind]] = None) -> None:
    print(_section("SOURCES"))
    for kind in kinds or sorted(snapshot.slots, key=lambda k: k.value):
        print(format_slot_line(kind, snapshot.slot(kind)))


def _print_metrics(sample: Optional[MetricSample]) -> None:
    print(_section("SYSTEM"))
    if sample is None:
        print("    No metric samples yet.")
        return
    print(f"    CPU            {_num(sample.cpu_percent, '%')}")
    print(f"    Memory         {_num(sample.memory_percent, '%')}  ({_num(sample.memory_used_mb, ' MB')} of {_num(sample.memory_total_mb, ' MB')})")
    print(f"    Load 1/5/15m   {_num(sample.load.one)} / {_num(sample.load.five)} / {_num(sample.load.fifteen)}")
    print(f"    Swap           {_num(sample.swap_percent, '%')}")
    print(f"    Disk           {_num(sample.disk_percent, '%')}")
    print(f"    Processes      {_num(sample.process_count, places=0)}")


def _print_network(sample: Optional[NetworkSample]) -> None:
    print(_section("NETWORK"))
    if sample is None:
        print("    No network samples yet.")
        return
    print(f"    Inbound        {_num(sample.incoming_mbps, ' Mbps')}  (total {_num(sample.total_incoming_gb, ' GB')})")
    print(f"    Outbound       {_num(sample.outgoing_kbps, ' Kbps')}  (total {_num(sample.total_outgoing_mb, ' MB')})")
    print(f"    Packet loss    {_num(sample.packet_loss_mb, ' MB')}")


def print_overview(snapshot: Snapshot) -> None:
    bold = _bold()
    reset = _reset()
    status = snapshot.payload(SourceKind.status)
    threats = snapshot.payload(SourceKind.threats)

    print(f"\n{bold}{_bar()}{reset}")
    state = status.status if status else UNKNOWN
    print(f"  {bold}OVERVIEW{reset}  │  status {state}  │  updated {_when(snapshot.updated_at)}")
    print(f"{bold}{_bar()}{reset}")

    _print_metrics(latest_metrics(snapshot.payload(SourceKind.metrics, ())))
    _print_network(latest_network(snapshot.payload(SourceKind.network, ())))

    print(_section("THREATS"))
    if threats is None:
        print("    No threat summary yet.")
    else:
        print(f"    Alerts total {threats.total_alerts}  last hour {threats.alerts_last_hour}  last day {threats.alerts_last_day}")
        for threat in threats.top_threats[:5]:
            print(f"    • {threat.type:<30} {threat.count:>6}")

    print_sources(snapshot)
    print(f"\n{_bar()}\n")


def print_logs(records: list[LogRecord], total: Optional[int] = None) -> None:
    """Print a log table, most relevant first, with a severity distribution header."""
    bold = _bold()
    reset = _reset()
    dim = _dim()

    shown = len(records)
    print(f"\n{bold}{_bar()}{reset}")
    header = f"LOGS — {shown} shown" + (f" of {total}" if total is not None else "")
    print(f"  {bold}{header}{reset}")
    print(f"{bold}{_bar()}{reset}")

    counts = count_by_severity(records)
    dist = severity_distribution(records)
    if dist:
        parts = [f"{_sev_color(name)}{name} {counts[name]} ({pct:.0f}%){reset}" for name, pct in dist.items()]
        print("  " + "  ".join(parts))
        print(f"  {'─' * (W - 2)}")

    for r in records:
        sev = r.severity or UNKNOWN
        print(
            f"  {dim}{_when(r.timestamp)}{reset}  {_sev_color(r.severity)}{sev:<8}{reset} "
            f"{(r.category or UNKNOWN)[:14]:<14} {r.source[:14]:<14} {r.content}"
        )

    print(f"\n{_bar()}\n")


def print_analytics(snapshot: Snapshot) -> None:
    bold = _bold()
    reset = _reset()
    bundle = snapshot.payload(SourceKind.analytics)

    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}ANALYTICS{reset}  │  updated {_when(snapshot.updated_at)}")
    print(f"{bold}{_bar()}{reset}")

    if bundle is None:
        print("\n    No analytics bundle yet.")
    else:
        print(_section("TOTALS"))
        print(f"    Alerts         {bundle.alerts_count}")
        print(f"    Packets        {bundle.network_packets_count}")
        print(f"    Log entries    {bundle.total_log_entries}")
        if bundle.protocols:
            print(_section("PROTOCOLS"))
            for proto in bundle.protocols:
                print(f"    {proto.name:<12} {proto.value:>10.1f}")
        if bundle.top_ports:
            print(_section("TOP PORTS"))
            for port in bundle.top_ports:
                print(f"    Port {port.port:<7} {port.count:>10}")

    alerts = snapshot.payload(SourceKind.alerts)
    if alerts is not None:
        print(_section("ALERTS"))
        for row in alert_breakdown(alerts, by="severity"):
            print(f"    {_sev_color(row['name'])}{row['name']:<12}{reset} {row['count']:>10}")
        for row in alert_breakdown(alerts, by="type"):
            print(f"    {row['name']:<30} {row['count']:>6}")

    print_sources(snapshot)
    print(f"\n{_bar()}\n")


# ---------------------------------------------------------------------------
# JSON export
# ---------------------------------------------------------------------------


def to_data(value: Any) -> Any:
    """Convert domain objects (dataclasses, tuples, mappings, enums, datetimes) to JSON-ready data."""
    if isinstance(value, Snapshot):
        # asdict() deep-copies fields and cannot copy the read-only slot mapping
        return snapshot_to_dict(value)
    if isinstance(value, LogRecord):
        return log_record_to_dict(value)
    if is_dataclass(value) and not isinstance(value, type):
        return to_data(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [to_data(v) for v in value]
    if hasattr(value, "items"):
        return {str(to_data(k)): to_data(v) for k, v in value.items()}
    return value


def log_record_to_dict(record: LogRecord) -> dict[str, Any]:
    """Serialize a record with its category under the upstream key "type"."""
    data = to_data(asdict(record))
    return {("type" if key == "category" else key): value for key, value in data.items()}


def slot_to_dict(slot: Slot) -> dict[str, Any]:
    return {
        "state": slot.state.value,
        "fetched_at": to_data(slot.fetched_at),
        "last_error": to_data(slot.last_error),
        "consecutive_failures": slot.consecutive_failures,
        "payload": to_data(slot.payload) if slot.populated else None,
    }


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    return {
        "updated_at": to_data(snapshot.updated_at),
        "slots": {kind.value: slot_to_dict(slot) for kind, slot in snapshot.slots.items()},
    }


def to_json(value: Any) -> str:
    return json.dumps(to_data(value), indent=2)
