"""Terminal rendering with Rich: one table of space measurements per run."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pstore import __version__
from pstore.metrics import APPLIANCE_ID_TAG, Measurement

log = logging.getLogger(__name__)

_UNITS = ("B", "KiB", "MiB", "GiB", "TiB", "PiB")


def format_bytes(value: float) -> str:
    size = float(value)
    for unit in _UNITS:
        if abs(size) < 1024 or unit == _UNITS[-1]:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024


def _color_for_percent(value: float) -> str:
    if value < 0.7:
        return "green"
    elif value < 0.85:
        return "yellow"
    return "red"


def _used_fraction(m: Measurement) -> float:
    total = m.fields.get("physical_total") or 0
    used = m.fields.get("physical_used") or 0
    return used / total if total else 0.0


def _trend_arrow(current: float, previous: Optional[float]) -> str:
    """Colored ^ or v for used space. Growing usage is red."""
    if previous is None or previous == current:
        return "[dim]-[/dim]"
    if current > previous:
        return "[red]^[/red]"
    return "[green]v[/green]"


def build_table(measurements: Sequence[Measurement]) -> Table:
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Timestamp", style="dim")
    table.add_column("Appliance")
    table.add_column("Total", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Used %", justify="right")
    table.add_column("", width=2)

    previous_used = {}
    for m in measurements:
        appliance = m.tags.get(APPLIANCE_ID_TAG, "?")
        used = m.fields.get("physical_used", 0)
        fraction = _used_fraction(m)
        color = _color_for_percent(fraction)

        table.add_row(
            m.timestamp.strftime("%Y-%m-%d %H:%M:%S %Z").strip(),
            appliance,
            format_bytes(m.fields.get("physical_total", 0)),
            format_bytes(used),
            f"[{color}]{fraction * 100:.1f}%[/{color}]",
            _trend_arrow(used, previous_used.get(appliance)),
        )
        previous_used[appliance] = used

    return table


def render_measurements(
    measurements: List[Measurement],
    source_name: str,
    console: Optional[Console] = None,
):
    console = console or Console()

    header = Text(f"  pstore v{__version__}  |  {source_name}", style="bold white on blue")
    console.print(Panel(header, border_style="blue"))

    if not measurements:
        console.print("[dim]No measurements in this report.[/dim]")
        return

    console.print(build_table(measurements))

    latest = measurements[-1]
    fraction = _used_fraction(latest)
    color = _color_for_percent(fraction)
    console.print(
        f"\n  Latest: [{color}]{fraction * 100:.1f}% used[/{color}]  "
        f"({format_bytes(latest.fields.get('physical_used', 0))} of "
        f"{format_bytes(latest.fields.get('physical_total', 0))})  "
        f"[dim]{len(measurements)} points[/dim]\n"
    )
