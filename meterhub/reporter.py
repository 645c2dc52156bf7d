from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

from rich import box
from rich.console import Console
from rich.table import Table

from meterhub.domain.models import WindowSummary

SummaryLike = Union[WindowSummary, Dict[str, Any]]


def _as_dict(summary: SummaryLike) -> Dict[str, Any]:
    if isinstance(summary, WindowSummary):
        return summary.model_dump()
    return summary


def _hhmm(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%H:%M")
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%H:%M")
        except ValueError:
            return value
    return "-"


def _num(value: Any, places: int) -> str:
    if value is None:
        return "N/A"
    return f"{Decimal(str(value)):,.{places}f}"


def print_windows(
    summaries: Iterable[SummaryLike],
    title: str = "Window Summaries",
    console: Optional[Console] = None,
) -> None:
    """
    Render window summaries as a rich table, in window order.

    Accepts model instances or their JSON dumps (as received by observers).
    Times are shown in UTC.
    """
    console = console or Console()
    rows: List[Dict[str, Any]] = [_as_dict(s) for s in summaries]

    if not rows:
        console.print("[yellow]No windows to display.[/yellow]")
        return

    total = sum((Decimal(str(r.get("total_kwh") or 0)) for r in rows), Decimal(0))
    peak_total = sum(
        (Decimal(str(r.get("total_kwh") or 0)) for r in rows if r.get("is_peak")), Decimal(0)
    )

    table = Table(
        title=title,
        box=box.ROUNDED,
        caption=f"Total {total:,.4f} kWh │ Peak {peak_total:,.4f} kWh",
    )
    table.add_column("Window (UTC)", style="cyan", no_wrap=True)
    table.add_column("Energy (kWh)", justify="right", style="bold green")
    table.add_column("Avg (kW)", justify="right", style="green")
    table.add_column("Max (kW)", justify="right", style="yellow")
    table.add_column("Min (kW)", justify="right", style="yellow")
    table.add_column("Readings", justify="right", style="magenta")
    table.add_column("Peak", justify="center")

    for row in sorted(rows, key=lambda r: str(r.get("window_start"))):
        table.add_row(
            f"{_hhmm(row.get('window_start'))}-{_hhmm(row.get('window_end'))}",
            _num(row.get("total_kwh"), 4),
            _num(row.get("avg_power_kw"), 2),
            _num(row.get("max_power_kw"), 2),
            _num(row.get("min_power_kw"), 2),
            str(row.get("reading_count", 0)),
            "[red]●[/red]" if row.get("is_peak") else "",
        )

    console.print(table)


__all__ = ["print_windows"]
