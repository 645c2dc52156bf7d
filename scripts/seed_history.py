"""
History seeding script for meterhub.

Generates one local day of one-minute readings for a synthetic producer with a
deterministic daily load curve, stores them, and backfills the day's
30-minute windows.
"""

from __future__ import annotations

import asyncio
import math
import random
import sys
import time
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterator, Optional, Tuple

import typer

from meterhub.aggregator import WindowAggregator
from meterhub.config import get_settings
from meterhub.domain.windows import day_bounds, resolve_timezone, to_millis
from meterhub.infrastructure.db_factory import PoolManager, open_async_pool
from meterhub.infrastructure.postgres_store import PostgresReadingStore
from meterhub.reporter import print_windows
from meterhub.utils.logging import configure_logging

app = typer.Typer(help="Seed a synthetic day of readings and backfill its windows.")


def _load_curve(minute_of_day: int, base_kw: float) -> float:
    # Low overnight, rising through the afternoon peak, falling after 22:00.
    hour = minute_of_day / 60
    shape = 0.6 + 0.5 * max(0.0, math.sin(math.pi * (hour - 6) / 18))
    return base_kw * shape


def _generate_readings(
    day: date, tz_name: str, base_kw: float, volatility_pct: float, seed: int
) -> Iterator[Tuple[int, Decimal]]:
    rng = random.Random(seed)
    start, end = day_bounds(day, resolve_timezone(tz_name))
    moment = start
    minute = 0
    while moment < end:
        variation = (rng.random() - 0.5) * 2 * (volatility_pct / 100)
        power = _load_curve(minute, base_kw) * (1 + variation)
        yield to_millis(moment), Decimal(f"{power:.2f}")
        moment += timedelta(minutes=1)
        minute += 1


async def _seed(
    device_id: str, day: date, tz_name: str, base_kw: float, volatility_pct: float, seed: int
) -> int:
    settings = get_settings()
    pool = await open_async_pool()
    try:
        store = PostgresReadingStore(pool)
        await store.apply_schema()
        producer = await store.upsert_producer(device_id, True, "Seeded meter")
        count = 0
        for timestamp_ms, power in _generate_readings(day, tz_name, base_kw, volatility_pct, seed):
            await store.append_reading(producer.id, timestamp_ms, power, Decimal("60.00"), 60)
            count += 1
        aggregator = WindowAggregator(store, tz_name, settings.window_end_inclusive)
        summaries = await aggregator.compute_day(producer, day)
        print_windows(summaries, title=f"{device_id} {day.isoformat()}")
        return count
    finally:
        await PoolManager().close()


@app.command()
def main(
    device_id: str = typer.Option(
        "EMS-SEED-001",
        "--device-id",
        help="Device id of the seeded producer.",
    ),
    day: datetime = typer.Option(
        ...,
        "--date",
        "-d",
        formats=["%Y-%m-%d"],
        help="Local calendar day to generate.",
    ),
    tz_name: Optional[str] = typer.Option(
        None,
        "--timezone",
        help="IANA zone for the day (default: LOCAL_TIMEZONE).",
    ),
    power: float = typer.Option(75.0, "--power", help="Base load in kW."),
    volatility: float = typer.Option(10.0, "--volatility", help="Random variation in percent."),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
) -> None:
    """
    Store a synthetic day of one-minute readings and compute its windows.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    start = time.perf_counter()
    zone = tz_name or settings.local_timezone

    typer.echo(f"Seeding {device_id} for {day.date().isoformat()} ({zone}, seed={seed})")
    count = asyncio.run(_seed(device_id, day.date(), zone, power, volatility, seed))
    duration = time.perf_counter() - start
    typer.echo(f"Stored {count:,} readings in {duration:.2f}s ({count / duration:,.0f} rows/s).")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
