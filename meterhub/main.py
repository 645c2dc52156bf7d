from __future__ import annotations

import asyncio
import contextlib
import sys
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, AsyncIterator, List, Optional
from zoneinfo import ZoneInfoNotFoundError

import typer
from rich.console import Console

from meterhub.aggregator import WindowAggregator
from meterhub.client.resolver import EndpointResolver, build_candidates
from meterhub.client.simulator import MeterSimulator, SimulatorConfig
from meterhub.client.watcher import Watcher
from meterhub.config import Settings, get_settings
from meterhub.domain.models import Producer
from meterhub.domain.windows import resolve_timezone
from meterhub.errors import MeterHubError, ValidationFailed
from meterhub.hub.server import TelemetryHub
from meterhub.hub.transport import run_server
from meterhub.infrastructure.db_factory import PoolManager, open_async_pool
from meterhub.infrastructure.memory_store import InMemoryReadingStore
from meterhub.infrastructure.postgres_store import PostgresReadingStore
from meterhub.infrastructure.store import ReadingStore
from meterhub.reporter import print_windows
from meterhub.utils.logging import configure_logging

app = typer.Typer(help="Real-time energy meter telemetry hub.")


def _setup(settings: Settings) -> None:
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


@contextlib.asynccontextmanager
async def _open_store(memory: bool = False) -> AsyncIterator[ReadingStore]:
    if memory:
        store: ReadingStore = InMemoryReadingStore()
        try:
            yield store
        finally:
            await store.close()
        return
    pool = await open_async_pool()
    try:
        yield PostgresReadingStore(pool)
    finally:
        await PoolManager().close()


def _resolver(settings: Settings, url: Optional[str], fallbacks: List[str]) -> EndpointResolver:
    if url is None and not fallbacks:
        return EndpointResolver.from_settings(settings)
    return EndpointResolver(
        build_candidates(
            url or settings.client_primary_url, fallbacks or settings.client_fallback_urls
        ),
        advance_delay=settings.client_advance_delay_seconds,
        retry_delay=settings.client_retry_delay_seconds,
    )


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"hub=ws://{settings.hub_host}:{settings.hub_port} tz={settings.local_timezone} "
        f"liveness={settings.liveness_interval_seconds:g}s store={settings.store_backend}"
    )
    typer.echo(
        "client candidates: "
        + ", ".join(build_candidates(settings.client_primary_url, settings.client_fallback_urls))
    )


@app.command("init-db")
def init_db() -> None:
    """
    Apply the database schema (idempotent).
    """
    settings = get_settings()
    _setup(settings)

    async def _run() -> None:
        pool = await open_async_pool()
        try:
            await PostgresReadingStore(pool).apply_schema()
        finally:
            await PoolManager().close()

    asyncio.run(_run())
    typer.echo(f"Schema applied to {settings.db_name}@{settings.db_host}.")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from settings)."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Listen port (default from settings)."),
    memory: bool = typer.Option(
        False,
        "--memory",
        help="Keep everything in process memory instead of PostgreSQL.",
    ),
) -> None:
    """
    Run the telemetry hub WebSocket server.
    """
    settings = get_settings()
    _setup(settings)
    use_memory = memory or settings.store_backend == "memory"

    async def _run() -> None:
        async with _open_store(memory=use_memory) as store:
            hub = TelemetryHub.from_settings(store, settings)
            await run_server(hub, host or settings.hub_host, port or settings.hub_port)

    asyncio.run(_run())


@app.command()
def backfill(
    device_id: str = typer.Argument(..., help="Device whose windows should be recomputed."),
    day: Optional[datetime] = typer.Option(
        None,
        "--date",
        "-d",
        formats=["%Y-%m-%d"],
        help="Local calendar day to recompute (default: today).",
    ),
    days: int = typer.Option(1, "--days", "-n", min=1, help="Number of days ending at --date."),
) -> None:
    """
    Recompute every 30-minute window of one or more local days.
    """
    settings = get_settings()
    _setup(settings)
    console = Console()

    async def _run() -> int:
        async with _open_store() as store:
            producer = await store.get_producer(device_id)
            if producer is None:
                raise MeterHubError(f"Unknown device: {device_id}")
            aggregator = WindowAggregator(
                store, settings.local_timezone, settings.window_end_inclusive
            )
            last: date = day.date() if day else aggregator.local_today(producer)
            computed = 0
            for offset in range(days - 1, -1, -1):
                current = last - timedelta(days=offset)
                summaries = await aggregator.compute_day(producer, current)
                computed += len(summaries)
                print_windows(summaries, title=f"{device_id} {current.isoformat()}", console=console)
            return computed

    try:
        computed = asyncio.run(_run())
    except MeterHubError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Recomputed {computed} windows.")


@app.command("purge-synthetic")
def purge_synthetic(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """
    Delete synthetic producers together with their readings and summaries.
    """
    settings = get_settings()
    _setup(settings)
    if not yes:
        typer.confirm("Delete all synthetic producers and their data?", abort=True)

    async def _run() -> int:
        async with _open_store() as store:
            return await store.purge_synthetic_producers()

    removed = asyncio.run(_run())
    typer.echo(f"Removed {removed} synthetic producer(s).")


async def configure_meter(store: ReadingStore, device_id: str, **changes: Any) -> Producer:
    """
    Apply producer settings, ignoring options that were not given.

    Raises
    ------
    MeterHubError
        If the device is unknown or the timezone name does not resolve.
    """
    producer = await store.get_producer(device_id)
    if producer is None:
        raise MeterHubError(f"Unknown device: {device_id}")
    changes = {name: value for name, value in changes.items() if value is not None}
    if changes.get("timezone"):
        try:
            resolve_timezone(changes["timezone"])
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValidationFailed(f"Unknown timezone: {changes['timezone']}") from exc
    if "alert_threshold_kwh" in changes:
        changes["alert_threshold_kwh"] = Decimal(str(changes["alert_threshold_kwh"]))
    return await store.update_producer(producer.id, **changes)


@app.command("configure-meter")
def configure_meter_command(
    device_id: str = typer.Argument(..., help="Device to configure."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name."),
    threshold: Optional[float] = typer.Option(
        None, "--alert-threshold", min=0, help="Peak-window kWh above which an alert is raised."
    ),
    destination: Optional[str] = typer.Option(
        None, "--alert-destination", help="Where peak alerts are delivered."
    ),
    tz_name: Optional[str] = typer.Option(
        None, "--timezone", help="IANA zone used to align this meter's windows."
    ),
) -> None:
    """
    Set alerting and window-alignment options of a registered meter.
    """
    settings = get_settings()
    _setup(settings)

    async def _run() -> Producer:
        async with _open_store() as store:
            return await configure_meter(
                store,
                device_id,
                display_name=name,
                alert_threshold_kwh=threshold,
                alert_destination=destination,
                timezone=tz_name,
            )

    try:
        producer = asyncio.run(_run())
    except MeterHubError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)
    typer.echo(
        f"{producer.device_id}: threshold={producer.alert_threshold_kwh} "
        f"destination={producer.alert_destination or '-'} tz={producer.timezone or '-'}"
    )


@app.command()
def simulate(
    device_id: Optional[str] = typer.Option(None, "--device-id", help="Device id to register."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name."),
    power: float = typer.Option(75.0, "--power", help="Base load in kW."),
    volatility: float = typer.Option(10.0, "--volatility", help="Random variation in percent."),
    frequency: float = typer.Option(60.0, "--frequency", help="Grid frequency in Hz."),
    interval: int = typer.Option(60, "--interval", min=1, max=120, help="Seconds between readings."),
    speed: int = typer.Option(1, "--speed", min=1, help="Readings per interval (fast-forward)."),
    count: Optional[int] = typer.Option(None, "--count", "-c", help="Stop after this many readings."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Deterministic RNG seed."),
    url: Optional[str] = typer.Option(None, "--url", help="Primary hub address."),
    fallback: List[str] = typer.Option([], "--fallback", help="Fallback hub address (repeatable)."),
) -> None:
    """
    Run a synthetic meter against the hub.
    """
    settings = get_settings()
    _setup(settings)
    config = SimulatorConfig(
        device_id=device_id or settings.default_device_id,
        display_name=name,
        base_power_kw=power,
        volatility_pct=volatility,
        frequency_hz=frequency,
        interval_seconds=interval,
        speed=speed,
        max_readings=count,
        seed=seed,
    )
    simulator = MeterSimulator(
        _resolver(settings, url, fallback),
        config,
        connect_timeout=settings.client_connect_timeout_seconds,
    )
    asyncio.run(simulator.run())
    typer.echo(f"Sent {simulator.sent} readings, {simulator.accepted} accepted.")


@app.command()
def watch(
    url: Optional[str] = typer.Option(None, "--url", help="Primary hub address."),
    fallback: List[str] = typer.Option([], "--fallback", help="Fallback hub address (repeatable)."),
) -> None:
    """
    Register as an observer and print live updates.
    """
    settings = get_settings()
    _setup(settings)
    watcher = Watcher(
        _resolver(settings, url, fallback),
        connect_timeout=settings.client_connect_timeout_seconds,
    )
    asyncio.run(watcher.run())


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
