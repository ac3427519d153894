"""
Main CLI application using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.memory_store import InMemoryBookingStore, StoredBooking
from ..config import AppConfig, get_default_config_path
from ..domain.availability import hours_for
from ..domain.conflict_detector import describe_alternative
from ..domain.dates import format_time_of_day, parse_date, parse_instant
from ..domain.exceptions import SchedulingError
from ..domain.models import TimeRange, TimeSlot
from ..services.scheduling import SchedulingService

app = typer.Typer(
    name="slotengine",
    help="Compute bookable slots, check conflicts and expand recurring bookings",
    add_completion=False
)

console = Console()

ConfigOption = typer.Option(
    None,
    "--config", "-c",
    help="Path to config file"
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")
):
    """
    Appointment scheduling engine.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load(config_file: Optional[Path]) -> AppConfig:
    config_path = config_file or get_default_config_path()
    return AppConfig.load_from_yaml(config_path)


def _build_store(config: AppConfig) -> InMemoryBookingStore:
    """Seed an in-memory store from the configured availability and bookings."""
    availability = config.weekly_availability()
    store = InMemoryBookingStore(
        availability={config.business_id: availability} if availability else None,
        patterns=config.patterns().values(),
    )
    for booking in config.bookings:
        store.add_booking(
            StoredBooking(
                business_id=config.business_id,
                interval=booking.to_interval(config.timezone),
                location_id=booking.location_id,
                cancelled=booking.cancelled,
            )
        )
    return store


def _fail(message: object) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(1)


@app.command()
def slots(
    day: str = typer.Argument(..., help="Date (YYYY-MM-DD)"),
    duration: Optional[int] = typer.Option(None, "--duration", "-d", help="Service duration in minutes"),
    buffer: Optional[int] = typer.Option(None, "--buffer", "-b", help="Buffer around bookings in minutes"),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Location id"),
    config_file: Optional[Path] = ConfigOption,
):
    """
    List the bookable slots of a day.

    Examples:
        slotengine slots 2024-11-25
        slotengine slots 2024-11-25 --duration 60 --buffer 10
    """
    try:
        config = _load(config_file)
        store = _build_store(config)
        service = SchedulingService.from_config(store, config)
        minutes = duration or config.defaults.service_duration_minutes

        found = asyncio.run(
            service.available_slots(
                business_id=config.business_id,
                day=day,
                service_duration=minutes,
                buffer_minutes=buffer,
                location_id=location,
            )
        )
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print()
    if not found:
        console.print(f"[yellow]No availability on {day}.[/yellow]\n")
        return

    console.print(f"[bold green]✓ {len(found)} slot(s) available:[/bold green]\n")
    for slot in found:
        console.print(f"  {slot.format_display()}")
    console.print()


@app.command()
def dates(
    start: str = typer.Argument(..., help="First date (YYYY-MM-DD)"),
    end: str = typer.Argument(..., help="Last date (YYYY-MM-DD)"),
    duration: Optional[int] = typer.Option(None, "--duration", "-d", help="Service duration in minutes"),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Location id"),
    config_file: Optional[Path] = ConfigOption,
):
    """
    List the dates in a range that have at least one open slot.
    """
    try:
        config = _load(config_file)
        service = SchedulingService.from_config(_build_store(config), config)
        found = asyncio.run(
            service.dates_with_slots(
                business_id=config.business_id,
                start=start,
                end=end,
                service_duration=duration or config.defaults.service_duration_minutes,
                location_id=location,
            )
        )
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print()
    if not found:
        console.print("[yellow]No availability in this range.[/yellow]\n")
        return

    for value in found:
        console.print(f"  {pendulum.parse(value).format('dddd, YYYY-MM-DD')}")
    console.print()


@app.command()
def check(
    start: str = typer.Argument(..., help="Proposed start (YYYY-MM-DDTHH:mm)"),
    duration: Optional[int] = typer.Option(None, "--duration", "-d", help="Service duration in minutes"),
    buffer: Optional[int] = typer.Option(None, "--buffer", "-b", help="Buffer around bookings in minutes"),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Location id"),
    config_file: Optional[Path] = ConfigOption,
):
    """
    Check a proposed booking and suggest alternatives on conflict.
    """
    try:
        config = _load(config_file)
        store = _build_store(config)
        service = SchedulingService.from_config(store, config)
        minutes = duration or config.defaults.service_duration_minutes

        begin = parse_instant(start, config.timezone)
        day = parse_date(begin.in_timezone(config.timezone))
        proposed = TimeRange(start=begin, end=begin.add(minutes=minutes))
        busy = asyncio.run(
            service.fetch_busy_intervals(
                config.business_id, day, day, location, buffer_minutes=buffer
            )
        )
        day_hours = hours_for(config.weekly_availability(), day)
        outcome = service.validate_and_suggest(
            proposed, minutes, busy, day_hours, buffer_minutes=buffer
        )
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print()
    if not outcome.conflict:
        console.print(f"[bold green]✓ {proposed} is free.[/bold green]\n")
        return

    console.print(f"[bold red]✗ {proposed} conflicts with an existing booking.[/bold red]\n")
    if not outcome.alternatives:
        console.print("[yellow]No other slot is free on this day.[/yellow]\n")
        return

    table = Table(title="Alternatives", show_header=True, header_style="bold cyan")
    table.add_column("Start", style="bold yellow")
    table.add_column("Reason", style="dim")
    for value in outcome.alternatives:
        slot = TimeSlot(start=pendulum.parse(value), duration_minutes=minutes)
        table.add_row(slot.start.format("HH:mm"), describe_alternative(begin, slot))
    console.print(table)
    console.print()


@app.command()
def expand(
    pattern_id: str = typer.Argument(..., help="Recurring pattern id"),
    until: str = typer.Argument(..., help="Generate up to this date (YYYY-MM-DD)"),
    config_file: Optional[Path] = ConfigOption,
):
    """
    Show the next occurrences of a recurring pattern (nothing is saved).
    """
    try:
        config = _load(config_file)
        pattern_config = config.find_pattern(pattern_id)
        if pattern_config is None:
            _fail(f"Unknown recurring pattern '{pattern_id}'")
        pattern = pattern_config.to_pattern()
        service = SchedulingService.from_config(_build_store(config), config)
        result = service.run_expansion(pattern, until)
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print()
    if not result.occurrences:
        console.print(f"[yellow]No occurrences of '{pattern_id}' up to {until}.[/yellow]")
    else:
        table = Table(
            title=f"Occurrences of {pattern_id} ({pattern.frequency.value})",
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("#", style="dim")
        table.add_column("Date", style="bold yellow")
        table.add_column("Time")
        for index, occurrence in enumerate(result.occurrences, 1):
            table.add_row(
                str(index),
                occurrence.date.format("dddd, YYYY-MM-DD"),
                occurrence.date.format("HH:mm"),
            )
        console.print(table)

    console.print(f"New watermark: [bold]{result.new_watermark or '-'}[/bold]")
    if result.exhausted:
        console.print("[dim]Pattern is exhausted.[/dim]")
    console.print()


@app.command()
def patterns(
    config_file: Optional[Path] = ConfigOption,
):
    """
    List all configured recurring patterns.
    """
    try:
        config = _load(config_file)
        built = config.patterns()
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    if not built:
        console.print("[yellow]No recurring patterns defined in the config file.[/yellow]")
        return

    table = Table(
        title="Recurring patterns",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Id", style="bold yellow")
    table.add_column("Frequency")
    table.add_column("Time")
    table.add_column("Start")
    table.add_column("Watermark", style="dim")
    table.add_column("State")

    for pattern_id, pattern in built.items():
        table.add_row(
            pattern_id,
            pattern.frequency.value,
            format_time_of_day(pattern.time_of_day),
            pattern.start_date.to_date_string(),
            str(pattern.last_generated_date or "-"),
            pattern.state.value,
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]slotengine[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
