"""CLI for roomkeeper — inspect configuration and dry-run room scheduling."""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

import asyncpg
import click

from roomkeeper.config import ConfigError, RoomkeeperConfig, load_config
from roomkeeper.core.logging import configure_logging
from roomkeeper.errors import MalformedEventError
from roomkeeper.notify.recording import RecordingNotifier
from roomkeeper.scheduling.availability import build_vavailability
from roomkeeper.scheduling.conflicts import list_bookings
from roomkeeper.scheduling.ical import parse_calendar, text_value
from roomkeeper.scheduling.models import Room, SchedulingMessage
from roomkeeper.service import build_engine
from roomkeeper.stores.memory import InMemoryCalendarStore
from roomkeeper.stores.postgres import PostgresCalendarStore

DEFAULT_CONFIG_DIR = Path(".")

_config_option = click.option(
    "--config",
    "config_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_DIR,
    help="Directory containing roomkeeper.toml",
)


@click.group()
@click.version_option(version="0.1.0")
def cli() -> None:
    """roomkeeper — room booking scheduling for CalDAV servers."""


def _load(config_dir: Path) -> RoomkeeperConfig:
    try:
        config = load_config(config_dir)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)
    log_root = Path(config.logging.log_root) if config.logging.log_root else None
    configure_logging(config.logging.level, config.logging.format, log_root, config.name)
    return config


def _require_room(config: RoomkeeperConfig, room_id: str) -> Room:
    room = config.room(room_id)
    if room is None:
        click.echo(f"Room not found: {room_id}", err=True)
        sys.exit(1)
    return room


@cli.command("check-config")
@_config_option
def check_config(config_dir: Path) -> None:
    """Validate roomkeeper.toml and list the configured rooms."""
    config = _load(config_dir)
    click.echo(f"{'Room':<20} {'Email':<32} {'Auto':<6} {'Active':<7} {'Group'}")
    click.echo("-" * 80)
    for room in config.rooms:
        click.echo(
            f"{room.id:<20} {room.email:<32} {'yes' if room.auto_accept else 'no':<6} "
            f"{'yes' if room.active else 'no':<7} {room.group_id or '-'}"
        )
    click.echo(
        f"{len(config.rooms)} room(s), {len(config.room_groups)} group(s), "
        f"{len(config.users)} user(s)"
    )


@cli.command()
@click.argument("room_id")
@_config_option
def availability(room_id: str, config_dir: Path) -> None:
    """Print the VAVAILABILITY object published for ROOM_ID."""
    config = _load(config_dir)
    room = _require_room(config, room_id)
    if not room.availability.active:
        click.echo(f"Room {room_id} has no availability restrictions", err=True)
        return
    click.echo(build_vavailability(room), nl=False)


@cli.command()
@click.argument("ics_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--to", "recipient", required=True, help="Room address (mailto: or principal)")
@click.option("--from", "sender", required=True, help="Sender principal or mailto: address")
@click.option("--method", default=None, help="iTIP method (defaults to the file's METHOD)")
@_config_option
def deliver(
    ics_file: Path, recipient: str, sender: str, method: str | None, config_dir: Path
) -> None:
    """Dry-run a scheduling message against an empty in-memory room calendar."""
    config = _load(config_dir)
    try:
        calendar = parse_calendar(ics_file.read_text())
    except MalformedEventError as exc:
        click.echo(f"Cannot read {ics_file}: {exc}", err=True)
        sys.exit(1)

    message = SchedulingMessage(
        method=method or text_value(calendar, "method") or "REQUEST",
        sender=sender,
        recipient=recipient,
        payload=calendar,
    )
    notifier = RecordingNotifier()
    engine = build_engine(config, store=InMemoryCalendarStore(), notifier=notifier)
    outcome = asyncio.run(engine.process_scheduling_message(message))

    if outcome is None:
        click.echo(json.dumps({"handled": False}, indent=2))
        return
    report = {
        "handled": True,
        **outcome.to_dict(),
        "notifications": [sent.to_dict() for sent in notifier.sent],
    }
    click.echo(json.dumps(report, indent=2))


@cli.command("init-db")
@_config_option
def init_db(config_dir: Path) -> None:
    """Create the room calendar table in the configured PostgreSQL database."""
    config = _load(config_dir)
    if not config.db.dsn:
        click.echo("roomkeeper.db.dsn is not configured", err=True)
        sys.exit(1)

    async def _run() -> None:
        pool = await asyncpg.create_pool(config.db.dsn)
        try:
            await PostgresCalendarStore(pool).ensure_schema()
        finally:
            await pool.close()

    asyncio.run(_run())
    click.echo("Room calendar schema is ready")


@cli.command()
@click.argument("room_id")
@click.option("--start", type=click.DateTime(), default=None, help="Window start (room time)")
@click.option("--end", type=click.DateTime(), default=None, help="Window end (room time)")
@_config_option
def bookings(
    room_id: str, start: datetime | None, end: datetime | None, config_dir: Path
) -> None:
    """List bookings stored for ROOM_ID in the configured database."""
    config = _load(config_dir)
    room = _require_room(config, room_id)
    if not config.db.dsn:
        click.echo("roomkeeper.db.dsn is not configured", err=True)
        sys.exit(1)

    window_start = start.replace(tzinfo=room.tz) if start else None
    window_end = end.replace(tzinfo=room.tz) if end else None

    async def _run() -> list[dict]:
        pool = await asyncpg.create_pool(config.db.dsn)
        try:
            found = await list_bookings(
                PostgresCalendarStore(pool),
                room.id,
                window_start,
                window_end,
                default_tz=room.tz,
            )
        finally:
            await pool.close()
        return [booking.to_dict() for booking in found]

    click.echo(json.dumps(asyncio.run(_run()), indent=2))
