"""CLI commands for the record store: status, migrate and entry listing."""

from __future__ import annotations

import logging
import sqlite3

import click

from malib.cli.context import get_manager
from malib.cli.exit_codes import ExitCode
from malib.cli.output import echo_json, error_exit
from malib.core.formatting import format_file_size, truncate
from malib.domain import AnimeEntry
from malib.store import StoreInitializationError

logger = logging.getLogger(__name__)


@click.command("status")
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output as JSON.",
)
@click.pass_context
def status_command(ctx: click.Context, json_output: bool) -> None:
    """Show the store location, schema versions and entry count.

    The store is only opened (and counted) when it is already at the
    current schema version; status never migrates.
    """
    manager = get_manager(ctx, open_store=False)
    try:
        stored = manager.stored_version()
    except sqlite3.Error as e:
        error_exit(f"Failed to read store: {e}", ExitCode.DATABASE_ERROR, json_output)

    current = manager.schema_version
    entry_count = None
    if stored == current:
        entry_count = get_manager(ctx).handle.count()
    store_size = sum(p.stat().st_size for p in manager.store_files())

    if stored is None:
        state = "not created"
    elif stored == current:
        state = "up to date"
    elif stored < current:
        state = "migration pending"
    else:
        state = "newer than this build"

    if json_output:
        echo_json(
            {
                "store_path": str(manager.store_path),
                "store_size_bytes": store_size,
                "stored_version": str(stored) if stored else None,
                "current_version": str(current),
                "state": state,
                "entry_count": entry_count,
            }
        )
        return

    click.echo(f"Store: {manager.store_path}")
    click.echo(f"  Size: {format_file_size(store_size)}")
    click.echo(f"  Stored schema: {stored or '-'}")
    click.echo(f"  Current schema: {current} ({state})")
    if entry_count is not None:
        click.echo(f"  Entries: {entry_count:,}")
    elif stored is not None and stored < current:
        click.echo("Run 'malib migrate' to upgrade the store.")


@click.command("migrate")
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output as JSON.",
)
@click.pass_context
def migrate_command(ctx: click.Context, json_output: bool) -> None:
    """Open the store, applying any pending migrations."""
    manager = get_manager(ctx, open_store=False)
    try:
        manager.open()
    except StoreInitializationError as e:
        error_exit(str(e), ExitCode.DATABASE_ERROR, json_output)

    report = manager.last_report
    if json_output:
        echo_json(
            {
                "store_path": str(manager.store_path),
                "from_version": (
                    str(report.from_version) if report.from_version else None
                ),
                "to_version": str(report.to_version),
                "created": report.created,
                "stages": [
                    {
                        "source": str(stage.source),
                        "target": str(stage.target),
                        "kind": stage.kind.value,
                        "rows_read": stage.rows_read,
                        "rows_written": stage.rows_written,
                    }
                    for stage in report.stages
                ],
            }
        )
        return

    if report.created:
        click.echo(f"Created new store at schema {report.to_version}")
    elif report.up_to_date:
        click.echo(f"Store already at schema {report.to_version}")
    else:
        click.echo(f"Migrated store {report.from_version} -> {report.to_version}")
        for stage in report.stages:
            line = f"  {stage.source} -> {stage.target} ({stage.kind.value})"
            if stage.rows_written:
                line += f": {stage.rows_written} rows rewritten"
            click.echo(line)


@click.group("entries")
def entries_group() -> None:
    """Inspect library entries."""
    pass


def _entry_summary(entry: AnimeEntry) -> dict:
    return {
        "tmdb_id": entry.tmdb_id,
        "name": entry.name,
        "type": entry.type.to_json(),
        "on_display": entry.on_display,
        "watch_status": entry.watch_status.value,
        "favorite": entry.favorite,
        "date_saved": entry.date_saved.isoformat(),
        "date_started": entry.date_started.isoformat() if entry.date_started else None,
        "date_finished": (
            entry.date_finished.isoformat() if entry.date_finished else None
        ),
        "parent_series_entry_id": entry.parent_series_entry_id,
    }


@entries_group.command("list")
@click.option(
    "--all",
    "show_all",
    is_flag=True,
    help="Include entries hidden from the library.",
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output as JSON.",
)
@click.pass_context
def list_entries_command(
    ctx: click.Context, show_all: bool, json_output: bool
) -> None:
    """List library entries, most recently saved first.

    Examples:

        # Entries shown in the library
        malib entries list

        # Every entry, including seasons saved only for linking
        malib entries list --all --json
    """
    store = get_manager(ctx).handle
    entries = store.fetch_all(displayed_only=not show_all)

    if json_output:
        echo_json([_entry_summary(entry) for entry in entries])
        return

    if not entries:
        click.echo("No entries.")
        return

    click.echo(f"{'TMDB ID':>9}  {'TYPE':<14} {'STATUS':<12} {'FAV':<3}  NAME")
    for entry in entries:
        fav = "*" if entry.favorite else ""
        hidden = "" if entry.on_display else " (hidden)"
        click.echo(
            f"{entry.tmdb_id:>9}  {str(entry.type):<14} "
            f"{entry.watch_status.value:<12} {fav:<3}  "
            f"{truncate(entry.name)}{hidden}"
        )
    click.echo(f"\n{len(entries)} entries")
