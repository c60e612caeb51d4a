"""CLI commands for backing up and restoring the library.

A backup archive (``.mallib``) holds the store files, the preference
subset of the settings and the schema version stamp. Restoring one replaces
the live store after checking that its version can be migrated forward.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from malib.backup import (
    BackupError,
    BackupInfo,
    BackupNotFoundError,
    SchemaIncompatibleError,
    create_backup,
    inspect_backup,
    list_backups,
    restore_backup,
)
from malib.cli.context import get_config_obj, get_manager, get_settings
from malib.cli.exit_codes import ExitCode
from malib.cli.output import echo_json, error_exit
from malib.core.formatting import format_datetime, format_file_size

logger = logging.getLogger(__name__)


def _exit_code_for(error: BackupError) -> ExitCode:
    if isinstance(error, BackupNotFoundError):
        return ExitCode.TARGET_NOT_FOUND
    if isinstance(error, SchemaIncompatibleError):
        return ExitCode.SCHEMA_INCOMPATIBLE
    return ExitCode.OPERATION_FAILED


def _info_dict(info: BackupInfo) -> dict:
    return {
        "path": str(info.path),
        "root": info.root_name,
        "schema_version": str(info.schema_version) if info.schema_version else None,
        "legacy": info.is_legacy,
        "settings": info.settings,
        "store_files": list(info.store_files),
        "store_size_bytes": info.store_size_bytes,
    }


@click.group("backup")
def backup_group() -> None:
    """Create, restore and inspect library backups.

    Examples:

        # Create a backup in the configured backup directory
        malib backup create

        # List available backups
        malib backup list

        # Restore without a confirmation prompt
        malib backup restore --yes MyAnimeList_Backup_2026-02-05T143022Z.mallib
    """
    pass


@backup_group.command("create")
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for the archive (default: <data-dir>/backups).",
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output as JSON.",
)
@click.pass_context
def create_command(
    ctx: click.Context, output_dir: Path | None, json_output: bool
) -> None:
    """Create a backup archive of the store and preferences."""
    config = get_config_obj(ctx)
    manager = get_manager(ctx)
    settings = get_settings(ctx)

    try:
        result = create_backup(
            manager, settings, output_dir=output_dir or config.backup_dir
        )
    except BackupError as e:
        error_exit(str(e), _exit_code_for(e), json_output)

    if json_output:
        echo_json(
            {
                "status": "completed",
                "path": str(result.path),
                "archive_size_bytes": result.archive_size_bytes,
                "schema_version": str(result.schema_version),
                "settings_keys": list(result.settings_keys),
                "store_files": list(result.store_files),
                "duration_seconds": round(result.duration_seconds, 3),
            }
        )
        return

    click.echo(f"Backup created: {result.path}")
    click.echo(f"  Archive size: {format_file_size(result.archive_size_bytes)}")
    click.echo(f"  Schema version: {result.schema_version}")
    click.echo(f"  Preferences: {len(result.settings_keys)}")


@backup_group.command("restore")
@click.argument("archive", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--allow-same-version",
    is_flag=True,
    default=False,
    help="Also accept a backup made by the current schema version.",
)
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    default=False,
    help="Skip confirmation prompt.",
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output as JSON.",
)
@click.pass_context
def restore_command(
    ctx: click.Context,
    archive: Path,
    allow_same_version: bool,
    yes: bool,
    json_output: bool,
) -> None:
    """Replace the library with the contents of ARCHIVE.

    Preferences in the backup are applied first. The store files are only
    replaced when the backup's schema version is older than the current
    one (or equal, with --allow-same-version); backups without a version
    stamp are always accepted.
    """
    config = get_config_obj(ctx)
    manager = get_manager(ctx, open_store=False)
    settings = get_settings(ctx)
    allow_same_version = allow_same_version or config.backup.allow_same_version

    try:
        info = inspect_backup(archive, manager.store_name)
    except BackupError as e:
        error_exit(str(e), _exit_code_for(e), json_output)

    if not json_output:
        click.echo(f"Restoring from: {archive}")
        click.echo(f"  Schema: {info.schema_version or 'unstamped'}")
        click.echo(f"  Store size: {format_file_size(info.store_size_bytes)}")
        click.echo(f"  Preferences: {len(info.settings)}")

    if not yes:
        click.confirm(
            "This replaces the current library. Continue?",
            abort=True,
        )

    try:
        result = restore_backup(
            archive, manager, settings, allow_same_version=allow_same_version
        )
    except BackupError as e:
        error_exit(str(e), _exit_code_for(e), json_output)

    if json_output:
        echo_json(
            {
                "status": "completed",
                "source": str(result.source_path),
                "archive_version": (
                    str(result.archive_version) if result.archive_version else None
                ),
                "settings_restored": list(result.settings_restored),
                "settings_skipped": list(result.settings_skipped),
                "store_files": list(result.store_files),
                "restart_recommended": result.restart_recommended,
            }
        )
        return

    click.echo("Restore complete.")
    if result.settings_skipped:
        skipped = ", ".join(result.settings_skipped)
        click.echo(f"  Skipped unknown settings: {skipped}")
    click.echo(f"  Store now at schema {manager.schema_version}")


@backup_group.command("list")
@click.option(
    "--dir",
    "backup_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory to list (default: <data-dir>/backups).",
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output as JSON.",
)
@click.pass_context
def list_command(
    ctx: click.Context, backup_dir: Path | None, json_output: bool
) -> None:
    """List backup archives, newest first."""
    config = get_config_obj(ctx)
    directory = backup_dir or config.backup_dir
    backups = list_backups(directory, config.storage.store_name)

    if json_output:
        echo_json(
            [
                {
                    "path": str(b.path),
                    "created_at": b.created_at.isoformat(),
                    "archive_size_bytes": b.archive_size_bytes,
                    "schema_version": (
                        str(b.info.schema_version)
                        if b.info and b.info.schema_version
                        else None
                    ),
                    "readable": b.info is not None,
                }
                for b in backups
            ]
        )
        return

    if not backups:
        click.echo(f"No backups found in {directory}")
        return

    for b in backups:
        if b.info is None:
            version = "unreadable"
        else:
            version = str(b.info.schema_version or "unstamped")
        click.echo(
            f"{format_datetime(b.created_at)}  "
            f"{format_file_size(b.archive_size_bytes):>9}  "
            f"{version:<10}  {b.filename}"
        )


@backup_group.command("inspect")
@click.argument("archive", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output as JSON.",
)
@click.pass_context
def inspect_command(ctx: click.Context, archive: Path, json_output: bool) -> None:
    """Show the version stamp, preferences and files in ARCHIVE."""
    config = get_config_obj(ctx)
    try:
        info = inspect_backup(archive, config.storage.store_name)
    except BackupError as e:
        error_exit(str(e), _exit_code_for(e), json_output)

    if json_output:
        echo_json(_info_dict(info))
        return

    click.echo(f"Backup: {info.path}")
    click.echo(f"  Folder: {info.root_name}")
    click.echo(f"  Schema: {info.schema_version or 'unstamped (legacy)'}")
    click.echo(f"  Store files: {', '.join(info.store_files) or '-'}")
    click.echo(f"  Store size: {format_file_size(info.store_size_bytes)}")
    if info.settings:
        click.echo("  Preferences:")
        for key, value in sorted(info.settings.items()):
            click.echo(f"    {key} = {value!r}")
