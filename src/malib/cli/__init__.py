"""CLI module for malib."""

import logging
from pathlib import Path

import click

from malib.cli.exit_codes import ExitCode
from malib.cli.output import error_exit
from malib.config import ConfigError, build_logging_config, get_config
from malib.logging import configure_logging

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(package_name="malib")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override log level (default: info).",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Override log file path.",
)
@click.option(
    "--log-json",
    is_flag=True,
    default=False,
    help="Use JSON log format.",
)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Data directory (default: $MALIB_DATA_DIR or ~/.malib).",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: <data-dir>/config.toml).",
)
@click.pass_context
def main(
    ctx: click.Context,
    log_level: str | None,
    log_file: Path | None,
    log_json: bool,
    data_dir: Path | None,
    config_path: Path | None,
) -> None:
    """malib - Manage a personal anime library store and its backups."""
    ctx.ensure_object(dict)

    # Preserve a config passed in by tests
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = get_config(config_path, data_dir=data_dir)
        except ConfigError as e:
            error_exit(str(e), ExitCode.CONFIG_ERROR)
    config = ctx.obj["config"]

    try:
        logging_config = build_logging_config(
            config.logging,
            level=log_level,
            file=log_file,
            format="json" if log_json else None,
        )
    except ConfigError as e:
        error_exit(str(e), ExitCode.CONFIG_ERROR)
    configure_logging(logging_config)

    logger.debug(
        "malib starting: data_dir=%s, config=%s",
        config.storage.data_dir,
        config.config_path or "defaults",
    )


# Defer import to avoid circular dependency
def _register_commands():
    from malib.cli.backup import backup_group
    from malib.cli.library import entries_group, migrate_command, status_command

    main.add_command(status_command)
    main.add_command(migrate_command)
    main.add_command(entries_group)
    main.add_command(backup_group)


_register_commands()
