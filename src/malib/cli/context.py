"""Shared accessors for objects stored on the click context.

The root command stores the loaded :class:`MalibConfig` under ``config``.
The store manager and settings store are created on first use and cached
alongside it; the manager is closed when the root context tears down.
"""

from __future__ import annotations

import click

from malib.cli.exit_codes import ExitCode
from malib.cli.output import error_exit
from malib.config import MalibConfig
from malib.settings import JsonSettingsStore, SettingsError, SettingsStore
from malib.store import StoreInitializationError, StoreManager, create_default_manager


def get_config_obj(ctx: click.Context) -> MalibConfig:
    """Extract the loaded configuration from the click context."""
    config = ctx.obj.get("config") if ctx.obj else None
    if config is None:
        raise click.ClickException("Configuration not loaded.")
    return config


def get_manager(ctx: click.Context, *, open_store: bool = True) -> StoreManager:
    """Return the store manager, creating it on first use.

    Args:
        ctx: Click context.
        open_store: Open (and migrate) the store before returning.
    """
    manager = ctx.obj.get("manager")
    if manager is None:
        manager = create_default_manager(get_config_obj(ctx))
        ctx.obj["manager"] = manager
        ctx.find_root().call_on_close(manager.close)

    if open_store:
        try:
            manager.open()
        except StoreInitializationError as e:
            error_exit(str(e), ExitCode.DATABASE_ERROR)
    return manager


def get_settings(ctx: click.Context) -> SettingsStore:
    """Return the settings store, loading it on first use."""
    settings = ctx.obj.get("settings")
    if settings is None:
        path = get_config_obj(ctx).storage.settings_path
        try:
            settings = JsonSettingsStore(path)
        except SettingsError as e:
            error_exit(str(e), ExitCode.CONFIG_ERROR)
        ctx.obj["settings"] = settings
    return settings
