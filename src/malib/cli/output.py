"""Error and JSON output shared by the CLI commands."""

from __future__ import annotations

import json
import sys
from typing import NoReturn

import click

from malib.cli.exit_codes import ExitCode


def error_exit(
    message: str,
    code: ExitCode | int,
    json_output: bool = False,
) -> NoReturn:
    """Report ``message`` on stderr and exit with ``code``.

    With ``json_output`` the report is an object scripts can parse::

        {"status": "failed", "error": {"code": "TARGET_NOT_FOUND", "message": ...}}
    """
    name = code.name if isinstance(code, ExitCode) else "UNKNOWN_ERROR"
    if json_output:
        payload = {"status": "failed", "error": {"code": name, "message": message}}
        click.echo(json.dumps(payload), err=True)
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(int(code))


def echo_json(data: object) -> None:
    """Print ``data`` as indented JSON; paths and datetimes become strings."""
    click.echo(json.dumps(data, indent=2, default=str))
