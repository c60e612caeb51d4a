"""Apply command-line logging overrides on top of the loaded configuration."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from malib.config.models import LoggingConfig


def build_logging_config(
    base: LoggingConfig,
    *,
    level: str | None = None,
    file: Path | None = None,
    format: str | None = None,
    include_stderr: bool | None = None,
) -> LoggingConfig:
    """Return a copy of ``base`` with every non-None override applied.

    The copy is validated again, so a bad override raises ConfigError.

    Example:
        configure_logging(build_logging_config(config.logging, level="debug"))
    """
    overrides = {
        "level": level,
        "file": file,
        "format": format,
        "include_stderr": include_stderr,
    }
    return replace(base, **{k: v for k, v in overrides.items() if v is not None})
