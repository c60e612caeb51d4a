"""Environment variable reader with dependency injection support.

Values that are set but cannot be parsed raise :class:`ConfigError` instead
of silently falling back to the default.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from malib.config.models import ConfigError

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off"})


class EnvReader:
    """Read typed values from the environment.

    Accepts an optional env mapping so tests do not have to modify
    ``os.environ``.

    Example:
        reader = EnvReader(env={"MALIB_LOG_LEVEL": "debug"})
        reader.get_str("MALIB_LOG_LEVEL", "info")  # "debug"
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env: Mapping[str, str] = env if env is not None else os.environ

    def get_str(self, var: str, default: str | None = None) -> str | None:
        value = self._env.get(var)
        if value is None or value == "":
            return default
        return value

    def get_bool(self, var: str, default: bool | None = None) -> bool | None:
        """Get a boolean from true/false, 1/0, yes/no or on/off.

        Raises:
            ConfigError: If the variable is set to anything else.
        """
        value = self.get_str(var)
        if value is None:
            return default
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ConfigError(f"Invalid boolean value for {var}: {value!r}")

    def get_path(self, var: str, default: Path | None = None) -> Path | None:
        value = self.get_str(var)
        if value is None:
            return default
        return Path(value).expanduser()
