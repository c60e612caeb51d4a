"""Key-value settings store for user preferences.

Values are JSON scalars (str, int, float, bool or None). Only the keys in
:data:`PREFERENCE_KEYS` travel with backups; everything else, including the
flag recording whether a catalog API key is configured, stays local.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

SettingValue = str | int | float | bool | None

# Preferences included in backup archives.
PREFERENCE_KEYS: tuple[str, ...] = (
    "PreferredAnimeInfoLanguage",
    "SearchTMDbLanguage",
    "SearchPageQuery",
    "PersistedScrolledID",
    "LibrarySortStrategy",
    "LibraryViewStyle",
)

# Machine-local: a restored archive must not claim a key is configured.
API_KEY_FLAG = "TMDbAPIKeyConfigured"


class SettingsError(Exception):
    """Settings could not be read or written."""


def is_setting_value(value: object) -> bool:
    return value is None or isinstance(value, str | int | float | bool)


def _check_value(key: str, value: object) -> None:
    if not is_setting_value(value):
        raise TypeError(
            f"Setting {key!r} must be a JSON scalar, got {type(value).__name__}"
        )


class SettingsStore(Protocol):
    """Contract backup and restore rely on."""

    def get(self, key: str, default: SettingValue = None) -> SettingValue: ...

    def set(self, key: str, value: SettingValue) -> None: ...

    def update(self, values: Mapping[str, SettingValue]) -> None: ...

    def snapshot(self, keys: Iterable[str]) -> dict[str, SettingValue]: ...


class MemorySettingsStore:
    """In-process settings, used for previews and tests."""

    def __init__(self, values: Mapping[str, SettingValue] | None = None) -> None:
        self._values: dict[str, SettingValue] = {}
        self._lock = threading.Lock()
        if values:
            self.update(values)

    def get(self, key: str, default: SettingValue = None) -> SettingValue:
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: SettingValue) -> None:
        _check_value(key, value)
        with self._lock:
            self._values[key] = value

    def update(self, values: Mapping[str, SettingValue]) -> None:
        for key, value in values.items():
            _check_value(key, value)
        with self._lock:
            self._values.update(values)

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def snapshot(self, keys: Iterable[str]) -> dict[str, SettingValue]:
        """Return the subset of ``keys`` that are set."""
        with self._lock:
            return {k: self._values[k] for k in keys if k in self._values}

    def as_dict(self) -> dict[str, SettingValue]:
        with self._lock:
            return dict(self._values)


class JsonSettingsStore(MemorySettingsStore):
    """Settings persisted as a flat JSON object.

    Every write rewrites the whole file atomically (temp file + rename).

    Args:
        path: Settings file. Created on first write; a missing file reads as
            empty.

    Raises:
        SettingsError: If the existing file is not a JSON object of scalars.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = path
        self._values = self._load()

    def _load(self) -> dict[str, SettingValue]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SettingsError(f"Failed to read settings {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise SettingsError(f"Settings file {self.path} is not a JSON object")
        values: dict[str, SettingValue] = {}
        for key, value in data.items():
            if is_setting_value(value):
                values[key] = value
            else:
                logger.warning("Ignoring non-scalar setting %s in %s", key, self.path)
        return values

    def set(self, key: str, value: SettingValue) -> None:
        self.update({key: value})

    def update(self, values: Mapping[str, SettingValue]) -> None:
        for key, value in values.items():
            _check_value(key, value)
        with self._lock:
            merged = {**self._values, **values}
            self._write(merged)
            self._values = merged

    def delete(self, key: str) -> None:
        with self._lock:
            if key not in self._values:
                return
            remaining = {k: v for k, v in self._values.items() if k != key}
            self._write(remaining)
            self._values = remaining

    def _write(self, values: dict[str, SettingValue]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path_str = tempfile.mkstemp(
            suffix=".json", dir=self.path.parent, text=True
        )
        temp_path = Path(temp_path_str)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(values, f, indent=2, sort_keys=True)
            temp_path.replace(self.path)  # Atomic on POSIX
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise SettingsError(f"Failed to write settings {self.path}: {e}") from e
