"""Migration plan: the ordered generation chain and the stages joining it.

The plan is a flat registry. Which stages still apply to a store is a slice
of the stage table starting at the store's stamped version. Each stage runs
in its own ``BEGIN IMMEDIATE`` transaction together with the version stamp,
so a store is always at exactly one defined generation.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from itertools import pairwise

from malib.schema.generations import GENERATIONS, V2_1_0, V2_3_0, Generation
from malib.schema.stages import (
    CustomStage,
    LightweightStage,
    MigrationStage,
    StageHook,
    StageResult,
    table_columns,
    table_exists,
)
from malib.schema.transforms import (
    row_transform_hooks,
    tagged_type_row,
    watch_status_row,
)
from malib.schema.version import SchemaVersion, get_schema_version, set_schema_version

logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """A migration stage failed; the store stays at its previous generation."""


class SchemaTooNewError(MigrationError):
    """The store was written by a newer generation than this build knows."""

    def __init__(self, on_disk: SchemaVersion, current: SchemaVersion) -> None:
        self.on_disk = on_disk
        self.current = current
        super().__init__(
            f"Store schema {on_disk} is newer than the supported schema {current}"
        )


class UnknownSchemaVersionError(MigrationError):
    """The stored version is not one of the registered generations."""

    def __init__(self, version: SchemaVersion | str) -> None:
        self.version = version
        super().__init__(f"Unknown schema version: {version}")


@dataclass(frozen=True)
class MigrationReport:
    """What :meth:`MigrationPlan.migrate` did to a store.

    Attributes:
        from_version: Version found on disk (None for a new store).
        to_version: Version the store is at afterwards.
        created: True when the current generation was created from scratch.
        stages: Results of the stages applied, in order.
    """

    from_version: SchemaVersion | None
    to_version: SchemaVersion
    created: bool = False
    stages: tuple[StageResult, ...] = field(default_factory=tuple)

    @property
    def migrated(self) -> bool:
        return bool(self.stages)

    @property
    def up_to_date(self) -> bool:
        """True when nothing had to be done."""
        return not self.created and not self.stages


class MigrationPlan:
    """Validated chain of generations and the stages between them.

    Args:
        generations: Every generation, oldest first.
        stages: Exactly one stage per adjacent pair of generations, in order.

    Raises:
        ValueError: If versions are not strictly increasing or the stages do
            not join every adjacent pair.
    """

    def __init__(
        self, generations: Sequence[Generation], stages: Sequence[MigrationStage]
    ) -> None:
        if not generations:
            raise ValueError("A migration plan needs at least one generation")
        for older, newer in pairwise(generations):
            if not older.version < newer.version:
                raise ValueError(
                    f"Generations must be strictly increasing: "
                    f"{older.version} then {newer.version}"
                )
        if len(stages) != len(generations) - 1:
            raise ValueError(
                f"Expected {len(generations) - 1} stages, got {len(stages)}"
            )
        for (source, target), stage in zip(pairwise(generations), stages, strict=True):
            if stage.source is not source or stage.target is not target:
                raise ValueError(
                    f"Stage {stage!r} does not join {source.version} -> "
                    f"{target.version}"
                )
        self.generations: tuple[Generation, ...] = tuple(generations)
        self.stages: tuple[MigrationStage, ...] = tuple(stages)
        self._by_version = {g.version: g for g in self.generations}

    @property
    def current_generation(self) -> Generation:
        return self.generations[-1]

    @property
    def current_version(self) -> SchemaVersion:
        return self.generations[-1].version

    @property
    def oldest_version(self) -> SchemaVersion:
        return self.generations[0].version

    def generation(self, version: SchemaVersion) -> Generation:
        """Look up a registered generation.

        Raises:
            SchemaTooNewError: If ``version`` is newer than the current one.
            UnknownSchemaVersionError: If ``version`` is not registered.
        """
        if version > self.current_version:
            raise SchemaTooNewError(version, self.current_version)
        try:
            return self._by_version[version]
        except KeyError:
            raise UnknownSchemaVersionError(version) from None

    def pending_stages(self, on_disk: SchemaVersion) -> list[MigrationStage]:
        """Return the stages a store at ``on_disk`` still needs, in order."""
        self.generation(on_disk)
        return [stage for stage in self.stages if stage.source.version >= on_disk]

    def detect_generation(self, conn: sqlite3.Connection) -> Generation | None:
        """Identify an unstamped store by its table layout.

        Returns the oldest generation whose tables and columns match the
        store exactly, or None when the store holds none of the record
        tables (an empty store).

        Raises:
            UnknownSchemaVersionError: If tables exist but match no generation.
        """
        names = {t.name for g in self.generations for t in g.tables}
        live = {
            name: set(table_columns(conn, name))
            for name in names
            if table_exists(conn, name)
        }
        if not live:
            return None
        for generation in self.generations:
            expected = {t.name: set(t.column_names) for t in generation.tables}
            if expected == live:
                return generation
        raise UnknownSchemaVersionError("unstamped store with unrecognized layout")

    def migrate(self, conn: sqlite3.Connection) -> MigrationReport:
        """Bring the store behind ``conn`` to the current generation.

        Raises:
            MigrationError: If a stage fails; earlier stages stay committed.
            SchemaTooNewError: If the store is newer than this plan.
            UnknownSchemaVersionError: If the stored version is not registered.
        """
        try:
            on_disk = get_schema_version(conn)
        except ValueError as e:
            raise UnknownSchemaVersionError(str(e)) from e

        if on_disk is None:
            detected = self.detect_generation(conn)
            if detected is None:
                self._create_current(conn)
                return MigrationReport(
                    from_version=None, to_version=self.current_version, created=True
                )
            logger.warning(
                "Store has no version stamp, detected layout %s", detected.version
            )
            on_disk = detected.version
            with _transaction(conn):
                set_schema_version(conn, on_disk)

        pending = self.pending_stages(on_disk)
        if not pending:
            return MigrationReport(from_version=on_disk, to_version=on_disk)

        logger.info(
            "Migrating store",
            extra={
                "from_version": str(on_disk),
                "to_version": str(self.current_version),
                "stage_count": len(pending),
            },
        )
        results: list[StageResult] = []
        with _foreign_keys_disabled(conn):
            for stage in pending:
                results.append(self._run_stage(conn, stage))
        return MigrationReport(
            from_version=on_disk,
            to_version=self.current_version,
            stages=tuple(results),
        )

    def _create_current(self, conn: sqlite3.Connection) -> None:
        try:
            with _transaction(conn):
                for statement in self.current_generation.create_statements():
                    conn.execute(statement)
                set_schema_version(conn, self.current_version)
        except sqlite3.Error as e:
            raise MigrationError(f"Failed to create store schema: {e}") from e
        logger.info(
            "Created store schema", extra={"version": str(self.current_version)}
        )

    def _run_stage(
        self, conn: sqlite3.Connection, stage: MigrationStage
    ) -> StageResult:
        try:
            with _transaction(conn):
                result = stage.apply(conn)
                violations = conn.execute("PRAGMA foreign_key_check").fetchall()
                if violations:
                    raise MigrationError(
                        f"{len(violations)} foreign key violation(s) after {stage!r}"
                    )
                set_schema_version(conn, stage.target.version)
        except MigrationError:
            raise
        except (sqlite3.Error, ValueError, KeyError, TypeError) as e:
            raise MigrationError(f"Migration {stage!r} failed: {e}") from e

        logger.info(
            "Applied migration stage",
            extra={
                "from_version": result.source,
                "to_version": result.target,
                "kind": result.kind.value,
                "rows_written": result.rows_written,
            },
        )
        return result


@contextmanager
def _transaction(conn: sqlite3.Connection) -> Iterator[None]:
    """Run the block inside ``BEGIN IMMEDIATE``; commit or roll back."""
    if conn.in_transaction:
        conn.commit()
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield
        conn.execute("COMMIT")
    except Exception:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise


@contextmanager
def _foreign_keys_disabled(conn: sqlite3.Connection) -> Iterator[None]:
    """Turn foreign key enforcement off for table rebuilds, then restore it.

    The pragma is a no-op inside a transaction, so it is set outside the
    per-stage transactions.
    """
    if conn.in_transaction:
        conn.commit()
    previous = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    conn.execute("PRAGMA foreign_keys = OFF")
    try:
        yield
    finally:
        conn.execute(f"PRAGMA foreign_keys = {'ON' if previous else 'OFF'}")


def build_stages(
    generations: Sequence[Generation],
    custom_hooks: Mapping[SchemaVersion, tuple[StageHook, StageHook]],
) -> list[MigrationStage]:
    """Join each adjacent pair with a stage.

    Pairs whose target version has hooks in ``custom_hooks`` get a custom
    stage; every other pair gets a lightweight stage.
    """
    stages: list[MigrationStage] = []
    for source, target in pairwise(generations):
        hooks = custom_hooks.get(target.version)
        if hooks is None:
            stages.append(LightweightStage(source, target))
        else:
            will_migrate, did_migrate = hooks
            stages.append(CustomStage(source, target, will_migrate, did_migrate))
    return stages


CUSTOM_STAGE_HOOKS: dict[SchemaVersion, tuple[StageHook, StageHook]] = {
    V2_1_0.version: row_transform_hooks(tagged_type_row),
    V2_3_0.version: row_transform_hooks(watch_status_row),
}

DEFAULT_PLAN = MigrationPlan(GENERATIONS, build_stages(GENERATIONS, CUSTOM_STAGE_HOOKS))
