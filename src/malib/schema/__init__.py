"""Versioned record schema and its migration engine.

Usage:
    from malib.schema import DEFAULT_PLAN, SchemaVersion

    report = DEFAULT_PLAN.migrate(conn)
"""

from .generations import CURRENT_GENERATION, GENERATIONS, Generation
from .plan import (
    DEFAULT_PLAN,
    MigrationError,
    MigrationPlan,
    MigrationReport,
    SchemaTooNewError,
    UnknownSchemaVersionError,
)
from .stages import (
    CustomStage,
    LightweightStage,
    MigrationContext,
    MigrationStage,
    StageKind,
)
from .version import SchemaVersion, get_schema_version

CURRENT_SCHEMA_VERSION = CURRENT_GENERATION.version

__all__ = [
    "CURRENT_GENERATION",
    "CURRENT_SCHEMA_VERSION",
    "GENERATIONS",
    "Generation",
    "DEFAULT_PLAN",
    "MigrationError",
    "MigrationPlan",
    "MigrationReport",
    "SchemaTooNewError",
    "UnknownSchemaVersionError",
    "CustomStage",
    "LightweightStage",
    "MigrationContext",
    "MigrationStage",
    "StageKind",
    "SchemaVersion",
    "get_schema_version",
]
