"""
Schema migration framework for PyMigrate.

Migrations are versioned SQL files applied in ascending order, each inside a
single transaction together with its ledger row.
"""

from pymigrate.migrations.base import (
    DEFAULT_LEDGER_TABLE,
    MigrationRegistry,
    MigrationRunner,
)
from pymigrate.migrations.schemas import (
    AppliedMigration,
    Migration,
    MigrationInfo,
    MigrationResult,
    MigrationState,
    RunResult,
)
from pymigrate.migrations.source import (
    create_migration_file,
    discover_migrations,
    load_registry,
)

__all__ = [
    "DEFAULT_LEDGER_TABLE",
    "Migration",
    "AppliedMigration",
    "MigrationInfo",
    "MigrationResult",
    "MigrationState",
    "RunResult",
    "MigrationRegistry",
    "MigrationRunner",
    "create_migration_file",
    "discover_migrations",
    "load_registry",
]
