"""
Database backends for PyMigrate.

Each backend provides a MigrationRunner implementation plus helpers to
create and drop the target database.
"""

from pymigrate.storage.config import (
    config_to_runner,
    create_database,
    create_runner,
    drop_database,
)
from pymigrate.storage.postgres import PostgresMigrationRunner
from pymigrate.storage.sqlite import SQLiteMigrationRunner

__all__ = [
    "SQLiteMigrationRunner",
    "PostgresMigrationRunner",
    # Config utilities
    "create_runner",
    "config_to_runner",
    "create_database",
    "drop_database",
]
