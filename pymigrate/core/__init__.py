"""Core types shared across PyMigrate."""

from pymigrate.core.exceptions import (
    AlreadyAppliedError,
    ChecksumMismatchError,
    ConfigurationError,
    DuplicateMigrationError,
    ExecutionError,
    InvalidMigrationError,
    LockTimeoutError,
    MigrationError,
    MigrationNotFoundError,
    MissingMigrationError,
    OutOfOrderError,
)

__all__ = [
    "MigrationError",
    "ConfigurationError",
    "ExecutionError",
    "AlreadyAppliedError",
    "OutOfOrderError",
    "ChecksumMismatchError",
    "MissingMigrationError",
    "DuplicateMigrationError",
    "InvalidMigrationError",
    "MigrationNotFoundError",
    "LockTimeoutError",
]
