"""
Exception classes for PyMigrate.

Every error raised by the runner derives from MigrationError so callers can
catch the whole family in one place. Driver errors (asyncpg, sqlite3) are
never leaked directly; they are chained as ``__cause__`` of ExecutionError.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pymigrate.migrations.schemas import Migration


class MigrationError(Exception):
    """Base exception for all migration-related errors."""

    pass


class ConfigurationError(MigrationError, ValueError):
    """Invalid runner or database configuration."""

    pass


class ExecutionError(MigrationError):
    """
    A statement inside a migration transaction failed.

    The transaction has been rolled back: neither the schema change nor the
    ledger row is visible. The run halts at this migration.

    Attributes:
        migration: The migration that failed
    """

    def __init__(self, message: str, migration: "Migration | None" = None) -> None:
        super().__init__(message)
        self.migration = migration


class AlreadyAppliedError(MigrationError):
    """
    Raised by ``apply(..., strict=True)`` when the version is already in the ledger.

    By default an already-applied migration is a successful no-op and this
    exception is not raised.
    """

    def __init__(self, version: int) -> None:
        super().__init__(f"Migration {version} has already been applied")
        self.version = version


class OutOfOrderError(MigrationError):
    """A migration would be applied before an earlier unapplied one."""

    def __init__(self, version: int, message: str) -> None:
        super().__init__(message)
        self.version = version


class ChecksumMismatchError(MigrationError):
    """An applied migration's SQL was modified after it was applied."""

    def __init__(self, version: int, expected: str, actual: str) -> None:
        super().__init__(
            f"Migration {version} was previously applied but has been modified "
            f"(ledger checksum {expected[:12]}, local checksum {actual[:12]})"
        )
        self.version = version
        self.expected = expected
        self.actual = actual


class MissingMigrationError(MigrationError):
    """The ledger contains a version that has no local migration file."""

    def __init__(self, version: int) -> None:
        super().__init__(
            f"Migration {version} was previously applied but is missing "
            f"from the resolved migrations"
        )
        self.version = version


class DuplicateMigrationError(MigrationError, ValueError):
    """Two migrations share the same version."""

    def __init__(self, version: int) -> None:
        super().__init__(f"Migration version {version} already registered")
        self.version = version


class InvalidMigrationError(MigrationError, ValueError):
    """A migration file or definition is malformed."""

    pass


class MigrationNotFoundError(MigrationError):
    """No migration is registered under the requested version."""

    def __init__(self, version: int) -> None:
        super().__init__(f"Migration {version} not found")
        self.version = version


class LockTimeoutError(MigrationError):
    """The run lock could not be acquired before the timeout elapsed."""

    def __init__(self, timeout: float) -> None:
        super().__init__(
            f"Could not acquire migration lock within {timeout:g}s; "
            f"is another migration run in progress?"
        )
        self.timeout = timeout
