"""
Data models for migrations, ledger records and run results.

A migration moves through a small state machine while it is applied:

    PENDING -> APPLYING -> APPLIED
                        -> ROLLED_BACK (-> PENDING on the next run)
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pymigrate.core.exceptions import ExecutionError, InvalidMigrationError
from pymigrate.migrations.sql import compute_checksum


class MigrationState(Enum):
    """Lifecycle state of a single migration."""

    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"


@dataclass
class Migration:
    """
    A versioned unit of schema change.

    Attributes:
        version: Numeric identifier, usually a UTC timestamp such as 20230606055423
        description: Human-readable description (the filename remainder)
        sql: SQL text to apply, optionally wrapped in BEGIN/COMMIT
        path: File the migration was loaded from, if any
        checksum: SHA-256 of the SQL text, computed automatically
    """

    version: int
    description: str
    sql: str
    path: Path | None = None
    checksum: str = field(init=False)

    def __post_init__(self) -> None:
        if self.version < 1:
            raise InvalidMigrationError("Migration version must be >= 1")
        if not self.sql or not self.sql.strip():
            raise InvalidMigrationError(f"Migration {self.version} has no SQL")
        self.checksum = compute_checksum(self.sql)

    @property
    def migration_id(self) -> str:
        """Identifier in filename form, e.g. ``20230606055423_make_status_not_null``."""
        return f"{self.version}_{self.description}"


@dataclass
class AppliedMigration:
    """
    Ledger record of an applied migration.

    Written once in the same transaction as the migration itself and never
    modified afterwards.
    """

    version: int
    description: str
    checksum: str
    applied_at: datetime
    execution_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "version": self.version,
            "description": self.description,
            "checksum": self.checksum,
            "applied_at": self.applied_at.isoformat(),
            "execution_time_ms": self.execution_time_ms,
        }


@dataclass
class MigrationResult:
    """Outcome of a single ``apply`` call."""

    migration: Migration
    state: MigrationState
    already_applied: bool = False
    applied_at: datetime | None = None
    execution_time_ms: int = 0
    error: ExecutionError | None = None

    @property
    def version(self) -> int:
        return self.migration.version

    @property
    def succeeded(self) -> bool:
        return self.state == MigrationState.APPLIED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "version": self.migration.version,
            "description": self.migration.description,
            "state": self.state.value,
            "already_applied": self.already_applied,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "execution_time_ms": self.execution_time_ms,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class RunResult:
    """
    Outcome of applying all pending migrations.

    Attributes:
        success: False if a migration failed and the run halted
        applied: Migrations applied by this run, in order
        failed: The migration that failed, if any
        schema_version: Highest applied version after the run (None if none)
        error: The execution error that halted the run
    """

    success: bool
    applied: list[MigrationResult] = field(default_factory=list)
    failed: MigrationResult | None = None
    schema_version: int | None = None
    error: ExecutionError | None = None
    finished_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def raise_for_error(self) -> None:
        """Re-raise the execution error that halted the run, if any."""
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "schema_version": self.schema_version,
            "applied": [r.to_dict() for r in self.applied],
            "failed": self.failed.to_dict() if self.failed else None,
            "error": str(self.error) if self.error else None,
            "finished_at": self.finished_at.isoformat(),
        }


@dataclass
class MigrationInfo:
    """Status line for one migration, merging local files with the ledger."""

    version: int
    description: str
    state: MigrationState
    applied_at: datetime | None = None
    checksum_ok: bool = True
    missing_locally: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "version": self.version,
            "description": self.description,
            "state": self.state.value,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "checksum_ok": self.checksum_ok,
            "missing_locally": self.missing_locally,
        }
