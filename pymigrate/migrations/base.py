"""
Base classes for the migration runner.

Provides MigrationRegistry for tracking the known migrations and the
MigrationRunner abstract base class that owns ordering, ledger validation and
the per-migration state machine. Backend-specific subclasses only supply the
database primitives: the ledger table, the transaction and the run lock.
"""

import re
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from loguru import logger

from pymigrate.core.exceptions import (
    AlreadyAppliedError,
    ChecksumMismatchError,
    ConfigurationError,
    DuplicateMigrationError,
    ExecutionError,
    MissingMigrationError,
    OutOfOrderError,
)
from pymigrate.migrations.schemas import (
    AppliedMigration,
    Migration,
    MigrationInfo,
    MigrationResult,
    MigrationState,
    RunResult,
)
from pymigrate.migrations.sql import prepare_statements
from pymigrate.observability.logging import migration_logging_context

DEFAULT_LEDGER_TABLE = "schema_migrations"
DEFAULT_LOCK_TIMEOUT = 30.0

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def validate_identifier(name: str) -> str:
    """
    Check that a table name can be interpolated into SQL safely.

    Raises:
        ConfigurationError: If the name is not a plain (optionally schema-qualified) identifier
    """
    if not _IDENTIFIER.match(name or ""):
        raise ConfigurationError(f"Invalid ledger table name: {name!r}")
    return name


class MigrationRegistry:
    """
    Registry for managing and tracking migrations.

    Maintains migrations keyed by version and provides methods to
    get pending migrations based on the versions already in the ledger.
    """

    def __init__(self, migrations: Iterable[Migration] | None = None) -> None:
        self._migrations: dict[int, Migration] = {}
        for migration in migrations or ():
            self.register(migration)

    def register(self, migration: Migration) -> None:
        """
        Register a migration.

        Args:
            migration: Migration to register

        Raises:
            DuplicateMigrationError: If a migration with the same version already exists
        """
        if migration.version in self._migrations:
            raise DuplicateMigrationError(migration.version)
        self._migrations[migration.version] = migration

    def get_all(self) -> list[Migration]:
        """
        Get all registered migrations, ordered by version.

        Returns:
            List of migrations sorted by version ascending
        """
        return [self._migrations[v] for v in sorted(self._migrations.keys())]

    def get_pending(self, applied_versions: Iterable[int]) -> list[Migration]:
        """
        Get migrations that need to be applied.

        Args:
            applied_versions: Versions already recorded in the ledger

        Returns:
            Migrations whose version is not in the ledger, sorted ascending
        """
        applied = set(applied_versions)
        return [
            self._migrations[v]
            for v in sorted(self._migrations.keys())
            if v not in applied
        ]

    def get_latest_version(self) -> int:
        """
        Get the latest migration version.

        Returns:
            Highest registered version, or 0 if no migrations
        """
        return max(self._migrations.keys()) if self._migrations else 0

    def get(self, version: int) -> Migration | None:
        """
        Get a specific migration by version.

        Args:
            version: Migration version number

        Returns:
            Migration if found, None otherwise
        """
        return self._migrations.get(version)

    def __contains__(self, version: object) -> bool:
        return version in self._migrations

    def __len__(self) -> int:
        return len(self._migrations)


class MigrationRunner(ABC):
    """
    Abstract base class for applying migrations to a database.

    Subclasses must implement the backend-specific methods for:
    - Opening and closing the connection
    - Ensuring the ledger table exists
    - Reading the ledger
    - Executing a migration and its ledger row in one transaction

    Backends that support advisory locks also override acquire_lock() and
    release_lock() so concurrent runs are mutually exclusive.

    Example:
        >>> async with SQLiteMigrationRunner("app.db", registry=registry) as runner:
        ...     result = await runner.run_migrations()
        ...     result.raise_for_error()
    """

    def __init__(
        self,
        registry: MigrationRegistry | None = None,
        ledger_table: str = DEFAULT_LEDGER_TABLE,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        ignore_missing: bool = False,
        verify_checksums: bool = True,
    ) -> None:
        """
        Initialize the migration runner.

        Args:
            registry: Migrations known to this runner (defaults to an empty registry)
            ledger_table: Name of the table recording applied migrations
            lock_timeout: Seconds to wait for the run lock
            ignore_missing: Don't fail when the ledger holds versions with no local file
            verify_checksums: Fail when an applied migration's SQL has changed
        """
        self.registry = registry if registry is not None else MigrationRegistry()
        self.ledger_table = validate_identifier(ledger_table)
        self.lock_timeout = lock_timeout
        self.ignore_missing = ignore_missing
        self.verify_checksums = verify_checksums

    # Connection lifecycle

    @abstractmethod
    async def connect(self) -> None:
        """Open the database connection."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the database connection."""
        pass

    async def __aenter__(self) -> "MigrationRunner":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()

    # Backend primitives

    @abstractmethod
    async def ensure_ledger_table(self) -> None:
        """
        Create the ledger table if it doesn't exist.

        The table should have:
        - version: BIGINT PRIMARY KEY
        - description: TEXT NOT NULL
        - checksum: TEXT NOT NULL
        - applied_at: TIMESTAMP NOT NULL
        - execution_time_ms: BIGINT NOT NULL
        """
        pass

    @abstractmethod
    async def get_applied_migrations(self) -> list[AppliedMigration]:
        """
        Read the ledger.

        Returns:
            Applied migrations ordered by version ascending
        """
        pass

    @abstractmethod
    async def execute_migration(
        self, migration: Migration, statements: list[str]
    ) -> AppliedMigration | None:
        """
        Execute a migration and record it in the ledger in one transaction.

        This should:
        1. Open a transaction
        2. Re-check the ledger: return None if the version is already there,
           raise OutOfOrderError if a higher version is there
        3. Execute each statement in order
        4. Insert the ledger row
        5. Commit, or roll back everything on failure

        Args:
            migration: Migration being applied
            statements: Prepared statements (transaction wrapper removed)

        Returns:
            The ledger record, or None if another runner applied it first

        Raises:
            ExecutionError: If any statement fails; the transaction is rolled back
        """
        pass

    async def acquire_lock(self) -> None:
        """
        Acquire the run lock.

        Backends without advisory locks rely on the re-check inside
        execute_migration instead.
        """
        pass

    async def release_lock(self) -> None:
        """Release the run lock."""
        pass

    @property
    def database_label(self) -> str | None:
        """Database named in migration log records, without credentials."""
        return None

    # Ledger queries

    async def get_current_version(self) -> int | None:
        """
        Get the current schema version.

        Returns:
            Highest applied version, or None if nothing has been applied
        """
        applied = await self.get_applied_migrations()
        return applied[-1].version if applied else None

    def validate_ledger(self, applied: list[AppliedMigration]) -> None:
        """
        Compare the ledger against the registered migrations.

        Raises:
            ChecksumMismatchError: If an applied migration was edited afterwards
            MissingMigrationError: If an applied version has no local migration
        """
        for record in applied:
            migration = self.registry.get(record.version)
            if migration is None:
                if not self.ignore_missing:
                    raise MissingMigrationError(record.version)
                continue
            if self.verify_checksums and migration.checksum != record.checksum:
                raise ChecksumMismatchError(record.version, record.checksum, migration.checksum)

    async def info(self) -> list[MigrationInfo]:
        """
        Describe every known migration and its state.

        Includes ledger entries that have no local migration.
        """
        await self.ensure_ledger_table()
        applied = {record.version: record for record in await self.get_applied_migrations()}
        rows: list[MigrationInfo] = []

        for migration in self.registry.get_all():
            record = applied.pop(migration.version, None)
            if record is None:
                rows.append(
                    MigrationInfo(
                        version=migration.version,
                        description=migration.description,
                        state=MigrationState.PENDING,
                    )
                )
            else:
                rows.append(
                    MigrationInfo(
                        version=migration.version,
                        description=migration.description,
                        state=MigrationState.APPLIED,
                        applied_at=record.applied_at,
                        checksum_ok=record.checksum == migration.checksum,
                    )
                )

        for record in applied.values():
            rows.append(
                MigrationInfo(
                    version=record.version,
                    description=record.description,
                    state=MigrationState.APPLIED,
                    applied_at=record.applied_at,
                    missing_locally=True,
                )
            )

        rows.sort(key=lambda row: row.version)
        return rows

    # Applying

    async def apply(self, migration: Migration, strict: bool = False) -> MigrationResult:
        """
        Apply a single migration.

        Already-applied migrations are a successful no-op. A migration is
        refused if an earlier registered migration is still pending or the
        ledger already holds a later version.

        Args:
            migration: Migration to apply
            strict: Raise AlreadyAppliedError instead of returning a no-op result

        Returns:
            MigrationResult in state APPLIED

        Raises:
            ExecutionError: If the SQL failed; nothing was committed
            OutOfOrderError: If applying now would break version order
            ChecksumMismatchError: If it was applied with different SQL
            InvalidMigrationError: If the SQL contains transaction control
        """
        await self.ensure_ledger_table()
        applied = await self.get_applied_migrations()
        applied_by_version = {record.version: record for record in applied}

        record = applied_by_version.get(migration.version)
        if record is not None:
            return self._already_applied(migration, record, strict)

        self._check_order(migration, applied_by_version)
        statements = prepare_statements(migration.sql)

        result = MigrationResult(migration=migration, state=MigrationState.PENDING)

        with migration_logging_context(
            migration.version, migration.description, database=self.database_label
        ):
            _transition(result, MigrationState.APPLYING)
            logger.info(f"Applying migration {migration.migration_id}")
            started = time.perf_counter()

            try:
                record = await self.execute_migration(migration, statements)
            except ExecutionError as e:
                result.error = e
                _transition(result, MigrationState.ROLLED_BACK)
                logger.error(f"Migration {migration.migration_id} rolled back: {e}")
                raise

            _transition(result, MigrationState.APPLIED)
            if record is None:
                logger.info(f"Migration {migration.migration_id} was applied concurrently")
                result.already_applied = True
                return result

            result.applied_at = record.applied_at
            result.execution_time_ms = record.execution_time_ms
            logger.info(
                f"Applied migration {migration.migration_id} "
                f"in {elapsed_ms(started)}ms"
            )
            return result

    def _already_applied(
        self, migration: Migration, record: AppliedMigration, strict: bool
    ) -> MigrationResult:
        if self.verify_checksums and record.checksum != migration.checksum:
            raise ChecksumMismatchError(migration.version, record.checksum, migration.checksum)
        if strict:
            raise AlreadyAppliedError(migration.version)
        logger.debug(f"Migration {migration.migration_id} already applied, skipping")
        return MigrationResult(
            migration=migration,
            state=MigrationState.APPLIED,
            already_applied=True,
            applied_at=record.applied_at,
            execution_time_ms=record.execution_time_ms,
        )

    def _check_order(
        self, migration: Migration, applied_by_version: dict[int, AppliedMigration]
    ) -> None:
        earlier_pending = [
            m.version
            for m in self.registry.get_pending(applied_by_version)
            if m.version < migration.version
        ]
        if earlier_pending:
            raise OutOfOrderError(
                migration.version,
                f"Cannot apply migration {migration.version} before earlier "
                f"pending migration {earlier_pending[0]}",
            )

        latest = max(applied_by_version, default=None)
        if latest is not None and latest > migration.version:
            raise OutOfOrderError(
                migration.version,
                f"Cannot apply migration {migration.version}: "
                f"later migration {latest} is already applied",
            )

    async def run_migrations(self) -> RunResult:
        """
        Run all pending migrations.

        This is the main entry point for the migration runner. It:
        1. Acquires the run lock
        2. Ensures the ledger table exists
        3. Validates the ledger against the registered migrations
        4. Checks that every pending migration's SQL can be prepared
        5. Applies all pending migrations in order, halting on the first failure

        Returns:
            RunResult with success flag and the resulting schema version

        Raises:
            LockTimeoutError: If another run holds the lock
            ChecksumMismatchError, MissingMigrationError, OutOfOrderError:
                If the ledger and the local migrations disagree
            InvalidMigrationError: If a pending migration contains transaction
                control; nothing is applied
        """
        await self.acquire_lock()
        try:
            await self.ensure_ledger_table()
            applied = await self.get_applied_migrations()
            self.validate_ledger(applied)

            applied_versions = [record.version for record in applied]
            pending = self.registry.get_pending(applied_versions)
            for migration in pending:
                prepare_statements(migration.sql)

            logger.info(
                f"Schema version {applied_versions[-1] if applied_versions else 'none'}, "
                f"{len(pending)} pending migrations"
            )

            results: list[MigrationResult] = []
            versions = list(applied_versions)
            for migration in pending:
                try:
                    result = await self.apply(migration)
                except ExecutionError as e:
                    return RunResult(
                        success=False,
                        applied=results,
                        failed=MigrationResult(
                            migration=migration,
                            state=MigrationState.ROLLED_BACK,
                            error=e,
                        ),
                        schema_version=max(versions, default=None),
                        error=e,
                    )
                versions.append(migration.version)
                if not result.already_applied:
                    results.append(result)

            schema_version = max(versions, default=None)
            logger.info(f"Applied {len(results)} migrations, schema version {schema_version}")
            return RunResult(success=True, applied=results, schema_version=schema_version)
        finally:
            await self.release_lock()


_TRANSITIONS = {
    MigrationState.PENDING: {MigrationState.APPLYING},
    MigrationState.APPLYING: {MigrationState.APPLIED, MigrationState.ROLLED_BACK},
    MigrationState.ROLLED_BACK: {MigrationState.PENDING},
    MigrationState.APPLIED: set(),
}


def _transition(result: MigrationResult, state: MigrationState) -> None:
    if state not in _TRANSITIONS[result.state]:
        raise RuntimeError(f"Invalid migration state transition {result.state.value} -> {state.value}")
    logger.debug(f"Migration {result.version}: {result.state.value} -> {state.value}")
    result.state = state


def elapsed_ms(started: float) -> int:
    """Milliseconds since a time.perf_counter() reading."""
    return int((time.perf_counter() - started) * 1000)
