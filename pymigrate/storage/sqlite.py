"""
SQLite migration runner.

Uses aiosqlite with an autocommit connection and explicit transaction
control. Each migration runs inside ``BEGIN IMMEDIATE``, which takes the
database write lock up front; together with the ledger re-check inside the
transaction this serialises concurrent runners on the same file.

SQLite supports transactional DDL, so a failing statement rolls back every
earlier statement of the same migration, schema changes included.
"""

import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
from loguru import logger

from pymigrate.core.exceptions import ExecutionError, OutOfOrderError
from pymigrate.migrations.base import MigrationRegistry, MigrationRunner, elapsed_ms
from pymigrate.migrations.schemas import AppliedMigration, Migration

MEMORY_DATABASE = ":memory:"


class SQLiteMigrationRunner(MigrationRunner):
    """
    Migration runner for SQLite databases.

    Example:
        >>> registry = load_registry("./migrations")
        >>> async with SQLiteMigrationRunner("app.db", registry=registry) as runner:
        ...     result = await runner.run_migrations()
    """

    def __init__(
        self,
        db_path: str | Path,
        registry: MigrationRegistry | None = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize the SQLite runner.

        Args:
            db_path: Path to the database file, or ":memory:"
            registry: Migrations to apply
            **kwargs: Runner options (ledger_table, lock_timeout, ignore_missing,
                verify_checksums)
        """
        super().__init__(registry, **kwargs)
        self.db_path = str(db_path)
        self._db: aiosqlite.Connection | None = None

    @property
    def database_label(self) -> str:
        return self.db_path

    async def connect(self) -> None:
        """Open the database, creating the file if needed."""
        if self._db is not None:
            return

        if self.db_path != MEMORY_DATABASE:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(
            self.db_path,
            timeout=self.lock_timeout,
            isolation_level=None,
        )
        logger.debug(f"Connected to SQLite database {self.db_path}")

    async def disconnect(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._db

    async def ensure_ledger_table(self) -> None:
        db = self._ensure_connected()
        await db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.ledger_table} (
                version INTEGER PRIMARY KEY,
                description TEXT NOT NULL,
                checksum TEXT NOT NULL,
                applied_at TEXT NOT NULL,
                execution_time_ms INTEGER NOT NULL
            )
            """
        )

    async def get_applied_migrations(self) -> list[AppliedMigration]:
        db = self._ensure_connected()
        async with db.execute(
            f"SELECT version, description, checksum, applied_at, execution_time_ms "
            f"FROM {self.ledger_table} ORDER BY version"
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_applied_migration(row) for row in rows]

    async def execute_migration(
        self, migration: Migration, statements: list[str]
    ) -> AppliedMigration | None:
        db = self._ensure_connected()

        try:
            await db.execute("BEGIN IMMEDIATE")

            async with db.execute(
                f"SELECT 1 FROM {self.ledger_table} WHERE version = ?",
                (migration.version,),
            ) as cursor:
                already_applied = await cursor.fetchone() is not None
            if already_applied:
                await db.execute("ROLLBACK")
                return None

            async with db.execute(f"SELECT MAX(version) FROM {self.ledger_table}") as cursor:
                row = await cursor.fetchone()
            latest = row[0] if row else None
            if latest is not None and latest > migration.version:
                raise OutOfOrderError(
                    migration.version,
                    f"Cannot apply migration {migration.version}: "
                    f"later migration {latest} is already applied",
                )

            started = time.perf_counter()
            for statement in statements:
                await db.execute(statement)

            record = AppliedMigration(
                version=migration.version,
                description=migration.description,
                checksum=migration.checksum,
                applied_at=datetime.now(UTC),
                execution_time_ms=elapsed_ms(started),
            )
            await db.execute(
                f"INSERT INTO {self.ledger_table} "
                f"(version, description, checksum, applied_at, execution_time_ms) "
                f"VALUES (?, ?, ?, ?, ?)",
                (
                    record.version,
                    record.description,
                    record.checksum,
                    record.applied_at.isoformat(),
                    record.execution_time_ms,
                ),
            )
            await db.execute("COMMIT")
            return record

        except aiosqlite.Error as e:
            await self._rollback()
            raise ExecutionError(
                f"Migration {migration.migration_id} failed: {e}", migration=migration
            ) from e
        except BaseException:
            await self._rollback()
            raise

    async def _rollback(self) -> None:
        db = self._ensure_connected()
        if not db.in_transaction:
            return
        try:
            await db.execute("ROLLBACK")
        except aiosqlite.Error as e:
            logger.warning(f"Rollback failed on {self.db_path}: {e}")

    @staticmethod
    def _row_to_applied_migration(row: Any) -> AppliedMigration:
        """Convert a ledger row to AppliedMigration."""
        return AppliedMigration(
            version=row[0],
            description=row[1],
            checksum=row[2],
            applied_at=datetime.fromisoformat(row[3]),
            execution_time_ms=row[4],
        )


async def create_database(db_path: str | Path) -> bool:
    """
    Create an empty SQLite database file.

    Returns:
        True if the file was created, False if it already existed
    """
    path = Path(db_path)
    if str(db_path) == MEMORY_DATABASE or path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(path) as db:
        await db.execute("PRAGMA user_version")
    logger.info(f"Created SQLite database {path}")
    return True


async def drop_database(db_path: str | Path) -> bool:
    """
    Delete a SQLite database file.

    Returns:
        True if the file was deleted, False if it did not exist
    """
    path = Path(db_path)
    if str(db_path) == MEMORY_DATABASE or not path.exists():
        return False
    path.unlink()
    logger.info(f"Dropped SQLite database {path}")
    return True
