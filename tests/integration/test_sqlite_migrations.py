"""
Integration tests for the SQLite migration runner.

Runs real migration files against a SQLite database file. SQLite cannot
``ALTER COLUMN ... SET NOT NULL``, so the status migration is expressed here
as a table rebuild; the PostgreSQL form is covered by
test_postgres_migrations.py.
"""

import asyncio
import shutil
from pathlib import Path

import aiosqlite
import pytest

import pymigrate
from pymigrate.core.exceptions import ExecutionError
from pymigrate.migrations.schemas import MigrationState
from pymigrate.migrations.source import load_registry
from pymigrate.storage.sqlite import SQLiteMigrationRunner, create_database, drop_database

REPO_MIGRATIONS = Path(__file__).resolve().parents[2] / "migrations"

CREATE_SUBSCRIPTIONS = """-- Create subscriptions table
CREATE TABLE subscriptions (
    id INTEGER PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    status TEXT
);
"""

MAKE_STATUS_NOT_NULL = """-- Make status mandatory and backfill
-- Write the entire migration as a transaction
BEGIN;
  -- Backfill
  UPDATE subscriptions
    SET status = 'confirmed'
    WHERE status IS NULL;
  -- Make mandatory
  CREATE TABLE subscriptions_new (
      id INTEGER PRIMARY KEY,
      email TEXT NOT NULL UNIQUE,
      name TEXT NOT NULL,
      status TEXT NOT NULL
  );
  INSERT INTO subscriptions_new (id, email, name, status)
    SELECT id, email, name, status FROM subscriptions;
  DROP TABLE subscriptions;
  ALTER TABLE subscriptions_new RENAME TO subscriptions;
COMMIT;
"""

# Backfills only part of the table, so the rebuild hits the NOT NULL constraint
PARTIAL_BACKFILL = MAKE_STATUS_NOT_NULL.replace(
    "WHERE status IS NULL;", "WHERE status IS NULL AND id > 1;"
)

CREATE_VERSION = 20230528000000
STATUS_VERSION = 20230606055423
STATUS_FILENAME = f"{STATUS_VERSION}_make_status_not_null_in_subscriptions.sql"


def write_migrations(directory: Path, status_sql: str = MAKE_STATUS_NOT_NULL) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / f"{CREATE_VERSION}_create_subscriptions_table.sql").write_text(
        CREATE_SUBSCRIPTIONS
    )
    (directory / STATUS_FILENAME).write_text(status_sql)
    return directory


async def seed_subscriptions(runner: SQLiteMigrationRunner) -> None:
    """Apply the table migration and insert one unconfirmed and one pending row."""
    await runner.apply(runner.registry.get(CREATE_VERSION))
    await runner._db.execute(
        "INSERT INTO subscriptions (id, email, name, status) VALUES "
        "(1, 'ursula@example.com', 'Ursula', NULL), "
        "(2, 'le_guin@example.com', 'Le Guin', 'pending')"
    )


async def fetch_all(runner: SQLiteMigrationRunner, query: str) -> list:
    async with runner._db.execute(query) as cursor:
        return list(await cursor.fetchall())


class TestSQLiteMigrationRunner:
    """Test applying migrations to a SQLite file."""

    @pytest.fixture
    def migrations_dir(self, tmp_path):
        return write_migrations(tmp_path / "migrations")

    @pytest.fixture
    async def runner(self, tmp_path, migrations_dir):
        """Create a connected runner on a fresh database for each test."""
        runner = SQLiteMigrationRunner(
            tmp_path / "test.db", registry=load_registry(migrations_dir)
        )
        await runner.connect()
        yield runner
        await runner.disconnect()

    @pytest.mark.asyncio
    async def test_ledger_table_created(self, runner):
        """Test that the ledger table exists after a run."""
        await runner.run_migrations()

        rows = await fetch_all(
            runner,
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_migrations'",
        )
        assert rows == [("schema_migrations",)]

    @pytest.mark.asyncio
    async def test_backfill_and_not_null(self, runner):
        """Test that NULL statuses are confirmed and other statuses are kept."""
        await seed_subscriptions(runner)

        result = await runner.run_migrations()

        assert result.success is True
        assert result.schema_version == STATUS_VERSION
        assert [r.version for r in result.applied] == [STATUS_VERSION]
        assert await fetch_all(runner, "SELECT id, status FROM subscriptions ORDER BY id") == [
            (1, "confirmed"),
            (2, "pending"),
        ]

        with pytest.raises(aiosqlite.IntegrityError):
            await runner._db.execute(
                "INSERT INTO subscriptions (id, email, name, status) "
                "VALUES (3, 'new@example.com', 'New', NULL)"
            )

    @pytest.mark.asyncio
    async def test_ledger_records_each_migration(self, runner):
        await runner.run_migrations()

        applied = await runner.get_applied_migrations()

        assert [a.version for a in applied] == [CREATE_VERSION, STATUS_VERSION]
        assert applied[1].description == "make_status_not_null_in_subscriptions"
        assert applied[1].checksum == runner.registry.get(STATUS_VERSION).checksum
        assert applied[1].applied_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, runner):
        """Test that running twice applies nothing the second time."""
        await seed_subscriptions(runner)
        await runner.run_migrations()

        second = await runner.run_migrations()

        assert second.success is True
        assert second.applied == []
        assert second.schema_version == STATUS_VERSION
        assert await fetch_all(runner, "SELECT COUNT(*) FROM schema_migrations") == [(2,)]

    @pytest.mark.asyncio
    async def test_apply_applied_migration_is_noop(self, runner):
        await runner.run_migrations()

        result = await runner.apply(runner.registry.get(STATUS_VERSION))

        assert result.already_applied is True
        assert result.state == MigrationState.APPLIED

    @pytest.mark.asyncio
    async def test_current_version(self, runner):
        await runner.ensure_ledger_table()
        assert await runner.get_current_version() is None

        await runner.run_migrations()

        assert await runner.get_current_version() == STATUS_VERSION

    @pytest.mark.asyncio
    async def test_info(self, runner):
        await runner.apply(runner.registry.get(CREATE_VERSION))

        rows = await runner.info()

        assert [(row.version, row.state) for row in rows] == [
            (CREATE_VERSION, MigrationState.APPLIED),
            (STATUS_VERSION, MigrationState.PENDING),
        ]


class TestAtomicity:
    """Test that a failing migration leaves no trace."""

    @pytest.fixture
    async def failing_runner(self, tmp_path):
        migrations_dir = write_migrations(tmp_path / "migrations", PARTIAL_BACKFILL)
        runner = SQLiteMigrationRunner(
            tmp_path / "test.db", registry=load_registry(migrations_dir)
        )
        await runner.connect()
        yield runner
        await runner.disconnect()

    @pytest.mark.asyncio
    async def test_constraint_failure_rolls_back_backfill(self, failing_runner):
        """Test that the backfill is undone when the NOT NULL step fails."""
        runner = failing_runner
        await seed_subscriptions(runner)
        await runner._db.execute(
            "INSERT INTO subscriptions (id, email, name, status) "
            "VALUES (3, 'third@example.com', 'Third', NULL)"
        )

        result = await runner.run_migrations()

        assert result.success is False
        assert result.failed.version == STATUS_VERSION
        assert result.failed.state == MigrationState.ROLLED_BACK
        assert isinstance(result.error, ExecutionError)
        assert isinstance(result.error.__cause__, aiosqlite.IntegrityError)
        assert result.schema_version == CREATE_VERSION

        # Row 3 would have been backfilled; the rollback must restore it
        assert await fetch_all(runner, "SELECT id, status FROM subscriptions ORDER BY id") == [
            (1, None),
            (2, "pending"),
            (3, None),
        ]
        assert await fetch_all(runner, "SELECT version FROM schema_migrations") == [
            (CREATE_VERSION,)
        ]
        assert await fetch_all(
            runner, "SELECT name FROM sqlite_master WHERE name = 'subscriptions_new'"
        ) == []

    @pytest.mark.asyncio
    async def test_fixed_migration_applies_on_next_run(self, tmp_path, failing_runner):
        """Test that a rolled back migration is pending again once fixed."""
        runner = failing_runner
        await seed_subscriptions(runner)
        await runner.run_migrations()

        fixed = write_migrations(tmp_path / "fixed")
        runner.registry = load_registry(fixed)
        result = await runner.run_migrations()

        assert result.success is True
        assert [r.version for r in result.applied] == [STATUS_VERSION]

    @pytest.mark.asyncio
    async def test_run_halts_at_failure(self, tmp_path):
        """Test that migrations after the failing one are not attempted."""
        migrations_dir = write_migrations(tmp_path / "migrations")
        (migrations_dir / "20230606055424_broken.sql").write_text(
            "INSERT INTO no_such_table VALUES (1);"
        )
        (migrations_dir / "20230606055425_add_index.sql").write_text(
            "CREATE INDEX subscriptions_status ON subscriptions (status);"
        )

        async with SQLiteMigrationRunner(
            tmp_path / "test.db", registry=load_registry(migrations_dir)
        ) as runner:
            result = await runner.run_migrations()
            indexes = await fetch_all(
                runner, "SELECT name FROM sqlite_master WHERE name = 'subscriptions_status'"
            )

        assert result.success is False
        assert result.failed.version == 20230606055424
        assert "no such table" in str(result.error)
        assert result.schema_version == STATUS_VERSION
        assert indexes == []

    @pytest.mark.asyncio
    async def test_postgres_syntax_fails_cleanly(self, tmp_path):
        """Test that the shipped migration is rejected by SQLite without a partial backfill."""
        migrations_dir = write_migrations(tmp_path / "migrations")
        shutil.copy(REPO_MIGRATIONS / STATUS_FILENAME, migrations_dir / STATUS_FILENAME)

        async with SQLiteMigrationRunner(
            tmp_path / "test.db", registry=load_registry(migrations_dir)
        ) as runner:
            await seed_subscriptions(runner)
            result = await runner.run_migrations()
            statuses = await fetch_all(runner, "SELECT status FROM subscriptions ORDER BY id")

        assert result.success is False
        assert result.failed.version == STATUS_VERSION
        assert statuses == [(None,), ("pending",)]


class TestConcurrentRuns:
    """Test two runners on the same file."""

    @pytest.mark.asyncio
    async def test_each_migration_applied_once(self, tmp_path):
        migrations_dir = write_migrations(tmp_path / "migrations")
        db_path = tmp_path / "test.db"

        async def run():
            async with SQLiteMigrationRunner(
                db_path, registry=load_registry(migrations_dir), lock_timeout=10
            ) as runner:
                return await runner.run_migrations()

        first, second = await asyncio.gather(run(), run())

        assert first.success and second.success
        applied = [r.version for r in first.applied + second.applied]
        assert sorted(applied) == [CREATE_VERSION, STATUS_VERSION]
        assert first.schema_version == second.schema_version == STATUS_VERSION


class TestMigrateEntryPoint:
    """Test the pymigrate.migrate() helper against SQLite."""

    @pytest.mark.asyncio
    async def test_migrate_with_url(self, tmp_path):
        migrations_dir = write_migrations(tmp_path / "migrations")
        db_path = tmp_path / "app.db"

        result = await pymigrate.migrate(
            database_url=f"sqlite:///{db_path}", migrations_dir=str(migrations_dir)
        )

        assert result.success is True
        assert result.schema_version == STATUS_VERSION

        rows = await pymigrate.get_migration_info(
            database_url=f"sqlite:///{db_path}", migrations_dir=str(migrations_dir)
        )
        assert all(row.state == MigrationState.APPLIED for row in rows)

    @pytest.mark.asyncio
    async def test_migrate_with_configure(self, tmp_path):
        migrations_dir = write_migrations(tmp_path / "migrations")
        pymigrate.configure(
            database=f"sqlite:///{tmp_path / 'app.db'}",
            migrations_dir=str(migrations_dir),
            ledger_table="ledger",
        )

        result = await pymigrate.migrate()

        assert result.success is True
        async with aiosqlite.connect(tmp_path / "app.db") as db:
            async with db.execute("SELECT COUNT(*) FROM ledger") as cursor:
                assert await cursor.fetchone() == (2,)

    @pytest.mark.asyncio
    async def test_apply_migration_by_version(self, tmp_path):
        migrations_dir = write_migrations(tmp_path / "migrations")
        url = f"sqlite:///{tmp_path / 'app.db'}"

        result = await pymigrate.apply_migration(
            CREATE_VERSION, database_url=url, migrations_dir=str(migrations_dir)
        )

        assert result.state == MigrationState.APPLIED
        rows = await pymigrate.get_migration_info(database_url=url, migrations_dir=str(migrations_dir))
        assert [row.state for row in rows] == [MigrationState.APPLIED, MigrationState.PENDING]

    @pytest.mark.asyncio
    async def test_apply_unknown_version(self, tmp_path):
        migrations_dir = write_migrations(tmp_path / "migrations")

        with pytest.raises(pymigrate.MigrationNotFoundError):
            await pymigrate.apply_migration(
                1, database_url=f"sqlite:///{tmp_path / 'app.db'}", migrations_dir=str(migrations_dir)
            )


class TestDatabaseFiles:
    """Test creating and dropping SQLite database files."""

    @pytest.mark.asyncio
    async def test_create_and_drop(self, tmp_path):
        db_path = tmp_path / "nested" / "app.db"

        assert await create_database(db_path) is True
        assert db_path.exists()
        assert await create_database(db_path) is False

        assert await drop_database(db_path) is True
        assert not db_path.exists()
        assert await drop_database(db_path) is False

    @pytest.mark.asyncio
    async def test_memory_database(self):
        assert await create_database(":memory:") is False
        assert await drop_database(":memory:") is False
