"""
Runner construction from configuration.

Maps DatabaseSettings (parsed from a URL, a YAML file or configure()) to the
matching backend runner, and dispatches database creation to the backend.
"""

from typing import Any

from pymigrate.config import DatabaseSettings, PyMigrateConfig, get_config
from pymigrate.core.exceptions import ConfigurationError
from pymigrate.migrations.base import MigrationRegistry, MigrationRunner


def create_runner(
    settings: DatabaseSettings,
    registry: MigrationRegistry | None = None,
    **options: Any,
) -> MigrationRunner:
    """
    Create a migration runner for the given database.

    Args:
        settings: Target database settings
        registry: Migrations to apply
        **options: Runner options (ledger_table, lock_timeout, ignore_missing,
            verify_checksums)

    Returns:
        SQLiteMigrationRunner or PostgresMigrationRunner

    Raises:
        ConfigurationError: If the backend is unknown

    Example:
        >>> settings = DatabaseSettings.from_url("sqlite:///app.db")
        >>> runner = create_runner(settings, registry=load_registry("./migrations"))
    """
    if settings.backend == "sqlite":
        from pymigrate.storage.sqlite import MEMORY_DATABASE, SQLiteMigrationRunner

        return SQLiteMigrationRunner(
            db_path=settings.path or MEMORY_DATABASE,
            registry=registry,
            **options,
        )

    elif settings.backend == "postgres":
        from pymigrate.storage.postgres import PostgresMigrationRunner

        return PostgresMigrationRunner(
            host=settings.host,
            port=settings.port,
            user=settings.username,
            password=settings.password,
            database=settings.database_name,
            registry=registry,
            **options,
        )

    raise ConfigurationError(f"Unknown database backend: {settings.backend}")


def config_to_runner(
    config: PyMigrateConfig | None = None,
    registry: MigrationRegistry | None = None,
) -> MigrationRunner:
    """
    Create a runner from a PyMigrateConfig.

    Args:
        config: Configuration to use (defaults to the global configuration)
        registry: Migrations to apply (defaults to the files in config.migrations_dir)

    Raises:
        ConfigurationError: If no database is configured
    """
    config = config or get_config()
    if config.database is None:
        raise ConfigurationError(
            "No database configured. Pass a database URL, set PYMIGRATE_DATABASE_URL "
            "or add a 'database' section to pymigrate.config.yaml"
        )

    if registry is None:
        from pymigrate.migrations.source import load_registry

        registry = load_registry(config.migrations_dir)

    return create_runner(
        config.database,
        registry=registry,
        ledger_table=config.ledger_table,
        lock_timeout=config.lock_timeout,
        ignore_missing=config.ignore_missing,
        verify_checksums=config.verify_checksums,
    )


async def create_database(settings: DatabaseSettings) -> bool:
    """
    Create the target database if it does not exist.

    Returns:
        True if it was created, False if it already existed
    """
    if settings.backend == "sqlite":
        from pymigrate.storage import sqlite

        return await sqlite.create_database(settings.path or sqlite.MEMORY_DATABASE)

    elif settings.backend == "postgres":
        from pymigrate.storage import postgres

        return await postgres.create_database(settings)

    raise ConfigurationError(f"Unknown database backend: {settings.backend}")


async def drop_database(settings: DatabaseSettings) -> bool:
    """
    Drop the target database if it exists.

    Returns:
        True if it was dropped, False if it did not exist
    """
    if settings.backend == "sqlite":
        from pymigrate.storage import sqlite

        return await sqlite.drop_database(settings.path or sqlite.MEMORY_DATABASE)

    elif settings.backend == "postgres":
        from pymigrate.storage import postgres

        return await postgres.drop_database(settings)

    raise ConfigurationError(f"Unknown database backend: {settings.backend}")
