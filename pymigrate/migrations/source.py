"""
Loading migrations from a directory of SQL files.

Files are named ``<UTC-timestamp>_<description>.sql``; the numeric prefix is
the version and determines the order in which migrations are applied.
"""

import re
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from pymigrate.core.exceptions import ConfigurationError, InvalidMigrationError
from pymigrate.migrations.base import MigrationRegistry
from pymigrate.migrations.schemas import Migration

MIGRATION_FILENAME = re.compile(r"^(\d+)_(.+)\.sql$")
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

MIGRATION_TEMPLATE = """-- {title}
BEGIN;
  -- Add migration statements here
COMMIT;
"""


def parse_migration_filename(filename: str) -> tuple[int, str] | None:
    """
    Parse a migration filename into (version, description).

    Args:
        filename: File name, e.g. "20230606055423_make_status_not_null_in_subscriptions.sql"

    Returns:
        Tuple of version and description, or None if the name does not match

    Examples:
        >>> parse_migration_filename("20230606055423_add_status.sql")
        (20230606055423, 'add_status')
        >>> parse_migration_filename("README.md") is None
        True
    """
    match = MIGRATION_FILENAME.match(filename)
    if not match:
        return None
    return int(match.group(1)), match.group(2)


def load_migration(path: Path) -> Migration:
    """
    Load a single migration file.

    Raises:
        InvalidMigrationError: If the filename does not follow the convention
    """
    parsed = parse_migration_filename(path.name)
    if parsed is None:
        raise InvalidMigrationError(
            f"Invalid migration filename '{path.name}': expected <version>_<description>.sql"
        )
    version, description = parsed
    return Migration(
        version=version,
        description=description,
        sql=path.read_text(encoding="utf-8"),
        path=path,
    )


def discover_migrations(directory: str | Path) -> list[Migration]:
    """
    Discover all migration files in a directory.

    Files that do not match the naming convention are skipped.

    Args:
        directory: Directory containing migration SQL files

    Returns:
        List of migrations sorted by version

    Raises:
        ConfigurationError: If the directory does not exist
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ConfigurationError(f"Migrations directory not found: {directory}")

    migrations = []
    for sql_file in directory.glob("*.sql"):
        if parse_migration_filename(sql_file.name) is None:
            logger.debug(f"Skipping non-migration file: {sql_file.name}")
            continue
        migrations.append(load_migration(sql_file))

    migrations.sort(key=lambda m: m.version)
    logger.debug(f"Discovered {len(migrations)} migrations in {directory}")
    return migrations


def load_registry(directory: str | Path) -> MigrationRegistry:
    """
    Build a registry from a migrations directory.

    Raises:
        DuplicateMigrationError: If two files share a version
    """
    registry = MigrationRegistry()
    for migration in discover_migrations(directory):
        registry.register(migration)
    return registry


def slugify(description: str) -> str:
    """Turn a free-form description into a filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "_", description.lower()).strip("_")
    if not slug:
        raise InvalidMigrationError(f"Description '{description}' produces an empty name")
    return slug


def create_migration_file(
    directory: str | Path,
    description: str,
    now: datetime | None = None,
) -> Path:
    """
    Scaffold a new, empty migration file.

    Args:
        directory: Migrations directory (created if missing)
        description: Free-form description, slugified into the filename
        now: Timestamp to use for the version (defaults to current UTC time)

    Returns:
        Path of the created file

    Raises:
        InvalidMigrationError: If a migration with the same version exists
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    version = (now or datetime.now(UTC)).strftime(TIMESTAMP_FORMAT)
    slug = slugify(description)

    existing = next(directory.glob(f"{version}_*.sql"), None)
    if existing is not None:
        raise InvalidMigrationError(
            f"A migration with version {version} already exists: {existing.name}"
        )

    path = directory / f"{version}_{slug}.sql"
    path.write_text(MIGRATION_TEMPLATE.format(title=description.strip()), encoding="utf-8")
    logger.info(f"Created migration {path}")
    return path
