"""Entry points that resolve configuration and drive a migration runner."""

from pymigrate.engine.executor import apply_migration, get_migration_info, migrate

__all__ = [
    "migrate",
    "apply_migration",
    "get_migration_info",
]
