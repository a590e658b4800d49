"""
Observability for PyMigrate.

Logging:
    - configure_logging(): Configure loguru-based logging
    - configure_logging_from_env(): Configure from environment variables
    - migration_logging_context(): Context manager for migration logging
"""

from pymigrate.observability.logging import (
    configure_logging,
    configure_logging_from_env,
    migration_logging_context,
)

__all__ = [
    "configure_logging",
    "configure_logging_from_env",
    "migration_logging_context",
]
