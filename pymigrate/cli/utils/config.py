"""Configuration resolution for CLI commands."""

from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from pymigrate.config import (
    PyMigrateConfig,
    _config_from_yaml,
    _database_from_config,
    load_yaml_config,
)


def load_config(path: Optional[Path] = None) -> PyMigrateConfig:
    """Load pymigrate.config.yaml from the working directory, or defaults."""
    return _config_from_yaml(load_yaml_config(path))


def resolve_config(obj: Dict[str, Any]) -> PyMigrateConfig:
    """
    Build the effective configuration for a command.

    Configuration priority:
    1. CLI flags (--database-url, --migrations-dir, --ledger-table)
    2. Environment variables (handled by Click)
    3. Config file (pymigrate.config.yaml)
    4. Defaults

    Args:
        obj: The click context object populated by the main group

    Returns:
        PyMigrateConfig for the command
    """
    config: PyMigrateConfig = obj.get("config") or PyMigrateConfig()
    overrides: Dict[str, Any] = {}

    if obj.get("database_url"):
        overrides["database"] = _database_from_config(obj["database_url"])
    if obj.get("migrations_dir"):
        overrides["migrations_dir"] = obj["migrations_dir"]
    if obj.get("ledger_table"):
        overrides["ledger_table"] = obj["ledger_table"]

    resolved = replace(config, **overrides)
    if resolved.database is not None:
        logger.debug(f"Using database {resolved.database.redacted()}")
    return resolved
