"""
Loguru logging configuration for PyMigrate.

Provides structured logging with migration-aware formatting. Every record
emitted while a migration is being applied carries its version and
description, so a failed run can be traced back to the exact file.

Features:
- Environment variable configuration for deployments and CI
- Standard JSON schema compatible with ELK/Loki/Datadog
- Context manager for migration-scoped logging
"""

import json
import os
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Generator

from loguru import logger

CONTEXT_KEYS = ("version", "description", "database")


def configure_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_logs: bool = False,
    show_context: bool = True,
) -> None:
    """
    Configure PyMigrate logging with loguru.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        json_logs: If True, output logs in JSON format (useful in CI and production)
        show_context: If True, include migration context in log messages

    Examples:
        # Basic configuration (console output only)
        configure_logging()

        # Debug mode with file output
        configure_logging(level="DEBUG", log_file="migrations.log")

        # JSON logs for a deployment pipeline
        configure_logging(level="INFO", json_logs=True)
    """
    logger.remove()

    if json_logs:
        logger.add(
            sys.stderr,
            format="{message}",
            level=level,
            colorize=False,
            serialize=False,
            filter=_create_json_filter(show_context),
        )
    else:
        console_format = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        )

        def format_with_context(record: dict[str, Any]) -> bool:
            """Add context fields to the format string dynamically."""
            extra_str = ""
            if show_context and record["extra"]:
                context_parts = [
                    f"{key}={record['extra'][key]}"
                    for key in CONTEXT_KEYS
                    if key in record["extra"]
                ]
                if context_parts:
                    extra_str = " | " + " ".join(context_parts)
            record["extra"]["_context"] = extra_str
            return True

        logger.add(
            sys.stderr,
            format=console_format + "{extra[_context]}",
            level=level,
            colorize=True,
            filter=format_with_context,  # type: ignore[arg-type]
        )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        if json_logs:
            logger.add(
                log_file,
                format="{message}",
                level=level,
                rotation="100 MB",
                retention="30 days",
                compression="gz",
                serialize=False,
                filter=_create_json_filter(show_context),
            )
        else:
            logger.add(
                log_file,
                format=(
                    "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                    "{level: <8} | "
                    "{name}:{function}:{line} | "
                    "{message} | "
                    "{extra}"
                ),
                level=level,
                rotation="100 MB",
                retention="30 days",
                compression="gz",
            )

    logger.debug(f"PyMigrate logging configured at level {level}")


def _create_json_filter(show_context: bool) -> Any:
    """Create a filter function that formats logs as JSON."""

    def json_filter(record: dict[str, Any]) -> bool:
        record["message"] = _format_for_json(record, show_context)
        return True

    return json_filter


def _format_for_json(record: dict[str, Any], show_context: bool = True) -> str:
    """Format log record as JSON compatible with log aggregators.

    Args:
        record: Loguru log record.
        show_context: Whether to include context fields.

    Returns:
        JSON string representation of the log.
    """
    context = {}
    extra = {}

    for key, value in record["extra"].items():
        if key.startswith("_"):
            continue
        if key in CONTEXT_KEYS:
            context[key] = value
        else:
            extra[key] = _safe_serialize(value)

    log_obj: dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
        "function": record["function"],
        "line": record["line"],
    }

    if show_context and context:
        log_obj["context"] = context

    if extra:
        log_obj["extra"] = extra

    if record["exception"] is not None:
        log_obj["exception"] = {
            "type": record["exception"].type.__name__ if record["exception"].type else None,
            "value": str(record["exception"].value) if record["exception"].value else None,
            "traceback": record["exception"].traceback is not None,
        }

    return json.dumps(log_obj, default=str)


def _safe_serialize(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool, type(None))):
        return value
    if isinstance(value, (list, tuple)):
        return [_safe_serialize(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _safe_serialize(v) for k, v in value.items()}
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def configure_logging_from_env() -> None:
    """Configure logging from environment variables.

    Environment variables:
        PYMIGRATE_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        PYMIGRATE_LOG_FORMAT: Log format ("json" or "console")
        PYMIGRATE_LOG_FILE: Optional file path for log output
        PYMIGRATE_LOG_CONTEXT: Whether to show context ("true" or "false")
    """
    level = os.getenv("PYMIGRATE_LOG_LEVEL", "INFO").upper()
    format_type = os.getenv("PYMIGRATE_LOG_FORMAT", "console").lower()
    log_file = os.getenv("PYMIGRATE_LOG_FILE")
    show_context = os.getenv("PYMIGRATE_LOG_CONTEXT", "true").lower() in ("true", "1", "yes")

    configure_logging(
        level=level,
        log_file=log_file,
        json_logs=(format_type == "json"),
        show_context=show_context,
    )


@contextmanager
def migration_logging_context(
    version: int, description: str, database: str | None = None
) -> Generator[None, None, None]:
    """Context manager to bind migration context to all logs within scope.

    Args:
        version: Migration version being applied.
        description: Migration description.
        database: Database label for the records, without credentials.

    Example:
        with migration_logging_context(20230606055423, "make_status_not_null"):
            logger.info("Applying")  # Includes version and description
    """
    context: dict[str, Any] = {"version": version, "description": description}
    if database:
        context["database"] = database
    with logger.contextualize(**context):
        yield


# Default configuration on import
# Users can override by calling configure_logging() or configure_logging_from_env()
if os.getenv("PYMIGRATE_LOG_LEVEL") or os.getenv("PYMIGRATE_LOG_FORMAT"):
    configure_logging_from_env()
