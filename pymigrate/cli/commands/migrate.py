"""Migration commands (run, info, add, apply)."""

import click
from typing import Any, Dict, List

import pymigrate
from pymigrate.cli.utils.async_helpers import async_command
from pymigrate.cli.utils.config import resolve_config
from pymigrate.cli.output.formatters import (
    format_json,
    format_key_value,
    format_plain,
    format_table,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from pymigrate.core.exceptions import MigrationError
from pymigrate.migrations.schemas import MigrationResult
from pymigrate.migrations.source import create_migration_file, parse_migration_filename


@click.group(name="migrate")
def migrate() -> None:
    """Apply and inspect migrations (run, info, add, apply)."""
    pass


def _result_rows(results: List[MigrationResult]) -> List[Dict[str, Any]]:
    return [
        {
            "Version": r.version,
            "Description": r.migration.description,
            "State": r.state.value,
            "Time": f"{r.execution_time_ms}ms",
        }
        for r in results
    ]


@migrate.command(name="run")
@click.pass_context
@async_command
async def run_migrations(ctx: click.Context) -> None:
    """
    Apply all pending migrations in version order.

    The run stops at the first failing migration; that migration is rolled
    back and the command exits with status 1.

    Examples:

        pymigrate migrate run

        pymigrate --output json migrate run
    """
    output = ctx.obj["output"]
    try:
        config = resolve_config(ctx.obj)
        result = await pymigrate.migrate(config=config)
    except MigrationError as e:
        print_error(f"Migration run failed: {e}")
        if ctx.obj["verbose"]:
            raise
        raise click.Abort()

    if output == "json":
        format_json(result.to_dict())

    elif output == "plain":
        format_plain([str(r.version) for r in result.applied])

    else:  # table
        if result.applied:
            format_table(
                _result_rows(result.applied),
                ["Version", "Description", "State", "Time"],
                title="Applied Migrations",
            )
        elif result.success:
            print_info("Database is up to date")

    if not result.success:
        print_error(
            f"Migration {result.failed.migration.migration_id} was rolled back: {result.error}"
        )
        if ctx.obj["verbose"]:
            result.raise_for_error()
        raise click.Abort()

    if output == "table":
        print_success(f"Schema version: {result.schema_version or 'none'}")


@migrate.command(name="info")
@click.pass_context
@async_command
async def migration_info(ctx: click.Context) -> None:
    """
    Show every migration with its applied or pending state.

    Examples:

        pymigrate migrate info

        pymigrate --output plain migrate info
    """
    output = ctx.obj["output"]
    try:
        config = resolve_config(ctx.obj)
        rows = await pymigrate.get_migration_info(config=config)
    except MigrationError as e:
        print_error(f"Failed to read migration state: {e}")
        if ctx.obj["verbose"]:
            raise
        raise click.Abort()

    if not rows:
        if output == "json":
            format_json([])
        else:
            print_info(f"No migrations found in {config.migrations_dir}")
        return

    if output == "json":
        format_json([row.to_dict() for row in rows])

    elif output == "plain":
        format_plain([f"{row.version} {row.state.value}" for row in rows])

    else:  # table
        data = []
        for row in rows:
            notes = []
            if row.missing_locally:
                notes.append("missing locally")
            if not row.checksum_ok:
                notes.append("modified since applied")
            data.append(
                {
                    "Version": row.version,
                    "Description": row.description,
                    "State": row.state.value,
                    "Applied At": row.applied_at or "-",
                    "Notes": ", ".join(notes) or "-",
                }
            )
        format_table(
            data,
            ["Version", "Description", "State", "Applied At", "Notes"],
            title="Migrations",
        )

        if any(not row.checksum_ok for row in rows):
            print_warning("Some applied migrations were modified after they were applied")


@migrate.command(name="add")
@click.argument("description", nargs=-1, required=True)
@click.pass_context
def add_migration(ctx: click.Context, description: tuple) -> None:
    """
    Create a new, empty migration file.

    The version is the current UTC time (YYYYMMDDHHMMSS).

    Args:
        DESCRIPTION: What the migration does

    Examples:

        pymigrate migrate add make status not null in subscriptions
    """
    output = ctx.obj["output"]
    try:
        config = resolve_config(ctx.obj)
        path = create_migration_file(config.migrations_dir, " ".join(description))
    except MigrationError as e:
        print_error(f"Failed to create migration: {e}")
        if ctx.obj["verbose"]:
            raise
        raise click.Abort()

    version, slug = parse_migration_filename(path.name)

    if output == "json":
        format_json({"version": version, "description": slug, "path": str(path)})
    elif output == "plain":
        format_plain([str(path)])
    else:
        print_success(f"Created migration {path}")


@migrate.command(name="apply")
@click.argument("version", type=int)
@click.option(
    "--strict",
    is_flag=True,
    help="Fail if the migration has already been applied",
)
@click.pass_context
@async_command
async def apply_migration(ctx: click.Context, version: int, strict: bool) -> None:
    """
    Apply a single migration by version.

    Earlier pending migrations must be applied first.

    Args:
        VERSION: Migration version, e.g. 20230606055423

    Examples:

        pymigrate migrate apply 20230606055423
    """
    output = ctx.obj["output"]
    try:
        config = resolve_config(ctx.obj)
        result = await pymigrate.apply_migration(version, config=config, strict=strict)
    except MigrationError as e:
        print_error(f"Failed to apply migration {version}: {e}")
        if ctx.obj["verbose"]:
            raise
        raise click.Abort()

    if output == "json":
        format_json(result.to_dict())
    elif output == "plain":
        format_plain([f"{result.version} {result.state.value}"])
    else:
        if result.already_applied:
            print_info(f"Migration {result.migration.migration_id} is already applied")
        else:
            format_key_value(
                {
                    "Version": result.version,
                    "Description": result.migration.description,
                    "State": result.state.value,
                    "Applied At": result.applied_at,
                    "Time": f"{result.execution_time_ms}ms",
                },
                title=f"Migration {result.version}",
            )
