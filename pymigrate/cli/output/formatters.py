"""Rich console output for the CLI."""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

STATE_COLORS = {
    "applied": "green",
    "applying": "blue",
    "pending": "cyan",
    "rolled_back": "red",
}


def _cell(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return escape(str(value))


def format_table(
    data: List[Dict[str, Any]],
    columns: List[str],
    title: Optional[str] = None,
) -> None:
    """
    Print rows as a table. The "State" column is colored by migration state.

    Example:
        format_table(
            [{"Version": 20230606055423, "State": "applied"}],
            ["Version", "State"],
            title="Migrations",
        )
    """
    table = Table(title=title, header_style="bold magenta", box=box.ROUNDED)
    for col in columns:
        table.add_column(col, style="cyan")

    for row in data:
        table.add_row(
            *(
                format_state(str(row.get(col, ""))) if col == "State" else _cell(row.get(col, ""))
                for col in columns
            )
        )

    console.print(table)


def format_json(data: Any) -> None:
    """Print data as highlighted JSON."""
    console.print(Syntax(json.dumps(data, indent=2, default=str), "json", theme="monokai"))


def format_plain(lines: List[str]) -> None:
    """Print one item per line, for scripts."""
    for line in lines:
        console.print(line, highlight=False)


def format_state(state: str) -> str:
    """
    Colorize a migration state.

    Examples:
        >>> format_state("applied")
        '[green]applied[/green]'
    """
    color = STATE_COLORS.get(state.lower(), "white")
    return f"[{color}]{state}[/{color}]"


def format_key_value(data: Dict[str, Any], title: Optional[str] = None) -> None:
    """Print one migration's fields as "key: value" lines."""
    if title:
        console.print(f"\n[bold magenta]{escape(title)}[/bold magenta]")

    for key, value in data.items():
        text = "[dim]-[/dim]" if value is None else _cell(value)
        if key == "State":
            text = format_state(text)
        console.print(f"  [cyan]{key}:[/cyan] {text}")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {escape(message)}")


def print_error(message: str) -> None:
    err_console.print(f"[red]✗[/red] {escape(message)}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {escape(message)}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {escape(message)}")
