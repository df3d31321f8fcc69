"""Rich console singleton and output helpers."""

import json as json_mod
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Status/progress to stderr so it doesn't pollute piped JSON output
console = Console(stderr=True)

# Data output to stdout (pipeable to jq)
stdout_console = Console()

STATUS_STYLES = {"completed": "green", "failed": "red", "skipped": "yellow"}


def print_ok(msg: str) -> None:
    console.print(f"[green]✓[/green] {msg}")


def print_err(msg: str) -> None:
    console.print(f"[red]✗[/red] {msg}")


def print_warn(msg: str) -> None:
    console.print(f"[yellow]![/yellow] {msg}")


def styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def output_result(data: dict, *, ctx: typer.Context, title: str = "") -> None:
    """Print result as JSON (stdout) or a Rich panel (stderr)."""
    if ctx.obj.get("json"):
        stdout_console.print_json(data=data)
    else:
        formatted = json_mod.dumps(data, indent=2, ensure_ascii=False, default=str)
        if title:
            console.print(Panel(formatted, title=title, border_style="blue"))
        else:
            console.print(formatted)


def output_table(
    rows: List[dict], *, ctx: typer.Context, title: str = "", columns: Optional[List[str]] = None
) -> None:
    """Print rows as a JSON array or a Rich table."""
    if ctx.obj.get("json"):
        stdout_console.print_json(data=rows)
        return

    if not rows:
        console.print("[dim]No data[/dim]")
        return

    cols = columns or list(rows[0].keys())
    table = Table(title=title, show_lines=False)
    for col in cols:
        table.add_column(col)
    for row in rows:
        cells = []
        for col in cols:
            value = row.get(col, "")
            cells.append(styled_status(value) if col == "status" else str("" if value is None else value))
        table.add_row(*cells)
    console.print(table)
