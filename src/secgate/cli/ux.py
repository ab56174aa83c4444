"""
CLI output helpers built on rich.

Environment handling:
- Respects NO_COLOR and FORCE_COLOR environment variables
- Falls back to plain text when stdout is not a terminal (CI, pipes)
"""

from __future__ import annotations

import os

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

SECGATE_THEME = Theme(
    {
        "info": "#88C0D0",
        "success": "#A3BE8C",
        "warning": "#EBCB8B",
        "error": "#BF616A bold",
        "highlight": "#B48EAD",
        "muted": "#D8DEE9",
    }
)

# Gate / check status -> theme style
STATUS_STYLES = {
    "APPROVED": "success",
    "PASS": "success",
    "COMPLIANT": "success",
    "PENDING": "warning",
    "WARN": "warning",
    "WARNING": "warning",
    "BLOCKED": "error",
    "FAIL": "error",
    "NON_COMPLIANT": "error",
    "BYPASSED": "highlight",
    "EXEMPTED": "muted",
    "ACTIVE": "error",
}

console = Console(
    theme=SECGATE_THEME,
    force_terminal=os.environ.get("FORCE_COLOR") is not None,
    no_color=os.environ.get("NO_COLOR") is not None,
)


def styled(status: str) -> str:
    style = STATUS_STYLES.get(status, "info")
    return f"[{style}]{status}[/{style}]"


def success(message: str) -> None:
    console.print(f"[success]✓ {message}[/success]")


def error(message: str) -> None:
    console.print(f"[error]✗ {message}[/error]")


def warning(message: str) -> None:
    console.print(f"[warning]⚠ {message}[/warning]")


def header(title: str) -> None:
    console.print()
    console.print(Panel(f"[bold]{title}[/bold]", border_style="cyan"))


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[str]],
    show_header: bool = True,
) -> None:
    table = Table(title=title, show_header=show_header)
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*row)
    console.print(table)
