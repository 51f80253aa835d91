"""Rich-based console output."""

from typing import Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

# Global console instance
console = Console()

# Headless mode flag
_headless = False


def set_headless(headless: bool):
    """Set headless mode (disables rich output)."""
    global _headless
    _headless = headless


def is_headless() -> bool:
    """Check if running in headless mode."""
    return _headless


def print_header(title: str, subtitle: Optional[str] = None):
    """Print a styled header."""
    if _headless:
        console.print(f"\n=== {title} ===")
        if subtitle:
            console.print(f"    {subtitle}")
        return

    content = f"[bold magenta]{title}[/bold magenta]"
    if subtitle:
        content += f"\n[dim]{subtitle}[/dim]"

    console.print(Panel(content, box=box.ROUNDED, padding=(0, 2)))


def print_key_values(title: str, values: dict):
    """Print a two-column key/value table."""
    table = Table(title=title, box=box.ROUNDED if not _headless else None)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    for key, value in values.items():
        table.add_row(key, str(value))

    console.print(table)


def print_success(message: str):
    """Print a success message."""
    console.print(f"[bold green]✓[/bold green] {escape(message)}", highlight=False)


def print_error(message: str):
    """Print an error message."""
    console.print(f"[bold red]✗[/bold red] {escape(message)}", highlight=False)


def print_warning(message: str):
    """Print a warning message."""
    console.print(f"[bold yellow]⚠[/bold yellow] {escape(message)}", highlight=False)


def print_info(message: str):
    """Print an info message."""
    console.print(f"[bold blue]ℹ[/bold blue] {escape(message)}", highlight=False)


def print_step(message: str):
    """Print an indented progress line."""
    console.print(f"  [cyan]→[/cyan] {escape(message)}", highlight=False)
