"""Thin wrapper around rich.Console with project theme and helper functions.

Everything here goes to stderr; stdout is reserved for the status line.
"""

from __future__ import annotations

from rich.console import Console
from rich.theme import Theme

_THEME = Theme(
    {
        "success": "bold green",
        "error": "bold red",
        "warning": "bold yellow",
        "muted": "dim",
        "pet": "bold magenta",
    }
)

_console: Console | None = None


def get_console() -> Console:
    """Return the singleton Console instance."""
    global _console
    if _console is None:
        _console = Console(theme=_THEME, stderr=True)
    return _console


def set_console(console: Console) -> None:
    """Replace the singleton Console (test seam)."""
    global _console
    _console = console


def print_success(msg: str) -> None:
    get_console().print(f"[success]{msg}[/success]")


def print_error(msg: str) -> None:
    get_console().print(f"[error]{msg}[/error]")


def print_warning(msg: str) -> None:
    get_console().print(f"[warning]{msg}[/warning]")


def print_muted(text: str) -> None:
    get_console().print(f"[muted]{text}[/muted]")


def print_pet(name: str, animal: str) -> None:
    """Announce a pet by name, e.g. after adoption."""
    get_console().print(f"[pet]{name}[/pet] the {animal}")
