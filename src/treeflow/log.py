"""Console output with colored severity tags via Rich."""

from __future__ import annotations

from rich.console import Console

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False

_STYLES: dict[str, str] = {
    "DEBUG": "dim",
    "INFO": "blue",
    "WARNING": "yellow",
    "ERROR": "red",
    "FATAL": "bold red",
}


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def info(msg: str) -> None:
    console.print(f"[blue]\\[INFO][/blue] {msg}")


def success(msg: str) -> None:
    console.print(f"[green]\\[OK][/green] {msg}")


def warn(msg: str) -> None:
    console.print(f"[yellow]\\[WARN][/yellow] {msg}")


def error(msg: str) -> None:
    _err_console.print(f"[red]\\[ERROR][/red] {msg}")


def debug(msg: str) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {msg}[/dim]")


def message(severity: str, text: str) -> None:
    """Print an engine message line ``SEVERITY -- text``; errors go to stderr."""
    style = _STYLES.get(severity, "")
    target = _err_console if severity in ("ERROR", "FATAL") else console
    target.print(f"[{style}]{severity}[/{style}] -- {text}", markup=True, soft_wrap=True)
