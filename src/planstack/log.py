"""Console output for planstack, colored via Rich.

Messages go to stdout except errors, which go to stderr so scripted callers
can tell them apart. ``task_*`` helpers print the one-line progress markers
a run emits per plan.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def info(msg: str) -> None:
    console.print(f"[blue]\\[INFO][/blue] {escape(msg)}")


def success(msg: str) -> None:
    console.print(f"[green]\\[OK][/green] {escape(msg)}")


def warn(msg: str) -> None:
    console.print(f"[yellow]\\[WARN][/yellow] {escape(msg)}")


def error(msg: str) -> None:
    _err_console.print(f"[red]\\[ERROR][/red] {escape(msg)}")


def debug(msg: str) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {escape(msg)}[/dim]")


# ── per-plan progress ────────────────────────────────────────────────


def task_started(task_id: str) -> None:
    console.print(f"  [cyan]●[/cyan] {escape(task_id)}")


def task_completed(task_id: str, duration: str) -> None:
    console.print(f"  [green]✓[/green] {escape(task_id)} [dim]({duration})[/dim]")


def task_failed(task_id: str, detail: str, error_message: str | None = None) -> None:
    console.print(f"  [red]✗[/red] {escape(task_id)} [dim]({escape(detail)})[/dim]")
    if error_message:
        console.print(f"[dim]    Error: {escape(error_message)}[/dim]")


def task_skipped(task_id: str) -> None:
    console.print(f"  [dim]○ {escape(task_id)} (skipped)[/dim]")
