"""Worker registry — get the right worker by name."""

from __future__ import annotations

from pathlib import Path

from planstack.workers.base import WorkerBase
from planstack.workers.claude import ClaudeWorker


def get_worker(
    name: str,
    *,
    command: str = "",
    timeout: int | None = None,
    cwd: Path | None = None,
) -> WorkerBase:
    """Return a worker for *name*."""
    match name:
        case "claude":
            return ClaudeWorker(command or "claude", timeout=timeout, cwd=cwd)
        case _:
            raise ValueError(f"Unknown worker: {name}")


WORKER_NAMES = ("claude",)
