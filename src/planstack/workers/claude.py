"""Claude Code worker: runs ``claude -p <plan content>`` for one task."""

from __future__ import annotations

import shlex
import shutil
from pathlib import Path

from planstack.tasks.model import Task
from planstack.workers.base import WorkerBase


class ClaudeWorker(WorkerBase):
    name = "claude"

    def __init__(
        self,
        command: str = "claude",
        *,
        extra_args: tuple[str, ...] = (),
        timeout: int | None = None,
        cwd: Path | None = None,
    ) -> None:
        super().__init__(timeout=timeout, cwd=cwd)
        # The command may carry its own arguments, e.g. "claude --model opus".
        self.command = shlex.split(command) or ["claude"]
        self.extra_args = tuple(extra_args)

    def build_cmd(self, task: Task) -> list[str]:
        # Use resolved path so subprocess gets an absolute path; on some platforms
        # (e.g. Windows with pipx) the child process resolves PATH differently.
        program = shutil.which(self.command[0]) or self.command[0]
        return [program, *self.command[1:], *self.extra_args, "-p", task.content]

    def check_available(self) -> str | None:
        if not shutil.which(self.command[0]):
            return (
                f"{self.command[0]} not found in PATH. "
                "Install Claude Code from https://github.com/anthropics/claude-code"
            )
        return None
