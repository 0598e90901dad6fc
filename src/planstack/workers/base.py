"""Base class for workers: the external programs that carry out one task."""

from __future__ import annotations

import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from planstack.errors import WorkerInvocationError
from planstack.tasks.model import Task

# Poll interval while waiting on a worker with a deadline.
_POLL_S = 0.2
# How long a worker gets to exit after terminate() before it is killed.
_STOP_GRACE_S = 2.0


@dataclass
class WorkerResult:
    """Uniform result from any worker invocation.

    ``exit_code`` is ``None`` when the program never produced one (timeout).
    ``error_message`` is set only when the worker itself has something to say
    about a failure.
    """

    exit_code: int | None = 0
    error_message: str | None = None
    duration_ms: int = 0
    output: str = ""


class WorkerBase(ABC):
    """Abstract worker. Subclasses implement ``build_cmd``."""

    name: str = "base"

    def __init__(self, *, timeout: int | None = None, cwd: Path | None = None) -> None:
        self.timeout = timeout
        self.cwd = cwd

    @abstractmethod
    def build_cmd(self, task: Task) -> list[str]:
        """Return the command list that performs *task*."""
        ...

    def check_available(self) -> str | None:
        """Return an error message if the worker program is not available, else None."""
        program = self.build_cmd(Task(id="check"))[0]
        if not shutil.which(program):
            return f"{program} not found in PATH"
        return None

    def invoke(self, task: Task) -> WorkerResult:
        """Run the worker for *task* and wait for it to exit.

        Raises :class:`WorkerInvocationError` if the program cannot be started.
        ``KeyboardInterrupt`` stops the child and propagates.
        """
        cmd = self.build_cmd(task)
        start = time.monotonic()

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=self.cwd,
            )
        except FileNotFoundError as exc:
            raise WorkerInvocationError(f"{cmd[0]} not found") from exc
        except OSError as exc:
            raise WorkerInvocationError(f"Could not start {cmd[0]}: {exc}") from exc

        try:
            stdout, stderr = self._wait(proc, self.timeout)
        except subprocess.TimeoutExpired:
            self._stop(proc)
            return WorkerResult(exit_code=None, error_message="timeout", duration_ms=_elapsed_ms(start))
        except KeyboardInterrupt:
            self._stop(proc)
            raise

        stdout = stdout or ""
        stderr = stderr or ""
        result = WorkerResult(
            exit_code=proc.returncode,
            duration_ms=_elapsed_ms(start),
            output=stdout + stderr,
        )
        # A failing worker that explains itself on stderr gets its first line recorded.
        if proc.returncode != 0 and stderr.strip():
            result.error_message = stderr.strip().splitlines()[0]
        return result

    @staticmethod
    def _wait(proc: subprocess.Popen[str], timeout: int | None) -> tuple[str, str]:
        """Collect the worker's output; raise ``TimeoutExpired`` past *timeout* seconds.

        With a deadline, output is read in short slices so Ctrl-C is noticed
        between them.
        """
        if timeout is None:
            return proc.communicate()

        deadline = time.monotonic() + timeout
        remaining = float(timeout)
        while remaining > 0:
            try:
                return proc.communicate(timeout=min(_POLL_S, remaining))
            except subprocess.TimeoutExpired:
                remaining = deadline - time.monotonic()
        raise subprocess.TimeoutExpired(proc.args, timeout)

    @staticmethod
    def _stop(proc: subprocess.Popen[str]) -> None:
        """Ask the worker to exit, then kill it if it is still around."""
        for signal_proc in (proc.terminate, proc.kill):
            try:
                if proc.poll() is not None:
                    return
                signal_proc()
                proc.wait(timeout=_STOP_GRACE_S)
                return
            except subprocess.TimeoutExpired:
                continue
            except OSError:
                return


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
