"""Executor: runs a stack's tasks one at a time in dependency order.

State per task within a run::

    pending -> running -> completed | failed
    pending -> skipped

Tasks already ``completed`` in an earlier run are left alone, so a run after a
partial failure resumes where the previous one stopped. A task whose
dependencies are not all completed is marked ``skipped``; it never becomes
satisfied, so the skip carries through to its own dependents.
"""

from __future__ import annotations

import signal
from dataclasses import dataclass, field

from planstack import log
from planstack.config import Config
from planstack.errors import StackNotFoundError, WorkerInvocationError
from planstack.graph import execution_order, graph_from_stack
from planstack.io_utils import write_text
from planstack.models import ExecutionStatus, Stack, StackStatus
from planstack.storage.stack_store import StackStore
from planstack.storage.status_store import StatusStore
from planstack.tasks.loader import TaskLoader
from planstack.workers.base import WorkerBase

SKIPPED_MESSAGE = "Skipped due to failed dependencies."
INTERRUPTED_MESSAGE = "Interrupted"


def format_duration(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    minutes, rest = divmod(ms, 60_000)
    return f"{minutes}m {round(rest / 1000)}s"


@dataclass
class TaskResult:
    task_id: str
    status: ExecutionStatus
    exit_code: int | None = None
    error_message: str | None = None
    duration_ms: int = 0
    output: str = ""


@dataclass
class ExecutionReport:
    """Outcome of one run. ``results`` holds only tasks this run acted on."""

    stack_name: str
    order: list[str]
    results: list[TaskResult] = field(default_factory=list)
    dry_run: bool = False

    def count(self, status: ExecutionStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def completed(self) -> int:
        return self.count(ExecutionStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return self.count(ExecutionStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self.count(ExecutionStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.skipped == 0

    def get(self, task_id: str) -> TaskResult | None:
        for r in self.results:
            if r.task_id == task_id:
                return r
        return None


class Executor:
    """Sequential, resumable executor for one stack at a time."""

    def __init__(
        self,
        cfg: Config,
        *,
        loader: TaskLoader,
        worker: WorkerBase,
        stack_store: StackStore,
        status_store: StatusStore,
    ) -> None:
        self.cfg = cfg
        self.loader = loader
        self.worker = worker
        self.stacks = stack_store
        self.statuses = status_store
        self._orig_signal_handlers: dict[int, object] = {}

    # ── public API ───────────────────────────────────────────────

    def plan(self, stack_name: str, from_task: str | None = None) -> list[str]:
        """Return the execution order without touching status or the worker."""
        return execution_order(self._load_stack(stack_name), from_task)

    def run(
        self,
        stack_name: str,
        *,
        from_task: str | None = None,
        dry_run: bool = False,
    ) -> ExecutionReport:
        """Execute the stack. Structural errors (cycle, unknown task/stack,
        stack already running) raise; per-task failures are recorded."""
        if dry_run:
            return ExecutionReport(stack_name, self.plan(stack_name, from_task), dry_run=True)

        stack = self._load_stack(stack_name)
        task_ids = stack.task_ids()

        self.statuses.acquire_run(stack_name, task_ids)
        self._install_signal_handlers()
        try:
            order = execution_order(stack, from_task)
            log.info(f"Executing stack {stack_name}: {len(order)} task(s)")
            results = self._execute(stack, order)
        finally:
            self._restore_signal_handlers()
            self.statuses.release_run(stack_name, task_ids)

        return ExecutionReport(stack_name, order, results)

    def reset(self, stack_name: str) -> StackStatus:
        """Return every task to pending and clear run state, whatever it was."""
        stack = self._load_stack(stack_name)
        return self.statuses.reset(stack_name, stack.task_ids())

    def stack_status(self, stack_name: str) -> StackStatus:
        stack = self._load_stack(stack_name)
        return self.statuses.load(stack_name, stack.task_ids())

    # ── internals ────────────────────────────────────────────────

    def _load_stack(self, stack_name: str) -> Stack:
        stack = self.stacks.load(stack_name)
        if stack is None:
            raise StackNotFoundError(stack_name)
        return stack

    def _execute(self, stack: Stack, order: list[str]) -> list[TaskResult]:
        task_ids = stack.task_ids()
        graph = graph_from_stack(stack)
        current = self.statuses.load(stack.name, task_ids)

        satisfied = {
            tid for tid in task_ids
            if current.get(tid).status == ExecutionStatus.COMPLETED
        }
        results: list[TaskResult] = []

        for tid in order:
            if tid in satisfied:
                log.debug(f"Task {tid}: already completed")
                continue

            unmet = [dep for dep in graph[tid].depends_on if dep not in satisfied]
            if unmet:
                self.statuses.update_task(
                    stack.name,
                    task_ids,
                    tid,
                    ExecutionStatus.SKIPPED,
                    error_message=SKIPPED_MESSAGE,
                )
                log.debug(f"Task {tid}: unmet dependencies {', '.join(unmet)}")
                log.task_skipped(tid)
                results.append(
                    TaskResult(tid, ExecutionStatus.SKIPPED, error_message=SKIPPED_MESSAGE)
                )
                continue

            result = self._run_task(stack, task_ids, tid)
            results.append(result)
            if result.status == ExecutionStatus.COMPLETED:
                satisfied.add(tid)

        return results

    def _run_task(self, stack: Stack, task_ids: list[str], tid: str) -> TaskResult:
        self.statuses.update_task(stack.name, task_ids, tid, ExecutionStatus.RUNNING)
        log.task_started(tid)

        task = self.loader.load(tid)
        if task is None:
            result = TaskResult(
                tid,
                ExecutionStatus.FAILED,
                exit_code=1,
                error_message=f"Task '{tid}' not found.",
            )
        else:
            try:
                wr = self.worker.invoke(task)
            except WorkerInvocationError as exc:
                result = TaskResult(tid, ExecutionStatus.FAILED, error_message=str(exc))
            except KeyboardInterrupt:
                self.statuses.update_task(
                    stack.name,
                    task_ids,
                    tid,
                    ExecutionStatus.FAILED,
                    error_message=INTERRUPTED_MESSAGE,
                )
                log.task_failed(tid, "interrupted")
                raise
            else:
                if wr.exit_code == 0:
                    result = TaskResult(
                        tid,
                        ExecutionStatus.COMPLETED,
                        exit_code=0,
                        duration_ms=wr.duration_ms,
                        output=wr.output,
                    )
                else:
                    result = TaskResult(
                        tid,
                        ExecutionStatus.FAILED,
                        exit_code=wr.exit_code,
                        error_message=wr.error_message or f"Process exited with code {wr.exit_code}",
                        duration_ms=wr.duration_ms,
                        output=wr.output,
                    )

        self.statuses.update_task(
            stack.name,
            task_ids,
            tid,
            result.status,
            error_message=result.error_message,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
        )
        self._persist_log(stack.name, tid, result.output)

        duration = format_duration(result.duration_ms)
        if result.status == ExecutionStatus.COMPLETED:
            log.task_completed(tid, duration)
        else:
            log.task_failed(tid, duration, result.error_message)
        return result

    def _persist_log(self, stack_name: str, task_id: str, output: str) -> None:
        if not output:
            return
        log_dir = self.cfg.logs_dir / stack_name
        log_dir.mkdir(parents=True, exist_ok=True)
        write_text(log_dir / f"{task_id}.log", output)

    # ── signals ──────────────────────────────────────────────────

    def _install_signal_handlers(self) -> None:
        """Turn SIGTERM (and SIGBREAK) into KeyboardInterrupt during a run so
        the run lease is released on termination as well as on Ctrl-C."""
        self._orig_signal_handlers = {}
        signals_to_handle = []
        if hasattr(signal, "SIGTERM"):
            signals_to_handle.append(signal.SIGTERM)
        if hasattr(signal, "SIGBREAK"):
            signals_to_handle.append(signal.SIGBREAK)

        for sig in signals_to_handle:
            try:
                self._orig_signal_handlers[sig] = signal.getsignal(sig)
                signal.signal(sig, self._on_signal)
            except (OSError, RuntimeError, ValueError):
                continue

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._orig_signal_handlers.items():
            try:
                signal.signal(sig, handler)
            except (OSError, RuntimeError, ValueError, TypeError):
                continue
        self._orig_signal_handlers = {}

    def _on_signal(self, signum: int, _frame: object) -> None:
        log.warn(f"Signal {signum} received. Stopping run...")
        raise KeyboardInterrupt
