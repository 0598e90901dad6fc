"""Shared fixtures for planstack tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use planstack.io_utils read_text/write_text for consistent UTF-8 I/O.
- ``home`` points PLANSTACK_HOME at a temp dir so nothing touches ~/.planstack.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from planstack.config import Config, ensure_home
from planstack.errors import WorkerInvocationError
from planstack.executor import Executor
from planstack.io_utils import write_text
from planstack.stacks import StackManager
from planstack.storage.stack_store import StackStore
from planstack.storage.status_store import StatusStore
from planstack.tasks.loader import TaskLoader
from planstack.tasks.model import Task
from planstack.workers.base import WorkerBase, WorkerResult


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register opt-in switch for tests that spawn real subprocesses."""
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run end-to-end tests marked with 'e2e'.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip e2e tests unless explicitly enabled."""
    if config.getoption("--run-e2e"):
        return

    skip_e2e = pytest.mark.skip(
        reason="E2E tests are skipped by default. Use --run-e2e to include them.",
    )
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


# ── Fake worker ─────────────────────────────────────────────────────


class FakeWorker(WorkerBase):
    """Scripted worker: exit codes per task id, default 0.

    A value of ``"spawn-error"`` makes ``invoke`` raise WorkerInvocationError;
    ``"interrupt"`` raises KeyboardInterrupt as Ctrl-C would. ``messages`` maps
    task ids to the error line a failing worker reports.
    """

    name = "fake"

    def __init__(
        self,
        outcomes: dict[str, int | str] | None = None,
        messages: dict[str, str] | None = None,
    ) -> None:
        super().__init__()
        self.outcomes = dict(outcomes or {})
        self.messages = dict(messages or {})
        self.calls: list[str] = []

    def build_cmd(self, task: Task) -> list[str]:
        return ["fake-worker", task.id]

    def check_available(self) -> str | None:
        return None

    def invoke(self, task: Task) -> WorkerResult:
        self.calls.append(task.id)
        outcome = self.outcomes.get(task.id, 0)
        if outcome == "spawn-error":
            raise WorkerInvocationError("fake-worker not found")
        if outcome == "interrupt":
            raise KeyboardInterrupt
        return WorkerResult(
            exit_code=int(outcome),
            error_message=self.messages.get(task.id),
            duration_ms=5,
            output=f"ran {task.id}\n",
        )


# ── Fixtures ────────────────────────────────────────────────────────


def _plan_text(title: str, references: list[str] | None, body: str) -> str:
    front = ""
    if references is not None:
        refs = "\n".join(f'  - "[[{r}]]"' for r in references)
        front = f"---\nreferences:\n{refs}\n---\n" if refs else "---\nreferences: []\n---\n"
    return f"{front}# {title}\n\n{body}\n"


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolated planstack home with an empty plans directory."""
    home_dir = tmp_path / "home"
    plans_dir = tmp_path / "plans"
    plans_dir.mkdir()
    monkeypatch.setenv("PLANSTACK_HOME", str(home_dir))
    monkeypatch.setenv("PLANSTACK_PLANS_DIR", str(plans_dir))
    monkeypatch.delenv("PLANSTACK_WORKER_COMMAND", raising=False)
    return home_dir


@pytest.fixture
def cfg(home: Path, tmp_path: Path) -> Config:
    c = Config(home=home, plans_directory=tmp_path / "plans")
    ensure_home(c)
    return c


@pytest.fixture
def write_plan(cfg: Config):
    """Factory fixture that writes ``<plans_dir>/<id>.md``."""

    def _write(
        plan_id: str,
        references: list[str] | None = None,
        *,
        title: str = "",
        body: str = "Do the thing.",
    ) -> Path:
        path = cfg.plans_directory / f"{plan_id}.md"
        write_text(path, _plan_text(title or f"Plan: {plan_id}", references, body))
        return path

    return _write


@pytest.fixture
def loader(cfg: Config) -> TaskLoader:
    return TaskLoader(cfg.plans_directory)


@pytest.fixture
def stack_store(cfg: Config) -> StackStore:
    return StackStore(cfg.stacks_dir)


@pytest.fixture
def status_store(cfg: Config) -> StatusStore:
    return StatusStore(cfg.status_dir)


@pytest.fixture
def manager(loader: TaskLoader, stack_store: StackStore, status_store: StatusStore) -> StackManager:
    return StackManager(loader, stack_store, status_store)


@pytest.fixture
def make_worker():
    """Factory fixture: ``make_worker({"a": 1})`` -> FakeWorker."""
    return FakeWorker


@pytest.fixture
def make_executor(cfg: Config, loader: TaskLoader, stack_store: StackStore, status_store: StatusStore):
    """Factory fixture: ``make_executor(worker)`` -> Executor over the test home."""

    def _make(worker: WorkerBase) -> Executor:
        return Executor(
            cfg,
            loader=loader,
            worker=worker,
            stack_store=stack_store,
            status_store=status_store,
        )

    return _make

