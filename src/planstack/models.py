"""Stack structure and run-history models with their JSON (de)serialization."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> str:
    """ISO-8601 UTC timestamp used for every persisted time field."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @classmethod
    def parse(cls, value: Any) -> "ExecutionStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING


# ── Stack structure ──────────────────────────────────────────────────


@dataclass
class StackTask:
    """A task inside a stack with its dependencies resolved to stack members."""

    task_id: str
    depends_on: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"taskId": self.task_id, "dependsOn": list(self.depends_on)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StackTask":
        return cls(
            task_id=str(data["taskId"]),
            depends_on=[str(d) for d in data.get("dependsOn") or []],
        )


@dataclass
class Stack:
    name: str
    tasks: list[StackTask] = field(default_factory=list)
    root_ids: list[str] = field(default_factory=list)
    description: str | None = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def task_ids(self) -> list[str]:
        return [t.task_id for t in self.tasks]

    def to_dict(self) -> dict[str, Any]:
        return {
            "stackName": self.name,
            "stackDescription": self.description,
            "tasks": [t.to_dict() for t in self.tasks],
            "rootIds": list(self.root_ids),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Stack":
        return cls(
            name=str(data["stackName"]),
            description=data.get("stackDescription"),
            tasks=[StackTask.from_dict(t) for t in data.get("tasks") or []],
            root_ids=[str(r) for r in data.get("rootIds") or []],
            created_at=data.get("createdAt") or utc_now(),
            updated_at=data.get("updatedAt") or utc_now(),
        )


# ── Run history ──────────────────────────────────────────────────────


@dataclass
class TaskStatus:
    """Last known execution outcome of one task. Fields past ``status`` stay
    ``None`` until the task has run."""

    task_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    last_executed_at: str | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    exit_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "status": self.status.value,
            "lastExecutedAt": self.last_executed_at,
            "durationMs": self.duration_ms,
            "errorMessage": self.error_message,
            "exitCode": self.exit_code,
        }

    @classmethod
    def from_dict(cls, task_id: str, data: dict[str, Any]) -> "TaskStatus":
        return cls(
            task_id=task_id,
            status=ExecutionStatus.parse(data.get("status")),
            last_executed_at=data.get("lastExecutedAt"),
            duration_ms=data.get("durationMs"),
            error_message=data.get("errorMessage"),
            exit_code=data.get("exitCode"),
        )


@dataclass
class StackStatus:
    stack_name: str
    task_statuses: dict[str, TaskStatus] = field(default_factory=dict)
    last_run_at: str | None = None
    is_running: bool = False

    @classmethod
    def fresh(cls, stack_name: str, task_ids: list[str]) -> "StackStatus":
        return cls(
            stack_name=stack_name,
            task_statuses={tid: TaskStatus(task_id=tid) for tid in task_ids},
        )

    def get(self, task_id: str) -> TaskStatus:
        ts = self.task_statuses.get(task_id)
        if ts is None:
            ts = TaskStatus(task_id=task_id)
            self.task_statuses[task_id] = ts
        return ts

    def ensure(self, task_ids: list[str]) -> None:
        """Backfill a ``pending`` entry for every id that has none."""
        for tid in task_ids:
            self.get(tid)

    def counts(self) -> dict[ExecutionStatus, int]:
        counts = {s: 0 for s in ExecutionStatus}
        for ts in self.task_statuses.values():
            counts[ts.status] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "stackName": self.stack_name,
            "taskStatuses": {tid: ts.to_dict() for tid, ts in self.task_statuses.items()},
            "lastRunAt": self.last_run_at,
            "isRunning": self.is_running,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StackStatus":
        raw = data.get("taskStatuses")
        if not isinstance(raw, dict):
            raw = {}
        return cls(
            stack_name=str(data.get("stackName", "")),
            task_statuses={
                str(tid): TaskStatus.from_dict(str(tid), entry)
                for tid, entry in raw.items()
                if isinstance(entry, dict)
            },
            last_run_at=data.get("lastRunAt"),
            is_running=bool(data.get("isRunning", False)),
        )
