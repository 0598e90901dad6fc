"""Task (plan) data model used across loading, stack building and execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class TaskType(str, Enum):
    PLAN = "plan"
    FIX = "fix"
    NOTE = "note"
    INVESTIGATION = "investigation"
    DEBUG = "debug"
    REFACTOR = "refactor"
    FEATURE = "feature"
    REVIEW = "review"
    LEARNING = "learning"


# Title prefix -> type, checked in order against the first H1 heading.
TITLE_PREFIXES: tuple[tuple[str, TaskType], ...] = (
    ("Plan:", TaskType.PLAN),
    ("Fix:", TaskType.FIX),
    ("Investigation:", TaskType.INVESTIGATION),
    ("Debugging:", TaskType.DEBUG),
    ("Debug:", TaskType.DEBUG),
    ("Refactor:", TaskType.REFACTOR),
    ("Review:", TaskType.REVIEW),
    ("Learning:", TaskType.LEARNING),
    ("Feature:", TaskType.FEATURE),
)


@dataclass
class Task:
    """A unit of declared work. ``references`` are raw and may dangle."""

    id: str
    title: str = ""
    task_type: TaskType = TaskType.NOTE
    references: list[str] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    content: str = ""
    file_path: Path | None = None
