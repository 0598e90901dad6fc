"""Exception taxonomy for stack building and execution.

Structural problems (a dependency cycle, nothing loadable, unknown stack)
abort the whole operation and reach the CLI. Per-task execution failures are
never raised past the executor; they are recorded as task status instead.
"""

from __future__ import annotations


class PlanstackError(Exception):
    """Base class for every error raised by planstack."""


class GraphCycleError(PlanstackError):
    """The dependency graph contains a cycle, so no execution order exists."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        path = " -> ".join(self.cycle) if self.cycle else "unknown"
        super().__init__(f"Dependency cycle detected: {path}")


class NoValidTasksError(PlanstackError):
    """A stack-build request resolved to zero loadable tasks."""


class WorkerInvocationError(PlanstackError):
    """The worker program could not be started or talked to."""


class StackError(PlanstackError):
    """Invalid operation on a stack."""


class StackNotFoundError(StackError):
    def __init__(self, stack_name: str) -> None:
        self.stack_name = stack_name
        super().__init__(f"Stack '{stack_name}' not found.")


class StackExistsError(StackError):
    def __init__(self, stack_name: str) -> None:
        self.stack_name = stack_name
        super().__init__(f"Stack '{stack_name}' already exists.")


class StackAlreadyRunningError(StackError):
    def __init__(self, stack_name: str, owner: str = "") -> None:
        self.stack_name = stack_name
        self.owner = owner
        detail = f" (held by {owner})" if owner else ""
        super().__init__(f"Stack '{stack_name}' is already running{detail}.")


class TaskNotInStackError(StackError):
    def __init__(self, task_id: str, stack_name: str) -> None:
        self.task_id = task_id
        self.stack_name = stack_name
        super().__init__(f"Task '{task_id}' not found in stack '{stack_name}'.")


class InvalidStackNameError(StackError):
    def __init__(self, stack_name: str) -> None:
        self.stack_name = stack_name
        super().__init__(
            f"Invalid stack name '{stack_name}'. Use letters, digits, '.', '_' or '-'."
        )
