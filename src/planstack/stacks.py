"""Stack lifecycle: create, extend, shrink and delete stacks of tasks.

Every structural change reloads the affected tasks and rebuilds the graph
from scratch; persisted edges are never patched in place.
"""

from __future__ import annotations

from planstack import log
from planstack.errors import (
    NoValidTasksError,
    StackError,
    StackExistsError,
    StackNotFoundError,
)
from planstack.graph import build_graph, find_roots
from planstack.models import Stack, StackTask, utc_now
from planstack.storage.stack_store import StackStore, validate_stack_name
from planstack.storage.status_store import StatusStore
from planstack.tasks.loader import TaskLoader
from planstack.tasks.model import Task


class StackManager:
    def __init__(
        self,
        loader: TaskLoader,
        stack_store: StackStore,
        status_store: StatusStore,
    ) -> None:
        self.loader = loader
        self.stacks = stack_store
        self.statuses = status_store

    # ── queries ──────────────────────────────────────────────────

    def get(self, name: str) -> Stack:
        stack = self.stacks.load(name)
        if stack is None:
            raise StackNotFoundError(name)
        return stack

    def list_stacks(self) -> list[Stack]:
        return self.stacks.list_all()

    # ── helpers ──────────────────────────────────────────────────

    def resolve_references(self, tasks: list[Task]) -> list[Task]:
        """Close *tasks* over everything they reference, transitively.

        Each referenced id is loaded at most once; ids that do not resolve are
        left out (the graph builder drops the dangling edge later).
        """
        known = {t.id for t in tasks}
        resolved = list(tasks)
        pending = [ref for t in tasks for ref in t.references]
        tried: set[str] = set()

        while pending:
            ref = pending.pop()
            if ref in known or ref in tried:
                continue
            tried.add(ref)
            task = self.loader.load(ref)
            if task is None:
                log.debug(f"Referenced plan not found: {ref}")
                continue
            known.add(task.id)
            resolved.append(task)
            pending.extend(task.references)

        return resolved

    @staticmethod
    def _assemble(
        name: str,
        tasks: list[Task],
        *,
        description: str | None,
        created_at: str | None = None,
        fallback_roots: list[str] | None = None,
    ) -> Stack:
        graph = build_graph(tasks)
        roots = find_roots(graph)
        if not roots and fallback_roots:
            # Every task has a dependency (cyclic selection): keep the user's picks.
            roots = list(fallback_roots)

        now = utc_now()
        return Stack(
            name=name,
            description=description,
            tasks=[StackTask(task_id=tid, depends_on=list(node.depends_on)) for tid, node in graph.items()],
            root_ids=roots,
            created_at=created_at or now,
            updated_at=now,
        )

    def _stored_as_tasks(self, stack: Stack) -> list[Task]:
        """Reload a stack's tasks; ones that no longer load keep their stored edges."""
        tasks: list[Task] = []
        for st in stack.tasks:
            task = self.loader.load(st.task_id)
            if task is None:
                log.warn(f"Plan '{st.task_id}' no longer loads; keeping its recorded dependencies.")
                task = Task(id=st.task_id, references=list(st.depends_on))
            tasks.append(task)
        return tasks

    # ── lifecycle ────────────────────────────────────────────────

    def create(
        self,
        name: str,
        task_ids: list[str],
        *,
        description: str | None = None,
        resolve_dependencies: bool = True,
    ) -> Stack:
        """Create a stack from *task_ids*.

        Raises :class:`NoValidTasksError` when none of the ids load and
        :class:`StackExistsError` when the name is taken.
        """
        validate_stack_name(name)
        if self.stacks.exists(name):
            raise StackExistsError(name)

        selected = self.loader.load_many(task_ids)
        if not selected:
            raise NoValidTasksError("No valid plans found for the specified plan IDs.")

        tasks = self.resolve_references(selected) if resolve_dependencies else selected
        stack = self._assemble(
            name,
            tasks,
            description=description,
            fallback_roots=[t.id for t in selected],
        )

        self.stacks.save(stack)
        self.statuses.reset(name, stack.task_ids())
        log.debug(f"Created stack {name} with {len(stack.tasks)} task(s)")
        return stack

    def create_from_task(
        self,
        task_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
    ) -> Stack:
        """Create a stack rooted at one task plus everything it references."""
        if self.loader.load(task_id) is None:
            raise NoValidTasksError(f"Plan '{task_id}' not found.")
        return self.create(
            name or task_id,
            [task_id],
            description=description if description is not None else f"Stack created from {task_id}",
            resolve_dependencies=True,
        )

    def add_tasks(
        self,
        name: str,
        task_ids: list[str],
        *,
        resolve_dependencies: bool = True,
    ) -> Stack:
        """Add tasks to an existing stack; statuses of existing tasks are kept."""
        stack = self.get(name)
        existing = set(stack.task_ids())
        new_ids = [tid for tid in task_ids if tid not in existing]
        if not new_ids:
            return stack

        new_tasks = self.loader.load_many(new_ids)
        if not new_tasks:
            log.warn("None of the requested plans could be loaded; stack unchanged.")
            return stack

        tasks = self._stored_as_tasks(stack) + new_tasks
        if resolve_dependencies:
            tasks = self.resolve_references(tasks)

        updated = self._assemble(
            name,
            tasks,
            description=stack.description,
            created_at=stack.created_at,
        )
        self.stacks.save(updated)
        return updated

    def remove_tasks(self, name: str, task_ids: list[str]) -> Stack:
        """Remove tasks from a stack and drop their status entries.

        Removing every task is refused; delete the stack instead.
        """
        stack = self.get(name)
        to_remove = set(task_ids)
        unknown = sorted(to_remove - set(stack.task_ids()))
        if unknown:
            log.warn(f"Not in stack '{name}': {', '.join(unknown)}")

        remaining = [st for st in stack.tasks if st.task_id not in to_remove]
        if not remaining:
            raise StackError("Cannot remove all plans from a stack.")
        if len(remaining) == len(stack.tasks):
            return stack

        tasks = [Task(id=st.task_id, references=list(st.depends_on)) for st in remaining]
        updated = self._assemble(
            name,
            tasks,
            description=stack.description,
            created_at=stack.created_at,
        )
        self.stacks.save(updated)
        self.statuses.prune(name, updated.task_ids())
        return updated

    def delete(self, name: str) -> None:
        if not self.stacks.delete(name):
            raise StackNotFoundError(name)
        self.statuses.delete(name)
