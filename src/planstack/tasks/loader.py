"""Load plans from markdown files with optional YAML frontmatter.

A plan lives at ``<plans_dir>/<id>.md``::

    ---
    references:
      - "[[setup-database]]"
      - api-schema
    concepts: ["[[auth]]"]
    ---
    # Plan: Add login endpoint
    ...

Wiki-link wrappers are stripped, so ``[[setup-database]]`` references the
plan with id ``setup-database``.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from planstack import log
from planstack.io_utils import read_text
from planstack.tasks.model import TITLE_PREFIXES, Task, TaskType

_WIKI_LINK_RE = re.compile(r"\[\[([^\]]+)\]\]")


def extract_wiki_link(value: str) -> str:
    """Return ``name`` for ``[[name]]``; other strings are returned unchanged."""
    match = _WIKI_LINK_RE.search(value)
    return match.group(1).strip() if match else value.strip()


def parse_wiki_links(values: Any) -> list[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        return []
    links = [extract_wiki_link(str(v)) for v in values if v is not None]
    return [link for link in links if link]


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split ``---`` fenced YAML frontmatter from the markdown body.

    Malformed YAML is logged and treated as no frontmatter; the body is
    still returned so the plan remains usable.
    """
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        return {}, text

    for i in range(1, len(lines)):
        if lines[i].strip() == "---":
            raw = "".join(lines[1:i])
            body = "".join(lines[i + 1:])
            try:
                data = yaml.safe_load(raw) or {}
            except yaml.YAMLError as exc:
                log.warn(f"Ignoring malformed frontmatter: {exc}")
                return {}, body
            if not isinstance(data, dict):
                return {}, body
            return data, body

    return {}, text


def extract_title_and_type(body: str) -> tuple[str, TaskType]:
    for line in body.splitlines():
        if line.startswith("# "):
            title = line[2:].strip()
            for prefix, task_type in TITLE_PREFIXES:
                if title.startswith(prefix):
                    return title, task_type
            return title, TaskType.NOTE
    return "", TaskType.NOTE


def parse_task_file(path: Path) -> Task:
    """Parse one plan file. Raises ``OSError`` if it cannot be read."""
    text = read_text(path)
    meta, body = split_frontmatter(text)
    title, task_type = extract_title_and_type(body)
    return Task(
        id=path.stem,
        title=title,
        task_type=task_type,
        references=parse_wiki_links(meta.get("references")),
        concepts=parse_wiki_links(meta.get("concepts")),
        content=text,
        file_path=path,
    )


class TaskLoader:
    """Resolve task ids to :class:`Task` objects from a plans directory."""

    def __init__(self, plans_dir: Path | str) -> None:
        self.plans_dir = Path(plans_dir)

    def path_for(self, task_id: str) -> Path:
        return self.plans_dir / f"{task_id}.md"

    def load(self, task_id: str) -> Task | None:
        """Return the task, or ``None`` when it does not exist or cannot be read."""
        if not task_id or "/" in task_id or "\\" in task_id:
            return None
        path = self.path_for(task_id)
        if not path.is_file():
            return None
        try:
            return parse_task_file(path)
        except (OSError, UnicodeDecodeError) as exc:
            log.warn(f"Could not read plan {path}: {exc}")
            return None

    def load_many(self, task_ids: list[str]) -> list[Task]:
        """Load each id once, in order, dropping ids that do not resolve."""
        seen: set[str] = set()
        tasks: list[Task] = []
        for tid in task_ids:
            if tid in seen:
                continue
            seen.add(tid)
            task = self.load(tid)
            if task is None:
                log.debug(f"Plan not found: {tid}")
                continue
            tasks.append(task)
        return tasks

    def load_all(self) -> list[Task]:
        if not self.plans_dir.is_dir():
            return []
        tasks: list[Task] = []
        for path in sorted(self.plans_dir.glob("*.md")):
            if path.name.startswith("."):
                continue
            task = self.load(path.stem)
            if task is not None:
                tasks.append(task)
        return tasks

    def search(
        self,
        query: str | None = None,
        task_type: TaskType | None = None,
    ) -> list[Task]:
        """Filter plans by case-insensitive title/id match and type."""
        needle = (query or "").lower()
        matches: list[Task] = []
        for task in self.load_all():
            if needle and needle not in task.title.lower() and needle not in task.id.lower():
                continue
            if task_type is not None and task.task_type != task_type:
                continue
            matches.append(task)
        return matches
