"""Stack persistence: one JSON file per stack under ``<home>/stacks``."""

from __future__ import annotations

import json
import re
from pathlib import Path

from planstack import log
from planstack.errors import InvalidStackNameError
from planstack.io_utils import read_json, write_json_atomic
from planstack.models import Stack

_STACK_NAME_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9._-]*$")


def validate_stack_name(name: str) -> str:
    if not name or not _STACK_NAME_RE.match(name):
        raise InvalidStackNameError(name)
    return name


class StackStore:
    def __init__(self, stacks_dir: Path) -> None:
        self.stacks_dir = Path(stacks_dir)

    def path_for(self, name: str) -> Path:
        return self.stacks_dir / f"{validate_stack_name(name)}.json"

    def load(self, name: str) -> Stack | None:
        path = self.path_for(name)
        try:
            return Stack.from_dict(read_json(path))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as exc:
            log.warn(f"Could not read stack file {path}: {exc}")
            return None

    def save(self, stack: Stack) -> None:
        write_json_atomic(self.path_for(stack.name), stack.to_dict())

    def delete(self, name: str) -> bool:
        path = self.path_for(name)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def list_all(self) -> list[Stack]:
        if not self.stacks_dir.is_dir():
            return []
        stacks: list[Stack] = []
        for path in sorted(self.stacks_dir.glob("*.json")):
            if path.name.startswith("."):
                continue
            stack = self.load(path.stem)
            if stack is not None:
                stacks.append(stack)
        return stacks
