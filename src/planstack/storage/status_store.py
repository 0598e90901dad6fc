"""Per-stack execution status, persisted as JSON under ``<home>/status``.

Every transition rewrites the whole record atomically. The single-run guard
is a lease file created with ``O_CREAT | O_EXCL`` next to the record, so two
runs racing for the same stack cannot both win. A lease left behind by a
process that no longer exists is treated as stale and taken over.
"""

from __future__ import annotations

import json
import os
import socket
import sys
import time
import uuid
from pathlib import Path
from typing import Any

from planstack import log
from planstack.errors import StackAlreadyRunningError
from planstack.io_utils import read_json, write_json_atomic
from planstack.models import ExecutionStatus, StackStatus, TaskStatus, utc_now
from planstack.storage.stack_store import validate_stack_name

# A lease whose owner info cannot be read is only trusted for this long
# (covers the window between creating the file and writing its content).
UNREADABLE_LEASE_GRACE_S = 60


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    if sys.platform == "win32":
        # os.kill(pid, 0) terminates the target on Windows; assume alive.
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _read_lease_file(path: Path) -> dict[str, Any] | None:
    try:
        data = read_json(path)
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


class StatusStore:
    def __init__(self, status_dir: Path) -> None:
        self.status_dir = Path(status_dir)

    def path_for(self, stack_name: str) -> Path:
        return self.status_dir / f"{validate_stack_name(stack_name)}.json"

    def lock_path(self, stack_name: str) -> Path:
        return self.status_dir / f"{validate_stack_name(stack_name)}.lock"

    # ── record I/O ───────────────────────────────────────────────

    def load(self, stack_name: str, task_ids: list[str]) -> StackStatus:
        """Load the record; missing record or entries are synthesized as pending."""
        path = self.path_for(stack_name)
        try:
            data = read_json(path)
        except FileNotFoundError:
            return StackStatus.fresh(stack_name, task_ids)
        except (OSError, json.JSONDecodeError) as exc:
            log.warn(f"Could not read status file {path}: {exc}. Treating all tasks as pending.")
            return StackStatus.fresh(stack_name, task_ids)

        if not isinstance(data, dict) or not isinstance(data.get("taskStatuses") or {}, dict):
            log.warn(f"Malformed status file {path}. Treating all tasks as pending.")
            return StackStatus.fresh(stack_name, task_ids)

        status = StackStatus.from_dict(data)
        status.stack_name = stack_name
        status.ensure(task_ids)
        return status

    def save(self, status: StackStatus) -> None:
        write_json_atomic(self.path_for(status.stack_name), status.to_dict())

    def update_task(
        self,
        stack_name: str,
        task_ids: list[str],
        task_id: str,
        status: ExecutionStatus,
        *,
        error_message: str | None = None,
        exit_code: int | None = None,
        duration_ms: int | None = None,
    ) -> TaskStatus:
        """Overwrite one task's entry and persist the record."""
        record = self.load(stack_name, task_ids)
        entry = TaskStatus(
            task_id=task_id,
            status=status,
            last_executed_at=utc_now(),
            duration_ms=duration_ms,
            error_message=error_message,
            exit_code=exit_code,
        )
        record.task_statuses[task_id] = entry
        self.save(record)
        log.debug(f"{stack_name}/{task_id}: -> {status.value}")
        return entry

    def reset(self, stack_name: str, task_ids: list[str]) -> StackStatus:
        """Return every task to pending and clear run state unconditionally."""
        status = StackStatus.fresh(stack_name, task_ids)
        self.save(status)
        self.lock_path(stack_name).unlink(missing_ok=True)
        return status

    def prune(self, stack_name: str, task_ids: list[str]) -> StackStatus:
        """Drop entries for tasks that are no longer part of the stack."""
        status = self.load(stack_name, task_ids)
        keep = set(task_ids)
        status.task_statuses = {
            tid: ts for tid, ts in status.task_statuses.items() if tid in keep
        }
        self.save(status)
        return status

    def delete(self, stack_name: str) -> None:
        self.path_for(stack_name).unlink(missing_ok=True)
        self.lock_path(stack_name).unlink(missing_ok=True)

    # ── run lease ────────────────────────────────────────────────

    def read_lease(self, stack_name: str) -> dict[str, Any] | None:
        return _read_lease_file(self.lock_path(stack_name))

    def _lease_is_live(self, lock: Path, lease: dict[str, Any] | None) -> bool:
        if lease is None:
            try:
                age = time.time() - lock.stat().st_mtime
            except FileNotFoundError:
                return False
            return age < UNREADABLE_LEASE_GRACE_S
        if lease.get("host") != socket.gethostname():
            # Processes on another host cannot be checked.
            return True
        try:
            pid = int(lease.get("pid", 0))
        except (TypeError, ValueError):
            return False
        return _pid_alive(pid)

    def _discard_stale_lease(self, lock: Path, observed: dict[str, Any] | None) -> None:
        """Move *lock* aside and delete it if it still holds the *observed* lease.

        The rename is atomic, so only one contender ever gets hold of a given
        lease file. A lease that changed since it was judged stale belongs to a
        newer run and is linked back in place.
        """
        aside = lock.with_name(f"{lock.name}.{os.getpid()}.{uuid.uuid4().hex[:8]}")
        try:
            os.rename(lock, aside)
        except FileNotFoundError:
            return
        try:
            if _read_lease_file(aside) != observed:
                try:
                    os.link(aside, lock)
                except FileExistsError:
                    # A third run already created its own lease.
                    pass
        finally:
            aside.unlink(missing_ok=True)

    def acquire_run(self, stack_name: str, task_ids: list[str]) -> StackStatus:
        """Take the run lease and mark the stack running.

        Raises :class:`StackAlreadyRunningError` if a live run holds the lease.
        """
        lock = self.lock_path(stack_name)
        lock.parent.mkdir(parents=True, exist_ok=True)
        lease = {"pid": os.getpid(), "host": socket.gethostname(), "acquiredAt": utc_now()}

        for _ in range(2):
            try:
                fd = os.open(lock, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                owner = self.read_lease(stack_name)
                if self._lease_is_live(lock, owner):
                    holder = ""
                    if owner:
                        holder = f"pid {owner.get('pid')} on {owner.get('host')}"
                    raise StackAlreadyRunningError(stack_name, holder) from None
                log.warn(f"Stack '{stack_name}': taking over stale run lease {owner or ''}")
                self._discard_stale_lease(lock, owner)
                continue
            break
        else:
            raise StackAlreadyRunningError(stack_name)

        # Whatever fails from here on must not leave our lease behind.
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(lease, f)
            status = self.load(stack_name, task_ids)
            if status.is_running:
                log.warn(f"Stack '{stack_name}' was marked running by an interrupted run; resuming.")
            status.is_running = True
            status.last_run_at = utc_now()
            self.save(status)
        except BaseException:
            lock.unlink(missing_ok=True)
            raise
        return status

    def release_run(self, stack_name: str, task_ids: list[str]) -> StackStatus:
        """Mark the stack idle, stamp ``last_run_at`` and drop our lease."""
        status = self.load(stack_name, task_ids)
        status.is_running = False
        status.last_run_at = utc_now()
        self.save(status)

        owner = self.read_lease(stack_name)
        if owner is None or owner.get("pid") == os.getpid():
            self.lock_path(stack_name).unlink(missing_ok=True)
        return status
