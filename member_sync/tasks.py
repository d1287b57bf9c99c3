"""
tasks.py

Team task board stored in the tasks collection. Any user can see every task;
only the creator or the assignee may change one, and only the creator may
delete it.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .store import DocumentStore, TASKS

logger = logging.getLogger(__name__)

STATUSES = ("todo", "in-progress", "review", "done")
PRIORITIES = ("low", "medium", "high")
RECURRING_PATTERNS = ("daily", "weekly", "monthly")

FILTER_ALL = "all"
FILTER_OWNED = "owned"
FILTER_ASSIGNED = "assigned"

# Fields a caller may never overwrite through update()
_PROTECTED_FIELDS = ("id", "created_by", "created_at")


class TaskNotFoundError(KeyError):
    """No task with the given id."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _validate(changes: Dict[str, Any]) -> None:
    if "status" in changes and changes["status"] not in STATUSES:
        raise ValueError(f"Invalid status: {changes['status']}")
    if "priority" in changes and changes["priority"] not in PRIORITIES:
        raise ValueError(f"Invalid priority: {changes['priority']}")
    pattern = changes.get("recurring_pattern")
    if pattern is not None and pattern not in RECURRING_PATTERNS:
        raise ValueError(f"Invalid recurring pattern: {pattern}")


class TaskBoard:

    def __init__(self, store: DocumentStore):
        self.store = store

    def _load(self, task_id: str) -> Dict[str, Any]:
        task = self.store.get(TASKS, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    @staticmethod
    def _can_modify(task: Dict[str, Any], user_id: str) -> bool:
        return user_id in (task.get("created_by"), task.get("assigned_to"))

    def create(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if not data.get("title"):
            raise ValueError("Task title is required")
        _validate(data)

        now = _now()
        task = {
            "id": uuid.uuid4().hex,
            "title": data["title"],
            "description": data.get("description") or "",
            "status": data.get("status") or "todo",
            "priority": data.get("priority") or "medium",
            "due_date": data.get("due_date"),
            "tags": list(data.get("tags") or []),
            "assigned_to": data.get("assigned_to"),
            "created_by": user_id,
            "is_recurring": bool(data.get("is_recurring", False)),
            "recurring_pattern": data.get("recurring_pattern"),
            "sub_tasks": list(data.get("sub_tasks") or []),
            "created_at": now,
            "updated_at": now,
        }
        self.store.set(TASKS, task["id"], task)
        logger.info(f"📌 Task {task['id']} created by {user_id}")
        return task

    def get(self, task_id: str) -> Dict[str, Any]:
        return self._load(task_id)

    def list(self, user_id: Optional[str] = None, filter: str = FILTER_ALL) -> List[Dict[str, Any]]:
        """Tasks newest first. 'owned' and 'assigned' narrow to the given user."""
        tasks = self.store.all(TASKS)
        if filter == FILTER_OWNED:
            tasks = [t for t in tasks if t.get("created_by") == user_id]
        elif filter == FILTER_ASSIGNED:
            tasks = [t for t in tasks if t.get("assigned_to") == user_id]
        return sorted(tasks, key=lambda t: t.get("created_at") or "", reverse=True)

    def update(self, user_id: str, task_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        task = self._load(task_id)
        if not self._can_modify(task, user_id):
            raise PermissionError(f"User {user_id} cannot modify task {task_id}")
        changes = {k: v for k, v in changes.items() if k not in _PROTECTED_FIELDS}
        _validate(changes)
        changes["updated_at"] = _now()
        return self.store.update(TASKS, task_id, changes)

    def delete(self, user_id: str, task_id: str) -> None:
        task = self._load(task_id)
        if task.get("created_by") != user_id:
            raise PermissionError(f"User {user_id} cannot delete task {task_id} - not creator")
        self.store.delete(TASKS, task_id)
        logger.info(f"🗑️ Task {task_id} deleted by {user_id}")

    def move(self, user_id: str, task_id: str, status: str) -> Dict[str, Any]:
        return self.update(user_id, task_id, {"status": status})

    # ── subtasks ──────────────────────────────────────────────────────────
    def add_subtask(self, user_id: str, task_id: str, title: str) -> Dict[str, Any]:
        if not title:
            raise ValueError("Subtask title is required")
        task = self._load(task_id)
        sub_tasks = list(task.get("sub_tasks") or [])
        sub_tasks.append({"id": uuid.uuid4().hex, "title": title, "completed": False})
        return self.update(user_id, task_id, {"sub_tasks": sub_tasks})

    def toggle_subtask(self, user_id: str, task_id: str, subtask_id: str) -> Dict[str, Any]:
        task = self._load(task_id)
        sub_tasks = [dict(s) for s in task.get("sub_tasks") or []]
        for sub_task in sub_tasks:
            if sub_task["id"] == subtask_id:
                sub_task["completed"] = not sub_task["completed"]
                break
        else:
            raise TaskNotFoundError(f"{task_id}/{subtask_id}")
        return self.update(user_id, task_id, {"sub_tasks": sub_tasks})

    # ── board views ───────────────────────────────────────────────────────
    def bulk_update(self, user_id: str, updates: List[Dict[str, Any]]) -> Dict[str, List[str]]:
        """
        Apply [{"id": ..., **changes}] one by one. Missing tasks, permission
        failures and invalid values land in 'failed'; the rest in 'updated'.
        """
        updated: List[str] = []
        failed: List[str] = []
        for entry in updates:
            changes = dict(entry)
            task_id = changes.pop("id", None)
            if not task_id:
                continue
            try:
                self.update(user_id, task_id, changes)
                updated.append(task_id)
            except (TaskNotFoundError, PermissionError, ValueError) as e:
                logger.warning(f"Bulk update skipped task {task_id}: {e}")
                failed.append(task_id)
        return {"updated": updated, "failed": failed}

    def columns(self, user_id: Optional[str] = None, filter: str = FILTER_ALL) -> Dict[str, List[Dict[str, Any]]]:
        board: Dict[str, List[Dict[str, Any]]] = {status: [] for status in STATUSES}
        for task in self.list(user_id, filter):
            board.setdefault(task.get("status"), []).append(task)
        return board
