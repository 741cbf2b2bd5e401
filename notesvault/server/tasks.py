from __future__ import annotations

import dataclasses
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

from .adapters.store import TASK_FOLDERS_FILE, TASKS_FILE, JsonStore
from .models import PRIORITIES, Task, TaskFolder, new_id
from .routines import weekday_from_sunday

logger = logging.getLogger(__name__)

TASK_FILTERS = ("all", "today", "tomorrow", "week", "overdue")

_TASK_FIELDS = {"title", "completed", "date", "priority", "content", "folder_id", "expanded"}
_FOLDER_FIELDS = {"name", "parent_id"}


# ── forest helpers ───────────────────────────────────────────────────────────
# Each helper returns a new forest; untouched branches keep their objects.


def find_task(tasks: Iterable[Task], task_id: str) -> Optional[Task]:
    for task in tasks:
        if task.id == task_id:
            return task
        if task.subtasks:
            found = find_task(task.subtasks, task_id)
            if found is not None:
                return found
    return None


def map_task(tasks: List[Task], task_id: str, change: Callable[[Task], Task]) -> List[Task]:
    result: List[Task] = []
    for task in tasks:
        if task.id == task_id:
            result.append(change(task))
        elif task.subtasks:
            result.append(dataclasses.replace(task, subtasks=map_task(task.subtasks, task_id, change)))
        else:
            result.append(task)
    return result


def remove_task(tasks: List[Task], task_id: str) -> List[Task]:
    result: List[Task] = []
    for task in tasks:
        if task.id == task_id:
            continue
        if task.subtasks is not None:
            task = dataclasses.replace(task, subtasks=remove_task(task.subtasks, task_id))
        result.append(task)
    return result


def clear_folder_refs(tasks: List[Task], folder_ids: Set[str]) -> List[Task]:
    result: List[Task] = []
    for task in tasks:
        if task.folder_id in folder_ids:
            task = dataclasses.replace(task, folder_id=None)
        if task.subtasks:
            task = dataclasses.replace(task, subtasks=clear_folder_refs(task.subtasks, folder_ids))
        result.append(task)
    return result


def folder_descendants(folders: Iterable[TaskFolder], folder_id: str) -> List[str]:
    """Return ``folder_id`` followed by the ids of every folder below it."""
    folders = list(folders)
    collected = [folder_id]
    index = 0
    while index < len(collected):
        current = collected[index]
        for child in folders:
            if child.parent_id == current and child.id not in collected:
                collected.append(child.id)
        index += 1
    return collected


def build_folder_tree(folders: Iterable[TaskFolder]) -> List[TaskFolder]:
    """Rebuild the parent-pointer list into a forest; orphans become roots."""
    nodes: Dict[str, TaskFolder] = {}
    ordered: List[TaskFolder] = []
    for folder in folders:
        node = dataclasses.replace(folder, children=[])
        nodes[folder.id] = node
        ordered.append(node)
    roots: List[TaskFolder] = []
    for node in ordered:
        parent = nodes.get(node.parent_id) if node.parent_id else None
        if parent is not None and parent is not node:
            parent.children.append(node)
        else:
            roots.append(node)
    return roots


def filter_tasks(
    tasks: Iterable[Task],
    selected: str,
    now: datetime,
    folder_id: Optional[str] = None,
) -> List[Task]:
    """Root-level task view used by the task list (subtasks ride along)."""
    if selected not in TASK_FILTERS:
        raise ValueError(f"Filter must be one of: {', '.join(TASK_FILTERS)}")
    items = [task for task in tasks if not task.parent_id]
    if folder_id:
        items = [task for task in items if task.folder_id == folder_id]
    if selected == "all":
        return items
    today: date = now.date()
    week_start = today - timedelta(days=weekday_from_sunday(today))

    def keep(task: Task) -> bool:
        if task.date is None:
            return False
        day = task.date.date()
        if selected == "today":
            return day == today
        if selected == "tomorrow":
            return day == today + timedelta(days=1)
        if selected == "week":
            return week_start <= day < week_start + timedelta(days=7)
        return not task.completed and task.date < now and day != today

    return [task for task in items if keep(task)]


def _check_priority(priority: Optional[str]) -> None:
    if priority is not None and priority not in PRIORITIES:
        raise ValueError(f"Priority must be one of: {', '.join(PRIORITIES)}")


# ── manager ──────────────────────────────────────────────────────────────────


class TaskManager:
    """Task forest and task folders backed by ``tasks.json``/``taskFolders.json``.

    Mutations build the new collection first and swap it in only after the
    whole document was written.
    """

    def __init__(self, store: JsonStore, clock: Callable[[], datetime] = datetime.now) -> None:
        self.store = store
        self.clock = clock
        self.tasks: List[Task] = []
        self.folders: List[TaskFolder] = []

    def load(self) -> List[Task]:
        raw = self.store.read_json(TASKS_FILE, [])
        self.tasks = [Task.from_dict(item) for item in raw if isinstance(item, dict)] if isinstance(raw, list) else []
        return self.tasks

    def load_folders(self) -> List[TaskFolder]:
        raw = self.store.read_json(TASK_FOLDERS_FILE, [])
        self.folders = (
            [TaskFolder.from_dict(item) for item in raw if isinstance(item, dict)] if isinstance(raw, list) else []
        )
        return self.folders

    def _commit_tasks(self, tasks: List[Task]) -> None:
        self.store.write_or_raise(TASKS_FILE, [t.to_dict() for t in tasks])
        self.tasks = tasks

    def _commit_folders(self, folders: List[TaskFolder]) -> None:
        self.store.write_or_raise(TASK_FOLDERS_FILE, [f.to_dict() for f in folders])
        self.folders = folders

    # tasks

    def find_task(self, task_id: str) -> Optional[Task]:
        return find_task(self.tasks, task_id)

    def add_task(
        self,
        title: str,
        *,
        date: Optional[datetime] = None,
        priority: Optional[str] = None,
        content: Optional[str] = None,
        folder_id: Optional[str] = None,
        completed: bool = False,
    ) -> Task:
        if not (title or "").strip():
            raise ValueError("Task title must not be empty")
        _check_priority(priority)
        task = Task(
            id=new_id(),
            title=title,
            completed=completed,
            date=date,
            priority=priority,
            content=content,
            folder_id=folder_id,
            expanded=True,
        )
        self._commit_tasks([*self.tasks, task])
        return task

    def add_subtask(
        self,
        parent_id: str,
        title: str,
        *,
        date: Optional[datetime] = None,
        priority: Optional[str] = None,
        content: Optional[str] = None,
        completed: bool = False,
    ) -> Optional[Task]:
        if not (title or "").strip():
            raise ValueError("Task title must not be empty")
        _check_priority(priority)
        if self.find_task(parent_id) is None:
            return None
        subtask = Task(
            id=new_id(),
            title=title,
            completed=completed,
            date=date,
            priority=priority,
            content=content,
            parent_id=parent_id,
            expanded=True,
        )

        def attach(parent: Task) -> Task:
            return dataclasses.replace(parent, subtasks=[*(parent.subtasks or []), subtask])

        self._commit_tasks(map_task(self.tasks, parent_id, attach))
        return subtask

    def update_task(self, task_id: str, **updates) -> Optional[Task]:
        unknown = set(updates) - _TASK_FIELDS
        if unknown:
            raise ValueError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if "title" in updates and not (updates["title"] or "").strip():
            raise ValueError("Task title must not be empty")
        for flag in ("completed", "expanded"):
            if flag in updates and not isinstance(updates[flag], bool):
                raise ValueError(f"Task field {flag} must be true or false")
        _check_priority(updates.get("priority"))
        if self.find_task(task_id) is None:
            return None
        updated = map_task(self.tasks, task_id, lambda task: dataclasses.replace(task, **updates))
        self._commit_tasks(updated)
        return find_task(updated, task_id)

    def update_task_content(self, task_id: str, content: str) -> Optional[Task]:
        return self.update_task(task_id, content=content)

    def delete_task(self, task_id: str) -> bool:
        if self.find_task(task_id) is None:
            return False
        self._commit_tasks(remove_task(self.tasks, task_id))
        return True

    def toggle_task(self, task_id: str) -> Optional[Task]:
        task = self.find_task(task_id)
        if task is None:
            return None
        return self.update_task(task_id, completed=not task.completed)

    def toggle_expanded(self, task_id: str) -> Optional[Task]:
        """Flip the UI expansion flag in memory only."""
        if self.find_task(task_id) is None:
            return None
        self.tasks = map_task(self.tasks, task_id, lambda task: dataclasses.replace(task, expanded=not task.expanded))
        return self.find_task(task_id)

    def filtered(self, selected: str, folder_id: Optional[str] = None) -> List[Task]:
        return filter_tasks(self.tasks, selected, self.clock(), folder_id)

    # folders

    def get_folder(self, folder_id: str) -> Optional[TaskFolder]:
        return next((f for f in self.folders if f.id == folder_id), None)

    def add_folder(self, name: str, parent_id: Optional[str] = None) -> TaskFolder:
        if not (name or "").strip():
            raise ValueError("Folder name must not be empty")
        folder = TaskFolder(id=new_id(), name=name, parent_id=parent_id)
        self._commit_folders([*self.folders, folder])
        return folder

    def update_folder(self, folder_id: str, **updates) -> Optional[TaskFolder]:
        unknown = set(updates) - _FOLDER_FIELDS
        if unknown:
            raise ValueError(f"Unknown folder fields: {', '.join(sorted(unknown))}")
        current = self.get_folder(folder_id)
        if current is None:
            return None
        new_parent = updates.get("parent_id")
        if new_parent and new_parent in folder_descendants(self.folders, folder_id):
            raise ValueError("A folder cannot be moved inside itself")
        updated = dataclasses.replace(current, **updates)
        self._commit_folders([updated if f.id == folder_id else f for f in self.folders])
        return updated

    def delete_folder(self, folder_id: str) -> List[str]:
        """Delete a folder and its descendants; returns the removed ids."""
        if self.get_folder(folder_id) is None:
            return []
        removed = folder_descendants(self.folders, folder_id)
        removed_set = set(removed)
        remaining = [f for f in self.folders if f.id not in removed_set]
        cleared = clear_folder_refs(self.tasks, removed_set)
        # no task on disk may keep a folderId whose folder is gone
        self.store.write_or_raise(TASKS_FILE, [t.to_dict() for t in cleared])
        self._commit_folders(remaining)
        self.tasks = cleared
        logger.info("Deleted task folder %s with %d descendant(s)", folder_id, len(removed) - 1)
        return removed

    def folder_tree(self) -> List[TaskFolder]:
        return build_folder_tree(self.folders)
