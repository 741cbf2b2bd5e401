from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

ROUTINE_TYPES = ("daily", "weekly", "monthly")
MONTH_ANCHORS = ("first", "last")
PRIORITIES = ("P1", "P2", "P3")

_last_id = 0


def new_id() -> str:
    """Return a millisecond timestamp id, bumped when two calls land in the same ms."""
    global _last_id
    candidate = int(time.time() * 1000)
    if candidate <= _last_id:
        candidate = _last_id + 1
    _last_id = candidate
    return str(candidate)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored ISO timestamp into a local naive datetime.

    Older vault files store UTC strings ending in ``Z``; those
    are converted to local time so day arithmetic matches what the user saw.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _as_int(value: Any, default: Optional[int]) -> Optional[int]:
    """Coerce a hand-edited number, falling back to ``default`` when it is unusable."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class Routine:
    id: str
    title: str
    type: str
    frequency: int = 1
    day_of_week: Optional[int] = None
    day_of_month: Optional[str] = None
    content: Optional[str] = None
    streak: int = 0
    last_completed: Optional[datetime] = None
    next_due: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: dict) -> "Routine":
        known = {
            "id", "title", "type", "frequency", "dayOfWeek", "dayOfMonth",
            "content", "streak", "lastCompleted", "nextDue",
        }
        return cls(
            id=str(data.get("id") or new_id()),
            title=data.get("title") or "",
            type=data.get("type") or "daily",
            frequency=max(_as_int(data.get("frequency"), 1), 1),
            day_of_week=_as_int(data.get("dayOfWeek"), None),
            day_of_month=data.get("dayOfMonth"),
            content=data.get("content"),
            streak=max(_as_int(data.get("streak"), 0), 0),
            last_completed=parse_timestamp(data.get("lastCompleted")),
            next_due=parse_timestamp(data.get("nextDue")),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict:
        payload: dict = dict(self.extra)
        payload.update({"id": self.id, "title": self.title, "type": self.type, "frequency": self.frequency})
        if self.day_of_week is not None:
            payload["dayOfWeek"] = self.day_of_week
        if self.day_of_month is not None:
            payload["dayOfMonth"] = self.day_of_month
        if self.content is not None:
            payload["content"] = self.content
        payload["streak"] = self.streak
        if self.last_completed is not None:
            payload["lastCompleted"] = format_timestamp(self.last_completed)
        if self.next_due is not None:
            payload["nextDue"] = format_timestamp(self.next_due)
        return payload


@dataclass
class Task:
    id: str
    title: str
    completed: bool = False
    date: Optional[datetime] = None
    priority: Optional[str] = None
    content: Optional[str] = None
    subtasks: Optional[List["Task"]] = None
    parent_id: Optional[str] = None
    folder_id: Optional[str] = None
    expanded: Optional[bool] = None
    extra: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        known = {
            "id", "title", "completed", "date", "priority", "content",
            "subtasks", "parentId", "folderId", "expanded",
        }
        raw_subtasks = data.get("subtasks")
        subtasks = None
        if isinstance(raw_subtasks, list):
            subtasks = [cls.from_dict(child) for child in raw_subtasks if isinstance(child, dict)]
        return cls(
            id=str(data.get("id") or new_id()),
            title=data.get("title") or "",
            completed=bool(data.get("completed", False)),
            date=parse_timestamp(data.get("date")),
            priority=data.get("priority"),
            content=data.get("content"),
            subtasks=subtasks,
            parent_id=data.get("parentId"),
            folder_id=data.get("folderId"),
            expanded=data.get("expanded"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict:
        payload: dict = dict(self.extra)
        payload.update({"id": self.id, "title": self.title, "completed": self.completed})
        if self.date is not None:
            payload["date"] = format_timestamp(self.date)
        if self.priority is not None:
            payload["priority"] = self.priority
        if self.content is not None:
            payload["content"] = self.content
        if self.subtasks is not None:
            payload["subtasks"] = [child.to_dict() for child in self.subtasks]
        if self.parent_id is not None:
            payload["parentId"] = self.parent_id
        if self.folder_id is not None:
            payload["folderId"] = self.folder_id
        if self.expanded is not None:
            payload["expanded"] = self.expanded
        return payload


@dataclass
class TaskFolder:
    id: str
    name: str
    parent_id: Optional[str] = None
    children: List["TaskFolder"] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: dict) -> "TaskFolder":
        return cls(
            id=str(data.get("id") or new_id()),
            name=data.get("name") or "",
            parent_id=data.get("parentId"),
        )

    def to_dict(self) -> dict:
        payload: dict = {"id": self.id, "name": self.name}
        if self.parent_id is not None:
            payload["parentId"] = self.parent_id
        return payload

    def to_tree_dict(self) -> dict:
        payload = self.to_dict()
        payload["children"] = [child.to_tree_dict() for child in self.children]
        return payload
