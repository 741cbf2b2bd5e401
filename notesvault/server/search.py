"""Substring search over notes, tasks and routines."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List

from .adapters import files
from .crypto import is_encrypted
from .models import Routine, Task

PREVIEW_CHARS = 200


def _first_matching_line(content: str, needle: str) -> str:
    for line in content.split("\n"):
        if needle in line.lower():
            return line.strip()
    return ""


def search(
    root: Path,
    tasks: Iterable[Task],
    routines: Iterable[Routine],
    query: str,
    limit: int = 10,
) -> List[dict]:
    needle = (query or "").strip().lower()
    if not needle:
        return []
    results: List[dict] = []

    for node in files.iter_notes(root):
        title = node["name"][: -len(files.NOTE_SUFFIX)]
        content = files.read_file(root, node["path"])
        if is_encrypted(content):
            content = ""
        if needle in title.lower() or needle in content.lower():
            results.append(
                {
                    "type": "note",
                    "id": node["path"],
                    "title": title,
                    "content": content[:PREVIEW_CHARS],
                    "path": node["path"],
                    "matchedLine": _first_matching_line(content, needle) or title,
                }
            )

    for task in tasks:
        if needle in task.title.lower() or needle in (task.content or "").lower():
            results.append(
                {
                    "type": "task",
                    "id": task.id,
                    "title": task.title,
                    "content": task.content or "",
                    "matchedLine": task.title,
                }
            )

    for routine in routines:
        if needle in routine.title.lower() or needle in (routine.content or "").lower():
            results.append(
                {
                    "type": "routine",
                    "id": routine.id,
                    "title": routine.title,
                    "content": routine.content or "",
                    "matchedLine": routine.title,
                }
            )

    return results[:limit]
