from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"
DRAWING_SUFFIX = ".excalidraw"
NOTES_DIR = "Notes"
VAULT_DIRS = (".app", NOTES_DIR, f"{NOTES_DIR}/Daily", f"{NOTES_DIR}/Projects", "Attachments")

EMPTY_DRAWING = {
    "type": "excalidraw",
    "version": 2,
    "source": "notes-vault",
    "elements": [],
    "appState": {
        "viewBackgroundColor": "#1e1e1e",
        "gridSize": 20,
        "gridModeEnabled": False,
        "theme": "dark",
    },
    "files": {},
}

UNCHECKED_BOX = "- [ ]"
CHECKED_BOX = "- [x]"


class FileAccessError(RuntimeError):
    pass


def note_template(name: str) -> str:
    return f"# {name}\n\n"


def _resolve(root: Path, relative_path: str) -> Path:
    rel = (relative_path or "").replace("\\", "/").lstrip("/")
    root = root.resolve()
    target = (root / rel).resolve()
    if root not in target.parents and target != root:
        raise FileAccessError("Attempted access outside the vault root")
    return target


def _relative(root: Path, target: Path) -> str:
    rel = target.resolve().relative_to(root.resolve()).as_posix()
    return f"/{rel}" if rel != "." else "/"


def _sort_key(node: Dict) -> tuple:
    return (not node["is_dir"], node["name"].casefold(), node["name"])


def initialize_vault(root: Path) -> Path:
    root = Path(root).expanduser()
    for rel in VAULT_DIRS:
        directory = root / rel
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Error creating directory %s: %s", directory, exc)
    return root


def read_directory(root: Path, path: str = "/") -> List[Dict]:
    """Direct children of ``path``: hidden entries skipped, folders first."""
    target = _resolve(root, path)
    try:
        entries = list(target.iterdir())
    except OSError as exc:
        logger.error("Error reading directory %s: %s", target, exc)
        return []
    nodes = [
        {"name": entry.name, "path": _relative(root, entry), "is_dir": entry.is_dir()}
        for entry in entries
        if not entry.name.startswith(".")
    ]
    return sorted(nodes, key=_sort_key)


def build_tree(root: Path, path: str = f"/{NOTES_DIR}") -> List[Dict]:
    nodes = read_directory(root, path)
    for node in nodes:
        if node["is_dir"]:
            node["children"] = build_tree(root, node["path"])
    return nodes


def exists(root: Path, path: str) -> bool:
    return _resolve(root, path).exists()


def read_file(root: Path, path: str) -> str:
    target = _resolve(root, path)
    try:
        return target.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.error("Error reading file %s: %s", target, exc)
        return ""


def write_file(root: Path, path: str, content: str) -> bool:
    target = _resolve(root, path)
    try:
        target.write_text(content, encoding="utf-8")
    except OSError as exc:
        logger.error("Error writing file %s: %s", target, exc)
        return False
    return True


def create_file(root: Path, path: str, content: str = "") -> bool:
    return write_file(root, path, content)


def create_folder(root: Path, path: str) -> bool:
    target = _resolve(root, path)
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Error creating folder %s: %s", target, exc)
        return False
    return True


def delete_path(root: Path, path: str) -> bool:
    target = _resolve(root, path)
    if target == root.resolve():
        raise FileAccessError("Cannot delete the vault root")
    try:
        if target.is_dir():
            shutil.rmtree(target)
        else:
            target.unlink()
    except OSError as exc:
        logger.error("Error deleting %s: %s", target, exc)
        return False
    return True


def rename_path(root: Path, from_path: str, to_path: str) -> bool:
    """Rename in place or move to another folder; both are one rename call."""
    source = _resolve(root, from_path)
    dest = _resolve(root, to_path)
    try:
        os.rename(source, dest)
    except OSError as exc:
        logger.error("Error renaming %s to %s: %s", source, dest, exc)
        return False
    return True


def _with_suffix(name: str, suffix: str) -> str:
    return name if name.endswith(suffix) else f"{name}{suffix}"


def create_note(root: Path, folder: str, name: str) -> Optional[str]:
    """Create ``<folder>/<name>.md`` with a title heading; returns its path."""
    file_name = _with_suffix(name.strip(), NOTE_SUFFIX)
    title = file_name[: -len(NOTE_SUFFIX)]
    rel = f"{folder.rstrip('/')}/{file_name}"
    if not create_file(root, rel, note_template(title)):
        return None
    return _relative(root, _resolve(root, rel))


def create_drawing(root: Path, folder: str, name: str) -> Optional[str]:
    file_name = _with_suffix(name.strip(), DRAWING_SUFFIX)
    rel = f"{folder.rstrip('/')}/{file_name}"
    if not create_file(root, rel, json.dumps(EMPTY_DRAWING, indent=2)):
        return None
    return _relative(root, _resolve(root, rel))


def iter_notes(root: Path, path: str = f"/{NOTES_DIR}") -> Iterator[Dict]:
    """Walk note files depth-first in tree order."""
    for node in read_directory(root, path):
        if node["is_dir"]:
            yield from iter_notes(root, node["path"])
        elif node["name"].endswith(NOTE_SUFFIX):
            yield node


def resolve_internal_link(root: Path, name: str) -> Tuple[str, bool]:
    """Find the note a ``[[name]]`` link points to, creating it when missing.

    Lookup order: ``Notes/<name>.md``, then the first ``<name>.md`` found below
    ``Notes/``. Returns the vault-relative path and whether it was created.
    """
    file_name = f"{name}{NOTE_SUFFIX}"
    direct = f"/{NOTES_DIR}/{file_name}"
    if _resolve(root, direct).is_file():
        return direct, False
    for node in iter_notes(root):
        if node["name"] == file_name:
            return node["path"], False
    create_folder(root, f"/{NOTES_DIR}")
    if not create_file(root, direct, note_template(name)):
        raise FileAccessError(f"Could not create note {direct}")
    logger.info("Created note %s from internal link", direct)
    return direct, True


def toggle_checkbox(content: str, line_index: int) -> str:
    lines = content.split("\n")
    if not 0 <= line_index < len(lines):
        return content
    line = lines[line_index]
    if UNCHECKED_BOX in line:
        lines[line_index] = line.replace(UNCHECKED_BOX, CHECKED_BOX, 1)
    elif CHECKED_BOX in line:
        lines[line_index] = line.replace(CHECKED_BOX, UNCHECKED_BOX, 1)
    return "\n".join(lines)
