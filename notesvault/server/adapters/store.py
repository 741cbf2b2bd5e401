from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

APP_DIR = ".app"

TASKS_FILE = "tasks.json"
TASK_FOLDERS_FILE = "taskFolders.json"
ROUTINES_FILE = "routines.json"
SETTINGS_FILE = "settings.json"
GIT_CONFIG_FILE = "git-config.json"


class StoreWriteError(RuntimeError):
    """Raised by managers when a full-document write did not reach the disk."""


class JsonStore:
    """Whole-document JSON persistence under ``<vault>/.app``.

    Reads fall back to a default and writes report success as a bool; neither
    raises on filesystem errors.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def app_dir(self) -> Path:
        return self.root / APP_DIR

    def path_for(self, name: str) -> Path:
        return self.app_dir / name

    def read_json(self, name: str, default: Any = None) -> Any:
        target = self.path_for(name)
        try:
            return json.loads(target.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.debug("%s not found, returning default", name)
            return default
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Error reading %s: %s", name, exc)
            return default

    def write_json(self, name: str, data: Any) -> bool:
        target = self.path_for(name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Error writing %s: %s", name, exc)
            return False
        return True

    def write_or_raise(self, name: str, data: Any) -> None:
        if not self.write_json(name, data):
            raise StoreWriteError(f"Failed to write {name}")

