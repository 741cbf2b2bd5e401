from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Callable, Optional

from .adapters import files
from .adapters.store import JsonStore
from .git_sync import GitSync
from .routines import RoutineManager
from .tasks import TaskManager

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Everything bound to one open vault, handed to handlers explicitly."""

    root: Path
    clock: Callable[[], datetime] = datetime.now
    store: JsonStore = field(init=False)
    tasks: TaskManager = field(init=False)
    routines: RoutineManager = field(init=False)
    git: GitSync = field(init=False)
    lock: RLock = field(init=False, default_factory=RLock, repr=False)

    def __post_init__(self) -> None:
        self.store = JsonStore(self.root)
        self.tasks = TaskManager(self.store, clock=self.clock)
        self.routines = RoutineManager(self.store, clock=self.clock)
        self.git = GitSync(self.root)

    def load(self) -> "AppState":
        with self.lock:
            self.tasks.load()
            self.tasks.load_folders()
            self.routines.load()
            self.routines.check_streaks()
        logger.info(
            "Loaded vault %s: %d task(s), %d folder(s), %d routine(s)",
            self.root,
            len(self.tasks.tasks),
            len(self.tasks.folders),
            len(self.routines.routines),
        )
        return self


class StateManager:
    def __init__(self) -> None:
        self._state: Optional[AppState] = None
        self._lock = RLock()

    def open_vault(self, path: str, clock: Callable[[], datetime] = datetime.now) -> AppState:
        root_path = Path(path).expanduser().resolve()
        files.initialize_vault(root_path)
        if not root_path.exists() or not root_path.is_dir():
            raise ValueError(f"Vault directory does not exist: {root_path}")
        state = AppState(root=root_path, clock=clock).load()
        with self._lock:
            self._state = state
        return state

    def get(self) -> AppState:
        with self._lock:
            if self._state is None:
                raise RuntimeError("Vault is not open. Call /api/vault/select first.")
            return self._state

    def close(self) -> None:
        with self._lock:
            self._state = None


vault_state = StateManager()
