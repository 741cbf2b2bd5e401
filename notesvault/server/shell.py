from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class ExecResult:
    ok: bool
    output: str = ""
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if self.ok:
            return {"success": True, "output": self.output}
        return {"success": False, "error": self.error}


def execute(command: str, cwd: Path) -> ExecResult:
    """Run ``command`` through the shell inside the vault.

    No timeout is applied; a command that never exits blocks the caller.
    """
    if not (command or "").strip():
        return ExecResult(ok=False, error="Command is empty")
    logger.info("[Exec] %s (cwd=%s)", command.splitlines()[0], cwd)
    try:
        result = subprocess.run(
            command,
            shell=True,
            cwd=str(cwd),
            capture_output=True,
            text=True,
        )
    except OSError as exc:
        logger.warning("[Exec] could not start command: %s", exc)
        return ExecResult(ok=False, error=str(exc))
    if result.returncode != 0:
        detail = (result.stderr or result.stdout).strip()
        message = f"Command failed (exit {result.returncode})"
        if detail:
            message = f"{message}: {detail}"
        logger.info("[Exec] %s", message)
        return ExecResult(ok=False, output=result.stdout, error=message)
    return ExecResult(ok=True, output=result.stdout)
