"""Vault synchronisation through the ``git`` command line tool.

Each public method maps onto one git command (or a short fixed sequence) run
inside the vault root. Failures are returned as messages; nothing is retried,
merged or rebased here.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

logger = logging.getLogger(__name__)

DEFAULT_HOST = "github.com"
DEFAULT_BRANCH = "main"
REMOTE_NAME = "origin"

SYNC_STATES = ("synced", "unsynced", "syncing", "error")


@dataclass
class GitResult:
    ok: bool
    message: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        payload: dict = {"success": self.ok}
        if self.message is not None:
            payload["message"] = self.message
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass
class GitStatus:
    ok: bool
    clean: bool = False
    modified_count: int = 0
    current: Optional[str] = None
    tracking: Optional[str] = None
    has_commits: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if not self.ok:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "isClean": self.clean,
            "modified": self.modified_count,
            "current": self.current,
            "tracking": self.tracking,
            "hasCommits": self.has_commits,
        }


@dataclass
class SyncReport:
    state: str
    error: Optional[str] = None
    steps: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"state": self.state, "error": self.error, "steps": self.steps}


def build_remote_url(username: str, token: str, repository: str, host: str = DEFAULT_HOST) -> str:
    user = quote(username, safe="")
    secret = quote(token, safe="")
    return f"https://{user}:{secret}@{host}/{user}/{repository}.git"


def default_commit_message(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"Update: {now:%d.%m.%Y %H:%M:%S}"


def _parse_branch_line(line: str) -> tuple[Optional[str], Optional[str]]:
    """Split ``## main...origin/main [ahead 1]`` into branch and upstream."""
    text = line[3:].strip()
    for prefix in ("No commits yet on ", "Initial commit on "):
        if text.startswith(prefix):
            return text[len(prefix):].strip() or None, None
    if text.startswith("HEAD (no branch)"):
        return None, None
    text = text.split(" [", 1)[0]
    if "..." in text:
        current, tracking = text.split("...", 1)
        return current or None, tracking or None
    return text or None, None


class GitSync:
    def __init__(self, root: Path, host: str = DEFAULT_HOST, git_binary: str = "git") -> None:
        self.root = Path(root)
        self.host = host
        self.git_binary = git_binary
        self._secrets: set[str] = set()

    def _mask(self, text: str) -> str:
        for secret in self._secrets:
            if secret:
                text = text.replace(secret, "***").replace(quote(secret, safe=""), "***")
        return text

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        env = dict(os.environ)
        env.setdefault("GIT_TERMINAL_PROMPT", "0")
        logger.debug("[Git] %s", self._mask(" ".join(args)))
        return subprocess.run(
            [self.git_binary, *args],
            cwd=str(self.root),
            capture_output=True,
            text=True,
            env=env,
        )

    def _call(self, *args: str) -> GitResult:
        try:
            result = self._run(*args)
        except OSError as exc:
            return GitResult(ok=False, error=f"git is not available: {exc}")
        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip() or f"git {args[0]} failed ({result.returncode})"
            detail = self._mask(detail)
            logger.info("[Git] %s failed: %s", args[0], detail)
            return GitResult(ok=False, error=detail)
        return GitResult(ok=True, message=self._mask(result.stdout.strip()) or None)

    def init(self) -> GitResult:
        return self._call("init")

    def has_commits(self) -> bool:
        return self._call("rev-parse", "--verify", "--quiet", "HEAD").ok

    def status(self) -> GitStatus:
        result = self._call("status", "--porcelain=v1", "--branch")
        if not result.ok:
            return GitStatus(ok=False, error=result.error)
        current = tracking = None
        changes = 0
        for line in (result.message or "").splitlines():
            if line.startswith("## "):
                current, tracking = _parse_branch_line(line)
            elif line.strip():
                changes += 1
        return GitStatus(
            ok=True,
            clean=changes == 0,
            modified_count=changes,
            current=current,
            tracking=tracking,
            has_commits=self.has_commits(),
        )

    def commit(self, message: Optional[str] = None) -> GitResult:
        added = self._call("add", ".")
        if not added.ok:
            return added
        commit_message = message or default_commit_message()
        try:
            result = self._run("commit", "-m", commit_message)
        except OSError as exc:
            return GitResult(ok=False, error=f"git is not available: {exc}")
        output = f"{result.stdout}\n{result.stderr}"
        if result.returncode != 0:
            if "nothing to commit" in output or "nothing added to commit" in output:
                return GitResult(ok=True, message="No changes to commit")
            return GitResult(ok=False, error=self._mask(output.strip()))
        logger.info("[Git] committed: %s", commit_message)
        return GitResult(ok=True, message=commit_message)

    def _point_origin(self, username: str, token: str, repository: str) -> GitResult:
        self._secrets.add(token)
        url = build_remote_url(username, token, repository, self.host)
        remotes = self._call("remote")
        if not remotes.ok:
            return remotes
        names = (remotes.message or "").split()
        if REMOTE_NAME in names:
            return self._call("remote", "set-url", REMOTE_NAME, url)
        return self._call("remote", "add", REMOTE_NAME, url)

    def push(self, repository: str, branch: str, username: str, token: str) -> GitResult:
        pointed = self._point_origin(username, token, repository)
        if not pointed.ok:
            return pointed
        pushed = self._call("push", REMOTE_NAME, branch)
        if not pushed.ok:
            return pushed
        return GitResult(ok=True)

    def pull(self, username: str, token: str, repository: Optional[str] = None) -> GitResult:
        if repository:
            pointed = self._point_origin(username, token, repository)
            if not pointed.ok:
                return pointed
        pulled = self._call("pull", REMOTE_NAME, DEFAULT_BRANCH)
        if not pulled.ok:
            return pulled
        return GitResult(ok=True, message="Notes updated successfully")

    def sync_state(self, configured: bool = True) -> str:
        """Idle indicator state: synced when clean with history, otherwise unsynced."""
        if not configured:
            return "error"
        status = self.status()
        if not status.ok:
            return "error"
        if status.clean and status.has_commits:
            return "synced"
        return "unsynced"

    def sync(self, username: str, token: str, repository: str, branch: str = DEFAULT_BRANCH) -> SyncReport:
        """Commit local changes, pull, then push."""
        if not username or not repository:
            return SyncReport(state="error", error="Git username and repository must be configured")
        if not token:
            return SyncReport(state="error", error="A personal access token is required")
        report = SyncReport(state="syncing")
        status = self.status()
        if not status.ok:
            report.state, report.error = "error", status.error
            return report
        report.steps.append("status")
        if not status.has_commits or status.modified_count > 0:
            committed = self.commit()
            if not committed.ok:
                report.state, report.error = "error", committed.error
                return report
            report.steps.append("commit")
        pulled = self.pull(username, token, repository)
        if pulled.ok:
            report.steps.append("pull")
        else:
            logger.warning("[Git] pull failed, pushing anyway: %s", pulled.error)
        pushed = self.push(repository, branch, username, token)
        if not pushed.ok:
            report.state, report.error = "error", pushed.error
            return report
        report.steps.append("push")
        report.state = "synced"
        return report
