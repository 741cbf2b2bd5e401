from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from notesvault.server.adapters.store import GIT_CONFIG_FILE, SETTINGS_FILE, JsonStore

logger = logging.getLogger(__name__)


def _global_config_path() -> Path:
    override = os.getenv("NOTESVAULT_CONFIG")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".notesvault_config.json"


def _debug_enabled(var_name: str) -> bool:
    """Check if a debug flag is enabled."""
    return os.getenv(var_name, "0") not in ("0", "false", "False", "", None)


def _read_global_config() -> dict:
    """Return the parsed global config, or an empty dict on error/missing."""
    path = _global_config_path()
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return {}
    return payload if isinstance(payload, dict) else {}


def _update_global_config(updates: dict) -> None:
    """Merge updates into global config file."""
    path = _global_config_path()
    existing = _read_global_config()
    existing.update(updates)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(existing, indent=2), encoding="utf-8")
    except OSError as exc:
        logger.error("Could not write %s: %s", path, exc)


# ── vault location ───────────────────────────────────────────────────────────


def default_vault_path() -> Path:
    env_path = os.getenv("NOTESVAULT_VAULT")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / "Documents" / "NotesVault"


def load_vault_path() -> Path:
    stored = _read_global_config().get("vaultPath")
    if isinstance(stored, str) and stored:
        return Path(stored).expanduser()
    return default_vault_path()


def save_vault_path(path: str) -> None:
    _update_global_config({"vaultPath": str(Path(path).expanduser())})


# ── settings mirrored between the vault and the user config ─────────────────


def load_custom_colors() -> Optional[dict]:
    colors = _read_global_config().get("customColors")
    return colors if isinstance(colors, dict) else None


def save_custom_colors(colors: Optional[dict]) -> None:
    _update_global_config({"customColors": colors})


def save_settings_to_vault(root: Path) -> bool:
    """Write ``settings.json`` so the settings travel with the vault."""
    settings = {
        "vaultPath": str(root),
        "customColors": load_custom_colors(),
    }
    return JsonStore(root).write_json(SETTINGS_FILE, settings)


def load_settings_from_vault(root: Path) -> Optional[dict]:
    """Read ``settings.json`` and mirror its colours into the user config."""
    settings = JsonStore(root).read_json(SETTINGS_FILE)
    if not isinstance(settings, dict):
        return None
    if settings.get("customColors"):
        save_custom_colors(settings["customColors"])
    return settings


# ── git ──────────────────────────────────────────────────────────────────────


def load_git_config(root: Path) -> Optional[dict]:
    payload = JsonStore(root).read_json(GIT_CONFIG_FILE)
    if not isinstance(payload, dict):
        return None
    return {"username": payload.get("username") or "", "repository": payload.get("repository") or ""}


def save_git_config(root: Path, username: str, repository: str) -> bool:
    # The token never goes into the vault; see save_git_token.
    return JsonStore(root).write_json(GIT_CONFIG_FILE, {"username": username, "repository": repository})


def load_git_token() -> Optional[str]:
    token = _read_global_config().get("gitToken")
    return token if isinstance(token, str) and token else None


def save_git_token(token: Optional[str]) -> None:
    _update_global_config({"gitToken": token or None})


# ── encrypted note registry ─────────────────────────────────────────────────


def load_encrypted_notes() -> list[str]:
    paths = _read_global_config().get("encryptedNotes", [])
    if not isinstance(paths, list):
        return []
    return [str(p) for p in paths if isinstance(p, str)]


def set_note_encrypted(path: str, encrypted: bool) -> list[str]:
    paths = [p for p in load_encrypted_notes() if p != path]
    if encrypted:
        paths.append(path)
    _update_global_config({"encryptedNotes": paths})
    return paths
