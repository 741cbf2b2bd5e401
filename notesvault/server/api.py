from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from notesvault.app import config
from notesvault.app import markdown_renderer

from . import crypto, search as search_module, shell
from .adapters import files
from .adapters.files import FileAccessError
from .adapters.store import StoreWriteError
from .models import Routine, Task, parse_timestamp
from .routines import describe_schedule, is_completed_today
from .state import AppState, vault_state

_ANSI_BLUE = "\033[94m"
_ANSI_RESET = "\033[0m"


def _log_api(message: str) -> None:
    if config._debug_enabled("NOTESVAULT_DEBUG_API"):
        print(f"{_ANSI_BLUE}[API] {message}{_ANSI_RESET}")


def get_state() -> AppState:
    try:
        return vault_state.get()
    except RuntimeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _bad_request(exc: Exception) -> HTTPException:
    return HTTPException(status_code=400, detail=str(exc))


def _serialize_routine(routine: Routine, now: datetime) -> dict:
    payload = routine.to_dict()
    payload["schedule"] = describe_schedule(routine)
    payload["completedToday"] = is_completed_today(routine, now)
    return payload


def _serialize_tasks(tasks: List[Task]) -> list[dict]:
    return [task.to_dict() for task in tasks]


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if value in (None, ""):
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise HTTPException(status_code=400, detail=f"Invalid date: {value}")
    return parsed


# ===== Payloads =====


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class VaultSelectPayload(BaseModel):
    path: str


class FilePathPayload(BaseModel):
    path: str = Field(..., description="Vault-relative path beginning with /")


class FileWritePayload(FilePathPayload):
    content: str


class CreatePathPayload(BaseModel):
    path: str
    is_dir: bool = False
    content: Optional[str] = ""


class CreateNotePayload(BaseModel):
    folder: str = f"/{files.NOTES_DIR}"
    name: str = Field(..., min_length=1)


class RenameMovePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    from_path: str = Field(..., alias="from")
    to_path: str = Field(..., alias="to")


class CheckboxPayload(FilePathPayload):
    line: int = Field(..., ge=0)


class InternalLinkPayload(BaseModel):
    name: str = Field(..., min_length=1)


class TaskCreatePayload(_CamelModel):
    title: str = Field(..., min_length=1)
    date: Optional[str] = None
    priority: Optional[Literal["P1", "P2", "P3"]] = None
    content: Optional[str] = None
    folder_id: Optional[str] = Field(None, alias="folderId")
    completed: bool = False


class TaskUpdatePayload(_CamelModel):
    title: Optional[str] = None
    completed: Optional[bool] = None
    date: Optional[str] = None
    priority: Optional[Literal["P1", "P2", "P3"]] = None
    content: Optional[str] = None
    folder_id: Optional[str] = Field(None, alias="folderId")
    expanded: Optional[bool] = None


class FolderCreatePayload(_CamelModel):
    name: str = Field(..., min_length=1)
    parent_id: Optional[str] = Field(None, alias="parentId")


class FolderUpdatePayload(_CamelModel):
    name: Optional[str] = None
    parent_id: Optional[str] = Field(None, alias="parentId")


class RoutineCreatePayload(_CamelModel):
    title: str = Field(..., min_length=1)
    type: Literal["daily", "weekly", "monthly"]
    frequency: int = Field(1, ge=1)
    day_of_week: Optional[int] = Field(None, alias="dayOfWeek", ge=0, le=6)
    day_of_month: Optional[Literal["first", "last"]] = Field(None, alias="dayOfMonth")
    content: Optional[str] = None


class RoutineUpdatePayload(_CamelModel):
    title: Optional[str] = None
    type: Optional[Literal["daily", "weekly", "monthly"]] = None
    frequency: Optional[int] = Field(None, ge=1)
    day_of_week: Optional[int] = Field(None, alias="dayOfWeek", ge=0, le=6)
    day_of_month: Optional[Literal["first", "last"]] = Field(None, alias="dayOfMonth")
    content: Optional[str] = None


class ContentPayload(BaseModel):
    content: str


class RenderPayload(BaseModel):
    content: str


class RunBlockPayload(RenderPayload):
    index: int = Field(..., ge=0)


class ExecPayload(BaseModel):
    command: str


class PasswordPayload(FilePathPayload):
    password: str = Field(..., min_length=1)


class GitConfigPayload(BaseModel):
    username: str
    repository: str
    token: Optional[str] = None


class GitCommitPayload(BaseModel):
    message: Optional[str] = None


class GitRemotePayload(BaseModel):
    token: Optional[str] = None
    branch: str = "main"
    remember_token: bool = False


class SettingsPayload(_CamelModel):
    custom_colors: Optional[dict] = Field(None, alias="customColors")


app = FastAPI(title="NotesVault Local API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^https?://(127\.0\.0\.1|localhost)(:\d+)?$",
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreWriteError)
def _store_write_failed(request: Request, exc: StoreWriteError) -> JSONResponse:
    _log_api(f"{request.method} {request.url.path} store write failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(FileAccessError)
def _file_access_denied(request: Request, exc: FileAccessError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/api/health")
def health() -> dict:
    return {"ok": True}


# ===== Vault and files =====


@app.post("/api/vault/select")
def select_vault(payload: VaultSelectPayload) -> dict:
    try:
        state = vault_state.open_vault(payload.path)
    except (ValueError, OSError) as exc:
        raise _bad_request(exc) from exc
    config.save_vault_path(str(state.root))
    config.save_settings_to_vault(state.root)
    _log_api(f"POST /api/vault/select root={state.root}")
    return {"root": str(state.root)}


@app.get("/api/vault")
def vault_info(state: AppState = Depends(get_state)) -> dict:
    return {"root": str(state.root), "notes": f"/{files.NOTES_DIR}"}


@app.get("/api/vault/tree")
def vault_tree(path: str = f"/{files.NOTES_DIR}", state: AppState = Depends(get_state)) -> dict:
    tree = files.build_tree(state.root, path)
    _log_api(f"GET /api/vault/tree path={path} nodes={len(tree)}")
    return {"root": str(state.root), "tree": tree}


@app.get("/api/vault/directory")
def vault_directory(path: str = "/", state: AppState = Depends(get_state)) -> dict:
    return {"entries": files.read_directory(state.root, path)}


@app.post("/api/file/read")
def file_read(payload: FilePathPayload, state: AppState = Depends(get_state)) -> dict:
    if not files.exists(state.root, payload.path):
        raise HTTPException(status_code=404, detail=f"Not found: {payload.path}")
    content = files.read_file(state.root, payload.path)
    encrypted = crypto.is_encrypted(content)
    if encrypted:
        config.set_note_encrypted(payload.path, True)
        content = ""
    return {"content": content, "encrypted": encrypted}


@app.post("/api/file/write")
def file_write(payload: FileWritePayload, state: AppState = Depends(get_state)) -> dict:
    ok = files.write_file(state.root, payload.path, payload.content)
    if not ok:
        raise HTTPException(status_code=500, detail=f"Could not write {payload.path}")
    return {"ok": True}


@app.post("/api/path/create")
def create_path(payload: CreatePathPayload, state: AppState = Depends(get_state)) -> dict:
    if payload.is_dir:
        ok = files.create_folder(state.root, payload.path)
    else:
        ok = files.create_file(state.root, payload.path, payload.content or "")
    return {"ok": ok, "path": payload.path}


@app.post("/api/note/create")
def create_note(payload: CreateNotePayload, state: AppState = Depends(get_state)) -> dict:
    path = files.create_note(state.root, payload.folder, payload.name)
    if path is None:
        raise HTTPException(status_code=500, detail="Could not create note")
    return {"path": path, "content": files.read_file(state.root, path)}


@app.post("/api/drawing/create")
def create_drawing(payload: CreateNotePayload, state: AppState = Depends(get_state)) -> dict:
    path = files.create_drawing(state.root, payload.folder, payload.name)
    if path is None:
        raise HTTPException(status_code=500, detail="Could not create drawing")
    return {"path": path}


@app.post("/api/path/delete")
def delete_path(payload: FilePathPayload, state: AppState = Depends(get_state)) -> dict:
    ok = files.delete_path(state.root, payload.path)
    if ok:
        config.set_note_encrypted(payload.path, False)
    return {"ok": ok}


@app.post("/api/file/rename")
def file_rename(payload: RenameMovePayload, state: AppState = Depends(get_state)) -> dict:
    ok = files.rename_path(state.root, payload.from_path, payload.to_path)
    if ok and payload.from_path in config.load_encrypted_notes():
        config.set_note_encrypted(payload.from_path, False)
        config.set_note_encrypted(payload.to_path, True)
    return {"ok": ok}


@app.post("/api/file/toggle-checkbox")
def toggle_checkbox(payload: CheckboxPayload, state: AppState = Depends(get_state)) -> dict:
    content = files.read_file(state.root, payload.path)
    updated = files.toggle_checkbox(content, payload.line)
    if updated != content and not files.write_file(state.root, payload.path, updated):
        raise HTTPException(status_code=500, detail=f"Could not write {payload.path}")
    return {"content": updated}


@app.post("/api/link/open")
def open_internal_link(payload: InternalLinkPayload, state: AppState = Depends(get_state)) -> dict:
    path, created = files.resolve_internal_link(state.root, payload.name)
    return {"path": path, "created": created, "content": files.read_file(state.root, path)}


# ===== Tasks =====


@app.get("/api/tasks")
def list_tasks(
    filter: Literal["all", "today", "tomorrow", "week", "overdue"] = "all",
    folder: Optional[str] = None,
    state: AppState = Depends(get_state),
) -> dict:
    return {"tasks": _serialize_tasks(state.tasks.filtered(filter, folder))}


@app.post("/api/tasks")
def add_task(payload: TaskCreatePayload, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        try:
            task = state.tasks.add_task(
                payload.title,
                date=_parse_date(payload.date),
                priority=payload.priority,
                content=payload.content,
                folder_id=payload.folder_id,
                completed=payload.completed,
            )
        except ValueError as exc:
            raise _bad_request(exc) from exc
    return {"task": task.to_dict()}


@app.post("/api/tasks/{task_id}/subtasks")
def add_subtask(task_id: str, payload: TaskCreatePayload, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        try:
            task = state.tasks.add_subtask(
                task_id,
                payload.title,
                date=_parse_date(payload.date),
                priority=payload.priority,
                content=payload.content,
                completed=payload.completed,
            )
        except ValueError as exc:
            raise _bad_request(exc) from exc
    if task is None:
        raise HTTPException(status_code=404, detail="Parent task not found")
    return {"task": task.to_dict()}


@app.patch("/api/tasks/{task_id}")
def update_task(task_id: str, payload: TaskUpdatePayload, state: AppState = Depends(get_state)) -> dict:
    updates = payload.model_dump(exclude_unset=True)
    if "date" in updates:
        updates["date"] = _parse_date(updates["date"])
    with state.lock:
        try:
            task = state.tasks.update_task(task_id, **updates)
        except ValueError as exc:
            raise _bad_request(exc) from exc
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"task": task.to_dict()}


@app.put("/api/tasks/{task_id}/content")
def update_task_content(task_id: str, payload: ContentPayload, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        task = state.tasks.update_task_content(task_id, payload.content)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"task": task.to_dict()}


@app.delete("/api/tasks/{task_id}")
def delete_task(task_id: str, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        deleted = state.tasks.delete_task(task_id)
    return {"ok": deleted, "tasks": _serialize_tasks(state.tasks.tasks)}


@app.post("/api/tasks/{task_id}/toggle")
def toggle_task(task_id: str, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        task = state.tasks.toggle_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"task": task.to_dict()}


@app.post("/api/tasks/{task_id}/expand")
def toggle_task_expanded(task_id: str, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        task = state.tasks.toggle_expanded(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"task": task.to_dict()}


@app.get("/api/folders")
def list_folders(state: AppState = Depends(get_state)) -> dict:
    return {
        "folders": [f.to_dict() for f in state.tasks.folders],
        "tree": [f.to_tree_dict() for f in state.tasks.folder_tree()],
    }


@app.post("/api/folders")
def add_folder(payload: FolderCreatePayload, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        try:
            folder = state.tasks.add_folder(payload.name, payload.parent_id)
        except ValueError as exc:
            raise _bad_request(exc) from exc
    return {"folder": folder.to_dict()}


@app.patch("/api/folders/{folder_id}")
def update_folder(folder_id: str, payload: FolderUpdatePayload, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        try:
            folder = state.tasks.update_folder(folder_id, **payload.model_dump(exclude_unset=True))
        except ValueError as exc:
            raise _bad_request(exc) from exc
    if folder is None:
        raise HTTPException(status_code=404, detail="Folder not found")
    return {"folder": folder.to_dict()}


@app.delete("/api/folders/{folder_id}")
def delete_folder(folder_id: str, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        removed = state.tasks.delete_folder(folder_id)
    return {"removed": removed}


# ===== Routines =====


@app.get("/api/routines")
def list_routines(
    filter: Literal["all", "overdue", "today", "tomorrow", "week", "month"] = "all",
    state: AppState = Depends(get_state),
) -> dict:
    now = state.clock()
    return {"routines": [_serialize_routine(r, now) for r in state.routines.filtered(filter)]}


@app.post("/api/routines")
def add_routine(payload: RoutineCreatePayload, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        try:
            routine = state.routines.add(
                payload.title,
                payload.type,
                frequency=payload.frequency,
                day_of_week=payload.day_of_week,
                day_of_month=payload.day_of_month,
                content=payload.content,
            )
        except ValueError as exc:
            raise _bad_request(exc) from exc
    return {"routine": _serialize_routine(routine, state.clock())}


@app.patch("/api/routines/{routine_id}")
def update_routine(routine_id: str, payload: RoutineUpdatePayload, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        try:
            routine = state.routines.update(routine_id, **payload.model_dump(exclude_unset=True))
        except ValueError as exc:
            raise _bad_request(exc) from exc
    if routine is None:
        raise HTTPException(status_code=404, detail="Routine not found")
    return {"routine": _serialize_routine(routine, state.clock())}


@app.put("/api/routines/{routine_id}/content")
def update_routine_content(routine_id: str, payload: ContentPayload, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        routine = state.routines.update_content(routine_id, payload.content)
    if routine is None:
        raise HTTPException(status_code=404, detail="Routine not found")
    return {"routine": _serialize_routine(routine, state.clock())}


@app.post("/api/routines/{routine_id}/complete")
def complete_routine(routine_id: str, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        routine = state.routines.complete(routine_id)
    if routine is None:
        raise HTTPException(status_code=404, detail="Routine not found")
    return {"routine": _serialize_routine(routine, state.clock())}


@app.delete("/api/routines/{routine_id}")
def delete_routine(routine_id: str, state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        deleted = state.routines.delete(routine_id)
    return {"ok": deleted}


@app.post("/api/routines/check")
def check_routines(state: AppState = Depends(get_state)) -> dict:
    with state.lock:
        changed = state.routines.check_streaks()
    return {"changed": changed}


# ===== Rendering and commands =====


@app.post("/api/render")
def render_markdown(payload: RenderPayload) -> dict:
    return {"html": markdown_renderer.render(payload.content)}


@app.post("/api/render/run")
def run_code_block(payload: RunBlockPayload, state: AppState = Depends(get_state)) -> dict:
    return markdown_renderer.run_code_block(
        payload.content, payload.index, lambda command: shell.execute(command, state.root)
    )


@app.post("/api/exec")
def exec_command(payload: ExecPayload, state: AppState = Depends(get_state)) -> dict:
    _log_api(f"POST /api/exec cwd={state.root}")
    return shell.execute(payload.command, state.root).to_dict()


# ===== Encryption =====


@app.get("/api/crypto/notes")
def encrypted_notes() -> dict:
    return {"paths": config.load_encrypted_notes()}


@app.post("/api/crypto/encrypt")
def encrypt_note(payload: PasswordPayload, state: AppState = Depends(get_state)) -> dict:
    ok, error = crypto.encrypt_note(state.root, payload.path, payload.password)
    if ok:
        config.set_note_encrypted(payload.path, True)
    return {"success": ok, "error": error or None}


@app.post("/api/crypto/open")
def open_encrypted_note(payload: PasswordPayload, state: AppState = Depends(get_state)) -> dict:
    ok, text = crypto.open_encrypted_note(state.root, payload.path, payload.password)
    if not ok:
        return {"success": False, "error": text}
    return {"success": True, "content": text}


@app.post("/api/crypto/decrypt")
def decrypt_note(payload: PasswordPayload, state: AppState = Depends(get_state)) -> dict:
    ok, text = crypto.decrypt_note(state.root, payload.path, payload.password)
    if not ok:
        return {"success": False, "error": text}
    config.set_note_encrypted(payload.path, False)
    return {"success": True, "content": text}


# ===== Git =====


def _git_credentials(state: AppState, token: Optional[str]) -> tuple[str, str, str]:
    git_config = config.load_git_config(state.root)
    if not git_config or not git_config["username"] or not git_config["repository"]:
        raise HTTPException(status_code=400, detail="Git username and repository are not configured")
    secret = token or config.load_git_token()
    if not secret:
        raise HTTPException(status_code=400, detail="A personal access token is required")
    return git_config["username"], git_config["repository"], secret


@app.get("/api/git/config")
def git_get_config(state: AppState = Depends(get_state)) -> dict:
    return {"config": config.load_git_config(state.root), "hasToken": config.load_git_token() is not None}


@app.post("/api/git/config")
def git_save_config(payload: GitConfigPayload, state: AppState = Depends(get_state)) -> dict:
    ok = config.save_git_config(state.root, payload.username, payload.repository)
    if payload.token is not None:
        config.save_git_token(payload.token)
    return {"ok": ok}


@app.post("/api/git/init")
def git_init(state: AppState = Depends(get_state)) -> dict:
    return state.git.init().to_dict()


@app.get("/api/git/status")
def git_status(state: AppState = Depends(get_state)) -> dict:
    return state.git.status().to_dict()


@app.get("/api/git/state")
def git_sync_state(state: AppState = Depends(get_state)) -> dict:
    git_config = config.load_git_config(state.root)
    return {"state": state.git.sync_state(configured=git_config is not None)}


@app.post("/api/git/commit")
def git_commit(payload: GitCommitPayload, state: AppState = Depends(get_state)) -> dict:
    return state.git.commit(payload.message).to_dict()


@app.post("/api/git/push")
def git_push(payload: GitRemotePayload, state: AppState = Depends(get_state)) -> dict:
    username, repository, token = _git_credentials(state, payload.token)
    result = state.git.push(repository, payload.branch, username, token)
    if result.ok and payload.remember_token and payload.token:
        config.save_git_token(payload.token)
    return result.to_dict()


@app.post("/api/git/pull")
def git_pull(payload: GitRemotePayload, state: AppState = Depends(get_state)) -> dict:
    username, repository, token = _git_credentials(state, payload.token)
    return state.git.pull(username, token, repository).to_dict()


@app.post("/api/git/sync")
def git_sync(payload: GitRemotePayload, state: AppState = Depends(get_state)) -> dict:
    username, repository, token = _git_credentials(state, payload.token)
    report = state.git.sync(username, token, repository, payload.branch)
    if report.state == "synced" and payload.remember_token and payload.token:
        config.save_git_token(payload.token)
    _log_api(f"POST /api/git/sync state={report.state} steps={report.steps}")
    return report.to_dict()


# ===== Settings and search =====


@app.get("/api/settings")
def get_settings(state: AppState = Depends(get_state)) -> dict:
    settings = config.load_settings_from_vault(state.root) or {}
    return {
        "vaultPath": settings.get("vaultPath", str(state.root)),
        "customColors": config.load_custom_colors(),
    }


@app.post("/api/settings")
def save_settings(payload: SettingsPayload, state: AppState = Depends(get_state)) -> dict:
    if payload.custom_colors:
        config.save_custom_colors(payload.custom_colors)
    return {"ok": config.save_settings_to_vault(state.root)}


@app.get("/api/search")
def api_search(
    q: str = Query("", description="Case-insensitive substring"),
    limit: int = Query(10, ge=1, le=100),
    state: AppState = Depends(get_state),
) -> dict:
    results = search_module.search(state.root, state.tasks.tasks, state.routines.routines, q, limit)
    _log_api(f"GET /api/search q={q!r} results={len(results)}")
    return {"results": results}


def get_app() -> FastAPI:
    return app
