from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from notesvault.server import api
from notesvault.server.state import vault_state

NOW = datetime(2024, 5, 6, 9, 0)  # Monday


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("NOTESVAULT_CONFIG", str(tmp_path / "user.json"))
    vault_state.open_vault(str(tmp_path / "vault"), clock=lambda: NOW)
    yield TestClient(api.app)
    vault_state.close()


def test_health_works_without_vault():
    vault_state.close()
    with TestClient(api.app) as bare:
        assert bare.get("/api/health").json() == {"ok": True}
        assert bare.get("/api/tasks").status_code == 400


def test_select_vault_initializes_layout(tmp_path, monkeypatch):
    monkeypatch.setenv("NOTESVAULT_CONFIG", str(tmp_path / "user.json"))
    bare = TestClient(api.app)
    resp = bare.post("/api/vault/select", json={"path": str(tmp_path / "fresh")})
    assert resp.status_code == 200
    assert (tmp_path / "fresh" / "Notes" / "Daily").is_dir()
    assert (tmp_path / "fresh" / ".app" / "settings.json").exists()
    vault_state.close()


def test_file_round_trip_and_tree(client):
    assert client.post("/api/file/write", json={"path": "/Notes/Hello.md", "content": "# Hello"}).json() == {
        "ok": True
    }
    read = client.post("/api/file/read", json={"path": "/Notes/Hello.md"}).json()
    assert read == {"content": "# Hello", "encrypted": False}
    tree = client.get("/api/vault/tree").json()["tree"]
    assert [node["name"] for node in tree] == ["Daily", "Projects", "Hello.md"]


def test_missing_file_is_404_and_escape_is_400(client):
    assert client.post("/api/file/read", json={"path": "/Notes/none.md"}).status_code == 404
    assert client.post("/api/file/read", json={"path": "/../../etc/passwd"}).status_code == 400


def test_note_creation_rename_and_delete(client):
    created = client.post("/api/note/create", json={"folder": "/Notes/Projects", "name": "Plan"}).json()
    assert created == {"path": "/Notes/Projects/Plan.md", "content": "# Plan\n\n"}
    moved = client.post("/api/file/rename", json={"from": "/Notes/Projects/Plan.md", "to": "/Notes/Plan.md"})
    assert moved.json() == {"ok": True}
    assert client.post("/api/path/delete", json={"path": "/Notes/Plan.md"}).json() == {"ok": True}


def test_checkbox_toggle_writes_file(client):
    client.post("/api/file/write", json={"path": "/Notes/List.md", "content": "# List\n- [ ] milk"})
    resp = client.post("/api/file/toggle-checkbox", json={"path": "/Notes/List.md", "line": 1})
    assert resp.json() == {"content": "# List\n- [x] milk"}
    assert client.post("/api/file/read", json={"path": "/Notes/List.md"}).json()["content"].endswith("[x] milk")


def test_internal_link_creates_note(client):
    resp = client.post("/api/link/open", json={"name": "Inbox"}).json()
    assert resp == {"path": "/Notes/Inbox.md", "created": True, "content": "# Inbox\n\n"}


def test_task_lifecycle(client):
    task = client.post(
        "/api/tasks", json={"title": "Pay rent", "priority": "P1", "date": "2024-05-06T18:00:00"}
    ).json()["task"]
    sub = client.post(f"/api/tasks/{task['id']}/subtasks", json={"title": "Find IBAN"}).json()["task"]
    assert sub["parentId"] == task["id"]

    today = client.get("/api/tasks", params={"filter": "today"}).json()["tasks"]
    assert [t["title"] for t in today] == ["Pay rent"]
    assert today[0]["subtasks"][0]["title"] == "Find IBAN"

    toggled = client.post(f"/api/tasks/{sub['id']}/toggle").json()["task"]
    assert toggled["completed"] is True

    patched = client.patch(f"/api/tasks/{task['id']}", json={"title": "Pay rent (May)", "priority": None})
    assert patched.json()["task"]["title"] == "Pay rent (May)"
    assert "priority" not in patched.json()["task"]

    assert client.delete(f"/api/tasks/{sub['id']}").json()["tasks"][0]["subtasks"] == []
    assert client.post("/api/tasks/nope/toggle").status_code == 404
    assert client.post("/api/tasks", json={"title": "x", "priority": "P7"}).status_code == 422
    assert client.get("/api/tasks", params={"filter": "someday"}).status_code == 422


def test_folder_endpoints(client):
    work = client.post("/api/folders", json={"name": "Work"}).json()["folder"]
    child = client.post("/api/folders", json={"name": "Clients", "parentId": work["id"]}).json()["folder"]
    client.post("/api/tasks", json={"title": "Invoice", "folderId": child["id"]})

    tree = client.get("/api/folders").json()["tree"]
    assert tree[0]["children"][0]["name"] == "Clients"
    assert client.patch(f"/api/folders/{work['id']}", json={"parentId": child["id"]}).status_code == 400

    assert client.delete(f"/api/folders/{work['id']}").json() == {"removed": [work["id"], child["id"]]}
    assert "folderId" not in client.get("/api/tasks").json()["tasks"][0]


def test_routine_endpoints(client):
    resp = client.post("/api/routines", json={"title": "Gym", "type": "weekly", "dayOfWeek": 3})
    routine = resp.json()["routine"]
    assert routine["nextDue"] == "2024-05-08T09:00:00"
    assert routine["schedule"] == "Every Wednesday"
    assert routine["completedToday"] is False

    done = client.post(f"/api/routines/{routine['id']}/complete").json()["routine"]
    assert done["streak"] == 1
    assert done["completedToday"] is True
    assert done["nextDue"] == "2024-05-15T09:00:00"

    assert client.get("/api/routines", params={"filter": "overdue"}).json()["routines"] == []
    assert client.post("/api/routines/check").json() == {"changed": False}
    assert client.post("/api/routines", json={"title": "Gym", "type": "weekly"}).status_code == 400
    assert client.delete(f"/api/routines/{routine['id']}").json() == {"ok": True}


def test_null_title_patch_is_rejected_and_search_keeps_working(client):
    routine = client.post("/api/routines", json={"title": "Gym", "type": "daily"}).json()["routine"]
    task = client.post("/api/tasks", json={"title": "Gym bag"}).json()["task"]

    assert client.patch(f"/api/routines/{routine['id']}", json={"title": None}).status_code == 400
    assert client.patch(f"/api/tasks/{task['id']}", json={"title": None}).status_code == 400
    assert client.patch(f"/api/tasks/{task['id']}", json={"completed": None}).status_code == 400

    resp = client.get("/api/search", params={"q": "gym"})
    assert resp.status_code == 200
    assert sorted(r["type"] for r in resp.json()["results"]) == ["routine", "task"]


def test_content_endpoints(client):
    routine = client.post("/api/routines", json={"title": "Gym", "type": "weekly", "dayOfWeek": 3}).json()["routine"]
    task = client.post("/api/tasks", json={"title": "Pay rent"}).json()["task"]

    updated = client.put(f"/api/routines/{routine['id']}/content", json={"content": "Legs"}).json()["routine"]
    assert updated["content"] == "Legs"
    assert updated["nextDue"] == routine["nextDue"]
    resp = client.put(f"/api/tasks/{task['id']}/content", json={"content": "IBAN in notes"})
    assert resp.json()["task"]["content"] == "IBAN in notes"
    assert client.get("/api/tasks").json()["tasks"][0]["content"] == "IBAN in notes"

    assert client.put("/api/routines/nope/content", json={"content": "x"}).status_code == 404
    assert client.put("/api/tasks/nope/content", json={"content": "x"}).status_code == 404
    assert client.put(f"/api/tasks/{task['id']}/content", json={}).status_code == 422


def test_store_write_failure_is_500(client, monkeypatch):
    state = vault_state.get()
    monkeypatch.setattr(state.store, "write_json", lambda name, data: False)
    assert client.post("/api/tasks", json={"title": "Lost"}).status_code == 500
    assert state.tasks.tasks == []


def test_render_and_run(client):
    html = client.post("/api/render", json={"content": "# Hi\n- [ ] one"}).json()["html"]
    assert "<h1>Hi</h1>" in html
    assert 'data-line="1"' in html
    run = client.post("/api/render/run", json={"content": "```sh\necho ran\n```", "index": 0}).json()
    assert run == {"index": 0, "success": True, "output": "ran\n"}


def test_exec_runs_in_vault(client):
    client.post("/api/file/write", json={"path": "/Notes/x.md", "content": ""})
    assert client.post("/api/exec", json={"command": "ls Notes"}).json()["output"].split() == [
        "Daily",
        "Projects",
        "x.md",
    ]
    failed = client.post("/api/exec", json={"command": "exit 2"}).json()
    assert failed["success"] is False


def test_encryption_endpoints(client):
    client.post("/api/file/write", json={"path": "/Notes/Diary.md", "content": "dear diary"})
    body = {"path": "/Notes/Diary.md", "password": "pw"}
    assert client.post("/api/crypto/encrypt", json=body).json() == {"success": True, "error": None}
    assert client.post("/api/file/read", json={"path": "/Notes/Diary.md"}).json() == {
        "content": "",
        "encrypted": True,
    }
    assert client.get("/api/crypto/notes").json() == {"paths": ["/Notes/Diary.md"]}
    assert client.post("/api/crypto/open", json=body).json() == {"success": True, "content": "dear diary"}
    assert client.post("/api/crypto/decrypt", json=body).json() == {"success": True, "content": "dear diary"}
    assert client.get("/api/crypto/notes").json() == {"paths": []}


def test_search_endpoint(client):
    client.post("/api/file/write", json={"path": "/Notes/Shopping.md", "content": "apples"})
    client.post("/api/tasks", json={"title": "Buy apples"})
    results = client.get("/api/search", params={"q": "APPLES"}).json()["results"]
    assert [r["type"] for r in results] == ["note", "task"]


def test_git_push_requires_configuration(client):
    assert client.post("/api/git/push", json={}).status_code == 400
    client.post("/api/git/config", json={"username": "alice", "repository": "notes"})
    assert client.get("/api/git/config").json() == {
        "config": {"username": "alice", "repository": "notes"},
        "hasToken": False,
    }
    assert client.post("/api/git/push", json={}).status_code == 400


def test_settings_round_trip(client):
    saved = client.post("/api/settings", json={"customColors": {"accent": "#abcdef"}})
    assert saved.json() == {"ok": True}
    settings = client.get("/api/settings").json()
    assert settings["customColors"] == {"accent": "#abcdef"}
