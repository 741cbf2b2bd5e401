from datetime import datetime

import pytest

from notesvault.server import tasks as task_module
from notesvault.server.adapters.store import TASK_FOLDERS_FILE, TASKS_FILE, JsonStore, StoreWriteError
from notesvault.server.models import Task, TaskFolder
from notesvault.server.tasks import TaskManager

NOW = datetime(2024, 5, 8, 12, 0)  # Wednesday


class CountingStore(JsonStore):
    def __init__(self, root, fail=False, fail_on=None):
        super().__init__(root)
        self.writes = []
        self.fail = fail
        self.fail_on = fail_on

    def write_json(self, name, data):
        self.writes.append(name)
        if self.fail or name == self.fail_on:
            return False
        return super().write_json(name, data)


@pytest.fixture
def manager(tmp_path):
    return TaskManager(CountingStore(tmp_path), clock=lambda: NOW)


def test_add_task_persists_and_expands(manager, tmp_path):
    task = manager.add_task("Write report", priority="P1", date=datetime(2024, 5, 9, 10, 0))
    assert task.expanded is True
    stored = JsonStore(tmp_path).read_json(TASKS_FILE)
    assert stored[0]["title"] == "Write report"
    assert stored[0]["priority"] == "P1"
    assert stored[0]["date"] == "2024-05-09T10:00:00"


def test_add_task_rejects_bad_input(manager):
    with pytest.raises(ValueError):
        manager.add_task("   ")
    with pytest.raises(ValueError):
        manager.add_task("x", priority="P9")
    assert manager.tasks == []


def test_subtasks_nest_under_parent(manager):
    parent = manager.add_task("Trip")
    child = manager.add_subtask(parent.id, "Book hotel")
    grandchild = manager.add_subtask(child.id, "Compare prices")
    assert child.parent_id == parent.id
    assert [t.id for t in manager.tasks] == [parent.id]
    assert manager.find_task(grandchild.id).parent_id == child.id
    assert manager.tasks[0].subtasks[0].subtasks[0].title == "Compare prices"


def test_add_subtask_to_missing_parent_writes_nothing(manager):
    assert manager.add_subtask("nope", "orphan") is None
    assert manager.store.writes == []


def test_delete_subtask_keeps_siblings_and_parent(manager, tmp_path):
    parent = manager.add_task("Trip")
    first = manager.add_subtask(parent.id, "Book hotel")
    second = manager.add_subtask(parent.id, "Pack")

    assert manager.delete_task(first.id) is True
    assert [t.id for t in manager.tasks[0].subtasks] == [second.id]

    assert manager.delete_task(second.id) is True
    assert manager.tasks[0].subtasks == []
    stored = JsonStore(tmp_path).read_json(TASKS_FILE)
    assert stored[0]["subtasks"] == []


def test_delete_parent_removes_whole_subtree(manager):
    parent = manager.add_task("Trip")
    child = manager.add_subtask(parent.id, "Book hotel")
    manager.add_task("Other")
    assert manager.delete_task(parent.id) is True
    assert manager.find_task(child.id) is None
    assert [t.title for t in manager.tasks] == ["Other"]
    assert manager.delete_task(parent.id) is False


def test_toggle_task_flips_completion_of_nested_task(manager):
    parent = manager.add_task("Trip")
    child = manager.add_subtask(parent.id, "Pack")
    assert manager.toggle_task(child.id).completed is True
    assert manager.toggle_task(child.id).completed is False
    assert manager.toggle_task("missing") is None


def test_toggle_expanded_is_not_written(manager):
    task = manager.add_task("Trip")
    writes = list(manager.store.writes)
    assert manager.toggle_expanded(task.id).expanded is False
    assert manager.store.writes == writes


def test_update_task_rejects_unknown_fields(manager):
    task = manager.add_task("Trip")
    with pytest.raises(ValueError):
        manager.update_task(task.id, colour="red")
    assert manager.update_task("missing", title="x") is None
    assert manager.update_task(task.id, title="Holiday").title == "Holiday"


@pytest.mark.parametrize(
    "updates",
    [{"title": None}, {"title": "   "}, {"completed": None}, {"expanded": "yes"}],
)
def test_update_task_rejects_null_and_blank_values(manager, tmp_path, updates):
    task = manager.add_task("Trip")
    writes = list(manager.store.writes)
    with pytest.raises(ValueError):
        manager.update_task(task.id, **updates)
    assert manager.find_task(task.id).title == "Trip"
    assert manager.find_task(task.id).completed is False
    assert manager.store.writes == writes
    assert JsonStore(tmp_path).read_json(TASKS_FILE)[0]["title"] == "Trip"


def test_update_task_content(manager, tmp_path):
    task = manager.add_task("Trip")
    assert manager.update_task_content(task.id, "Pack the tent").content == "Pack the tent"
    assert JsonStore(tmp_path).read_json(TASKS_FILE)[0]["content"] == "Pack the tent"
    assert manager.update_task_content("missing", "x") is None


def test_failed_write_keeps_previous_tasks(manager, tmp_path):
    manager.add_task("Trip")
    before = manager.tasks
    manager.store.fail = True
    with pytest.raises(StoreWriteError):
        manager.add_task("Lost")
    assert manager.tasks is before


def test_delete_folder_cascades_and_clears_task_refs(manager, tmp_path):
    work = manager.add_folder("Work")
    clients = manager.add_folder("Clients", work.id)
    acme = manager.add_folder("Acme", clients.id)
    home = manager.add_folder("Home")
    in_clients = manager.add_task("Invoice", folder_id=clients.id)
    at_home = manager.add_task("Laundry", folder_id=home.id)

    removed = manager.delete_folder(work.id)

    assert removed == [work.id, clients.id, acme.id]
    assert [f.id for f in manager.folders] == [home.id]
    assert manager.find_task(in_clients.id).folder_id is None
    assert manager.find_task(at_home.id).folder_id == home.id
    stored = JsonStore(tmp_path).read_json(TASK_FOLDERS_FILE)
    assert [f["id"] for f in stored] == [home.id]
    assert manager.delete_folder(work.id) == []


def test_failed_task_write_during_folder_delete_changes_nothing(manager, tmp_path):
    work = manager.add_folder("Work")
    invoice = manager.add_task("Invoice", folder_id=work.id)
    folders_before, tasks_before = manager.folders, manager.tasks
    manager.store.fail_on = TASKS_FILE

    with pytest.raises(StoreWriteError):
        manager.delete_folder(work.id)

    assert manager.folders is folders_before
    assert manager.tasks is tasks_before
    assert manager.find_task(invoice.id).folder_id == work.id
    disk = JsonStore(tmp_path)
    assert [f["id"] for f in disk.read_json(TASK_FOLDERS_FILE)] == [work.id]
    assert disk.read_json(TASKS_FILE)[0]["folderId"] == work.id


def test_failed_folder_write_during_folder_delete_leaves_no_dangling_refs(manager, tmp_path):
    work = manager.add_folder("Work")
    manager.add_task("Invoice", folder_id=work.id)
    folders_before, tasks_before = manager.folders, manager.tasks
    manager.store.fail_on = TASK_FOLDERS_FILE

    with pytest.raises(StoreWriteError):
        manager.delete_folder(work.id)

    assert manager.folders is folders_before
    assert manager.tasks is tasks_before
    disk = JsonStore(tmp_path)
    assert [f["id"] for f in disk.read_json(TASK_FOLDERS_FILE)] == [work.id]
    assert "folderId" not in disk.read_json(TASKS_FILE)[0]


def test_folder_cannot_move_under_its_descendant(manager):
    parent = manager.add_folder("Parent")
    child = manager.add_folder("Child", parent.id)
    with pytest.raises(ValueError):
        manager.update_folder(parent.id, parent_id=child.id)
    assert manager.update_folder(child.id, parent_id=None).parent_id is None


def test_folder_tree_promotes_orphans_to_roots():
    folders = [
        TaskFolder(id="a", name="A"),
        TaskFolder(id="b", name="B", parent_id="a"),
        TaskFolder(id="c", name="C", parent_id="gone"),
    ]
    roots = task_module.build_folder_tree(folders)
    assert [f.id for f in roots] == ["a", "c"]
    assert [f.id for f in roots[0].children] == ["b"]
    assert folders[0].children == []


def test_folder_descendants_survive_cycles():
    folders = [TaskFolder(id="a", name="A", parent_id="b"), TaskFolder(id="b", name="B", parent_id="a")]
    assert task_module.folder_descendants(folders, "a") == ["a", "b"]


def test_filters_use_root_tasks_only():
    items = [
        Task(id="today", title="t", date=datetime(2024, 5, 8, 18, 0)),
        Task(id="tomorrow", title="tm", date=datetime(2024, 5, 9, 9, 0)),
        Task(id="late", title="l", date=datetime(2024, 5, 6, 9, 0)),
        Task(id="late-done", title="ld", completed=True, date=datetime(2024, 5, 6, 9, 0)),
        Task(id="next-week", title="nw", date=datetime(2024, 5, 13, 9, 0)),
        Task(id="undated", title="u"),
        Task(id="sub", title="s", parent_id="today", date=datetime(2024, 5, 8, 9, 0)),
    ]

    def ids(selected):
        return [t.id for t in task_module.filter_tasks(items, selected, NOW)]

    assert ids("all") == ["today", "tomorrow", "late", "late-done", "next-week", "undated"]
    assert ids("today") == ["today"]
    assert ids("tomorrow") == ["tomorrow"]
    assert ids("overdue") == ["late"]
    assert ids("week") == ["today", "tomorrow", "late", "late-done"]
    with pytest.raises(ValueError):
        ids("someday")


def test_filter_by_folder(manager):
    folder = manager.add_folder("Work")
    manager.add_task("In folder", folder_id=folder.id)
    manager.add_task("Loose")
    assert [t.title for t in manager.filtered("all", folder.id)] == ["In folder"]


def test_load_keeps_unknown_keys(tmp_path):
    store = JsonStore(tmp_path)
    store.write_json(TASKS_FILE, [{"id": "1", "title": "Old", "completed": False, "tags": ["x"]}])
    manager = TaskManager(store, clock=lambda: NOW)
    manager.load()
    manager.toggle_task("1")
    assert store.read_json(TASKS_FILE)[0] == {"id": "1", "title": "Old", "completed": True, "tags": ["x"]}
