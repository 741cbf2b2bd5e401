from datetime import datetime

import pytest

from notesvault.server import crypto
from notesvault.server.adapters import files
from notesvault.server.models import Routine, Task
from notesvault.server.search import search


@pytest.fixture
def vault(tmp_path):
    root = files.initialize_vault(tmp_path)
    files.write_file(root, "/Notes/Groceries.md", "# Groceries\n\n- [ ] Oat milk\n- [ ] bread")
    files.write_file(root, "/Notes/Projects/Garden.md", "# Garden\n\nbuy more MILK for the compost?")
    files.write_file(root, "/Notes/Secret.md", crypto.wrap("milk money", "pw"))
    return root


def test_empty_query_returns_nothing(vault):
    assert search(vault, [], [], "   ") == []


def test_notes_match_title_or_content_case_insensitively(vault):
    results = search(vault, [], [], "milk")
    # Folders are walked before files, as in the tree view
    assert [r["path"] for r in results] == ["/Notes/Projects/Garden.md", "/Notes/Groceries.md"]
    assert results[0]["matchedLine"] == "buy more MILK for the compost?"
    assert results[1]["matchedLine"] == "- [ ] Oat milk"
    assert results[1]["type"] == "note"
    assert results[1]["title"] == "Groceries"


def test_title_match_without_content_match(vault):
    results = search(vault, [], [], "garden")
    assert results[0]["title"] == "Garden"


def test_preview_is_truncated(vault):
    files.write_file(vault, "/Notes/Long.md", "needle " + "x" * 500)
    result = search(vault, [], [], "needle")[0]
    assert len(result["content"]) == 200


def test_results_are_ordered_notes_tasks_routines_and_limited(vault):
    tasks = [Task(id="t1", title="Buy milk"), Task(id="t2", title="Call mum", content="ask about milk")]
    routines = [Routine(id="r1", title="Milk the goats", type="daily", next_due=datetime(2024, 5, 8))]
    results = search(vault, tasks, routines, "milk")
    assert [r["type"] for r in results] == ["note", "note", "task", "task", "routine"]
    assert results[3]["matchedLine"] == "Call mum"
    assert len(search(vault, tasks, routines, "milk", limit=3)) == 3
