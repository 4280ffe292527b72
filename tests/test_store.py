from __future__ import annotations

import json
from pathlib import Path

import pytest

from taskmill.errors import StoreIOError, UnknownTagError
from taskmill.store import (
    MASTER_TAG,
    TaskStore,
    load_tags,
    migrate_legacy,
    resolve,
    serialize_tags,
)


def _store(tmp_path: Path) -> TaskStore:
    state_dir = tmp_path / ".taskmill"
    return TaskStore(state_dir / "tasks.json", state_dir / "state.json")


def _write(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_missing_file_is_a_fresh_master_tag(tmp_path: Path) -> None:
    store = _store(tmp_path)
    result = store.load()

    assert list(result.tags) == [MASTER_TAG]
    assert result.tags[MASTER_TAG]["tasks"] == []
    assert result.tags[MASTER_TAG]["metadata"]["created"]
    assert result.active_tag == MASTER_TAG
    assert result.migrated is False
    assert not store.tasks_path.exists()


def test_corrupt_file_fails_fast(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.tasks_path.parent.mkdir(parents=True)
    store.tasks_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StoreIOError):
        store.load()


def test_non_object_document_fails_fast(tmp_path: Path) -> None:
    store = _store(tmp_path)
    _write(store.tasks_path, [1, 2, 3])

    with pytest.raises(StoreIOError):
        store.load()


def test_legacy_file_is_migrated_once(tmp_path: Path) -> None:
    store = _store(tmp_path)
    _write(store.tasks_path, {"tasks": [{"id": 1, "title": "Legacy", "status": "pending"}]})

    first = store.load()
    assert first.migrated is True
    assert first.tags[MASTER_TAG]["tasks"][0]["title"] == "Legacy"
    assert first.tags[MASTER_TAG]["metadata"]["description"]

    on_disk = json.loads(store.tasks_path.read_text(encoding="utf-8"))
    assert MASTER_TAG in on_disk
    assert "tasks" in on_disk[MASTER_TAG]

    assert store.consume_migration_notice() is True
    assert store.consume_migration_notice() is False

    second = store.load()
    assert second.migrated is False
    assert second.tags[MASTER_TAG]["tasks"] == first.tags[MASTER_TAG]["tasks"]


def test_migrate_legacy_is_a_no_op_on_tagged_data() -> None:
    tagged = {
        "master": {
            "tasks": [{"id": 1}],
            "metadata": {"created": "a", "updated": "b", "description": "c"},
        },
        "feature": {"tasks": []},
    }
    tags, migrated = migrate_legacy(tagged)

    assert migrated is False
    assert tags["master"]["metadata"] == {"created": "a", "updated": "b", "description": "c"}
    # missing metadata is filled in
    assert tags["feature"]["metadata"]["description"]


@pytest.mark.parametrize(
    "tasks, message",
    [
        ([{"title": "no id"}], "entry 0 has no positive integer id"),
        ([{"id": 1}, "oops"], "entry 1 is not an object"),
        ([{"id": True}], "no positive integer id"),
        ([{"id": 2}, {"id": 2}], "duplicate task id 2"),
        ([{"id": 1, "dependencies": "2"}], "task 1 dependencies must be a list"),
        ([{"id": 1, "subtasks": {"id": 1}}], "task 1 subtasks must be a list"),
        ([{"id": 1, "subtasks": [3]}], "subtask 0 of task 1 is not an object"),
        ([{"id": 1, "subtasks": [{"id": 0}]}], "subtask 0 of task 1 has no positive integer id"),
        ([{"id": 1, "subtasks": [{"id": 1}, {"id": 1}]}], "duplicate subtask id 1.1"),
    ],
)
def test_unusable_task_records_fail_fast(tasks: list, message: str) -> None:
    with pytest.raises(StoreIOError, match=r"invalid task record in tag 'feature'") as raised:
        migrate_legacy({"master": {"tasks": []}, "feature": {"tasks": tasks}})
    assert message in str(raised.value)


def test_legacy_records_are_checked_before_conversion(tmp_path: Path) -> None:
    store = _store(tmp_path)
    _write(store.tasks_path, {"tasks": [{"id": 1, "subtasks": [{"title": "no id"}]}]})

    with pytest.raises(StoreIOError, match="tag 'master'"):
        store.load()
    # the broken file is left as it was
    assert "master" not in json.loads(store.tasks_path.read_text(encoding="utf-8"))


def test_resolve_precedence() -> None:
    tags, _ = load_tags(Path("/nonexistent/tasks.json"))
    tags["feature"] = {"tasks": [{"id": 1}], "metadata": {}}

    assert resolve(tags)[0] == MASTER_TAG
    assert resolve(tags, current_tag="feature")[0] == "feature"
    assert resolve(tags, "master", current_tag="feature")[0] == MASTER_TAG

    with pytest.raises(UnknownTagError) as raised:
        resolve(tags, "missing")
    assert raised.value.tag == "missing"


def test_save_drops_internal_fields_and_empty_subtasks(tmp_path: Path) -> None:
    store = _store(tmp_path)
    tags = {
        "master": {
            "tasks": [
                {"id": 1, "title": "a", "_view": "x", "subtasks": []},
                {"id": 2, "title": "b", "subtasks": [{"id": 1, "_cache": 1, "title": "c"}]},
            ],
            "metadata": {"created": "t", "updated": "t", "description": "d"},
        }
    }
    store.save(tags)

    on_disk = json.loads(store.tasks_path.read_text(encoding="utf-8"))
    first, second = on_disk["master"]["tasks"]
    assert first == {"id": 1, "title": "a"}
    assert second["subtasks"] == [{"id": 1, "title": "c"}]
    assert serialize_tags(tags) == on_disk


def test_current_tag_pointer_round_trip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    assert store.current_tag() == MASTER_TAG

    store.set_current_tag("feature")
    assert store.current_tag() == "feature"

    state = json.loads(store.state_path.read_text(encoding="utf-8"))
    assert state["currentTag"] == "feature"
    assert state["lastSwitched"]


def test_store_resolve_uses_pointer(tmp_path: Path) -> None:
    store = _store(tmp_path)
    tags = store.load().tags
    tags["feature"] = {"tasks": [], "metadata": {}}
    store.set_current_tag("feature")

    assert store.resolve(tags)[0] == "feature"
    assert store.resolve(tags, "master")[0] == "master"
