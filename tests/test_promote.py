from __future__ import annotations

import copy

import pytest

from taskmill.errors import ConflictError, NotFoundError, ValidationError
from taskmill.graph import validate
from taskmill.models import TaskRef
from taskmill.promote import demote, move_subtask, promote, renumber_task


def _tasks() -> list[dict]:
    return [
        {"id": 1, "title": "Setup", "status": "done", "dependencies": []},
        {
            "id": 3,
            "title": "Parent",
            "status": "in-progress",
            "priority": "high",
            "dependencies": [1, "3.2"],
            "subtasks": [
                {"id": 1, "title": "one", "status": "done", "dependencies": []},
                {
                    "id": 2,
                    "title": "two",
                    "description": "the second step",
                    "details": "do it",
                    "testStrategy": "check it",
                    "status": "in-progress",
                    "dependencies": [1],
                },
                {"id": 3, "title": "three", "status": "pending", "dependencies": [2]},
            ],
        },
        {"id": 4, "title": "Later", "status": "pending", "dependencies": ["3.2"]},
    ]


def test_promoted_subtask_becomes_next_task_depending_on_parent() -> None:
    tasks = _tasks()

    updated, new_task = promote(tasks, 3, 2)

    assert new_task["id"] == 5
    assert 3 in new_task["dependencies"]
    assert new_task["title"] == "two"
    assert new_task["description"] == "the second step"
    assert new_task["details"] == "do it"
    assert new_task["testStrategy"] == "check it"
    assert new_task["status"] == "in-progress"
    assert new_task["priority"] == "high"
    assert updated[-1] is new_task
    # the input is not modified
    assert len(tasks[1]["subtasks"]) == 3


def test_sibling_dependencies_are_qualified_at_task_level() -> None:
    _, new_task = promote(_tasks(), 3, 2)
    assert new_task["dependencies"] == ["3.1", 3]


def test_references_to_the_old_subtask_follow_the_new_task() -> None:
    updated, _ = promote(_tasks(), 3, 2)
    by_id = {task["id"]: task for task in updated}

    assert by_id[4]["dependencies"] == [5]
    assert [sub["id"] for sub in by_id[3]["subtasks"]] == [1, 3]
    assert by_id[3]["subtasks"][1]["dependencies"] == ["5"]
    # the parent no longer points at its own promoted child
    assert by_id[3]["dependencies"] == [1]
    assert validate(updated).ok


def test_promoting_last_subtask_drops_the_empty_list() -> None:
    tasks = [
        {"id": 1, "title": "p", "subtasks": [{"id": 1, "title": "only", "dependencies": []}]},
    ]

    updated, new_task = promote(tasks, 1, 1)

    assert "subtasks" not in updated[0]
    assert new_task["id"] == 2
    assert new_task["status"] == "pending"
    assert new_task["priority"] == "medium"
    assert new_task["dependencies"] == [1]


def test_missing_subtask_is_not_found() -> None:
    with pytest.raises(NotFoundError, match="subtask not found: 3.9"):
        promote(_tasks(), 3, 9)
    with pytest.raises(NotFoundError):
        promote(_tasks(), 8, 1)


def test_promoted_task_can_take_a_chosen_free_id() -> None:
    updated, new_task = promote(_tasks(), 3, 2, task_id=2)

    assert new_task["id"] == 2
    assert [task["id"] for task in updated] == [1, 2, 3, 4]
    assert updated[3]["dependencies"] == [2]

    with pytest.raises(ConflictError, match="task 4 already exists"):
        promote(_tasks(), 3, 2, task_id=4)


def test_promotion_that_would_close_a_cycle_is_rejected() -> None:
    tasks = [
        {
            "id": 3,
            "title": "Parent",
            "dependencies": [4],
            "subtasks": [
                {"id": 1, "title": "one", "dependencies": []},
                {"id": 2, "title": "two", "dependencies": []},
            ],
        },
        {"id": 4, "title": "Follow-up", "dependencies": ["3.2"]},
    ]
    before = copy.deepcopy(tasks)

    with pytest.raises(ValidationError, match="dependency cycle: 3 -> 4 -> 5 -> 3"):
        promote(tasks, 3, 2)
    assert tasks == before


def _demote_tasks() -> list[dict]:
    return [
        {"id": 1, "title": "Setup", "status": "done", "dependencies": []},
        {
            "id": 2,
            "title": "Parent",
            "status": "in-progress",
            "dependencies": [1],
            "subtasks": [{"id": 1, "title": "one", "status": "pending", "dependencies": []}],
        },
        {
            "id": 3,
            "title": "Docs",
            "description": "write docs",
            "status": "pending",
            "priority": "low",
            "dependencies": [1, "2.1", 2],
        },
        {"id": 4, "title": "Release", "status": "pending", "dependencies": [3]},
    ]


def test_demoted_task_becomes_next_subtask_of_parent() -> None:
    tasks = _demote_tasks()

    updated, subtask = demote(tasks, 3, 2)

    assert [task["id"] for task in updated] == [1, 2, 4]
    assert subtask == {
        "id": 2,
        "title": "Docs",
        "description": "write docs",
        "details": "",
        "testStrategy": "",
        "status": "pending",
        "dependencies": ["1", 1],
    }
    assert updated[1]["subtasks"][-1] is subtask
    assert updated[2]["dependencies"] == ["2.2"]
    assert validate(updated).ok
    assert len(tasks) == 4


def test_demote_rejects_unsupported_moves() -> None:
    with pytest.raises(ValidationError, match="subtask of itself"):
        demote(_demote_tasks(), 2, 2)
    with pytest.raises(ValidationError, match="has subtasks of its own"):
        demote(_demote_tasks(), 2, 3)
    with pytest.raises(ConflictError, match="subtask 2.1 already exists"):
        demote(_demote_tasks(), 3, 2, subtask_id=1)
    with pytest.raises(NotFoundError):
        demote(_demote_tasks(), 9, 2)


def test_subtask_moves_to_another_parent() -> None:
    updated, subtask = move_subtask(_tasks(), TaskRef(3, 3), TaskRef(4, 1))
    by_id = {task["id"]: task for task in updated}

    assert [sub["id"] for sub in by_id[3]["subtasks"]] == [1, 2]
    assert by_id[4]["subtasks"] == [subtask]
    assert subtask["dependencies"] == ["3.2"]
    assert validate(updated).ok


def test_subtask_renumbered_within_its_parent() -> None:
    updated, _ = move_subtask(_tasks(), TaskRef(3, 1), TaskRef(3, 5))
    parent = updated[1]

    assert [sub["id"] for sub in parent["subtasks"]] == [2, 3, 5]
    assert parent["subtasks"][0]["dependencies"] == [5]

    with pytest.raises(ConflictError):
        move_subtask(_tasks(), TaskRef(3, 1), TaskRef(3, 2))


def test_renumbered_task_carries_its_subtasks_and_references() -> None:
    updated, task = renumber_task(_tasks(), 3, 7)
    by_id = {item["id"]: item for item in updated}

    assert [item["id"] for item in updated] == [1, 4, 7]
    assert task["dependencies"] == [1, "7.2"]
    assert by_id[4]["dependencies"] == ["7.2"]
    assert task["subtasks"][2]["dependencies"] == [2]
    assert validate(updated).ok

    with pytest.raises(ConflictError, match="task 4 already exists"):
        renumber_task(_tasks(), 3, 4)
