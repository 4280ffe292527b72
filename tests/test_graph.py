from __future__ import annotations

import copy

from taskmill.graph import build_graph, find_cycles, fix, validate, would_create_cycle
from taskmill.models import TaskRef, existing_refs, iter_items, ref_from_dependency


def _task(task_id: int, deps: list | None = None, **extra: object) -> dict:
    task = {"id": task_id, "title": f"Task {task_id}", "status": "pending", "dependencies": deps or []}
    task.update(extra)
    return task


def _deps(tasks: list[dict], task_id: int) -> list:
    return next(task for task in tasks if task["id"] == task_id)["dependencies"]


def _all_refs_resolve(tasks: list[dict]) -> bool:
    known = existing_refs(tasks)
    for ref, item, parent_id in iter_items(tasks):
        for raw in item.get("dependencies") or []:
            target = ref_from_dependency(raw, parent_id=parent_id)
            if target is None or target not in known or target == ref:
                return False
    return True


def test_two_task_cycle_is_reported_and_broken_at_the_higher_id() -> None:
    tasks = [_task(1, [2]), _task(2, [1])]

    report = validate(tasks)
    assert report.cycles == [[TaskRef(1), TaskRef(2)]]
    assert not report.ok

    fixed, fix_report = fix(tasks)
    assert _deps(fixed, 1) == [2]
    assert _deps(fixed, 2) == []
    assert fix_report.cycles_broken == 1
    assert validate(fixed).cycles == []
    # input untouched
    assert _deps(tasks, 2) == [1]


def test_dangling_reference_is_reported_and_removed() -> None:
    tasks = [_task(5, [99])]

    report = validate(tasks)
    assert report.dangling == [TaskRef(99)]

    fixed, fix_report = fix(tasks)
    assert _deps(fixed, 5) == []
    assert fix_report.dangling_removed == 1
    assert fix_report.tasks_fixed == 1


def test_self_reference_and_duplicates() -> None:
    tasks = [_task(1), _task(2, [2, 1, "1", 1])]

    report = validate(tasks)
    assert report.self_refs == [TaskRef(2)]
    assert [issue.kind for issue in report.issues].count("duplicate") == 2

    fixed, fix_report = fix(tasks)
    assert _deps(fixed, 2) == [1]
    assert fix_report.self_refs_removed == 1
    assert fix_report.duplicates_removed == 2


def test_malformed_entries_are_removed() -> None:
    tasks = [_task(1), _task(2, ["abc", None, 1])]

    assert [issue.kind for issue in validate(tasks).issues] == ["invalid", "invalid"]
    fixed, _ = fix(tasks)
    assert _deps(fixed, 2) == [1]


def test_subtask_dependencies_and_dangling_qualified_refs() -> None:
    tasks = [
        _task(1, ["1.5"], subtasks=[
            {"id": 1, "title": "a", "status": "pending", "dependencies": []},
            {"id": 2, "title": "b", "status": "pending", "dependencies": [1, 3, "2"]},
        ]),
    ]

    report = validate(tasks)
    assert TaskRef(1, 5) in report.dangling
    assert TaskRef(1, 3) in report.dangling
    assert TaskRef(2) in report.dangling

    fixed, fix_report = fix(tasks)
    assert _deps(fixed, 1) == []
    assert fixed[0]["subtasks"][1]["dependencies"] == [1]
    assert fix_report.subtasks_fixed == 1
    assert fix_report.tasks_fixed == 1


def test_cycle_through_subtasks() -> None:
    tasks = [
        _task(1, ["2.1"]),
        _task(2, [], subtasks=[{"id": 1, "title": "s", "status": "pending", "dependencies": ["1"]}]),
    ]

    report = validate(tasks)
    assert report.cycles == [[TaskRef(1), TaskRef(2, 1)]]

    fixed, _ = fix(tasks)
    # 2.1 sorts after 1, so its edge back to 1 goes
    assert fixed[1]["subtasks"][0]["dependencies"] == []
    assert _deps(fixed, 1) == ["2.1"]


def test_overlapping_cycles_are_all_broken() -> None:
    tasks = [_task(1, [2]), _task(2, [3]), _task(3, [1, 2])]

    fixed, report = fix(tasks)
    assert find_cycles(build_graph(fixed)) == []
    assert report.cycles_broken >= 1
    assert _deps(fixed, 1) == [2]


def test_fix_is_idempotent_and_leaves_integrity() -> None:
    tasks = [
        _task(1, [3, 3, 1]),
        _task(2, [1, 42, "x"]),
        _task(3, [2], subtasks=[
            {"id": 1, "title": "s1", "status": "pending", "dependencies": [2, "9.9"]},
            {"id": 2, "title": "s2", "status": "pending", "dependencies": [1]},
        ]),
    ]

    once, first = fix(tasks)
    twice, second = fix(once)

    assert first.changed
    assert twice == once
    assert not second.changed
    assert validate(once).ok
    assert _all_refs_resolve(once)


def test_fix_is_deterministic() -> None:
    tasks = [_task(1, [2]), _task(2, [3]), _task(3, [1])]
    assert fix(copy.deepcopy(tasks))[0] == fix(copy.deepcopy(tasks))[0]


def test_tag_isolation_refs_resolve_only_within_their_own_list() -> None:
    tag_a = [_task(1, [2])]
    tag_b = [_task(1), _task(2)]

    assert validate(tag_a).dangling == [TaskRef(2)]
    assert validate(tag_b).ok


def test_would_create_cycle() -> None:
    tasks = [_task(1), _task(2, [1]), _task(3, [2])]

    assert would_create_cycle(tasks, TaskRef(1), TaskRef(3)) is True
    assert would_create_cycle(tasks, TaskRef(3), TaskRef(1)) is False
    assert would_create_cycle(tasks, TaskRef(2), TaskRef(2)) is True
