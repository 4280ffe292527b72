"""Dependency graph integrity checks and repair for one tag's task list."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from .models import TaskRef, existing_refs, iter_items, ref_from_dependency

Graph = dict[TaskRef, list[TaskRef]]


@dataclass(frozen=True)
class DependencyIssue:
    kind: str  # dangling | self | invalid | duplicate | cycle
    source: TaskRef
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "source": str(self.source), "value": self.value}


@dataclass(frozen=True)
class ValidationReport:
    dangling: list[TaskRef] = field(default_factory=list)
    self_refs: list[TaskRef] = field(default_factory=list)
    cycles: list[list[TaskRef]] = field(default_factory=list)
    issues: list[DependencyIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues and not self.cycles

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "dangling": [str(ref) for ref in self.dangling],
            "self_refs": [str(ref) for ref in self.self_refs],
            "cycles": [[str(ref) for ref in cycle] for cycle in self.cycles],
            "issues": [issue.to_dict() for issue in self.issues],
        }


@dataclass(frozen=True)
class RemovedEdge:
    source: TaskRef
    value: Any
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"source": str(self.source), "value": self.value, "reason": self.reason}


@dataclass(frozen=True)
class FixReport:
    dangling_removed: int = 0
    self_refs_removed: int = 0
    cycles_broken: int = 0
    duplicates_removed: int = 0
    tasks_fixed: int = 0
    subtasks_fixed: int = 0
    removed: list[RemovedEdge] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.removed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "changed": self.changed,
            "dangling_removed": self.dangling_removed,
            "self_refs_removed": self.self_refs_removed,
            "cycles_broken": self.cycles_broken,
            "duplicates_removed": self.duplicates_removed,
            "tasks_fixed": self.tasks_fixed,
            "subtasks_fixed": self.subtasks_fixed,
            "removed": [edge.to_dict() for edge in self.removed],
        }


def build_graph(tasks: list[dict[str, Any]]) -> Graph:
    """Edges from each item to the existing items it depends on.

    Dangling, self and malformed references are left out; duplicates collapse.
    Nodes are keyed in ascending order (tasks, then their subtasks).
    """
    nodes = existing_refs(tasks)
    graph: Graph = {}
    for ref, item, parent_id in sorted(iter_items(tasks), key=lambda row: row[0].sort_key()):
        targets: list[TaskRef] = []
        for raw in item.get("dependencies") or []:
            target = ref_from_dependency(raw, parent_id=parent_id)
            if target is None or target == ref or target not in nodes:
                continue
            if target not in targets:
                targets.append(target)
        graph[ref] = targets
    return graph


def _canonical_cycle(cycle: list[TaskRef]) -> tuple[TaskRef, ...]:
    start = min(range(len(cycle)), key=lambda idx: cycle[idx].sort_key())
    return tuple(cycle[start:] + cycle[:start])


def find_cycles(graph: Graph) -> list[list[TaskRef]]:
    """Depth-first search with a recursion stack; one entry per distinct cycle."""
    on_stack: set[TaskRef] = set()
    done: set[TaskRef] = set()
    seen: set[tuple[TaskRef, ...]] = set()
    cycles: list[list[TaskRef]] = []

    for root in graph:
        if root in done:
            continue
        path: list[TaskRef] = [root]
        on_stack.add(root)
        frames = [iter(graph.get(root, []))]
        while frames:
            node = path[-1]
            nxt = next(frames[-1], None)
            if nxt is None:
                frames.pop()
                path.pop()
                on_stack.discard(node)
                done.add(node)
                continue
            if nxt in on_stack:
                cycle = path[path.index(nxt):]
                key = _canonical_cycle(cycle)
                if key not in seen:
                    seen.add(key)
                    cycles.append(list(cycle))
                continue
            if nxt in done:
                continue
            path.append(nxt)
            on_stack.add(nxt)
            frames.append(iter(graph.get(nxt, [])))
    return cycles


def validate(tasks: list[dict[str, Any]]) -> ValidationReport:
    nodes = existing_refs(tasks)
    dangling: list[TaskRef] = []
    self_refs: list[TaskRef] = []
    issues: list[DependencyIssue] = []

    for ref, item, parent_id in iter_items(tasks):
        seen: set[TaskRef] = set()
        for raw in item.get("dependencies") or []:
            target = ref_from_dependency(raw, parent_id=parent_id)
            if target is None:
                issues.append(DependencyIssue("invalid", ref, raw))
            elif target == ref:
                self_refs.append(ref)
                issues.append(DependencyIssue("self", ref, raw))
            elif target not in nodes:
                dangling.append(target)
                issues.append(DependencyIssue("dangling", ref, raw))
            elif target in seen:
                issues.append(DependencyIssue("duplicate", ref, raw))
            if target is not None:
                seen.add(target)

    cycles = find_cycles(build_graph(tasks))
    for cycle in cycles:
        issues.append(DependencyIssue("cycle", cycle[0], [str(node) for node in cycle]))

    return ValidationReport(
        dangling=dangling,
        self_refs=self_refs,
        cycles=cycles,
        issues=issues,
    )


def _item_index(tasks: list[dict[str, Any]]) -> dict[TaskRef, tuple[dict[str, Any], int | None]]:
    return {ref: (item, parent_id) for ref, item, parent_id in iter_items(tasks)}


def _drop_target(item: dict[str, Any], target: TaskRef, parent_id: int | None) -> list[Any]:
    kept: list[Any] = []
    dropped: list[Any] = []
    for raw in item.get("dependencies") or []:
        if ref_from_dependency(raw, parent_id=parent_id) == target:
            dropped.append(raw)
        else:
            kept.append(raw)
    item["dependencies"] = kept
    return dropped


def fix(tasks: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], FixReport]:
    """Return a repaired copy of ``tasks`` and what was removed.

    Steps, in order: drop dangling and malformed references, drop
    self-references, break cycles by removing the edge from the cycle's
    highest node to its successor, then de-duplicate. A second call on the
    result changes nothing.
    """
    fixed = copy.deepcopy(tasks)
    nodes = existing_refs(fixed)
    removed: list[RemovedEdge] = []
    counts = {"dangling": 0, "self": 0, "cycle": 0, "duplicate": 0}

    for ref, item, parent_id in iter_items(fixed):
        deps = item.get("dependencies")
        if not deps:
            continue
        kept: list[Any] = []
        for raw in deps:
            target = ref_from_dependency(raw, parent_id=parent_id)
            if target is None or target not in nodes:
                counts["dangling"] += 1
                removed.append(RemovedEdge(ref, raw, "dangling"))
            elif target == ref:
                counts["self"] += 1
                removed.append(RemovedEdge(ref, raw, "self"))
            else:
                kept.append(raw)
        if len(kept) != len(deps):
            item["dependencies"] = kept

    index = _item_index(fixed)
    while True:
        cycles = find_cycles(build_graph(fixed))
        if not cycles:
            break
        cycle = cycles[0]
        pos = max(range(len(cycle)), key=lambda idx: cycle[idx].sort_key())
        source = cycle[pos]
        successor = cycle[(pos + 1) % len(cycle)]
        item, parent_id = index[source]
        for raw in _drop_target(item, successor, parent_id):
            removed.append(RemovedEdge(source, raw, "cycle"))
        counts["cycle"] += 1

    for ref, item, parent_id in iter_items(fixed):
        deps = item.get("dependencies")
        if not deps:
            continue
        seen: set[TaskRef] = set()
        kept = []
        for raw in deps:
            target = ref_from_dependency(raw, parent_id=parent_id)
            if target in seen:
                counts["duplicate"] += 1
                removed.append(RemovedEdge(ref, raw, "duplicate"))
                continue
            seen.add(target)
            kept.append(raw)
        if len(kept) != len(deps):
            item["dependencies"] = kept

    touched = {edge.source for edge in removed}
    return fixed, FixReport(
        dangling_removed=counts["dangling"],
        self_refs_removed=counts["self"],
        cycles_broken=counts["cycle"],
        duplicates_removed=counts["duplicate"],
        tasks_fixed=sum(1 for ref in touched if not ref.is_subtask),
        subtasks_fixed=sum(1 for ref in touched if ref.is_subtask),
        removed=removed,
    )


def would_create_cycle(tasks: list[dict[str, Any]], node: TaskRef, dependency: TaskRef) -> bool:
    """True when adding ``node -> dependency`` closes a cycle."""
    if node == dependency:
        return True
    graph = build_graph(tasks)
    stack = [dependency]
    visited: set[TaskRef] = set()
    while stack:
        current = stack.pop()
        if current == node:
            return True
        if current in visited:
            continue
        visited.add(current)
        stack.extend(graph.get(current, []))
    return False
