"""CLI entry point for taskmill."""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from . import __version__
from .complexity import ComplexityReport, load_report
from .config import TaskmillConfig, load_config
from .errors import NormalizationError, StoreIOError
from .events import EventLog, invocation_context, new_invocation_id
from .expansion import expand_task, parse_subtasks_text, subtask_count_for
from .generation import GenerationRequest, build_chain
from .graph import fix, validate
from .jsonio import iso_from_ms, now_iso, write_json
from .models import TASK_PRIORITIES, TASK_STATUSES, TaskRef, next_subtask_id, require_task
from .next_task import next_task
from .prompt import EXPAND_SCHEMA, expand_prompt, load_template
from .state import ProjectContext, resolve_state_dir
from .store import MASTER_TAG, LoadResult, TaskStore, empty_tags, touch_tag
from . import tags as tag_ops
from . import tasks as task_ops
from .taskfiles import generate_task_files
from .ui import (
    OutputMode,
    add_output_mode_argument,
    make_console,
    render_help,
    render_panel,
    render_table,
    resolve_output_mode,
    styled_priority,
    styled_status,
)

EVENT_SOURCE = "cli"
_TASK_HEADERS = ("ID", "STATUS", "PRIORITY", "DEPS", "TITLE")
_TAG_HEADERS = ("TAG", "CURRENT", "TASKS", "DONE", "SUBTASKS", "DESCRIPTION")

CONFIG_TEMPLATE = """\
[project]
name = "{name}"
default_subtasks = 3
default_priority = "medium"

[generation]
# Commands receive the prompt on stdin and print the result on stdout.
# main = ["claude", "-p"]
# research = ["perplexity", "ask"]
# fallback = ["research", "main"]
"""


@dataclass
class Workspace:
    ctx: ProjectContext
    config: TaskmillConfig
    store: TaskStore
    events: EventLog

    @classmethod
    def from_workdir(cls, cwd: Path | None = None, *, tag: str | None = None) -> "Workspace":
        ctx = ProjectContext.from_workdir(cwd, tag=tag)
        config = load_config(ctx.state_dir)
        return cls(
            ctx=ctx,
            config=config,
            store=TaskStore.from_context(ctx, config),
            events=EventLog(ctx.events_path),
        )

    def load(self) -> LoadResult:
        result = self.store.load()
        if result.migrated:
            self.events.emit(
                "store.migrated",
                source=EVENT_SOURCE,
                payload={"path": str(self.store.tasks_path)},
                tag=MASTER_TAG,
            )
        if self.store.consume_migration_notice():
            print(
                "note: converted legacy tasks file to tagged format (tasks now live in tag 'master')",
                file=sys.stderr,
            )
        return result

    def resolve(self, tags: dict[str, dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
        return self.store.resolve(tags, self.ctx.active_tag)

    def commit(
        self,
        tags: dict[str, dict[str, Any]],
        event_type: str,
        *,
        tag: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        if tag is not None and tag in tags:
            touch_tag(tags[tag])
        self.store.save(tags)
        self.events.emit(event_type, source=EVENT_SOURCE, payload=payload, tag=tag)

    def complexity_report(self) -> ComplexityReport | None:
        path = self.config.complexity_report_path
        report = load_report(path)
        if report is None and path.exists():
            print(f"warning: ignoring unreadable complexity report: {path}", file=sys.stderr)
            self.events.emit(
                "complexity.report_invalid",
                source=EVENT_SOURCE,
                payload={"path": str(path)},
            )
        return report


def _jsonable(payload: Any) -> Any:
    if isinstance(payload, TaskRef):
        return str(payload)
    if isinstance(payload, dict):
        return {str(key): _jsonable(value) for key, value in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [_jsonable(item) for item in payload]
    return payload


def _emit_json(payload: Any) -> None:
    print(json.dumps(_jsonable(payload), ensure_ascii=False, indent=2))


def _truncate(value: object, limit: int) -> str:
    text = str(value or "").strip()
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3] + "..."


def _split_refs(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _dep_label(item: dict[str, Any]) -> str:
    deps = item.get("dependencies") or []
    return ",".join(str(dep) for dep in deps) or "-"


def _task_rows(
    tasks: list[dict[str, Any]],
    *,
    with_subtasks: bool,
    rich: bool,
) -> list[tuple[str, str, str, str, str]]:
    status_fmt: Callable[[object], str] = styled_status if rich else (lambda v: str(v or ""))
    priority_fmt: Callable[[object], str] = styled_priority if rich else (lambda v: str(v or ""))
    rows: list[tuple[str, str, str, str, str]] = []
    for task in tasks:
        rows.append(
            (
                str(task["id"]),
                status_fmt(task.get("status")),
                priority_fmt(task.get("priority")),
                _dep_label(task),
                _truncate(task.get("title"), 64),
            )
        )
        if not with_subtasks:
            continue
        for subtask in task.get("subtasks") or []:
            rows.append(
                (
                    f"  {task['id']}.{subtask['id']}",
                    status_fmt(subtask.get("status")),
                    "",
                    _dep_label(subtask),
                    _truncate(subtask.get("title"), 60),
                )
            )
    return rows


def _print_plain_table(headers: tuple[str, ...], rows: list[tuple[str, ...]]) -> None:
    widths = [len(item) for item in headers]
    for row in rows:
        for idx, col in enumerate(row):
            widths[idx] = max(widths[idx], len(col))
    print("  ".join(headers[idx].ljust(widths[idx]) for idx in range(len(headers))).rstrip())
    print("  ".join("-" * widths[idx] for idx in range(len(headers))))
    for row in rows:
        print("  ".join(row[idx].ljust(widths[idx]) for idx in range(len(headers))).rstrip())


def _item_summary(item: dict[str, Any]) -> list[str]:
    lines = [f"status: {item.get('status') or 'pending'}"]
    if item.get("priority"):
        lines.append(f"priority: {item['priority']}")
    if item.get("parentId") is not None:
        lines.append(f"parent: {item['parentId']} {item.get('parentTitle', '')}".rstrip())
    lines.append(f"dependencies: {_dep_label(item)}")
    if item.get("complexityScore") is not None:
        lines.append(f"complexity: {item['complexityScore']}")
    return lines


def _item_label(item: dict[str, Any]) -> str:
    ref = item.get("ref")
    if ref is None and item.get("parentId") is not None:
        ref = f"{item['parentId']}.{item['id']}"
    return str(ref if ref is not None else item.get("id"))


def _print_item_details(item: dict[str, Any], *, output_mode: OutputMode) -> None:
    label = _item_label(item)
    title = str(item.get("title") or "")
    sections = [
        ("Description", item.get("description")),
        ("Details", item.get("details")),
        ("Test Strategy", item.get("testStrategy")),
    ]
    subtasks = item.get("subtasks") or []

    if output_mode == "rich":
        console = make_console("rich")
        render_panel(console, "\n".join(_item_summary(item)), title=f"{label}: {title}")
        for heading, body in sections:
            text = str(body or "").strip()
            if text:
                render_panel(console, text, title=heading)
        if subtasks:
            render_table(
                console,
                title="Subtasks",
                headers=("ID", "STATUS", "DEPS", "TITLE"),
                no_wrap_columns=(0, 1),
                rows=[
                    (
                        f"{item['id']}.{sub['id']}",
                        styled_status(sub.get("status")),
                        _dep_label(sub),
                        sub.get("title", ""),
                    )
                    for sub in subtasks
                ],
            )
        return

    print(f"{label}  {title}")
    for line in _item_summary(item):
        print(line)
    for heading, body in sections:
        text = str(body or "").strip()
        if text:
            print()
            print(f"{heading.lower()}:")
            print(text)
    if subtasks:
        print()
        print("subtasks:")
        for sub in subtasks:
            print(
                f"  {item['id']}.{sub['id']}  {sub.get('status', 'pending'):<11}  "
                f"{sub.get('title', '')}"
            )


def _say(args: argparse.Namespace, payload: Any, message: str) -> None:
    if args.json:
        _emit_json(payload)
    else:
        print(message)


# -- read commands ----------------------------------------------------------


def _cmd_list(ws: Workspace, args: argparse.Namespace, output_mode: OutputMode) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    rows, stats = task_ops.list_tasks(tasks, status=args.status)
    if args.json:
        _emit_json({"tag": tag, "tasks": rows, "stats": stats.to_dict()})
        return

    empty = "(no matching tasks)" if args.status else "(no tasks)"
    summary = (
        f"{stats.done}/{stats.total} tasks done ({stats.percent_done}%), "
        f"{stats.subtasks_done}/{stats.subtasks_total} subtasks done"
    )
    if output_mode == "rich":
        console = make_console("rich")
        if not rows:
            render_panel(console, empty, title=f"Tasks [{tag}]")
            return
        render_table(
            console,
            title=f"Tasks [{tag}]",
            headers=_TASK_HEADERS,
            no_wrap_columns=(0, 1, 2),
            rows=_task_rows(rows, with_subtasks=args.with_subtasks, rich=True),
        )
        console.print(summary)
        return

    if not rows:
        print(empty)
        return
    _print_plain_table(_TASK_HEADERS, _task_rows(rows, with_subtasks=args.with_subtasks, rich=False))
    print()
    print(summary)


def _cmd_show(ws: Workspace, args: argparse.Namespace, output_mode: OutputMode) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    item = task_ops.find_task(tasks, args.id)
    if item.get("parentId") is None:
        report = ws.complexity_report()
        score = report.score_for(item["id"]) if report is not None else None
        if score is not None:
            item["complexityScore"] = score
    if args.json:
        _emit_json({"tag": tag, "task": item})
        return
    _print_item_details(item, output_mode=output_mode)


def _cmd_next(ws: Workspace, args: argparse.Namespace, output_mode: OutputMode) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    item = next_task(tasks, ws.complexity_report())
    if args.json:
        _emit_json({"tag": tag, "next": item})
        return
    if item is None:
        message = "(no eligible task: everything is done or blocked)"
        if output_mode == "rich":
            render_panel(make_console("rich"), message, title=f"Next Task [{tag}]")
        else:
            print(message)
        return
    _print_item_details(item, output_mode=output_mode)


def _cmd_validate(ws: Workspace, args: argparse.Namespace, output_mode: OutputMode) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    report = validate(tasks)
    if args.json:
        _emit_json({"tag": tag, **report.to_dict()})
    elif report.ok:
        message = f"dependencies ok ({len(tasks)} tasks in tag {tag})"
        if output_mode == "rich":
            render_panel(make_console("rich"), f"[green]{message}[/green]", title="Dependencies")
        else:
            print(message)
    else:
        rows = [
            (issue.kind, str(issue.source), json.dumps(issue.value, ensure_ascii=False))
            for issue in report.issues
        ]
        if output_mode == "rich":
            render_table(
                make_console("rich"),
                title=f"Dependency issues [{tag}]",
                headers=("KIND", "ITEM", "VALUE"),
                no_wrap_columns=(0, 1),
                rows=rows,
            )
        else:
            _print_plain_table(("KIND", "ITEM", "VALUE"), rows)
        print("run `taskmill fix-dependencies` to repair", file=sys.stderr)
    if not report.ok:
        raise SystemExit(1)


def _cmd_tags(ws: Workspace, args: argparse.Namespace, output_mode: OutputMode) -> None:
    loaded = ws.load()
    summaries = tag_ops.list_tags(loaded.tags, current_tag=loaded.active_tag)
    if args.json:
        _emit_json({"current": loaded.active_tag, "tags": [s.to_dict() for s in summaries]})
        return
    rows = [
        (
            s.name,
            "*" if s.current else "",
            str(s.task_count),
            str(s.completed_tasks),
            str(s.subtask_count),
            _truncate(s.metadata.get("description"), 48) if args.show_metadata else "",
        )
        for s in summaries
    ]
    headers = _TAG_HEADERS if args.show_metadata else _TAG_HEADERS[:-1]
    rows = [row if args.show_metadata else row[:-1] for row in rows]
    if output_mode == "rich":
        render_table(
            make_console("rich"),
            title="Tags",
            headers=headers,
            no_wrap_columns=(0, 1),
            rows=rows,
        )
    else:
        _print_plain_table(headers, rows)


def _cmd_complexity_report(ws: Workspace, args: argparse.Namespace, output_mode: OutputMode) -> None:
    path = Path(args.file) if args.file else ws.config.complexity_report_path
    report = load_report(path)
    if report is None and path.exists():
        raise StoreIOError(f"complexity report is not readable: {path}")
    if args.json:
        _emit_json({"path": str(path), "report": report.model_dump() if report is not None else None})
        return
    if report is None:
        print(f"(no complexity report at {path})")
        return

    meta = report.meta
    threshold = meta.thresholdScore
    entries = sorted(
        report.complexityAnalysis,
        key=lambda entry: (-(entry.complexityScore or 0), entry.taskId),
    )
    rows = [
        (
            str(entry.taskId),
            "" if entry.complexityScore is None else f"{entry.complexityScore:g}",
            "" if entry.recommendedSubtasks is None else str(entry.recommendedSubtasks),
            "yes"
            if threshold is not None and (entry.complexityScore or 0) >= threshold
            else "",
            _truncate(entry.taskTitle, 56),
        )
        for entry in entries
    ]
    headers = ("ID", "SCORE", "SUBTASKS", "EXPAND", "TITLE")
    summary = (
        f"{len(entries)} tasks analyzed"
        + (f" for {meta.projectName}" if meta.projectName else "")
        + (f", generated {meta.generatedAt}" if meta.generatedAt else "")
        + (f", threshold {threshold:g}" if threshold is not None else "")
    )
    if output_mode == "rich":
        console = make_console("rich")
        render_table(
            console,
            title="Complexity Report",
            headers=headers,
            no_wrap_columns=(0, 1, 2),
            rows=rows,
        )
        console.print(summary)
        return
    _print_plain_table(headers, rows)
    print()
    print(summary)


def _cmd_log(ws: Workspace, args: argparse.Namespace, output_mode: OutputMode) -> None:
    if args.limit < 1:
        raise ValueError("--limit must be >= 1")
    events = ws.events.read(limit=args.limit, event_type=args.type)
    if args.json:
        _emit_json({"path": str(ws.events.path), "events": events})
        return
    if not events:
        print("(no events)")
        return
    rows = [
        (
            iso_from_ms(int(event.get("ts_ms") or 0)),
            str(event.get("type") or ""),
            str(event.get("tag") or ""),
            _truncate(json.dumps(event.get("payload") or {}, ensure_ascii=False), 72),
        )
        for event in events
    ]
    headers = ("TIME", "TYPE", "TAG", "PAYLOAD")
    if output_mode == "rich":
        render_table(
            make_console("rich"),
            title="Events",
            headers=headers,
            no_wrap_columns=(0, 1),
            rows=rows,
        )
        return
    _print_plain_table(headers, rows)


# -- task mutations ---------------------------------------------------------


def _cmd_add_task(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    task = task_ops.add_task(
        tasks,
        title=args.title,
        description=args.description,
        details=args.details,
        test_strategy=args.test_strategy,
        priority=args.priority or ws.config.default_priority,
        dependencies=_split_refs(args.dependencies),
    )
    ws.commit(loaded.tags, "task.added", tag=tag, payload={"id": task["id"]})
    _say(args, {"tag": tag, "task": task}, f"added task {task['id']}: {task['title']}")


def _cmd_remove_task(ws: Workspace, args: argparse.Namespace) -> None:
    if not args.yes:
        print("error: refusing to remove tasks without --yes", file=sys.stderr)
        raise SystemExit(1)
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    removed = task_ops.remove_items(tasks, _split_refs(args.ids))
    refs = [str(ref) for ref, _ in removed]
    ws.commit(loaded.tags, "task.removed", tag=tag, payload={"refs": refs})
    _say(
        args,
        {"tag": tag, "removed": [{"ref": str(ref), **item} for ref, item in removed]},
        "\n".join(
            f"removed {'subtask' if ref.is_subtask else 'task'} {ref}: {item.get('title', '')}"
            for ref, item in removed
        ),
    )


def _cmd_add_subtask(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    parent_id = task_ops.require_task_ref(args.parent).task_id
    if args.task_id:
        if args.title:
            raise ValueError("--task-id converts an existing task and takes no --title")
        task_id = task_ops.require_task_ref(args.task_id).task_id
        subtask = task_ops.convert_to_subtask(tasks, task_id, parent_id)
        ref = TaskRef(parent_id, subtask["id"])
        ws.commit(
            loaded.tags,
            "task.converted",
            tag=tag,
            payload={"task_id": task_id, "ref": str(ref)},
        )
        _say(
            args,
            {"tag": tag, "ref": str(ref), "task_id": task_id, "subtask": subtask},
            f"converted task {task_id} into subtask {ref}",
        )
        return
    if not args.title:
        raise ValueError("add-subtask needs --title or --task-id")
    subtask = task_ops.add_subtask(
        tasks,
        parent_id,
        title=args.title,
        description=args.description,
        details=args.details,
        test_strategy=args.test_strategy,
        status=args.status,
        dependencies=_split_refs(args.dependencies),
    )
    ref = TaskRef(parent_id, subtask["id"])
    ws.commit(loaded.tags, "subtask.added", tag=tag, payload={"ref": str(ref)})
    _say(
        args,
        {"tag": tag, "ref": str(ref), "subtask": subtask},
        f"added subtask {ref}: {subtask['title']}",
    )


def _cmd_remove_subtask(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    ref = task_ops.require_subtask_ref(args.ref)
    assert ref.subtask_id is not None
    item = task_ops.remove_subtask(tasks, ref.task_id, ref.subtask_id, convert=args.convert)
    if args.convert:
        ws.commit(
            loaded.tags,
            "subtask.promoted",
            tag=tag,
            payload={"ref": str(ref), "task_id": item["id"]},
        )
        _say(args, {"tag": tag, "ref": str(ref), "task": item}, f"converted {ref} into task {item['id']}")
        return
    ws.commit(loaded.tags, "subtask.removed", tag=tag, payload={"ref": str(ref)})
    _say(args, {"tag": tag, "ref": str(ref), "removed": item}, f"removed subtask {ref}")


def _cmd_move(ws: Workspace, args: argparse.Namespace) -> None:
    sources = _split_refs(args.source)
    destinations = _split_refs(args.to)
    if not sources or len(sources) != len(destinations):
        raise ValueError(
            f"move needs as many destinations as sources (got {len(sources)} and {len(destinations)})"
        )
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    moves: list[dict[str, Any]] = []
    for source, destination in zip(sources, destinations):
        src = TaskRef.parse(source)
        dst = TaskRef.parse(destination)
        item = task_ops.move_item(tasks, src, dst)
        moves.append({"from": str(src), "to": str(dst), "item": item})
    ws.commit(
        loaded.tags,
        "task.moved",
        tag=tag,
        payload={"moves": [{"from": move["from"], "to": move["to"]} for move in moves]},
    )
    _say(
        args,
        {"tag": tag, "moves": moves},
        "\n".join(f"moved {move['from']} to {move['to']}" for move in moves),
    )


def _cmd_set_status(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    refs = task_ops.set_status(tasks, _split_refs(args.ids), args.status)
    ws.commit(
        loaded.tags,
        "task.status_changed",
        tag=tag,
        payload={"refs": [str(ref) for ref in refs], "status": args.status},
    )
    _say(
        args,
        {"tag": tag, "updated": [str(ref) for ref in refs], "status": args.status},
        "\n".join(f"{ref} -> {args.status}" for ref in refs),
    )


def _cmd_clear_subtasks(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    if args.all:
        ids = [task["id"] for task in tasks]
    elif args.ids:
        ids = [task_ops.require_task_ref(value).task_id for value in _split_refs(args.ids)]
    else:
        raise ValueError("pass task ids or --all")
    cleared = task_ops.clear_subtasks(tasks, ids)
    ws.commit(loaded.tags, "subtasks.cleared", tag=tag, payload={"cleared": cleared})
    _say(
        args,
        {"tag": tag, "cleared": cleared},
        "\n".join(f"task {task_id}: cleared {count} subtasks" for task_id, count in cleared.items()),
    )


def _cmd_add_dependency(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    added = task_ops.add_dependency(tasks, args.id, args.depends_on)
    payload = {"tag": tag, "id": args.id, "depends_on": args.depends_on, "added": added}
    if added:
        ws.commit(loaded.tags, "dependency.added", tag=tag, payload=payload)
        _say(args, payload, f"{args.id} now depends on {args.depends_on}")
    else:
        _say(args, payload, f"{args.id} already depends on {args.depends_on}")


def _cmd_remove_dependency(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    removed = task_ops.remove_dependency(tasks, args.id, args.depends_on)
    payload = {"tag": tag, "id": args.id, "depends_on": args.depends_on, "removed": removed}
    if removed:
        ws.commit(loaded.tags, "dependency.removed", tag=tag, payload=payload)
        _say(args, payload, f"{args.id} no longer depends on {args.depends_on}")
    else:
        _say(args, payload, f"{args.id} does not depend on {args.depends_on}")


def _cmd_fix_dependencies(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    fixed, report = fix(tasks)
    if report.changed:
        loaded.tags[tag]["tasks"] = fixed
        ws.commit(loaded.tags, "dependencies.fixed", tag=tag, payload=report.to_dict())
    if args.json:
        _emit_json({"tag": tag, **report.to_dict()})
        return
    if not report.changed:
        print(f"no dependency issues in tag {tag}")
        return
    for edge in report.removed:
        print(f"removed {edge.reason} dependency {edge.value!r} from {edge.source}")
    print(
        f"fixed {report.tasks_fixed} tasks and {report.subtasks_fixed} subtasks "
        f"({report.cycles_broken} cycles broken)"
    )


def _read_source(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _cmd_expand(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    task_id = task_ops.require_task_ref(args.id).task_id
    task = require_task(tasks, task_id)

    report = ws.complexity_report()
    if args.num is not None:
        count = args.num
    else:
        count = subtask_count_for(task, report, ws.config.default_subtasks)
    if count < 1:
        raise ValueError("--num must be >= 1")

    if args.from_file:
        raw_items = parse_subtasks_text(_read_source(args.from_file))
        limit = args.num
        source = "file"
    else:
        base = {} if args.force else task
        template = load_template("expand", state_dir=ws.ctx.state_dir)
        prompt = expand_prompt(
            template,
            task,
            count=count,
            next_id=next_subtask_id(base),
            context=args.prompt or "",
            complexity=report.entry_for(task_id) if report is not None else None,
        )
        role = "research" if args.research else template.role
        chain = build_chain(ws.config.generation, role=role, cwd=ws.ctx.project_root)
        result = chain.generate(GenerationRequest(role=role, prompt=prompt, schema=EXPAND_SCHEMA))
        if isinstance(result.data, dict) and isinstance(result.data.get("subtasks"), list):
            raw_items = result.data["subtasks"]
        else:
            raw_items = parse_subtasks_text(result.text)
        limit = count
        source = result.strategy

    if not raw_items:
        raise NormalizationError("no subtasks were produced")

    updated, expansion = expand_task(tasks, task_id, raw_items, count=limit, force=args.force)
    loaded.tags[tag]["tasks"] = updated
    payload = {**expansion.to_dict(), "source": source}
    payload["added"] = [sub["id"] for sub in expansion.added]
    ws.commit(loaded.tags, "task.expanded", tag=tag, payload=payload)

    if args.json:
        _emit_json({"tag": tag, **expansion.to_dict(), "source": source})
        return
    for sub in expansion.added:
        print(f"added subtask {task_id}.{sub['id']}: {sub['title']}")
    if expansion.dropped:
        print(f"skipped {expansion.dropped} invalid generated subtasks", file=sys.stderr)


def _cmd_generate(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    tag, tasks = ws.resolve(loaded.tags)
    out_dir = Path(args.output_dir) if args.output_dir else ws.config.tasks_path.parent / "tasks"
    result = generate_task_files(tasks, out_dir, tag)
    ws.events.emit(
        "taskfiles.generated",
        source=EVENT_SOURCE,
        tag=tag,
        payload={"dir": str(out_dir), "written": len(result.written), "removed": len(result.removed)},
    )
    _say(
        args,
        {
            "tag": tag,
            "dir": str(out_dir),
            "written": [str(path) for path in result.written],
            "removed": [str(path) for path in result.removed],
        },
        f"wrote {len(result.written)} task files to {out_dir}"
        + (f" (removed {len(result.removed)} orphaned)" if result.removed else ""),
    )


# -- tag commands -----------------------------------------------------------


def _cmd_add_tag(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    clone_from = args.copy_from
    if args.from_current:
        clone_from = loaded.active_tag
    entry = tag_ops.create(
        loaded.tags,
        args.name,
        clone_from=clone_from,
        description=args.description,
    )
    payload = {"name": args.name, "clone_from": clone_from, "task_count": len(entry["tasks"])}
    ws.commit(loaded.tags, "tag.created", tag=args.name, payload=payload)
    _say(args, payload, f"created tag {args.name} ({len(entry['tasks'])} tasks)")


def _cmd_copy_tag(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    entry = tag_ops.copy_tag(loaded.tags, args.source, args.target, description=args.description)
    payload = {"source": args.source, "target": args.target, "task_count": len(entry["tasks"])}
    ws.commit(loaded.tags, "tag.copied", tag=args.target, payload=payload)
    _say(args, payload, f"copied tag {args.source} to {args.target} ({len(entry['tasks'])} tasks)")


def _cmd_rename_tag(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    pointer = tag_ops.rename(loaded.tags, args.old, args.new, current_tag=loaded.active_tag)
    ws.commit(loaded.tags, "tag.renamed", tag=args.new, payload={"old": args.old, "new": args.new})
    if pointer != loaded.active_tag and pointer is not None:
        ws.store.set_current_tag(pointer)
    _say(args, {"old": args.old, "new": args.new, "current": pointer}, f"renamed tag {args.old} to {args.new}")


def _cmd_delete_tag(ws: Workspace, args: argparse.Namespace) -> None:
    if not args.yes:
        print("error: refusing to delete a tag without --yes", file=sys.stderr)
        raise SystemExit(1)
    loaded = ws.load()
    entry, pointer = tag_ops.delete(loaded.tags, args.name, current_tag=loaded.active_tag)
    payload = {"name": args.name, "task_count": len(entry.get("tasks") or [])}
    ws.commit(loaded.tags, "tag.deleted", tag=args.name, payload=payload)
    if pointer != loaded.active_tag and pointer is not None:
        ws.store.set_current_tag(pointer)
    _say(args, {**payload, "current": pointer}, f"deleted tag {args.name} ({payload['task_count']} tasks)")


def _cmd_use_tag(ws: Workspace, args: argparse.Namespace) -> None:
    loaded = ws.load()
    entry = tag_ops.use(loaded.tags, args.name)
    ws.store.set_current_tag(args.name)
    ws.events.emit(
        "tag.switched",
        source=EVENT_SOURCE,
        tag=args.name,
        payload={"previous": loaded.active_tag},
    )
    summary = tag_ops.summarize(args.name, entry, current=True)
    _say(args, summary.to_dict(), f"switched to tag {args.name} ({summary.task_count} tasks)")


# -- init -------------------------------------------------------------------


def _cmd_init(args: argparse.Namespace) -> None:
    state_dir = resolve_state_dir(Path.cwd(), create=True)
    name = args.name or state_dir.parent.name
    files: list[tuple[Path, Callable[[Path], None]]] = [
        (state_dir / "config.toml", lambda p: p.write_text(CONFIG_TEMPLATE.format(name=name), encoding="utf-8")),
        (state_dir / "tasks.json", lambda p: TaskStore(p, state_dir / "state.json").save(empty_tags())),
        (
            state_dir / "state.json",
            lambda p: write_json(
                p,
                {"currentTag": MASTER_TAG, "lastSwitched": now_iso(), "migrationNoticeShown": True},
            ),
        ),
    ]

    created: list[str] = []
    skipped: list[str] = []
    for path, write in files:
        if path.exists() and not args.force:
            skipped.append(str(path))
            continue
        write(path)
        created.append(str(path))

    if created:
        EventLog(state_dir / "events.jsonl").emit(
            "project.initialized",
            source=EVENT_SOURCE,
            payload={"created": created},
        )
    if args.json:
        _emit_json({"state_dir": str(state_dir), "created": created, "skipped": skipped})
        return
    for path in created:
        print(f"created: {path}")
    for path in skipped:
        print(f"skipped: {path}", file=sys.stderr)


# -- parser -----------------------------------------------------------------


def _print_help(*, output_mode: OutputMode) -> None:
    render_help(
        output_mode=output_mode,
        command="taskmill",
        summary="dependency-aware task lists, partitioned into tags",
        usage=("taskmill <command> [ARGS]",),
        sections=(
            (
                "Tasks",
                (
                    ("list", "list tasks with progress stats"),
                    ("show <id>", "show one task or subtask (3 or 3.2)"),
                    ("next", "show the next actionable task or subtask"),
                    ("add-task --title ...", "add a task"),
                    ("remove-task <ids> --yes", "remove tasks or subtasks (3, 3.2) and references to them"),
                    ("move --from <ids> --to <ids>", "move tasks or subtasks to free ids (5 -> 3.4, 3.2 -> 9)"),
                    ("set-status <ids> <status>", "set status on tasks/subtasks"),
                    ("expand <id>", "generate subtasks (or --from-file PATH|-)"),
                    ("add-subtask <id> --title ...", "add a subtask (--task-id N converts task N)"),
                    ("remove-subtask <id.sub>", "remove a subtask (--convert to promote)"),
                    ("clear-subtasks <ids>|--all", "drop subtasks"),
                    ("generate", "write one text file per task"),
                    ("complexity-report", "show the task complexity report"),
                    ("log", "show recent changes from the event log"),
                ),
            ),
            (
                "Dependencies",
                (
                    ("add-dependency <id> <dep>", "add a dependency edge"),
                    ("remove-dependency <id> <dep>", "remove a dependency edge"),
                    ("validate-dependencies", "report dangling refs, self refs, cycles"),
                    ("fix-dependencies", "repair the dependency graph"),
                ),
            ),
            (
                "Tags",
                (
                    ("tags", "list tags"),
                    ("add-tag <name>", "create a tag (--copy-from, --from-current)"),
                    ("use-tag <name>", "switch the current tag"),
                    ("rename-tag <old> <new>", "rename a tag"),
                    ("copy-tag <src> <dst>", "copy a tag"),
                    ("delete-tag <name> --yes", "delete a tag and its tasks"),
                ),
            ),
            (
                "Options",
                (
                    ("--json", "emit machine-stable JSON payloads"),
                    ("--output MODE", "auto|plain|rich for read commands (or TASKMILL_OUTPUT)"),
                    ("--tag NAME", "operate on a tag other than the current one"),
                    ("init", "create .taskmill/ with config, tasks and state files"),
                    ("-h, --help", "show this help"),
                ),
            ),
        ),
        examples=(
            ("taskmill add-task --title 'Set up CI' --priority high", "add work"),
            ("taskmill next --output rich", "pick the next item"),
            ("taskmill expand 3 --from-file subtasks.json", "merge generated subtasks"),
            ("taskmill add-tag feature-x --from-current", "branch the task list"),
        ),
    )


def _add_json(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Output JSON")


def _add_tag_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--tag", help="Tag to operate on (default: current tag)")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="taskmill", description="Manage taskmill tasks.")
    p.add_argument("--version", action="version", version=f"taskmill {__version__}")
    sub = p.add_subparsers(dest="command", required=True, metavar="command")

    init = sub.add_parser("init", help="Initialize .taskmill/ in the current directory")
    init.add_argument("--name", help="Project name (default: directory name)")
    init.add_argument("--force", action="store_true", help="Overwrite existing files")
    _add_json(init)

    ls = sub.add_parser("list", help="List tasks")
    ls.add_argument("--status", help=f"Filter by status, comma-separated ({', '.join(TASK_STATUSES)})")
    ls.add_argument("--with-subtasks", action="store_true", help="Include subtasks")

    show = sub.add_parser("show", help="Show one task or subtask")
    show.add_argument("id", help="Task id (3) or subtask ref (3.2)")

    nxt = sub.add_parser("next", help="Show the next actionable task")

    validate_p = sub.add_parser("validate-dependencies", help="Report dependency problems")

    report_p = sub.add_parser("complexity-report", help="Show the task complexity report")
    report_p.add_argument("-f", "--file", help="Report path (default from config)")

    log_p = sub.add_parser("log", help="Show recent events")
    log_p.add_argument("-n", "--limit", type=int, default=20, help="Number of events (default: 20)")
    log_p.add_argument("--type", help="Only events of this type or type prefix, e.g. task")

    for parser in (report_p, log_p):
        _add_json(parser)
        add_output_mode_argument(parser)

    for parser in (ls, show, nxt, validate_p):
        _add_tag_option(parser)
        _add_json(parser)
        add_output_mode_argument(parser)

    tags_p = sub.add_parser("tags", help="List tags")
    tags_p.add_argument("--show-metadata", action="store_true", help="Include descriptions")
    _add_json(tags_p)
    add_output_mode_argument(tags_p)

    add_task = sub.add_parser("add-task", help="Add a task")
    add_task.add_argument("--title", required=True, help="Task title")
    add_task.add_argument("-d", "--description", default="", help="Task description")
    add_task.add_argument("--details", default="", help="Implementation details")
    add_task.add_argument("--test-strategy", default="", help="How to verify the task")
    add_task.add_argument("-p", "--priority", choices=TASK_PRIORITIES, help="Priority (default from config)")
    add_task.add_argument("--dependencies", help="Comma-separated refs, e.g. 1,2,3.1")

    remove_task = sub.add_parser("remove-task", help="Remove tasks")
    remove_task.add_argument("ids", help="Comma-separated task or subtask refs, e.g. 4,3.2")
    remove_task.add_argument("--yes", action="store_true", help="Confirm removal")

    add_sub = sub.add_parser("add-subtask", help="Add a subtask")
    add_sub.add_argument("parent", help="Parent task id")
    add_sub.add_argument("--title", help="Subtask title")
    add_sub.add_argument("-i", "--task-id", help="Convert this existing task into a subtask")
    add_sub.add_argument("-d", "--description", default="", help="Subtask description")
    add_sub.add_argument("--details", default="", help="Implementation details")
    add_sub.add_argument("--test-strategy", default="", help="How to verify the subtask")
    add_sub.add_argument("-s", "--status", default="pending", choices=TASK_STATUSES, help="Initial status")
    add_sub.add_argument("--dependencies", help="Comma-separated refs, e.g. 3.1,2")

    remove_sub = sub.add_parser("remove-subtask", help="Remove a subtask")
    remove_sub.add_argument("ref", help="Subtask ref, e.g. 3.2")
    remove_sub.add_argument("--convert", action="store_true", help="Promote to a standalone task")

    move = sub.add_parser("move", help="Move tasks or subtasks to new ids")
    move.add_argument(
        "--from", dest="source", required=True, help="Comma-separated refs to move, e.g. 5 or 3.2"
    )
    move.add_argument("--to", required=True, help="Comma-separated free destination refs, one per source")

    status = sub.add_parser("set-status", help="Set task or subtask status")
    status.add_argument("ids", help="Comma-separated refs, e.g. 1,2,3.1")
    status.add_argument("status", choices=TASK_STATUSES, help="New status")

    clear = sub.add_parser("clear-subtasks", help="Remove all subtasks of tasks")
    clear.add_argument("ids", nargs="?", help="Comma-separated task ids")
    clear.add_argument("--all", action="store_true", help="Clear subtasks of every task")

    add_dep = sub.add_parser("add-dependency", help="Add a dependency")
    add_dep.add_argument("id", help="Dependent task or subtask")
    add_dep.add_argument("depends_on", help="Task or subtask it depends on")

    rm_dep = sub.add_parser("remove-dependency", help="Remove a dependency")
    rm_dep.add_argument("id", help="Dependent task or subtask")
    rm_dep.add_argument("depends_on", help="Dependency to remove")

    fix_p = sub.add_parser("fix-dependencies", help="Repair dependency problems")

    expand = sub.add_parser("expand", help="Break a task into subtasks")
    expand.add_argument("id", help="Task id")
    expand.add_argument("-n", "--num", type=int, help="Number of subtasks (default: report or config)")
    expand.add_argument("--force", action="store_true", help="Replace existing subtasks")
    expand.add_argument("--research", action="store_true", help="Use the research generator role")
    expand.add_argument("--prompt", help="Extra context for the generator")
    expand.add_argument("--from-file", metavar="PATH", help="Read generated subtasks from PATH (- for stdin)")

    gen = sub.add_parser("generate", help="Write per-task text files")
    gen.add_argument("--output-dir", help="Directory for task files (default: next to tasks.json)")

    for parser in (add_task, remove_task, add_sub, remove_sub, move, status, clear, add_dep, rm_dep, fix_p, expand, gen):
        _add_tag_option(parser)
        _add_json(parser)

    add_tag = sub.add_parser("add-tag", help="Create a tag")
    add_tag.add_argument("name", help="Tag name")
    source = add_tag.add_mutually_exclusive_group()
    source.add_argument("--copy-from", help="Copy tasks from this tag")
    source.add_argument("--from-current", action="store_true", help="Copy tasks from the current tag")
    add_tag.add_argument("-d", "--description", help="Tag description")

    use = sub.add_parser("use-tag", help="Switch the current tag")
    use.add_argument("name", help="Tag name")

    rename = sub.add_parser("rename-tag", help="Rename a tag")
    rename.add_argument("old", help="Current name")
    rename.add_argument("new", help="New name")

    copy_p = sub.add_parser("copy-tag", help="Copy a tag")
    copy_p.add_argument("source", help="Source tag")
    copy_p.add_argument("target", help="New tag name")
    copy_p.add_argument("-d", "--description", help="Tag description")

    delete = sub.add_parser("delete-tag", help="Delete a tag and its tasks")
    delete.add_argument("name", help="Tag name")
    delete.add_argument("--yes", action="store_true", help="Confirm deletion")

    for parser in (add_tag, use, rename, copy_p, delete):
        _add_json(parser)

    return p


_READ_HANDLERS: dict[str, Callable[[Workspace, argparse.Namespace, OutputMode], None]] = {
    "list": _cmd_list,
    "show": _cmd_show,
    "next": _cmd_next,
    "validate-dependencies": _cmd_validate,
    "tags": _cmd_tags,
    "complexity-report": _cmd_complexity_report,
    "log": _cmd_log,
}

_WRITE_HANDLERS: dict[str, Callable[[Workspace, argparse.Namespace], None]] = {
    "add-task": _cmd_add_task,
    "remove-task": _cmd_remove_task,
    "add-subtask": _cmd_add_subtask,
    "remove-subtask": _cmd_remove_subtask,
    "move": _cmd_move,
    "set-status": _cmd_set_status,
    "clear-subtasks": _cmd_clear_subtasks,
    "add-dependency": _cmd_add_dependency,
    "remove-dependency": _cmd_remove_dependency,
    "fix-dependencies": _cmd_fix_dependencies,
    "expand": _cmd_expand,
    "generate": _cmd_generate,
    "add-tag": _cmd_add_tag,
    "copy-tag": _cmd_copy_tag,
    "rename-tag": _cmd_rename_tag,
    "delete-tag": _cmd_delete_tag,
    "use-tag": _cmd_use_tag,
}


def main(argv: list[str] | None = None) -> None:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    if raw_argv in ([], ["-h"], ["--help"]):
        try:
            help_output_mode = resolve_output_mode(
                is_tty=getattr(sys.stdout, "isatty", lambda: False)(),
            )
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            raise SystemExit(2) from exc
        _print_help(output_mode=help_output_mode)
        raise SystemExit(0)

    args = _build_parser().parse_args(raw_argv)

    output_mode: OutputMode = "plain"
    if args.command in _READ_HANDLERS:
        try:
            output_mode = resolve_output_mode(getattr(args, "output", None))
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            raise SystemExit(2) from exc

    with invocation_context(invocation_id=new_invocation_id()):
        try:
            if args.command == "init":
                _cmd_init(args)
                return
            ws = Workspace.from_workdir(Path.cwd(), tag=getattr(args, "tag", None))
            if args.command in _READ_HANDLERS:
                _READ_HANDLERS[args.command](ws, args, output_mode)
            else:
                _WRITE_HANDLERS[args.command](ws, args)
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            raise SystemExit(1) from exc
        except OSError as exc:
            print(f"error: {exc}", file=sys.stderr)
            raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
