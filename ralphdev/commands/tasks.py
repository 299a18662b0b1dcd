"""
ralph-dev tasks - create, query and drive tasks through their lifecycle.
"""

import json
import sys
from pathlib import Path

from ralphdev.commands.output import emit
from ralphdev.lib.errors import NotFound, ValidationError
from ralphdev.repositories.tasks import TaskFilter
from ralphdev.workflow.task import Task


def _print_task(task: Task) -> None:
    print(f"{task.id}  [{task.status.value}]  priority={task.priority}  ~{task.estimated_minutes}m")
    print(f"  {task.description}")
    if task.dependencies:
        print(f"  depends on: {', '.join(task.dependencies)}")
    if task.acceptance_criteria:
        print("  acceptance criteria:")
        for i, criterion in enumerate(task.acceptance_criteria, 1):
            print(f"    {i}. {criterion}")
    if task.notes:
        print("  notes:")
        for line in task.notes.splitlines():
            print(f"    {line}")


def _split_list(values) -> list[str]:
    """Accept repeated flags and/or comma-separated values."""
    items = []
    for value in values or []:
        items.extend(v.strip() for v in value.split(",") if v.strip())
    return items


def cmd_create(args, ctx) -> int:
    spec = {
        "id": args.id,
        "module": args.module,
        "description": args.description,
    }
    if args.priority is not None:
        spec["priority"] = args.priority
    if args.estimated_minutes is not None:
        spec["estimatedMinutes"] = args.estimated_minutes
    if args.criteria:
        spec["acceptanceCriteria"] = list(args.criteria)
    if args.dependencies:
        spec["dependencies"] = _split_list(args.dependencies)
    if args.test_pattern:
        spec["testPattern"] = args.test_pattern

    task = ctx.tasks.create_task(spec)
    return emit(args, task.to_dict(), lambda _: print(f"Created task {task.id}"))


def cmd_get(args, ctx) -> int:
    task = ctx.tasks.get_task(args.task_id)
    if task is None:
        raise NotFound("Task", args.task_id, operation="get")
    return emit(args, task.to_dict(), lambda _: _print_task(task))


def cmd_list(args, ctx) -> int:
    task_filter = TaskFilter(
        status=args.status,
        module=args.module,
        priority=args.priority,
        has_dependencies=args.has_dependencies,
        ready=True if args.ready else None,
    )
    result = ctx.tasks.list_tasks(task_filter, sort=args.sort, limit=args.limit, offset=args.offset)

    def human(_):
        if not result.tasks:
            print("No tasks found.")
            return
        for task in result.tasks:
            print(f"{task.status.value:<12} {task.priority:>3}  {task.id}  {task.description}")
        print(f"\nShowing {result.returned} of {result.total} task(s)")

    return emit(args, result.to_dict(), human)


def cmd_next(args, ctx) -> int:
    task = ctx.tasks.get_next_task()
    if task is None:
        return emit(args, None, lambda _: print("No ready tasks."))
    return emit(args, task.to_dict(), lambda _: _print_task(task))


def cmd_start(args, ctx) -> int:
    task = ctx.tasks.start_task(args.task_id)
    return emit(args, task.to_dict(), lambda _: print(f"Started {task.id}"))


def cmd_done(args, ctx) -> int:
    task = ctx.tasks.complete_task(args.task_id, args.duration)
    return emit(args, task.to_dict(), lambda _: print(f"Completed {task.id}"))


def cmd_fail(args, ctx) -> int:
    task = ctx.tasks.fail_task(args.task_id, args.reason)
    return emit(args, task.to_dict(), lambda _: print(f"Marked {task.id} as failed"))


def cmd_delete(args, ctx) -> int:
    ctx.tasks.delete_task(args.task_id)
    return emit(args, {"id": args.task_id, "deleted": True}, lambda _: print(f"Deleted {args.task_id}"))


def _read_batch(args, ctx) -> list:
    if args.operations is not None:
        raw, source = args.operations, "--operations"
    elif args.file == "-":
        raw, source = sys.stdin.read(), "stdin"
    else:
        raw, source = ctx.fs.read_text(Path(args.file)), args.file
    try:
        operations = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError("batch", f"Invalid JSON in {source}: {e}") from None
    if not isinstance(operations, list):
        raise ValidationError("batch", "Batch input must be a JSON array of operations")
    return operations


def cmd_batch(args, ctx) -> int:
    result = ctx.tasks.batch_operations(_read_batch(args, ctx), atomic=args.atomic)

    def human(_):
        for r in result.results:
            mark = "ok" if r.success and not r.rolled_back else ("undone" if r.rolled_back else "FAILED")
            line = f"  {mark:<7} {r.action:<6} {r.task_id}"
            if r.error:
                line += f"  ({r.error['message']})"
            print(line)
        if result.rolled_back:
            print("Batch failed; all operations were rolled back.")
        else:
            print(f"{result.succeeded} succeeded, {result.failed} failed")

    return emit(args, result.to_dict(), human)


def register(subparsers) -> None:
    p_tasks = subparsers.add_parser("tasks", help="Manage tasks")
    sub = p_tasks.add_subparsers(dest="tasks_cmd", required=True)

    p = sub.add_parser("create", help="Create a task")
    p.add_argument("--id", required=True, help="Task id (module.name)")
    p.add_argument("--module", required=True, help="Module the task belongs to")
    p.add_argument("--description", "-d", required=True, help="One-line description")
    p.add_argument("--priority", type=int, help="Lower runs first (default 1)")
    p.add_argument("--estimated-minutes", type=int, help="Estimate in minutes (default 30)")
    p.add_argument("--criteria", "-c", action="append", help="Acceptance criterion (repeatable)")
    p.add_argument("--dependencies", action="append", help="Dependency ids, comma-separated or repeated")
    p.add_argument("--test-pattern", help="Glob for the task's unit tests")
    p.set_defaults(func=cmd_create)

    p = sub.add_parser("get", help="Show a task")
    p.add_argument("task_id")
    p.set_defaults(func=cmd_get)

    p = sub.add_parser("list", help="List tasks")
    p.add_argument("--status", choices=["pending", "in_progress", "completed", "failed"])
    p.add_argument("--module")
    p.add_argument("--priority", type=int)
    deps = p.add_mutually_exclusive_group()
    deps.add_argument("--has-dependencies", dest="has_dependencies", action="store_const", const=True)
    deps.add_argument("--no-dependencies", dest="has_dependencies", action="store_const", const=False)
    p.add_argument("--ready", action="store_true", help="Only pending tasks whose dependencies are completed")
    p.add_argument("--sort", default="priority", choices=["priority", "status", "estimated_minutes"])
    p.add_argument("--limit", type=int, default=100)
    p.add_argument("--offset", type=int, default=0)
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("next", help="Show the next ready task")
    p.set_defaults(func=cmd_next)

    p = sub.add_parser("start", help="Start a task")
    p.add_argument("task_id")
    p.set_defaults(func=cmd_start)

    p = sub.add_parser("done", help="Complete a task")
    p.add_argument("task_id")
    p.add_argument("--duration", help="How long it took, e.g. 25m")
    p.set_defaults(func=cmd_done)

    p = sub.add_parser("fail", help="Fail a task")
    p.add_argument("task_id")
    p.add_argument("--reason", "-r", required=True)
    p.set_defaults(func=cmd_fail)

    p = sub.add_parser("delete", help="Delete a task")
    p.add_argument("task_id")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("batch", help="Run start/done/fail operations from JSON")
    source = p.add_mutually_exclusive_group(required=True)
    source.add_argument("--operations", help="JSON array of operations")
    source.add_argument("--file", help="File with a JSON array of operations ('-' for stdin)")
    p.add_argument("--atomic", action="store_true", help="Roll everything back if any operation fails")
    p.set_defaults(func=cmd_batch)
