"""
ralph-dev state - workflow phase state and session archiving.
"""

import json

from ralphdev.commands.output import emit
from ralphdev.lib.errors import NotFound, ValidationError
from ralphdev.workflow.phase import Phase

PHASES = [p.value for p in Phase]


def _print_state(data: dict) -> None:
    print(f"Phase:        {data['phase']}")
    print(f"Current task: {data.get('currentTask') or '-'}")
    print(f"Started:      {data['startedAt']}")
    print(f"Updated:      {data['updatedAt']}")
    if data.get("errors"):
        print(f"Errors:       {len(data['errors'])}")


def cmd_get(args, ctx) -> int:
    state = ctx.state.get_state()
    if state is None:
        raise NotFound("State", operation="get")
    return emit(args, state.to_dict(), _print_state)


def cmd_init(args, ctx) -> int:
    state = ctx.state.initialize_state(args.phase)
    return emit(args, state.to_dict(), _print_state)


def cmd_set(args, ctx) -> int:
    overrides = {}
    if args.task is not None:
        overrides["current_task"] = args.task
    if args.prd is not None:
        overrides["prd"] = _parse_json_arg(args.prd)
    if args.clear_errors:
        overrides["errors"] = []
    state = ctx.state.set_state(args.phase, **overrides)
    return emit(args, state.to_dict(), _print_state)


def _parse_json_arg(value: str):
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        # Plain strings are accepted as-is
        return value


def cmd_update(args, ctx) -> int:
    updates = {}
    if args.phase:
        updates["phase"] = args.phase
    if args.clear_task:
        updates["currentTask"] = None
    elif args.task:
        updates["currentTask"] = args.task
    if args.prd is not None:
        updates["prd"] = _parse_json_arg(args.prd)
    if args.add_error is not None:
        updates["addError"] = _parse_json_arg(args.add_error)
    if not updates:
        raise ValidationError("state", "Nothing to update: pass --phase, --task, --clear-task, --prd or --add-error")

    state = ctx.state.update_state(updates)
    return emit(args, state.to_dict(), _print_state)


def cmd_clear(args, ctx) -> int:
    cleared = ctx.state.clear_state()
    return emit(args, {"cleared": cleared},
                lambda _: print("State cleared." if cleared else "No state to clear."))


def cmd_archive(args, ctx) -> int:
    result = ctx.state.archive_session(force=args.force)

    def human(_):
        if result.blocked:
            print(f"Not archived: {result.blocked_reason}")
        elif not result.archived:
            print("Nothing to archive.")
        else:
            print(f"Archived to {result.archive_path}")
            for name in result.files:
                print(f"  {name}")

    return emit(args, result.to_dict(), human)


def register(subparsers) -> None:
    p_state = subparsers.add_parser("state", help="Manage workflow state")
    sub = p_state.add_subparsers(dest="state_cmd", required=True)

    p = sub.add_parser("get", help="Show current state")
    p.set_defaults(func=cmd_get)

    p = sub.add_parser("init", help="Initialize state (no-op if it exists)")
    p.add_argument("--phase", default=Phase.CLARIFY.value, choices=PHASES)
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("set", help="Force the phase without transition checks")
    p.add_argument("--phase", required=True, choices=PHASES)
    p.add_argument("--task", help="Current task id")
    p.add_argument("--prd", help="Replace the PRD (JSON or a plain string)")
    p.add_argument("--clear-errors", action="store_true", help="Empty the error list")
    p.set_defaults(func=cmd_set)

    p = sub.add_parser("update", help="Update state fields (phase changes are validated)")
    p.add_argument("--phase", choices=PHASES)
    task = p.add_mutually_exclusive_group()
    task.add_argument("--task", help="Set current task id")
    task.add_argument("--clear-task", action="store_true", help="Unset current task")
    p.add_argument("--prd", help="PRD as JSON (or a plain string)")
    p.add_argument("--add-error", help="Error entry to append, JSON or plain string")
    p.set_defaults(func=cmd_update)

    p = sub.add_parser("clear", help="Delete state")
    p.set_defaults(func=cmd_clear)

    p = sub.add_parser("archive", help="Archive the session (phase must be complete)")
    p.add_argument("--force", action="store_true", help="Archive an incomplete session")
    p.set_defaults(func=cmd_archive)
