"""
ralph-dev status - overall and per-module progress.
"""

from ralphdev.commands.output import emit


def _bar(percent: int, width: int = 20) -> str:
    filled = round(width * percent / 100)
    return "#" * filled + "." * (width - filled)


def cmd_status(args, ctx) -> int:
    status = ctx.status.get_project_status()

    def human(_):
        print(f"Phase: {status.current_phase}")
        if status.current_task:
            print(f"Current task: {status.current_task}")
        if not status.has_active_tasks:
            print("\nNo tasks yet.")
            return

        o = status.overall
        print(f"\n[{_bar(o.completion_percentage)}] {o.completion_percentage}% "
              f"({o.completed}/{o.total} completed)")
        print(f"  pending {o.pending} (blocked {o.blocked})  in progress {o.in_progress}  failed {o.failed}")
        print("\nBy module:")
        for module, s in status.by_module.items():
            print(f"  {module:<20} {s.completed}/{s.total}  {s.completion_percentage:>3}%")

    return emit(args, status.to_dict(), human)


def register(subparsers) -> None:
    p = subparsers.add_parser("status", help="Show project progress")
    p.set_defaults(func=cmd_status)
