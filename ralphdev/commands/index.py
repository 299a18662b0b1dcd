"""
ralph-dev index - maintain tasks/index.json and its metadata.
"""

from ralphdev.commands.output import emit
from ralphdev.lib.language_config import LanguageConfig


def cmd_rebuild(args, ctx) -> int:
    with ctx.lock():
        report = ctx.task_repo.rebuild_index()

    def human(_):
        print(f"Index rebuilt: {report['indexed']} task(s)")
        if report["added"]:
            print(f"  added:   {', '.join(report['added'])}")
        if report["removed"]:
            print(f"  removed: {', '.join(report['removed'])}")
        for err in report["errors"]:
            print(f"  skipped {err['path']}: {err['error']}")

    return emit(args, report, human)


def cmd_check(args, ctx) -> int:
    problems = ctx.task_repo.find_inconsistencies()

    def human(_):
        if not problems:
            print("Index and task records are consistent.")
            return
        for p in problems:
            print(f"  {p['problem']:<18} {p['id']}  {p.get('detail', p['path'])}")
        print("\nRun 'ralph-dev index rebuild' to regenerate the index from the records.")

    return emit(args, {"consistent": not problems, "problems": problems}, human)


def _print_metadata(data: dict) -> None:
    print(f"Project goal: {data.get('projectGoal') or '-'}")
    lang = data.get("languageConfig")
    if lang:
        print(f"Language:     {lang['language']}")
        for key, label in (("framework", "Framework"), ("testFramework", "Test framework"),
                           ("buildTool", "Build tool")):
            if lang.get(key):
                print(f"{label + ':':<14}{lang[key]}")
        for command in lang.get("verifyCommands", []):
            print(f"  verify: {command}")


def cmd_metadata(args, ctx) -> int:
    updates = {}
    if args.project_goal is not None:
        updates["projectGoal"] = args.project_goal
    if args.language:
        lang = LanguageConfig.create(
            language=args.language,
            framework=args.framework,
            test_framework=args.test_framework,
            build_tool=args.build_tool,
            verify_commands=args.verify_command,
        )
        updates["languageConfig"] = lang.to_dict()

    if updates:
        with ctx.lock():
            metadata = ctx.index.update_metadata(updates)
    else:
        metadata = ctx.index.get_metadata()
    return emit(args, metadata, _print_metadata)


def register(subparsers) -> None:
    p_index = subparsers.add_parser("index", help="Maintain the task index")
    sub = p_index.add_subparsers(dest="index_cmd", required=True)

    p = sub.add_parser("rebuild", help="Regenerate the index from task records")
    p.set_defaults(func=cmd_rebuild)

    p = sub.add_parser("check", help="Report index/record inconsistencies")
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("metadata", help="Show or update index metadata")
    p.add_argument("--project-goal")
    p.add_argument("--language", help="Project language; enables the options below")
    p.add_argument("--framework")
    p.add_argument("--test-framework")
    p.add_argument("--build-tool")
    p.add_argument("--verify-command", action="append", help="Override derived verify commands (repeatable)")
    p.set_defaults(func=cmd_metadata)
