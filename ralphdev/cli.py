#!/usr/bin/env python3
"""ralph-dev CLI entrypoint."""

import argparse
import logging
import sys

from ralphdev import __version__
from ralphdev.commands import circuit_breaker as cmd_cb_module
from ralphdev.commands import index as cmd_index_module
from ralphdev.commands import state as cmd_state_module
from ralphdev.commands import status as cmd_status_module
from ralphdev.commands import tasks as cmd_tasks_module
from ralphdev.commands.output import emit_error
from ralphdev.context import Context
from ralphdev.lib.config import load_config, resolve_workspace
from ralphdev.lib.errors import RalphDevError
from ralphdev.lib.logs import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ralph-dev", description="Task and workflow state for autonomous development")
    parser.add_argument("--workspace", "-w", help="Workspace root (default: $RALPH_DEV_WORKSPACE or cwd)")
    parser.add_argument("--json", action="store_true", help="Print results as a JSON document")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output to stderr")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    cmd_tasks_module.register(subparsers)
    cmd_state_module.register(subparsers)
    cmd_cb_module.register(subparsers)
    cmd_index_module.register(subparsers)
    cmd_status_module.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    workspace = resolve_workspace(args.workspace)
    config = load_config(workspace)
    setup_logging(config.state_dir, verbose=args.verbose)
    logger.debug(f"ralph-dev {__version__} workspace={workspace} argv={argv if argv is not None else sys.argv[1:]}")

    try:
        return args.func(args, Context(config))
    except RalphDevError as e:
        logger.debug(f"{type(e).__name__}: {e.message} {e.details}")
        return emit_error(args, e)


if __name__ == "__main__":
    sys.exit(main())
