"""
Result rendering shared by all commands.

With --json every command prints exactly one document on stdout:

    {"success": true, "data": ...}
    {"success": false, "error": {"code": ..., "message": ..., "details": ...}}

Otherwise the command's human renderer prints plain text and errors go to
stderr as "ERROR: <message>".
"""

import json
import sys
from typing import Any, Callable, Optional

from ralphdev.lib import constants
from ralphdev.lib.errors import RalphDevError


def emit(args, data: Any, human: Optional[Callable[[Any], None]] = None) -> int:
    """Print a successful result and return EXIT_SUCCESS."""
    if getattr(args, "json", False):
        print(json.dumps({"success": True, "data": data}, indent=2))
    elif human is not None:
        human(data)
    return constants.EXIT_SUCCESS


def emit_error(args, error: RalphDevError) -> int:
    """Print a failure and return the error's exit code."""
    if getattr(args, "json", False):
        print(json.dumps({"success": False, "error": error.to_dict()}, indent=2))
    else:
        print(f"ERROR: {error.message}", file=sys.stderr)
    return error.exit_code
