"""CLI command groups. Each ``cmd_*`` takes parsed args and a context and returns an exit code."""
