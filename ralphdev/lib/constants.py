"""Shared constants for ralph-dev."""

import re

# Workspace layout (relative to the workspace root)
STATE_DIR_NAME = ".ralph-dev"
TASKS_DIR_NAME = "tasks"
INDEX_FILE = "index.json"
STATE_FILE = "state.json"
PRD_FILE = "prd.md"
CIRCUIT_BREAKER_FILE = "circuit-breaker.json"
CIRCUIT_BREAKER_LOG = "circuit-breaker.log"
PROGRESS_LOG = "progress.log"
DEBUG_LOG = "debug.log"
CONFIG_FILE = "config.env"
ARCHIVE_DIR_NAME = "archive"
LOCK_FILE = ".lock"

# Files and directories moved aside by `state archive`, in copy order
ARCHIVE_ITEMS = (
    STATE_FILE,
    PRD_FILE,
    TASKS_DIR_NAME,
    PROGRESS_LOG,
    DEBUG_LOG,
    CIRCUIT_BREAKER_FILE,
)

INDEX_VERSION = "1.0.0"

# Task ID: module.name, both parts non-empty, dot-delimited
TASK_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]+(\.[A-Za-z0-9_-]+)+$')

DEFAULT_PRIORITY = 1
DEFAULT_ESTIMATED_MINUTES = 30
DEFAULT_LIST_LIMIT = 100

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_INVALID_INPUT = 2
EXIT_NOT_FOUND = 3
EXIT_LOCK_TIMEOUT = 5
EXIT_ALREADY_EXISTS = 6
EXIT_INVALID_STATE = 7
EXIT_FILE_SYSTEM_ERROR = 8
EXIT_CORRUPT_STATE = 9

# Retry defaults (seconds)
RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_DELAY = 0.1
RETRY_MAX_DELAY = 5.0
RETRY_BACKOFF_MULTIPLIER = 2.0

# Circuit breaker defaults
CB_FAILURE_THRESHOLD = 5
CB_TIMEOUT_MS = 60_000
CB_SUCCESS_THRESHOLD = 2

LOCK_TIMEOUT_SECONDS = 30
