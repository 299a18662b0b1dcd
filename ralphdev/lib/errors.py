"""
Error taxonomy for ralph-dev.

Every error carries a machine-readable code, a human message and a details
dict (operation, entity id, expected vs. actual) so callers can act on it
without reading internals. The CLI maps codes to exit codes.
"""

from typing import Any

from ralphdev.lib import constants


class RalphDevError(Exception):
    """Base class for all ralph-dev errors."""

    code = "GENERAL_ERROR"
    exit_code = constants.EXIT_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFound(RalphDevError):
    """Task or state absent."""

    code = "NOT_FOUND"
    exit_code = constants.EXIT_NOT_FOUND

    def __init__(self, entity: str, entity_id: str | None = None, operation: str = ""):
        self.entity = entity
        self.entity_id = entity_id
        label = f"{entity} not found" + (f": {entity_id}" if entity_id else "")
        details = {"entity": entity, "operation": operation}
        if entity_id:
            details["id"] = entity_id
        super().__init__(label, details)


class DuplicateId(RalphDevError):
    """Creation conflict: the id is already taken."""

    code = "ALREADY_EXISTS"
    exit_code = constants.EXIT_ALREADY_EXISTS

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(
            f"Task already exists: {task_id}",
            {"id": task_id, "operation": "create"},
        )


class InvalidTransition(RalphDevError):
    """Raised when a status or phase change is not allowed."""

    code = "INVALID_STATE"
    exit_code = constants.EXIT_INVALID_STATE

    def __init__(self, from_state: str, to_state: str, entity_id: str = "",
                 operation: str = "", allowed: list[str] | None = None):
        self.from_state = from_state
        self.to_state = to_state
        self.entity_id = entity_id
        self.allowed = allowed or []
        message = f"Invalid transition: {from_state} -> {to_state}"
        if entity_id:
            message += f" ({entity_id})"
        if allowed is not None:
            message += f". Allowed from {from_state}: {', '.join(allowed) or 'none'}"
        super().__init__(message, {
            "id": entity_id,
            "operation": operation,
            "current": from_state,
            "requested": to_state,
            "allowed": self.allowed,
        })


class ValidationError(RalphDevError):
    """Malformed input or schema validation failure."""

    code = "INVALID_INPUT"
    exit_code = constants.EXIT_INVALID_INPUT

    def __init__(self, schema_name: str, message: str, path: str | None = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(
            f"[{schema_name}] {message}" + (f" at {path}" if path else ""),
            {"schema": schema_name, "path": path},
        )


class CorruptState(RalphDevError):
    """Index and per-task records disagree, or a stored document is unreadable."""

    code = "CORRUPT_STATE"
    exit_code = constants.EXIT_CORRUPT_STATE


class FileSystemError(RalphDevError):
    """Underlying I/O failure, wrapping the original OSError."""

    code = "FILE_SYSTEM_ERROR"
    exit_code = constants.EXIT_FILE_SYSTEM_ERROR

    def __init__(self, operation: str, path, cause: BaseException | None = None):
        self.operation = operation
        self.path = str(path)
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(
            f"Failed to {operation} {self.path}{reason}",
            {"operation": operation, "path": self.path},
        )


class CircuitOpenError(RalphDevError):
    """The circuit breaker is OPEN and rejected the call without running it."""

    code = "CIRCUIT_OPEN"
    exit_code = constants.EXIT_INVALID_STATE

    def __init__(self, failure_count: int, retry_after_ms: int):
        self.failure_count = failure_count
        self.retry_after_ms = retry_after_ms
        super().__init__(
            "Circuit breaker is OPEN",
            {"failureCount": failure_count, "retryAfterMs": retry_after_ms},
        )


class LockTimeout(RalphDevError):
    """Workspace lock acquisition timed out."""

    code = "LOCK_TIMEOUT"
    exit_code = constants.EXIT_LOCK_TIMEOUT
