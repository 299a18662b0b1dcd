"""
Schema validation for ralph-dev.

Enforces JSON Schema validation at every data boundary: task input, task
record frontmatter, the index, phase state and circuit breaker documents.
Fails hard with a clear error when data doesn't match.
"""

import json
from functools import lru_cache
from pathlib import Path

import jsonschema

from ralphdev.lib.errors import ValidationError


def _get_schemas_dir() -> Path:
    """Schemas ship inside the package."""
    return Path(__file__).parent.parent / "schemas"


@lru_cache(maxsize=None)
def _load_schema(schema_name: str) -> dict:
    schema_path = _get_schemas_dir() / f"{schema_name}.schema.json"
    if not schema_path.exists():
        raise ValidationError(schema_name, f"Schema file not found: {schema_path}")
    return json.loads(schema_path.read_text(encoding="utf-8"))


def validate(data: dict, schema_name: str) -> None:
    """
    Validate data against named schema.

    Raises:
        ValidationError: If validation fails
    """
    schema = _load_schema(schema_name)
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
        raise ValidationError(schema_name, e.message, path) from None


def is_valid(data: dict, schema_name: str) -> bool:
    try:
        validate(data, schema_name)
    except ValidationError:
        return False
    return True


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """
    Validate data before writing to file. Ensures we never write invalid data.

    Raises:
        ValidationError: If data doesn't match schema
    """
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(
            schema_name,
            f"Refusing to write invalid data to {filepath}: {e.message}",
        ) from None
