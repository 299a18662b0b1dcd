"""
Safe KEY=value parser for .ralph-dev/config.env.

Never executes anything: values containing shell syntax are rejected rather
than interpreted.
"""

import re
from pathlib import Path

FORBIDDEN_PATTERNS = [
    re.compile(r'`'),        # backticks
    re.compile(r'\$\('),     # command substitution
    re.compile(r'\$\{'),     # variable expansion
    re.compile(r';'),        # command chaining
    re.compile(r'&&'),
    re.compile(r'\|'),       # pipes and ||
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')


def parse_env(text: str, source: str = "<string>") -> dict[str, str]:
    """
    Parse KEY=value lines.

    Blank lines and `#` comments are skipped, an optional `export ` prefix is
    accepted and matching surrounding quotes are stripped.

    Raises:
        ValueError: on bad syntax, bad key or forbidden pattern
    """
    result: dict[str, str] = {}

    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()

        key, sep, value = line.partition('=')
        if not sep:
            raise ValueError(f"{source}:{lineno}: Invalid syntax (no '=')")

        key = key.strip()
        value = value.strip()
        if not KEY_PATTERN.match(key):
            raise ValueError(f"{source}:{lineno}: Invalid key '{key}'")

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]

        if any(p.search(value) for p in FORBIDDEN_PATTERNS):
            raise ValueError(f"{source}:{lineno}: Forbidden pattern in value for {key}")

        result[key] = value

    return result


def load_env(path: Path) -> dict[str, str]:
    """Parse an env file. Raises FileNotFoundError when missing."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {path}")
    return parse_env(path.read_text(encoding="utf-8"), source=str(path))
