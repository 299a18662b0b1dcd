"""
Task record codec.

A task record is a Markdown file with YAML frontmatter:

    ---
    id: auth.login
    module: auth
    priority: 1
    status: pending
    estimatedMinutes: 30
    dependencies:
    - auth.setup
    ---

    # Implement login endpoint

    ## Acceptance Criteria
    1. Returns a token for valid credentials
    2. Returns 401 otherwise

    ## Notes
    Failed: flaky test

Frontmatter carries the structured fields; the body carries description,
criteria and notes. Description and notes lines that start with "#" or "\\"
are written with a leading backslash so they are never read as headings.
render_task() and parse_task() round-trip losslessly.
"""

import re
from pathlib import Path

import yaml

from ralphdev.lib.errors import CorruptState, ValidationError
from ralphdev.lib.validate import validate
from ralphdev.workflow.task import Task

FRONTMATTER_RE = re.compile(r'\A---\n(.*?\n)?---\n(.*)\Z', re.DOTALL)
CRITERIA_HEADING = "## Acceptance Criteria"
NOTES_HEADING = "## Notes"
CRITERION_RE = re.compile(r'^\d+\.\s(.*)$')
ESCAPED_PREFIXES = ("#", "\\")

# Frontmatter key order in written files
FRONTMATTER_KEYS = (
    "id", "module", "priority", "status", "estimatedMinutes", "dependencies",
    "testRequirements", "startedAt", "completedAt", "failedAt",
)


def record_path(tasks_dir: Path, module: str, task_id: str) -> Path:
    """tasks/<module>/<id minus "module." prefix>.md"""
    name = task_id[len(module) + 1:] if task_id.startswith(f"{module}.") else task_id
    return Path(tasks_dir) / module / f"{name}.md"


def relative_record_path(module: str, task_id: str) -> str:
    return record_path(Path("."), module, task_id).as_posix()


def _escape(text: str) -> str:
    return "\n".join("\\" + line if line.startswith(ESCAPED_PREFIXES) else line
                     for line in text.split("\n"))


def _unescape(lines: list[str]) -> str:
    return "\n".join(line[1:] if line.startswith("\\") else line for line in lines)


def render_task(task: Task) -> str:
    """Serialize a task to frontmatter + Markdown."""
    data = task.to_dict()
    frontmatter = {k: data[k] for k in FRONTMATTER_KEYS if k in data}
    if frontmatter.get("testRequirements") is None:
        frontmatter.pop("testRequirements", None)

    header = yaml.safe_dump(frontmatter, sort_keys=False, default_flow_style=False, allow_unicode=True)
    parts = [f"---\n{header}---\n\n# {_escape(task.description)}\n"]

    if task.acceptance_criteria:
        lines = [f"{i}. {c}" for i, c in enumerate(task.acceptance_criteria, 1)]
        parts.append(f"\n{CRITERIA_HEADING}\n" + "\n".join(lines) + "\n")

    if task.notes:
        parts.append(f"\n{NOTES_HEADING}\n{_escape(task.notes)}\n")

    return "".join(parts)


def _split_body(body: str) -> tuple[str, list[str], str]:
    lines = body.split("\n")
    # Skip blank lines before the title
    while lines and not lines[0].strip():
        lines.pop(0)
    if not lines or not lines[0].startswith("# "):
        raise ValueError("missing '# <description>' heading")

    sections: dict[str, list[str]] = {"description": [], "criteria": [], "notes": []}
    current = "description"
    lines[0] = lines[0][2:]
    for line in lines:
        if current == "description" and line == CRITERIA_HEADING:
            current = "criteria"
            continue
        if current != "notes" and line == NOTES_HEADING:
            current = "notes"
            continue
        sections[current].append(line)

    description = _unescape(sections["description"]).strip("\n")

    criteria = []
    for line in sections["criteria"]:
        if not line.strip():
            continue
        m = CRITERION_RE.match(line)
        if not m:
            raise ValueError(f"malformed acceptance criterion line: {line!r}")
        criteria.append(m.group(1))

    notes = _unescape(sections["notes"]).strip("\n")
    return description, criteria, notes


def parse_task(text: str, source: str = "<record>") -> Task:
    """Parse a task record.

    Raises:
        CorruptState: the file is not a well-formed task record
    """
    m = FRONTMATTER_RE.match(text.replace("\r\n", "\n"))
    if not m:
        raise CorruptState(f"Invalid task file format (no frontmatter): {source}", {"path": source})

    try:
        frontmatter = yaml.safe_load(m.group(1) or "") or {}
    except yaml.YAMLError as e:
        raise CorruptState(f"Invalid YAML frontmatter in {source}: {e}", {"path": source}) from e
    if not isinstance(frontmatter, dict):
        raise CorruptState(f"Frontmatter is not a mapping in {source}", {"path": source})

    try:
        validate(frontmatter, "task_record")
        description, criteria, notes = _split_body(m.group(2))
    except (ValidationError, ValueError) as e:
        raise CorruptState(f"Invalid task record {source}: {e}", {"path": source}) from e

    return Task.from_dict({
        **frontmatter,
        "description": description,
        "acceptanceCriteria": criteria,
        "notes": notes,
    })
