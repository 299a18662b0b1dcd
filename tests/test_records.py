"""Tests for ralphdev.lib.records module."""

from pathlib import Path

import pytest
import yaml

from ralphdev.lib.errors import CorruptState
from ralphdev.lib.records import parse_task, record_path, relative_record_path, render_task
from ralphdev.workflow.task import Task, TaskStatus


class TestRecordPath:

    def test_strips_module_prefix(self, tmp_path):
        assert record_path(tmp_path, "auth", "auth.login") == tmp_path / "auth" / "login.md"

    def test_nested_name(self):
        assert relative_record_path("api", "api.users.list") == "api/users.list.md"

    def test_dotted_module(self, tmp_path):
        assert record_path(tmp_path, "api.v2", "api.v2.users") == tmp_path / "api.v2" / "users.md"


class TestRenderTask:

    def test_layout(self):
        task = Task(id="auth.login", module="auth", description="Implement login",
                    acceptance_criteria=["Returns a token", "Rejects bad passwords"])
        text = render_task(task)

        assert text.startswith("---\nid: auth.login\nmodule: auth\n")
        assert "\n---\n\n# Implement login\n" in text
        assert "## Acceptance Criteria\n1. Returns a token\n2. Rejects bad passwords\n" in text
        assert "## Notes" not in text

    def test_frontmatter_is_yaml(self):
        task = Task(id="auth.login", module="auth", description="x", dependencies=["auth.setup"],
                    started_at="2024-05-01T10:00:00.000Z", status="in_progress")
        header = render_task(task).split("---\n")[1]
        data = yaml.safe_load(header)
        assert data["dependencies"] == ["auth.setup"]
        assert data["status"] == "in_progress"
        # Timestamps stay strings, not YAML datetimes
        assert data["startedAt"] == "2024-05-01T10:00:00.000Z"
        assert "testRequirements" not in data


class TestRoundTrip:
    """render_task() followed by parse_task() must give back the same task."""

    @pytest.mark.parametrize("task", [
        Task(id="auth.login", module="auth", description="Implement login"),
        Task(id="auth.login", module="auth", description="Implement login", priority=0,
             estimated_minutes=90, acceptance_criteria=["A", "B: with colon", "3. looks numbered"],
             dependencies=["auth.setup", "db.schema"],
             test_requirements={"unit": {"required": True, "pattern": "tests/auth/**"}}),
        Task(id="api.users.list", module="api", description="List users", status=TaskStatus.FAILED,
             notes="Failed: timeout\n\nSecond paragraph\n## not a heading we care about",
             started_at="2024-05-01T10:00:00.000Z", failed_at="2024-05-01T10:05:00.000Z"),
        Task(id="ui.theme", module="ui", description="Unicode déjà vu ✓", notes="Completed in 5m"),
        Task(id="auth.login", module="auth", description="Login\n## Notes\nnot a note"),
        Task(id="auth.login", module="auth", description="Login\n## Acceptance Criteria\nsee doc",
             acceptance_criteria=["Real criterion"]),
        Task(id="auth.login", module="auth", description="# Already a heading\n\\## escaped by hand\n\\",
             notes="## Acceptance Criteria\n## Notes\n# h1\n\\backslash"),
        Task(id="auth.login", module="auth", description="Multi-line\n\nsecond paragraph\n  ## indented"),
    ])
    def test_round_trip(self, task):
        assert parse_task(render_task(task)) == task

    def test_heading_lines_escaped_in_body(self):
        task = Task(id="auth.login", module="auth", description="Login\n## Notes\nnot a note")
        text = render_task(task)
        assert "\n\\## Notes\n" in text
        assert "\n## Notes\n" not in text

    def test_windows_line_endings(self):
        task = Task(id="auth.login", module="auth", description="Implement login",
                    acceptance_criteria=["One"])
        text = render_task(task).replace("\n", "\r\n")
        assert parse_task(text) == task


class TestParseErrors:

    def test_missing_frontmatter(self):
        with pytest.raises(CorruptState, match="no frontmatter"):
            parse_task("# Just a heading\n", source="x.md")

    def test_bad_yaml(self):
        with pytest.raises(CorruptState, match="Invalid YAML"):
            parse_task("---\nid: [unclosed\n---\n\n# x\n")

    def test_schema_violation(self):
        with pytest.raises(CorruptState, match="Invalid task record"):
            parse_task("---\nid: auth.login\nmodule: auth\npriority: high\nstatus: pending\n---\n\n# x\n")

    def test_missing_title(self):
        with pytest.raises(CorruptState):
            parse_task("---\nid: auth.login\nmodule: auth\npriority: 1\nstatus: pending\n---\n\nno heading\n")

    def test_details_carry_path(self):
        with pytest.raises(CorruptState) as exc:
            parse_task("garbage", source=str(Path("tasks/auth/login.md")))
        assert exc.value.details["path"].endswith("login.md")
