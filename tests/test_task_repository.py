"""Tests for ralphdev.repositories.tasks module."""

import logging

import pytest

from ralphdev.lib.errors import CorruptState
from ralphdev.lib.fs import FileSystem
from ralphdev.lib.records import render_task
from ralphdev.repositories.index import IndexRepository
from ralphdev.repositories.tasks import TaskFilter, TaskRepository
from ralphdev.workflow.task import Task, TaskStatus


@pytest.fixture
def repo(tmp_path):
    fs = FileSystem()
    return TaskRepository(fs, IndexRepository(fs, tmp_path / "tasks"))


def task(task_id, **kw):
    return Task(id=task_id, module=task_id.split(".")[0], description=f"Do {task_id}", **kw)


class TestSaveAndFind:

    def test_save_writes_record_and_index(self, repo):
        repo.save(task("auth.login", priority=2))

        record = repo.tasks_dir / "auth" / "login.md"
        assert record.exists()
        entry = repo.index.get_entry("auth.login")
        assert entry == {
            "status": "pending", "priority": 2, "module": "auth", "description": "Do auth.login",
            "filePath": "auth/login.md", "dependencies": [], "estimatedMinutes": 30,
        }

    def test_find_by_id_round_trips(self, repo):
        original = task("auth.login", acceptance_criteria=["works"], dependencies=["auth.setup"])
        repo.save(original)
        assert repo.find_by_id("auth.login") == original

    def test_find_missing_returns_none(self, repo):
        assert repo.find_by_id("auth.ghost") is None

    def test_index_status_follows_record(self, repo):
        t = repo.save(task("auth.login"))
        t.start()
        repo.save(t)
        assert repo.index.get_entry("auth.login")["status"] == "in_progress"
        assert repo.index.get_all_task_ids() == ["auth.login"]

    def test_missing_record_is_corrupt(self, repo):
        repo.save(task("auth.login"))
        (repo.tasks_dir / "auth" / "login.md").unlink()
        with pytest.raises(CorruptState, match="missing record") as exc:
            repo.find_by_id("auth.login")
        assert exc.value.details["id"] == "auth.login"

    def test_unindexed_record_still_found(self, repo, caplog):
        caplog.set_level(logging.WARNING)
        orphan = task("auth.login")
        path = repo.tasks_dir / "auth" / "login.md"
        path.parent.mkdir(parents=True)
        path.write_text(render_task(orphan))

        assert repo.find_by_id("auth.login") == orphan
        assert "no index entry" in caplog.text


class TestFindAll:

    @pytest.fixture
    def populated(self, repo):
        a = task("core.a", priority=2)
        b = task("core.b", priority=1, dependencies=["core.a"])
        c = task("ui.c", priority=1)
        d = task("ui.d", dependencies=["ghost.x"])
        for t in (a, b, c, d):
            repo.save(t)
        return repo

    def test_index_order(self, populated):
        assert [t.id for t in populated.find_all()] == ["core.a", "core.b", "ui.c", "ui.d"]

    def test_filter_module(self, populated):
        assert [t.id for t in populated.find_all(TaskFilter(module="ui"))] == ["ui.c", "ui.d"]

    def test_filter_status_accepts_string(self, populated):
        assert populated.find_all(TaskFilter(status="completed")) == []
        assert len(populated.find_all(TaskFilter(status=TaskStatus.PENDING))) == 4

    def test_filter_has_dependencies(self, populated):
        ids = [t.id for t in populated.find_all(TaskFilter(has_dependencies=False))]
        assert ids == ["core.a", "ui.c"]

    def test_ready_excludes_unknown_and_unfinished_dependencies(self, populated):
        ids = [t.id for t in populated.find_all(TaskFilter(ready=True))]
        assert ids == ["core.a", "ui.c"]

    def test_ready_uses_all_tasks_even_with_module_filter(self, populated):
        a = populated.find_by_id("core.a")
        a.start()
        a.complete()
        populated.save(a)
        ids = [t.id for t in populated.find_all(TaskFilter(module="core", ready=True))]
        assert ids == ["core.b"]

    def test_includes_unindexed_records(self, populated):
        orphan = task("ops.deploy")
        path = populated.tasks_dir / "ops" / "deploy.md"
        path.parent.mkdir(parents=True)
        path.write_text(render_task(orphan))
        assert populated.find_all()[-1].id == "ops.deploy"


class TestDelete:

    def test_delete_removes_record_and_entry(self, repo):
        repo.save(task("auth.login"))
        assert repo.delete("auth.login") is True
        assert not (repo.tasks_dir / "auth" / "login.md").exists()
        assert not repo.index.has_task("auth.login")

    def test_delete_missing(self, repo):
        assert repo.delete("auth.ghost") is False


class TestRebuildIndex:

    def test_recovers_lost_entries_and_keeps_order(self, repo):
        for tid in ("auth.b", "auth.a", "auth.c"):
            repo.save(task(tid))
        repo.index.update_metadata({"projectGoal": "Ship"})
        repo.index.remove_task("auth.a")

        report = repo.rebuild_index()

        assert repo.index.get_all_task_ids() == ["auth.b", "auth.c", "auth.a"]
        assert report["added"] == ["auth.a"]
        assert report["removed"] == []
        assert repo.index.get_metadata()["projectGoal"] == "Ship"

    def test_drops_entries_without_records(self, repo):
        repo.save(task("auth.a"))
        repo.save(task("auth.b"))
        (repo.tasks_dir / "auth" / "b.md").unlink()

        report = repo.rebuild_index()

        assert report["removed"] == ["auth.b"]
        assert repo.find_by_id("auth.b") is None

    def test_status_taken_from_record(self, repo):
        t = repo.save(task("auth.a"))
        t.start()
        repo.save(t)
        repo.index.update_task_status("auth.a", "pending")

        repo.rebuild_index()
        assert repo.index.get_entry("auth.a")["status"] == "in_progress"

    def test_corrupt_index_is_replaced(self, repo):
        repo.save(task("auth.a"))
        repo.index.path.write_text("{broken")

        report = repo.rebuild_index()
        assert report["indexed"] == 1
        assert repo.index.has_task("auth.a")

    def test_unreadable_record_reported(self, repo):
        repo.save(task("auth.a"))
        bad = repo.tasks_dir / "auth" / "bad.md"
        bad.write_text("not a task")

        report = repo.rebuild_index()
        assert report["indexed"] == 1
        assert report["errors"][0]["path"] == str(bad)


class TestInconsistencies:

    def test_consistent(self, repo):
        repo.save(task("auth.a"))
        assert repo.find_inconsistencies() == []

    def test_reports_each_kind(self, repo):
        repo.save(task("auth.a"))
        repo.save(task("auth.b"))
        (repo.tasks_dir / "auth" / "a.md").unlink()
        repo.index.update_task_status("auth.b", "completed")
        orphan = repo.tasks_dir / "ops" / "deploy.md"
        orphan.parent.mkdir(parents=True)
        orphan.write_text(render_task(task("ops.deploy")))

        problems = {p["problem"]: p["id"] for p in repo.find_inconsistencies()}
        assert problems == {
            "missing_record": "auth.a",
            "status_mismatch": "auth.b",
            "unindexed_record": "deploy",
        }
