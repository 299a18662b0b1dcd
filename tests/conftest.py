"""Shared fixtures: a throwaway workspace with repositories and services wired up."""

import pytest

from ralphdev.context import Context
from ralphdev.lib.config import Config


@pytest.fixture
def config(tmp_path):
    """Config for a fresh workspace; retries never sleep long."""
    return Config(
        workspace=tmp_path,
        lock_timeout=2,
        retry_initial_delay=0.0,
        retry_max_delay=0.0,
    )


@pytest.fixture
def ctx(config):
    return Context(config)


@pytest.fixture
def task_service(ctx):
    return ctx.tasks


@pytest.fixture
def state_service(ctx):
    return ctx.state


def make_spec(task_id, **overrides):
    """Minimal valid create_task() input; module is the id's first segment."""
    spec = {
        "id": task_id,
        "module": task_id.split(".")[0],
        "description": f"Implement {task_id}",
    }
    spec.update(overrides)
    return spec
