"""Shared fixtures for grill tests."""

import pytest

from grill.environment import Environment


@pytest.fixture
def anyio_backend():
    """Run async tests on asyncio only (the session is asyncio based)."""
    return "asyncio"


@pytest.fixture
def env(tmp_path):
    """An initialized grill environment in a temporary directory."""
    environment = Environment(tmp_path)
    environment.init()
    return environment


@pytest.fixture
def set_task_cli(env):
    """Point a task at a different CLI command."""

    def _set(task: str, cli: str) -> None:
        (env.get_task_dir(task) / "config.toml").write_text(f'cli = "{cli}"\n', encoding="utf-8")

    return _set
