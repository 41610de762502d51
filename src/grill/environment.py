"""On-disk grill environment: ``.grill/`` layout, tasks and the current task.

Layout::

    <root>/.grill/config.toml
    <root>/.grill/current_task
    <root>/.grill/tasks/<name>/{instructions.md, state.md, config.toml}
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List

from .config import (
    DEFAULT_GLOBAL_CONFIG,
    DEFAULT_TASK_CONFIG,
    GlobalConfig,
    TaskConfig,
    load_global_config,
    load_task_config,
)
from .errors import (
    InvalidTaskName,
    NoCurrentTask,
    TaskAlreadyExists,
    TaskIsCurrent,
    TaskNotFound,
)


logger = logging.getLogger(__name__)

DEFAULT_TASK = "default"
DEFAULT_INSTRUCTIONS = "# Task Instructions\n\nAdd your instructions here.\n"
DEFAULT_STATE = "# Task State\n\nTask state will be tracked here.\n"

INSTRUCTIONS_FILE = "instructions.md"
STATE_FILE = "state.md"
TASK_CONFIG_FILE = "config.toml"


@dataclass(frozen=True)
class TaskInfo:
    """Immutable snapshot of a resolved task."""

    name: str
    path: Path
    cli_command: str

    @property
    def instructions_path(self) -> Path:
        return self.path / INSTRUCTIONS_FILE

    @property
    def state_path(self) -> Path:
        return self.path / STATE_FILE


class Environment:
    """The grill environment rooted at a project directory."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = Path(root_dir)
        self.grill_dir = self.root_dir / ".grill"
        self.tasks_dir = self.grill_dir / "tasks"
        self.config_file = self.grill_dir / "config.toml"
        self.current_task_file = self.grill_dir / "current_task"
        self.logs_dir = self.grill_dir / "logs"

    def init(self) -> None:
        """Create the layout. Existing files are never overwritten."""
        self.tasks_dir.mkdir(parents=True, exist_ok=True)

        if not self.config_file.exists():
            self.config_file.write_text(DEFAULT_GLOBAL_CONFIG, encoding="utf-8")

        if not self.current_task_file.exists():
            self.current_task_file.write_text(DEFAULT_TASK, encoding="utf-8")
            if not (self.tasks_dir / DEFAULT_TASK).exists():
                self.create_task(DEFAULT_TASK)

    def exists(self) -> bool:
        return self.grill_dir.is_dir() and self.config_file.exists()

    def _validate_name(self, name: str) -> str:
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise InvalidTaskName(name)
        return name

    def create_task(self, name: str) -> Path:
        self._validate_name(name)
        task_dir = self.tasks_dir / name
        if task_dir.exists():
            raise TaskAlreadyExists(name)

        task_dir.mkdir(parents=True)
        (task_dir / INSTRUCTIONS_FILE).write_text(DEFAULT_INSTRUCTIONS, encoding="utf-8")
        (task_dir / STATE_FILE).write_text(DEFAULT_STATE, encoding="utf-8")
        (task_dir / TASK_CONFIG_FILE).write_text(DEFAULT_TASK_CONFIG, encoding="utf-8")
        logger.info("Created task %s", name)
        return task_dir

    def get_current_task(self) -> str:
        if not self.current_task_file.exists():
            raise NoCurrentTask()
        name = self.current_task_file.read_text(encoding="utf-8").strip()
        if not name:
            raise NoCurrentTask()
        return name

    def set_current_task(self, name: str) -> None:
        self.get_task_dir(name)
        self.current_task_file.write_text(name, encoding="utf-8")
        logger.info("Current task set to %s", name)

    def get_task_dir(self, name: str) -> Path:
        self._validate_name(name)
        task_dir = self.tasks_dir / name
        if not task_dir.is_dir():
            raise TaskNotFound(name)
        return task_dir

    def list_tasks(self) -> List[str]:
        if not self.tasks_dir.exists():
            return []
        return sorted(p.name for p in self.tasks_dir.iterdir() if p.is_dir())

    def delete_task(self, name: str) -> None:
        task_dir = self.get_task_dir(name)
        try:
            current = self.get_current_task()
        except NoCurrentTask:
            current = None
        if current == name:
            raise TaskIsCurrent(name)
        shutil.rmtree(task_dir)
        logger.info("Deleted task %s", name)

    def load_global_config(self) -> GlobalConfig:
        return load_global_config(self.config_file)

    def load_task_config(self, name: str) -> TaskConfig:
        return load_task_config(self.get_task_dir(name) / TASK_CONFIG_FILE)

    def resolve_cli_command(self, name: str) -> str:
        """Task config ``cli`` wins over the global ``default_cli``."""
        cli = self.load_task_config(name).cli
        if cli:
            return cli
        return self.load_global_config().default_cli

    def load_task(self, name: str) -> TaskInfo:
        path = self.get_task_dir(name)
        return TaskInfo(name=name, path=path, cli_command=self.resolve_cli_command(name))
