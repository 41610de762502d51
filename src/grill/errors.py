"""Exception hierarchy for grill.

Only :class:`SpawnError` and :class:`TerminalSetupError` abort a session.
Everything else is reported over the output stream while the session keeps
running.
"""

from __future__ import annotations


class GrillError(Exception):
    """Base class for all grill errors."""


class SpawnError(GrillError):
    """The child CLI could not be started."""


class TerminalSetupError(GrillError):
    """The controlling terminal could not be switched to raw mode."""


class ChannelClosed(GrillError):
    """A send was attempted on a queue that has been shut down."""


class ContextSwitchError(GrillError):
    """A step of the in-place context switch protocol failed."""


class ConfigError(GrillError):
    """A configuration file could not be read or is invalid."""


class TaskError(GrillError):
    """Base class for task environment failures."""


class NoCurrentTask(TaskError):
    def __init__(self) -> None:
        super().__init__("No current task set")


class TaskNotFound(TaskError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Task '{name}' does not exist")
        self.name = name


class TaskAlreadyExists(TaskError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Task '{name}' already exists")
        self.name = name


class TaskIsCurrent(TaskError):
    def __init__(self, name: str) -> None:
        super().__init__("Cannot delete the current task")
        self.name = name


class InvalidTaskName(TaskError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Invalid task name: {name!r}")
        self.name = name
