"""In-session control commands and their slash-command grammar.

Grammar (whitespace tokenized, leading ``/`` stripped):

    task                 -> CurrentTask
    task list            -> ListTasks
    task init <name>     -> CreateTask(name)
    task delete <name>   -> DeleteTask(name)
    task <other>         -> SwitchTask(other)
    quit                 -> Quit
    help                 -> Help

Any other leading token is ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Command:
    """Base for all control commands."""


@dataclass(frozen=True)
class SwitchTask(Command):
    name: str


@dataclass(frozen=True)
class ListTasks(Command):
    pass


@dataclass(frozen=True)
class CurrentTask(Command):
    pass


@dataclass(frozen=True)
class CreateTask(Command):
    name: str


@dataclass(frozen=True)
class DeleteTask(Command):
    name: str


@dataclass(frozen=True)
class Help(Command):
    pass


@dataclass(frozen=True)
class Quit(Command):
    pass


def parse_command(line: str) -> Optional[Command]:
    """Parse a slash-command line into a :class:`Command`.

    Returns None when the line is not a recognised command.
    """
    text = line.strip()
    if text.startswith("/"):
        text = text[1:]
    parts = text.split()
    if not parts:
        return None

    head = parts[0]
    if head == "quit":
        return Quit()
    if head == "help":
        return Help()
    if head != "task":
        return None

    if len(parts) == 1:
        return CurrentTask()
    sub = parts[1]
    # "init"/"delete" without a name fall through to a switch, like any name
    if sub == "init" and len(parts) > 2:
        return CreateTask(parts[2])
    if sub == "delete" and len(parts) > 2:
        return DeleteTask(parts[2])
    if sub == "list":
        return ListTasks()
    return SwitchTask(sub)
