"""Session orchestration: one child CLI, one terminal, one task at a time.

A session wires together:
- the :class:`~grill.process.PtySupervisor` running the task's CLI
- the :class:`~grill.terminal_io.TerminalMultiplexer` owning the terminal
- the task's :class:`~grill.adapters.CliAdapter`

and runs two asyncio tasks on top of them: the keystroke forwarder and the
command dispatcher.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import BinaryIO, List, Optional

from .adapters import CliAdapter, create_adapter
from .channels import InputQueue
from .commands import (
    Command,
    CreateTask,
    CurrentTask,
    DeleteTask,
    Help,
    ListTasks,
    Quit,
    SwitchTask,
)
from .environment import Environment
from .errors import ChannelClosed, GrillError, TaskIsCurrent
from .process import PtySupervisor
from .terminal_io import TerminalMultiplexer


logger = logging.getLogger(__name__)

PROMPT_RESTORE = "\r"
NATIVE_HELP = "/help\r"


def get_help_text() -> str:
    lines = [
        "",
        "Grill Commands:",
        "  /task                 Show the current task",
        "  /task list            List all available tasks",
        "  /task <name>          Switch to the specified task",
        "  /task init <name>     Create a new task",
        "  /task delete <name>   Delete a task",
        "  /help                 Show this help message",
        "  /quit                 Exit grill",
        "",
        "",
    ]
    return "\n".join(lines)


async def forward_input(
    keystrokes: "asyncio.Queue[str]",
    adapter: CliAdapter,
    input_queue: InputQueue,
) -> None:
    """Pass keystrokes through the adapter to the child."""
    while True:
        text = await keystrokes.get()
        try:
            forwarded = adapter.intercept_input(text)
        except Exception:
            logger.exception("Error intercepting input; forwarding it unchanged")
            forwarded = text
        if forwarded is None:
            continue
        try:
            await input_queue.send(forwarded)
        except ChannelClosed as e:
            logger.warning("Failed to forward input to process: %s", e)
            return


class CommandDispatcher:
    """Handles parsed commands for one session.

    Every command is offered to the adapter first; unclaimed commands get the
    built-in handling.
    """

    def __init__(
        self,
        environment: Environment,
        adapter: CliAdapter,
        current_task: str,
        input_queue: InputQueue,
        output: "asyncio.Queue[Optional[str]]",
        running: threading.Event,
    ) -> None:
        self.environment = environment
        self.adapter = adapter
        self.current_task = current_task
        self.input_queue = input_queue
        self.output = output
        self.running = running

    async def run(self, commands: "asyncio.Queue[Command]") -> None:
        while True:
            command = await commands.get()
            if not await self.handle(command):
                break

    async def handle(self, command: Command) -> bool:
        """Handle one command. Returns False when the loop must end."""
        logger.info("Processing command: %s", command)
        try:
            if await self.adapter.process_command(command, self.output, self.current_task):
                return True
        except Exception as e:
            logger.exception("Adapter failed to process %s", command)
            await self.emit(f"\nError processing command: {e}\n\n")
            return True

        if isinstance(command, Quit):
            await self.emit("\nExiting grill...\n")
            self.running.clear()
            return False
        if isinstance(command, ListTasks):
            await self._list_tasks()
        elif isinstance(command, CurrentTask):
            await self.emit(f"\nCurrent task: {self.current_task}\n\n")
        elif isinstance(command, SwitchTask):
            await self._switch_task(command.name)
        elif isinstance(command, CreateTask):
            await self._create_task(command.name)
        elif isinstance(command, DeleteTask):
            await self._delete_task(command.name)
        elif isinstance(command, Help):
            await self.emit(get_help_text() + self.adapter.help_text())
            await self.send(NATIVE_HELP)
            return True
        else:
            logger.warning("Unhandled command %r", command)
            return True

        await self.send(PROMPT_RESTORE)
        return True

    async def emit(self, text: str) -> None:
        await self.output.put(text)

    async def send(self, text: str) -> None:
        try:
            await self.input_queue.send(text)
        except ChannelClosed as e:
            logger.warning("Failed to send %r to process: %s", text, e)

    async def _list_tasks(self) -> None:
        try:
            tasks = self.environment.list_tasks()
        except OSError as e:
            await self.emit(f"\nError listing tasks: {e}\n")
            return
        lines = ["", "Available tasks:"]
        for name in tasks:
            if name == self.current_task:
                lines.append(f"* {name} (current)")
            else:
                lines.append(f"  {name}")
        await self.emit("\n".join(lines) + "\n\n")

    async def _switch_task(self, name: str) -> None:
        try:
            task = self.environment.load_task(name)
        except GrillError as e:
            await self.emit(f"\nError switching to task '{name}': {e}\n\n")
            return

        if not self.adapter.can_service(task.cli_command):
            try:
                self.environment.set_current_task(name)
            except (GrillError, OSError) as e:
                await self.emit(f"\nError switching to task '{name}': {e}\n\n")
                return
            await self.emit(f"\nSwitched to task: {name}\n")
            await self.emit("Task uses a different CLI. Please restart grill to apply the change.\n\n")
            return

        await self.emit(f"\nSwitching to task: {name} (seamless switch)\n")
        try:
            await self.adapter.switch_context(task, self.input_queue, self.output)
        except GrillError as e:
            logger.error("Context switch to %s failed: %s", name, e)
            await self.emit(f"Error switching task context: {e}\n\n")
            return

        self.current_task = name
        try:
            self.environment.set_current_task(name)
        except (GrillError, OSError) as e:
            await self.emit(f"Warning: Failed to update current task file: {e}\n")

    async def _create_task(self, name: str) -> None:
        try:
            self.environment.create_task(name)
        except (GrillError, OSError) as e:
            await self.emit(f"\nError creating task '{name}': {e}\n\n")
            return
        await self.emit(f"\nCreated task: {name}\n\n")

    async def _delete_task(self, name: str) -> None:
        try:
            # The file pointer may already name another task than the one running
            if name == self.current_task:
                raise TaskIsCurrent(name)
            self.environment.delete_task(name)
        except (GrillError, OSError) as e:
            await self.emit(f"\nError deleting task '{name}': {e}\n\n")
            return
        await self.emit(f"\nDeleted task: {name}\n\n")


class Session:
    """A running grill session.

    Usage::

        session = Session(environment)
        await session.start(task_name)
        while session.is_running():
            await asyncio.sleep(0.1)
        await session.stop()
    """

    def __init__(
        self,
        environment: Environment,
        stdin_fd: Optional[int] = None,
        stdout: Optional[BinaryIO] = None,
    ) -> None:
        self.environment = environment
        self._stdin_fd = stdin_fd
        self._stdout = stdout
        self._running = threading.Event()
        self.current_task: Optional[str] = None
        self.adapter: Optional[CliAdapter] = None
        self.supervisor: Optional[PtySupervisor] = None
        self.multiplexer: Optional[TerminalMultiplexer] = None
        self.dispatcher: Optional[CommandDispatcher] = None
        self._tasks: List[asyncio.Task] = []
        self._multiplexer_task: Optional[asyncio.Task] = None
        self._failure: Optional[BaseException] = None

    def is_running(self) -> bool:
        return self._running.is_set()

    async def start(self, task_name: Optional[str] = None) -> None:
        """Resolve the task, spawn its CLI and start all session units.

        Raises:
            TaskError: if the task cannot be resolved
            SpawnError: if the CLI cannot be started
        """
        name = task_name or self.environment.get_current_task()
        task = self.environment.load_task(name)
        self.current_task = task.name

        adapter = create_adapter(task.cli_command)
        self.adapter = adapter
        logger.info("Starting session for task %s with %r", task.name, adapter)

        loop = asyncio.get_running_loop()
        multiplexer = TerminalMultiplexer(stdin_fd=self._stdin_fd, stdout=self._stdout)
        multiplexer.bind(loop)
        self.multiplexer = multiplexer

        supervisor = PtySupervisor(adapter.command)
        self.supervisor = supervisor
        input_queue = supervisor.start(multiplexer.output_sink(), adapter)
        self._running.set()

        adapter.on_start(task.name, multiplexer.output)

        keystrokes = multiplexer.keystrokes.subscribe()
        commands = multiplexer.commands.subscribe()
        self.dispatcher = CommandDispatcher(
            environment=self.environment,
            adapter=adapter,
            current_task=task.name,
            input_queue=input_queue,
            output=multiplexer.output,
            running=self._running,
        )

        self._tasks = [
            asyncio.create_task(forward_input(keystrokes, adapter, input_queue), name="grill-forward-input"),
            asyncio.create_task(self.dispatcher.run(commands), name="grill-dispatch"),
        ]
        self._multiplexer_task = asyncio.create_task(multiplexer.run(), name="grill-terminal")
        self._multiplexer_task.add_done_callback(self._on_multiplexer_done)

    def _on_multiplexer_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Terminal I/O failed: %s", error)
            self._failure = error
            self._running.clear()

    async def stop(self) -> None:
        """Tear everything down. Safe to call more than once.

        Re-raises a terminal setup failure after cleanup.
        """
        self._running.clear()

        if self.supervisor is not None:
            # Joins the pty threads; the reader may be waiting on this loop
            await asyncio.get_running_loop().run_in_executor(None, self.supervisor.stop)

        if self.multiplexer is not None and self._multiplexer_task is not None:
            task = self._multiplexer_task
            self._multiplexer_task = None
            self.multiplexer.stop()
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=1.0)
            except asyncio.TimeoutError:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            except Exception as e:
                self._failure = self._failure or e

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self._failure is not None:
            failure, self._failure = self._failure, None
            raise failure
