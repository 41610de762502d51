"""Capability adapter contract for wrapped CLIs.

An adapter is the per-CLI strategy the session consults for:

- input/output interception (return the text to keep it, None to drop it)
- the startup banner and the help fragment
- whether a task switch can reuse the running child (``can_service``)
- the in-place context switch protocol
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..channels import InputQueue
from ..commands import Command
from ..environment import TaskInfo
from ..errors import ContextSwitchError


logger = logging.getLogger(__name__)


class CliAdapter(ABC):
    """Base adapter. Interception keeps everything unchanged."""

    #: Display name used in help and log output
    label: str = "CLI"

    def __init__(self, command: str) -> None:
        self._command = command

    @property
    def command(self) -> str:
        return self._command

    @classmethod
    def matches(cls, command: str) -> bool:
        """Return True if this adapter type handles ``command``."""
        return False

    def intercept_input(self, text: str) -> Optional[str]:
        return text

    def intercept_output(self, text: str) -> Optional[str]:
        return text

    def on_start(self, task_name: str, output: "asyncio.Queue[str]") -> None:
        """Queue the startup banner without blocking; dropped if output is full."""
        for line in (
            f"\nStarting grill with task: {task_name}\n",
            "Type /help for available commands\n\n",
        ):
            try:
                output.put_nowait(line)
            except asyncio.QueueFull:
                logger.debug("Output queue full; startup banner dropped")
                return

    @abstractmethod
    def help_text(self) -> str:
        """Help fragment appended to the built-in command help."""

    async def process_command(
        self,
        command: Command,
        output: "asyncio.Queue[str]",
        current_task: str,
    ) -> bool:
        """Offer ``command`` to the adapter. True means it was handled."""
        return False

    def can_service(self, command: str) -> bool:
        """Whether the running child can be reused for a task running ``command``."""
        return False

    async def switch_context(
        self,
        task: TaskInfo,
        input_queue: InputQueue,
        output: "asyncio.Queue[str]",
    ) -> None:
        """Replace the child's conversation with ``task`` in place.

        Raises:
            ContextSwitchError: if a protocol step fails or the CLI cannot
                switch in place
        """
        raise ContextSwitchError(f"{self.label} does not support in-place task switching")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._command!r})"


class PassthroughAdapter(CliAdapter):
    """Adapter for CLIs grill knows nothing about.

    Every task switch requires restarting grill.
    """

    label = "Generic CLI"

    def help_text(self) -> str:
        return f"\n{self.label} Commands:\n  (No CLI-specific commands for '{self.command}')\n"
