"""Adapter for the Amazon Q developer CLI (``q chat``)."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from ..channels import InputQueue
from ..environment import DEFAULT_STATE, TaskInfo
from ..errors import ChannelClosed, ContextSwitchError
from .base import CliAdapter


logger = logging.getLogger(__name__)

CLEAR_DIRECTIVE = "/clear"
CONFIRM_ANSWER = "y"


def _command_head(command: str) -> tuple[str, str]:
    parts = command.split()
    exe = os.path.basename(parts[0]) if parts else ""
    sub = parts[1] if len(parts) > 1 else ""
    return exe, sub


class QChatAdapter(CliAdapter):
    """Drives ``q chat``. Task switches clear the conversation and re-prime it."""

    label = "Amazon Q"
    executable = "q"
    subcommand = "chat"

    def __init__(
        self,
        command: str,
        clear_settle: float = 0.5,
        prime_settle: float = 0.5,
    ) -> None:
        super().__init__(command)
        self.clear_settle = clear_settle
        self.prime_settle = prime_settle

    @classmethod
    def matches(cls, command: str) -> bool:
        return _command_head(command) == (cls.executable, cls.subcommand)

    def help_text(self) -> str:
        return "\nAmazon Q Commands:\n  (No Q-specific commands available yet)\n"

    def can_service(self, command: str) -> bool:
        # Flags after "q chat" do not change the kind of process we talk to
        return self.matches(command)

    async def switch_context(
        self,
        task: TaskInfo,
        input_queue: InputQueue,
        output: "asyncio.Queue[str]",
    ) -> None:
        await output.put(f"\nClearing conversation and loading task '{task.name}'...\n")

        await self._send(input_queue, CLEAR_DIRECTIVE + "\r", "clear conversation")
        await self._send(input_queue, CONFIRM_ANSWER + "\r", "confirm clear")
        await asyncio.sleep(self.clear_settle)

        instructions = self._read_context(task.instructions_path)
        if instructions is not None:
            message = self._frame("instructions", task.name, instructions)
            await self._send(input_queue, message + "\r", "send instructions")
            await asyncio.sleep(self.prime_settle)

        state = self._read_context(task.state_path)
        if state is not None and state.strip() != DEFAULT_STATE.strip():
            message = self._frame("current state", task.name, state)
            await self._send(input_queue, message + "\r", "send state")
            await asyncio.sleep(self.prime_settle)

        await output.put(f"Task '{task.name}' loaded.\n")
        logger.info("Context switched to task %s", task.name)

    async def _send(self, input_queue: InputQueue, data: str, step: str) -> None:
        try:
            await input_queue.send(data)
        except ChannelClosed as e:
            raise ContextSwitchError(f"Failed to {step}: {e}") from e

    def _read_context(self, path: Path) -> Optional[str]:
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read %s: %s", path, e)
            return None

    @staticmethod
    def _frame(kind: str, task_name: str, content: str) -> str:
        # A newline would submit the prompt early, so the body is flattened
        body = " ".join(content.split())
        return f"Here are the {kind} for task '{task_name}': {body}"
