"""Terminal I/O multiplexer: raw keystrokes in, child output out.

Keystrokes are classified one character at a time by :class:`KeystrokeMachine`:

- ``NORMAL``: everything goes to the child, except ``/`` which starts a
  command line.
- ``COMMAND_ECHO``: characters are echoed locally and buffered until Enter,
  then parsed into a :class:`~grill.commands.Command`.

The output loop is the only writer of the real terminal. Because the terminal
is in raw mode, every LF is written as CRLF.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import select
import sys
import termios
import threading
import tty
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Iterator, List, Optional, Union

import wcwidth

from .channels import Broadcast, DEFAULT_CAPACITY, OutputSink, threadsafe_sink
from .commands import Command, Quit, parse_command
from .errors import ChannelClosed, TerminalSetupError


logger = logging.getLogger(__name__)

CTRL_C = "\x03"
TAB = "\t"
ENTER_KEYS = ("\r", "\n")
BACKSPACE_KEYS = ("\x7f", "\x08")


class Mode(Enum):
    NORMAL = "normal"
    COMMAND_ECHO = "command_echo"


@dataclass(frozen=True)
class Forward:
    """Send ``text`` to the child."""
    text: str


@dataclass(frozen=True)
class Echo:
    """Write ``text`` to the user's terminal."""
    text: str


@dataclass(frozen=True)
class Emit:
    """Broadcast a parsed command."""
    command: Command


@dataclass(frozen=True)
class Stop:
    """End the keystroke loop."""


Action = Union[Forward, Echo, Emit, Stop]


class KeystrokeMachine:
    """Per-keystroke classifier.

    Invariant: ``buffer`` is non-empty iff ``mode`` is ``COMMAND_ECHO``.
    """

    def __init__(self) -> None:
        self.mode = Mode.NORMAL
        self.buffer = ""

    def reset(self) -> None:
        self.mode = Mode.NORMAL
        self.buffer = ""

    def feed(self, ch: str) -> List[Action]:
        if ch == CTRL_C:
            self.reset()
            return [Emit(Quit()), Stop()]
        if self.mode is Mode.COMMAND_ECHO:
            return self._feed_command(ch)
        if ch == "/" and not self.buffer:
            self.mode = Mode.COMMAND_ECHO
            self.buffer = ch
            return [Echo(ch)]
        if ch in ENTER_KEYS:
            return [Forward("\r")]
        # Printable, tab, backspace and any other raw byte pass through
        return [Forward(ch)]

    def feed_text(self, text: str) -> List[Action]:
        actions: List[Action] = []
        for ch in text:
            actions.extend(self.feed(ch))
            if actions and isinstance(actions[-1], Stop):
                break
        return actions

    def _feed_command(self, ch: str) -> List[Action]:
        if ch in ENTER_KEYS:
            line = self.buffer
            self.reset()
            actions: List[Action] = [Echo("\n")]
            command = parse_command(line)
            if command is not None:
                actions.append(Emit(command))
            else:
                logger.debug("Ignoring unknown command line %r", line)
            return actions

        if ch in BACKSPACE_KEYS:
            removed = self.buffer[-1]
            self.buffer = self.buffer[:-1]
            if not self.buffer:
                self.mode = Mode.NORMAL
            width = wcwidth.wcwidth(removed)
            if width < 0:
                width = 1
            return [Echo("\b \b" * width)] if width else []

        if ch == TAB or ch.isprintable():
            self.buffer += ch
            return [Echo(ch)]

        return []


def coalesce(actions: List[Action]) -> List[Action]:
    """Merge adjacent ``Forward``/``Echo`` actions of the same kind.

    A paste then travels as one string per read instead of one per character.
    """
    merged: List[Action] = []
    for action in actions:
        last = merged[-1] if merged else None
        if isinstance(action, Forward) and isinstance(last, Forward):
            merged[-1] = Forward(last.text + action.text)
        elif isinstance(action, Echo) and isinstance(last, Echo):
            merged[-1] = Echo(last.text + action.text)
        else:
            merged.append(action)
    return merged


def normalize_newlines(text: str) -> str:
    """Rewrite LF to CRLF for a raw-mode terminal."""
    return text.replace("\r\n", "\n").replace("\n", "\r\n")


@contextmanager
def raw_mode(fd: int) -> Iterator[None]:
    """Put ``fd`` into raw mode for the duration of the block.

    A no-op when ``fd`` is not a terminal.
    """
    if not os.isatty(fd):
        yield
        return
    try:
        saved = termios.tcgetattr(fd)
        tty.setraw(fd)
    except termios.error as e:
        raise TerminalSetupError(f"Failed to enable raw mode: {e}") from e
    try:
        yield
    finally:
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)
        except termios.error as e:
            logger.error("Failed to restore terminal mode: %s", e)


class TerminalMultiplexer:
    """Owns the real terminal for the duration of a session."""

    def __init__(
        self,
        stdin_fd: Optional[int] = None,
        stdout: Optional[BinaryIO] = None,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        self.stdin_fd = sys.stdin.fileno() if stdin_fd is None else stdin_fd
        self.stdout = sys.stdout.buffer if stdout is None else stdout
        self.keystrokes: Broadcast[str] = Broadcast(capacity, name="keystrokes")
        self.commands: Broadcast[Command] = Broadcast(capacity, name="commands")
        self.output: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=capacity)
        self.machine = KeystrokeMachine()
        self._stop = threading.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._echo: Optional[OutputSink] = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self.keystrokes.bind(loop)
        self.commands.bind(loop)
        self._echo = threadsafe_sink(self.output, loop, cancel=self._stop)

    def output_sink(self) -> OutputSink:
        """Blocking sink for worker threads (e.g. the pty reader)."""
        if self._echo is None:
            self.bind(asyncio.get_running_loop())
        return self._echo

    async def run(self) -> None:
        """Enable raw mode, read keystrokes and write output until stopped.

        Raises:
            TerminalSetupError: if raw mode cannot be enabled
        """
        if self._loop is None:
            self.bind(asyncio.get_running_loop())
        with raw_mode(self.stdin_fd):
            self._reader_thread = threading.Thread(
                target=self._keystroke_loop, name="grill-keystrokes", daemon=True
            )
            self._reader_thread.start()
            try:
                await self._output_loop()
            finally:
                self._stop.set()
                self._reader_thread.join(timeout=0.5)
                self._reader_thread = None

    def stop(self) -> None:
        """Ask :meth:`run` to finish after the queued output is written."""
        self._stop.set()
        try:
            self.output.put_nowait(None)
        except asyncio.QueueFull:
            logger.debug("Output queue full at stop; run() will be cancelled")

    async def _output_loop(self) -> None:
        while True:
            item = await self.output.get()
            if item is None:
                break
            try:
                self.stdout.write(normalize_newlines(item).encode("utf-8"))
                self.stdout.flush()
            except (OSError, ValueError) as e:
                logger.error("Failed to write to terminal: %s", e)
                break

    def _keystroke_loop(self) -> None:
        fd = self.stdin_fd
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while not self._stop.is_set():
            try:
                ready, _, _ = select.select([fd], [], [], 0.1)
                if fd not in ready:
                    continue
                data = os.read(fd, 1024)
            except InterruptedError:
                continue
            except (OSError, ValueError) as e:
                logger.error("Error reading from stdin: %s", e)
                return
            if not data:
                logger.info("stdin closed")
                return

            for action in coalesce(self.machine.feed_text(decoder.decode(data))):
                if not self._apply(action):
                    return

    def _apply(self, action: Action) -> bool:
        """Route one action. Returns False when the loop must end."""
        try:
            if isinstance(action, Forward):
                self.keystrokes.publish_threadsafe(action.text, cancel=self._stop)
            elif isinstance(action, Echo):
                if self._echo is not None:
                    self._echo(action.text)
            elif isinstance(action, Emit):
                logger.debug("Command %s", action.command)
                self.commands.publish_threadsafe(action.command, cancel=self._stop)
            elif isinstance(action, Stop):
                return False
        except ChannelClosed as e:
            logger.warning("Keystroke loop stopping: %s", e)
            return False
        return True
