"""PTY process supervisor for the wrapped CLI.

Owns the child process and its pseudo-terminal:
- a reader thread streams child output through the adapter to an output sink
- a writer thread is the only code that writes the pty master

Notes:
- The command string is split on whitespace only. Quoting and escaping are
  not supported, so ``q chat --profile "my profile"`` splits into four
  arguments including the quotes.
- The pty geometry is fixed at 24x80.
"""

from __future__ import annotations

import codecs
import errno
import fcntl
import logging
import os
import pty
import select
import shutil
import signal
import struct
import sys
import termios
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .adapters import CliAdapter
from .channels import InputQueue, OutputSink
from .errors import ChannelClosed, SpawnError


logger = logging.getLogger(__name__)

PTY_ROWS = 24
PTY_COLS = 80
READ_CHUNK_SIZE = 1024


def split_command(command: str) -> List[str]:
    """Naive whitespace split of a command string into an argv."""
    return command.split()


@dataclass
class PtySupervisor:
    command: str
    rows: int = PTY_ROWS
    cols: int = PTY_COLS
    pid: Optional[int] = None
    master_fd: Optional[int] = None
    _input: Optional[InputQueue] = field(default=None, init=False, repr=False)
    _on_output: Optional[OutputSink] = field(default=None, init=False, repr=False)
    _adapter: Optional[CliAdapter] = field(default=None, init=False, repr=False)
    _running: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _writer_running: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _write_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _state_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _reader_thread: Optional[threading.Thread] = field(default=None, init=False, repr=False)
    _writer_thread: Optional[threading.Thread] = field(default=None, init=False, repr=False)
    _exit_code: Optional[int] = field(default=None, init=False, repr=False)

    @property
    def argv(self) -> List[str]:
        return split_command(self.command)

    @property
    def running(self) -> bool:
        """True while the reader loop is streaming output."""
        return self._running.is_set()

    @property
    def exit_code(self) -> Optional[int]:
        self._poll_exit()
        return self._exit_code

    def start(self, on_output: OutputSink, adapter: CliAdapter) -> InputQueue:
        """Spawn the child in a new pty and start the reader/writer threads.

        Returns the queue used to send input to the child.

        Raises:
            SpawnError: if the child could not be started
        """
        if self.pid is not None and self._input is not None:
            return self._input

        argv = self.argv
        if not argv:
            raise SpawnError("Failed to spawn command: empty command")
        if shutil.which(argv[0]) is None:
            raise SpawnError(f"Failed to spawn command '{self.command}': {argv[0]} not found")

        try:
            pid, master = pty.fork()
        except OSError as e:
            raise SpawnError(f"Failed to open pty for '{self.command}': {e}") from e

        if pid == 0:
            self._exec_child(argv)

        # Parent
        self.pid = pid
        self.master_fd = master
        self._exit_code = None
        self._apply_winsize(self.rows, self.cols)

        self._on_output = on_output
        self._adapter = adapter
        self._input = InputQueue()

        self._running.set()
        self._writer_running.set()
        self._reader_thread = threading.Thread(
            target=self._reader_loop, name="grill-pty-reader", daemon=True
        )
        self._writer_thread = threading.Thread(
            target=self._writer_loop, name="grill-pty-writer", daemon=True
        )
        self._reader_thread.start()
        self._writer_thread.start()
        logger.info("Spawned %r (pid %s)", self.command, pid)
        return self._input

    def _exec_child(self, argv: List[str]) -> None:
        try:
            winsize = struct.pack("HHHH", self.rows, self.cols, 0, 0)
            fcntl.ioctl(sys.stdin.fileno(), termios.TIOCSWINSZ, winsize)
        except OSError:
            pass
        os.environ["LINES"] = str(self.rows)
        os.environ["COLUMNS"] = str(self.cols)
        try:
            os.execvp(argv[0], argv)
        except OSError as e:
            os.write(2, f"Failed to exec {argv}: {e}\n".encode())
        os._exit(127)

    def _apply_winsize(self, rows: int, cols: int) -> None:
        if self.master_fd is None:
            return
        try:
            winsize = struct.pack("HHHH", rows, cols, 0, 0)
            fcntl.ioctl(self.master_fd, termios.TIOCSWINSZ, winsize)
        except OSError as e:
            logger.debug("Failed to set pty winsize: %s", e)

    def get_winsize(self) -> Optional[tuple[int, int]]:
        """Return current pty winsize as (rows, cols) if available."""
        if self.master_fd is None:
            return None
        try:
            data = fcntl.ioctl(self.master_fd, termios.TIOCGWINSZ, struct.pack("HHHH", 0, 0, 0, 0))
            rows, cols, _, _ = struct.unpack("HHHH", data)
            return rows, cols
        except OSError:
            return None

    def _reader_loop(self) -> None:
        fd = self.master_fd
        if fd is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while self._running.is_set():
                try:
                    ready, _, _ = select.select([fd], [], [], 0.05)
                    if fd not in ready:
                        continue
                    data = os.read(fd, READ_CHUNK_SIZE)
                except (BlockingIOError, InterruptedError):
                    time.sleep(0.01)
                    continue
                except OSError as e:
                    # Linux reports EIO on the master once the child side is gone
                    if e.errno != errno.EIO:
                        logger.error("Error reading from pty: %s", e)
                    break
                if not data:
                    break

                text = decoder.decode(data)
                if not text:
                    continue
                try:
                    text = self._adapter.intercept_output(text) if self._adapter else text
                except Exception:
                    logger.exception("Error intercepting output")
                    continue
                if text is None:
                    continue

                try:
                    if self._on_output:
                        self._on_output(text)
                except ChannelClosed as e:
                    logger.warning("Output channel closed: %s", e)
                    break
        finally:
            self._running.clear()
            logger.debug("PTY reader stopped")

    def _writer_loop(self) -> None:
        while self._writer_running.is_set():
            if self._input is None:
                break
            data = self._input.get(timeout=0.1)
            if data is None:
                continue
            with self._write_lock:
                fd = self.master_fd
                if fd is None:
                    break
                try:
                    self._write_all(fd, data.encode("utf-8"))
                except OSError as e:
                    logger.error("Failed to write to pty: %s", e)
        logger.debug("PTY writer stopped")

    @staticmethod
    def _write_all(fd: int, payload: bytes) -> None:
        view = memoryview(payload)
        while view:
            try:
                written = os.write(fd, view)
            except BlockingIOError:
                time.sleep(0.01)
                continue
            view = view[written:]

    def _poll_exit(self) -> bool:
        """Reap the child if it has exited. Returns True if it is gone."""
        if self.pid is None:
            return True
        if self._exit_code is not None:
            return True
        try:
            pid, status = os.waitpid(self.pid, os.WNOHANG)
        except ChildProcessError:
            self._exit_code = -1
            return True
        if pid == 0:
            return False
        if os.WIFEXITED(status):
            self._exit_code = os.WEXITSTATUS(status)
        else:
            self._exit_code = -1
        return True

    def is_alive(self) -> bool:
        if self.pid is None:
            return False
        return not self._poll_exit()

    def stop(self) -> None:
        """Stop the threads, kill the child and release the pty. Idempotent."""
        with self._state_lock:
            self._writer_running.clear()
            self._running.clear()

            if self._input is not None:
                self._input.close()

            if self.pid is not None:
                if not self._poll_exit():
                    try:
                        os.kill(self.pid, signal.SIGKILL)
                    except ProcessLookupError:
                        pass
                    try:
                        _, status = os.waitpid(self.pid, 0)
                        self._exit_code = os.WEXITSTATUS(status) if os.WIFEXITED(status) else -1
                    except ChildProcessError:
                        self._exit_code = -1
                logger.info("Stopped %r (pid %s)", self.command, self.pid)

            for thread in (self._reader_thread, self._writer_thread):
                if thread is not None and thread is not threading.current_thread():
                    thread.join(timeout=0.5)
            self._reader_thread = None
            self._writer_thread = None

            locked = self._write_lock.acquire(timeout=0.5)
            try:
                if self.master_fd is not None:
                    try:
                        os.close(self.master_fd)
                    except OSError:
                        pass
                    self.master_fd = None
            finally:
                if locked:
                    self._write_lock.release()

            self.pid = None
            self._input = None
            self._on_output = None
