"""Tests for TerminalMultiplexer with a pipe standing in for the keyboard."""

import asyncio
import io
import os

import pytest

from grill.commands import ListTasks, Quit
from grill.terminal_io import TerminalMultiplexer, normalize_newlines


pytestmark = pytest.mark.anyio


@pytest.fixture
def keyboard():
    read_fd, write_fd = os.pipe()
    yield read_fd, write_fd
    for fd in (read_fd, write_fd):
        try:
            os.close(fd)
        except OSError:
            pass


@pytest.fixture
async def running(keyboard):
    read_fd, write_fd = keyboard
    stdout = io.BytesIO()
    multiplexer = TerminalMultiplexer(stdin_fd=read_fd, stdout=stdout)
    multiplexer.bind(asyncio.get_running_loop())
    keystrokes = multiplexer.keystrokes.subscribe()
    commands = multiplexer.commands.subscribe()
    task = asyncio.create_task(multiplexer.run())

    yield multiplexer, write_fd, keystrokes, commands, stdout

    multiplexer.stop()
    await asyncio.wait_for(task, timeout=2.0)


async def wait_for_output(stdout, needle, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if needle in stdout.getvalue():
            return True
        await asyncio.sleep(0.02)
    return False


async def collect_keystrokes(keystrokes, length, timeout=2.0):
    text = ""
    while len(text) < length:
        text += await asyncio.wait_for(keystrokes.get(), timeout=timeout)
    return text


def test_normalize_newlines():
    assert normalize_newlines("a\nb") == "a\r\nb"
    assert normalize_newlines("a\r\nb") == "a\r\nb"
    assert normalize_newlines("plain") == "plain"


class TestOutput:

    async def test_output_is_written_with_crlf(self, running):
        multiplexer, _, _, _, stdout = running

        await multiplexer.output.put("line one\nline two\n")

        assert await wait_for_output(stdout, b"line one\r\nline two\r\n")

    async def test_queued_output_flushed_before_stop(self, keyboard):
        read_fd, _ = keyboard
        stdout = io.BytesIO()
        multiplexer = TerminalMultiplexer(stdin_fd=read_fd, stdout=stdout)
        multiplexer.bind(asyncio.get_running_loop())

        await multiplexer.output.put("goodbye\n")
        multiplexer.stop()
        await asyncio.wait_for(multiplexer.run(), timeout=2.0)

        assert stdout.getvalue() == b"goodbye\r\n"


class TestKeystrokes:

    async def test_normal_keys_are_broadcast(self, running):
        _, write_fd, keystrokes, commands, _ = running

        os.write(write_fd, b"hi\r")

        assert await collect_keystrokes(keystrokes, 3) == "hi\r"
        assert commands.empty()

    async def test_long_paste_arrives_whole(self, running):
        _, write_fd, keystrokes, _, _ = running
        payload = "".join(chr(ord("a") + i % 26) for i in range(3000))

        os.write(write_fd, payload.encode("ascii"))

        assert await collect_keystrokes(keystrokes, len(payload)) == payload

    async def test_command_line_is_echoed_and_emitted(self, running):
        _, write_fd, keystrokes, commands, stdout = running

        os.write(write_fd, b"/task list\r")

        assert await asyncio.wait_for(commands.get(), timeout=2.0) == ListTasks()
        assert await wait_for_output(stdout, b"/task list\r\n")
        assert keystrokes.empty()

    async def test_multibyte_keystroke(self, running):
        _, write_fd, keystrokes, _, _ = running

        os.write(write_fd, "é".encode("utf-8"))

        assert await asyncio.wait_for(keystrokes.get(), timeout=2.0) == "é"

    async def test_ctrl_c_emits_quit(self, running):
        _, write_fd, keystrokes, commands, _ = running

        os.write(write_fd, b"\x03after")

        assert await asyncio.wait_for(commands.get(), timeout=2.0) == Quit()
        await asyncio.sleep(0.2)
        assert keystrokes.empty()
