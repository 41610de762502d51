"""Channels connecting the session's threads and asyncio tasks.

- :class:`Broadcast` fans items out to every subscriber queue on the loop,
  either waiting for room (``publish``) or dropping the oldest (``send``).
- :class:`InputQueue` carries text to the pty writer thread.
- :func:`threadsafe_sink` lets a worker thread push into an ``asyncio.Queue``
  with backpressure.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import queue
import threading
from typing import Any, Callable, Coroutine, Generic, List, Optional, TypeVar

from .errors import ChannelClosed


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CAPACITY = 100

OutputSink = Callable[[str], None]


def _wait_threadsafe(
    coro_factory: Callable[[], Coroutine[Any, Any, Any]],
    loop: asyncio.AbstractEventLoop,
    cancel: Optional[threading.Event] = None,
) -> Any:
    """Run a coroutine on ``loop`` from a worker thread and wait for it.

    Raises :class:`ChannelClosed` if the loop stops or ``cancel`` is set
    while waiting.
    """
    if loop.is_closed() or not loop.is_running():
        raise ChannelClosed("event loop is not running")
    future = asyncio.run_coroutine_threadsafe(coro_factory(), loop)
    while True:
        try:
            return future.result(timeout=0.25)
        except concurrent.futures.TimeoutError:
            if loop.is_closed() or not loop.is_running():
                future.cancel()
                raise ChannelClosed("event loop stopped while sending")
            if cancel is not None and cancel.is_set():
                future.cancel()
                raise ChannelClosed("send cancelled by shutdown")
        except concurrent.futures.CancelledError:
            raise ChannelClosed("send was cancelled")


class Broadcast(Generic[T]):
    """Multi-subscriber channel bound to one event loop.

    Every subscriber receives every item sent after it subscribed, in send
    order. :meth:`publish` and :meth:`publish_threadsafe` wait for room in
    every subscriber queue. :meth:`send` never waits: a subscriber that falls
    ``capacity`` items behind loses its oldest pending item.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, name: str = "broadcast") -> None:
        self.capacity = capacity
        self.name = name
        self._subscribers: List[asyncio.Queue] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def subscribe(self) -> "asyncio.Queue[T]":
        q: asyncio.Queue = asyncio.Queue(maxsize=self.capacity)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: "asyncio.Queue[T]") -> None:
        try:
            self._subscribers.remove(q)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def send(self, item: T) -> int:
        """Deliver ``item`` to all subscribers. Must run on the loop thread.

        Returns the number of subscribers reached.
        """
        for q in self._subscribers:
            if q.full():
                try:
                    q.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                logger.warning("%s subscriber lagged; dropped oldest item", self.name)
            q.put_nowait(item)
        return len(self._subscribers)

    def send_threadsafe(self, item: T) -> None:
        """Schedule :meth:`send` from a worker thread."""
        if self._loop is None or self._loop.is_closed():
            raise ChannelClosed(f"{self.name} is not bound to a running loop")
        self._loop.call_soon_threadsafe(self.send, item)

    async def publish(self, item: T) -> int:
        """Deliver ``item`` to all subscribers, waiting while any is full."""
        subscribers = list(self._subscribers)
        for q in subscribers:
            await q.put(item)
        return len(subscribers)

    def publish_threadsafe(self, item: T, cancel: Optional[threading.Event] = None) -> int:
        """Blocking :meth:`publish` for worker threads.

        Raises:
            ChannelClosed: if the loop is gone or ``cancel`` is set while waiting
        """
        if self._loop is None:
            raise ChannelClosed(f"{self.name} is not bound to a running loop")
        return _wait_threadsafe(lambda: self.publish(item), self._loop, cancel)


class InputQueue:
    """Bounded, thread-safe queue feeding the pty writer thread."""

    def __init__(self, maxsize: int = DEFAULT_CAPACITY) -> None:
        self._queue: "queue.Queue[Optional[str]]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def put(self, data: str) -> None:
        """Blocking put. Waits while the queue is full."""
        while True:
            if self._closed.is_set():
                raise ChannelClosed("input queue is closed")
            try:
                self._queue.put(data, timeout=0.1)
                return
            except queue.Full:
                continue

    async def send(self, data: str) -> None:
        """Async put; suspends the caller while the child is not draining input."""
        if self._closed.is_set():
            raise ChannelClosed("input queue is closed")
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.put, data)

    def get(self, timeout: float = 0.1) -> Optional[str]:
        """Pop the next item, or None on timeout or close."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._closed.set()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass

    def qsize(self) -> int:
        return self._queue.qsize()


def threadsafe_sink(
    q: "asyncio.Queue[str]",
    loop: asyncio.AbstractEventLoop,
    cancel: Optional[threading.Event] = None,
) -> OutputSink:
    """Return a blocking callable that puts into ``q`` from another thread.

    The call waits while ``q`` is full and raises :class:`ChannelClosed`
    once the loop stops running or ``cancel`` is set.
    """

    def put(item: str) -> None:
        _wait_threadsafe(lambda: q.put(item), loop, cancel)

    return put
