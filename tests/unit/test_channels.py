"""Tests for the broadcast, input and sink channels."""

import asyncio
import threading

import pytest

from grill.channels import Broadcast, InputQueue, threadsafe_sink
from grill.errors import ChannelClosed


pytestmark = pytest.mark.anyio


class TestBroadcast:

    async def test_every_subscriber_gets_every_item(self):
        channel = Broadcast(name="test")
        first = channel.subscribe()
        second = channel.subscribe()

        assert channel.send("a") == 2
        channel.send("b")

        assert [first.get_nowait(), first.get_nowait()] == ["a", "b"]
        assert [second.get_nowait(), second.get_nowait()] == ["a", "b"]

    async def test_send_without_subscribers(self):
        channel = Broadcast()
        assert channel.send("lost") == 0

    async def test_lagging_subscriber_drops_oldest(self, caplog):
        channel = Broadcast(capacity=2, name="keys")
        subscriber = channel.subscribe()

        with caplog.at_level("WARNING"):
            for item in ("1", "2", "3"):
                channel.send(item)

        assert [subscriber.get_nowait(), subscriber.get_nowait()] == ["2", "3"]
        assert "keys subscriber lagged" in caplog.text

    async def test_unsubscribe(self):
        channel = Broadcast()
        subscriber = channel.subscribe()
        channel.unsubscribe(subscriber)
        channel.unsubscribe(subscriber)

        assert channel.subscriber_count == 0

    async def test_send_threadsafe_from_worker(self):
        channel = Broadcast()
        channel.bind(asyncio.get_running_loop())
        subscriber = channel.subscribe()

        worker = threading.Thread(target=channel.send_threadsafe, args=("from thread",))
        worker.start()
        worker.join()

        assert await asyncio.wait_for(subscriber.get(), timeout=1.0) == "from thread"

    async def test_send_threadsafe_requires_loop(self):
        with pytest.raises(ChannelClosed):
            Broadcast().send_threadsafe("x")

    async def test_publish_from_worker_loses_nothing(self, caplog):
        channel = Broadcast(capacity=2, name="keys")
        channel.bind(asyncio.get_running_loop())
        subscriber = channel.subscribe()
        items = [str(i) for i in range(250)]

        def produce():
            for item in items:
                channel.publish_threadsafe(item)

        worker = threading.Thread(target=produce)
        with caplog.at_level("WARNING"):
            worker.start()
            received = [await asyncio.wait_for(subscriber.get(), timeout=1.0) for _ in items]
            await asyncio.get_running_loop().run_in_executor(None, worker.join)

        assert received == items
        assert "lagged" not in caplog.text

    async def test_publish_waits_for_slowest_subscriber(self):
        channel = Broadcast(capacity=1)
        fast = channel.subscribe()
        slow = channel.subscribe()
        await channel.publish("a")

        pending = asyncio.ensure_future(channel.publish("b"))
        assert fast.get_nowait() == "a"
        await asyncio.sleep(0.05)
        assert not pending.done()

        assert slow.get_nowait() == "a"
        assert await asyncio.wait_for(pending, timeout=1.0) == 2
        assert fast.get_nowait() == "b"
        assert slow.get_nowait() == "b"

    async def test_blocked_publish_gives_up_on_cancel(self):
        channel = Broadcast(capacity=1)
        channel.bind(asyncio.get_running_loop())
        channel.subscribe()
        cancel = threading.Event()
        errors = []

        def produce():
            try:
                channel.publish_threadsafe("fill", cancel=cancel)
                channel.publish_threadsafe("blocked", cancel=cancel)
            except ChannelClosed as e:
                errors.append(e)

        worker = threading.Thread(target=produce)
        worker.start()
        await asyncio.sleep(0.1)
        cancel.set()
        await asyncio.get_running_loop().run_in_executor(None, worker.join, 2.0)

        assert not worker.is_alive()
        assert len(errors) == 1


class TestInputQueue:

    async def test_fifo(self):
        queue = InputQueue()
        await queue.send("a")
        await queue.send("b")

        assert queue.qsize() == 2
        assert queue.get() == "a"
        assert queue.get() == "b"

    async def test_get_times_out_with_none(self):
        assert InputQueue().get(timeout=0.01) is None

    async def test_closed_queue_rejects_sends(self):
        queue = InputQueue()
        queue.close()

        assert queue.closed
        with pytest.raises(ChannelClosed):
            await queue.send("x")
        with pytest.raises(ChannelClosed):
            queue.put("x")

    async def test_close_wakes_blocked_sender(self):
        queue = InputQueue(maxsize=1)
        queue.put("fill")

        sender = asyncio.ensure_future(queue.send("blocked"))
        await asyncio.sleep(0.05)
        assert not sender.done()

        queue.close()
        with pytest.raises(ChannelClosed):
            await asyncio.wait_for(sender, timeout=1.0)

    async def test_close_wakes_reader(self):
        queue = InputQueue()
        queue.close()
        assert queue.get(timeout=1.0) is None


class TestThreadsafeSink:

    async def test_worker_thread_delivers_in_order(self):
        output = asyncio.Queue()
        sink = threadsafe_sink(output, asyncio.get_running_loop())

        def produce():
            for i in range(5):
                sink(f"chunk {i}")

        worker = threading.Thread(target=produce)
        worker.start()
        received = [await asyncio.wait_for(output.get(), timeout=1.0) for _ in range(5)]
        await asyncio.get_running_loop().run_in_executor(None, worker.join)

        assert received == [f"chunk {i}" for i in range(5)]

    async def test_backpressure_waits_for_room(self):
        output = asyncio.Queue(maxsize=1)
        sink = threadsafe_sink(output, asyncio.get_running_loop())
        done = threading.Event()

        def produce():
            sink("first")
            sink("second")
            done.set()

        worker = threading.Thread(target=produce)
        worker.start()
        await asyncio.sleep(0.1)
        assert not done.is_set()

        assert await output.get() == "first"
        assert await asyncio.wait_for(output.get(), timeout=1.0) == "second"
        await asyncio.get_running_loop().run_in_executor(None, worker.join)
        assert done.is_set()

    def test_stopped_loop_raises(self):
        loop = asyncio.new_event_loop()
        try:
            sink = threadsafe_sink(asyncio.Queue(), loop)
            with pytest.raises(ChannelClosed):
                sink("x")
        finally:
            loop.close()
