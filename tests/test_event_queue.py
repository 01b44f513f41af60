"""
Tests for the bounded event queue backends
"""

import threading
import pytest
import redis
from unittest.mock import MagicMock

from geofine.core.errors import QueueFullError
from geofine.workers.event_processor import (
    InlineEventQueue,
    RedisEventQueue,
    RedisQueueWorker,
    ThreadPoolEventQueue,
    build_event_queue,
)


class Recorder:
    def __init__(self):
        self.seen = []
        self.lock = threading.Lock()

    def __call__(self, raw_event_id):
        with self.lock:
            self.seen.append(raw_event_id)


class TestInlineQueue:

    def test_handles_before_returning(self):
        recorder = Recorder()
        InlineEventQueue(recorder).submit(7)
        assert recorder.seen == [7]


class TestThreadPoolQueue:

    def test_every_event_is_handled(self):
        recorder = Recorder()
        event_queue = ThreadPoolEventQueue(recorder, maxsize=10, workers=3, submit_timeout=1)
        event_queue.start()
        try:
            for raw_event_id in range(20):
                event_queue.submit(raw_event_id)
            event_queue.join()
        finally:
            event_queue.stop()

        assert sorted(recorder.seen) == list(range(20))

    def test_full_queue_raises(self):
        event_queue = ThreadPoolEventQueue(Recorder(), maxsize=1, workers=1, submit_timeout=0.05)
        event_queue.submit(1)
        with pytest.raises(QueueFullError):
            event_queue.submit(2)

    def test_handler_errors_do_not_stop_workers(self):
        recorder = Recorder()

        def flaky(raw_event_id):
            if raw_event_id == 1:
                raise RuntimeError("boom")
            recorder(raw_event_id)

        event_queue = ThreadPoolEventQueue(flaky, maxsize=5, workers=1, submit_timeout=1)
        event_queue.start()
        try:
            for raw_event_id in (1, 2, 3):
                event_queue.submit(raw_event_id)
            event_queue.join()
        finally:
            event_queue.stop()

        assert recorder.seen == [2, 3]


class TestRedisQueue:

    def test_submit_pushes_id(self):
        client = MagicMock()
        client.queue_length.return_value = 0
        RedisEventQueue(client, key="events", maxsize=5).submit(42)
        client.push_event.assert_called_once_with("events", 42)

    def test_full_list_raises(self):
        client = MagicMock()
        client.queue_length.return_value = 5
        with pytest.raises(QueueFullError):
            RedisEventQueue(client, key="events", maxsize=5).submit(42)
        client.push_event.assert_not_called()

    def test_redis_down_raises_queue_full(self):
        client = MagicMock()
        client.queue_length.side_effect = redis.ConnectionError("refused")
        with pytest.raises(QueueFullError):
            RedisEventQueue(client, key="events", maxsize=5).submit(42)


class TestRedisWorker:

    def test_run_once_handles_popped_id(self):
        recorder = Recorder()
        client = MagicMock()
        client.pop_event.return_value = 9

        assert RedisQueueWorker(recorder, client, key="events", poll_timeout=1).run_once() is True
        assert recorder.seen == [9]
        client.pop_event.assert_called_once_with("events", timeout=1)

    def test_run_once_times_out(self):
        recorder = Recorder()
        client = MagicMock()
        client.pop_event.return_value = None

        assert RedisQueueWorker(recorder, client, key="events").run_once() is False
        assert recorder.seen == []


class TestBuildEventQueue:

    def test_backends(self):
        assert isinstance(build_event_queue(Recorder(), "inline"), InlineEventQueue)
        assert isinstance(build_event_queue(Recorder(), "threads"), ThreadPoolEventQueue)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_event_queue(Recorder(), "carrier-pigeon")
