"""
Event Processor - bounded work queue between the webhook and detection

Backends:
- inline: runs the handler in the caller's thread (tests, debugging)
- threads: bounded in-process queue drained by a pool of worker threads
- redis: shared Redis list; `python -m geofine.workers.event_processor`
  runs a standalone consumer
"""
import logging
import queue
import threading
from typing import Callable, List, Optional

import redis

from geofine.core import config
from geofine.core.errors import QueueFullError
from geofine.core.redis_client import RedisClient, get_redis_client

logger = logging.getLogger(__name__)

Handler = Callable[[int], object]

_STOP = object()


class EventQueue:
    """Accepts raw event ids for asynchronous processing"""

    def submit(self, raw_event_id: int):
        raise NotImplementedError

    def start(self):
        pass

    def stop(self):
        pass


class InlineEventQueue(EventQueue):
    """Processes each event immediately, before submit returns"""

    def __init__(self, handler: Handler):
        self.handler = handler

    def submit(self, raw_event_id: int):
        self.handler(raw_event_id)


class ThreadPoolEventQueue(EventQueue):
    """
    Bounded queue consumed by worker threads.

    submit() waits at most `submit_timeout` seconds for space, then raises
    QueueFullError. Each event is handled start to finish by one worker.
    """

    def __init__(self, handler: Handler, maxsize: int = 1000, workers: int = 4,
                 submit_timeout: float = 2.0):
        self.handler = handler
        self.workers = workers
        self.submit_timeout = submit_timeout
        self._queue = queue.Queue(maxsize=maxsize)
        self._threads: List[threading.Thread] = []

    def start(self):
        if self._threads:
            return
        for i in range(self.workers):
            thread = threading.Thread(target=self._work, name=f"event-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"Started {self.workers} event workers (queue size {self._queue.maxsize})")

    def submit(self, raw_event_id: int):
        try:
            self._queue.put(raw_event_id, timeout=self.submit_timeout)
        except queue.Full:
            raise QueueFullError(f"Event queue full ({self._queue.maxsize} pending)")

    def join(self):
        """Block until every submitted event has been handled"""
        self._queue.join()

    def stop(self, timeout: float = 10.0):
        for _ in self._threads:
            self._queue.put(_STOP)
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Event workers stopped")

    def _work(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.handler(item)
            except Exception as e:
                logger.error(f"Worker error on event {item}: {e}", exc_info=True)
            finally:
                self._queue.task_done()


class RedisEventQueue(EventQueue):
    """Pushes raw event ids onto a Redis list shared with worker processes"""

    def __init__(self, client: Optional[RedisClient] = None, key: str = None, maxsize: int = None):
        self.client = client or get_redis_client()
        self.key = key or config.REDIS_QUEUE_KEY
        self.maxsize = maxsize or config.QUEUE_MAXSIZE

    def submit(self, raw_event_id: int):
        try:
            if self.client.queue_length(self.key) >= self.maxsize:
                raise QueueFullError(f"Redis queue '{self.key}' full ({self.maxsize} pending)")
            self.client.push_event(self.key, raw_event_id)
        except redis.RedisError as e:
            raise QueueFullError(f"Redis queue '{self.key}' unavailable: {e}") from e


class RedisQueueWorker:
    """Consumes raw event ids from the Redis list"""

    def __init__(self, handler: Handler, client: Optional[RedisClient] = None,
                 key: str = None, poll_timeout: int = 5):
        self.handler = handler
        self.client = client or get_redis_client()
        self.key = key or config.REDIS_QUEUE_KEY
        self.poll_timeout = poll_timeout
        self._stopping = threading.Event()

    def run_once(self) -> bool:
        """Handle at most one event; False when the poll timed out"""
        raw_event_id = self.client.pop_event(self.key, timeout=self.poll_timeout)
        if raw_event_id is None:
            return False
        try:
            self.handler(raw_event_id)
        except Exception as e:
            logger.error(f"Worker error on event {raw_event_id}: {e}", exc_info=True)
        return True

    def stop(self):
        self._stopping.set()

    def start(self):
        """Consume until stop() (blocking)"""
        logger.info(f"Consuming Redis queue '{self.key}'")
        while not self._stopping.is_set():
            try:
                self.run_once()
            except redis.RedisError as e:
                logger.warning(f"Redis unavailable, retrying: {e}")
                self._stopping.wait(self.poll_timeout)


def build_event_queue(handler: Handler, backend: str = None) -> EventQueue:
    """Queue for the configured backend"""
    backend = backend or config.QUEUE_BACKEND
    if backend == 'inline':
        return InlineEventQueue(handler)
    if backend == 'threads':
        return ThreadPoolEventQueue(
            handler,
            maxsize=config.QUEUE_MAXSIZE,
            workers=config.QUEUE_WORKERS,
            submit_timeout=config.QUEUE_SUBMIT_TIMEOUT,
        )
    if backend == 'redis':
        return RedisEventQueue()
    raise ValueError(f"Unknown queue backend: {backend}")


if __name__ == "__main__":
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format='[%(asctime)s] %(name)s %(levelname)s: %(message)s'
    )
    from geofine.core.database import SessionLocal
    from geofine.modules.webhook.service import EventPipeline

    worker = RedisQueueWorker(EventPipeline(SessionLocal).process)
    try:
        worker.start()
    except KeyboardInterrupt:
        worker.stop()
