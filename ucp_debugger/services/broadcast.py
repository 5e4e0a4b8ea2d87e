"""
Live event distribution.

Fan-out of store mutations and webhook deliveries to every attached observer
(one per open /api/events stream).

Delivery contract:
- no history replay: an observer only sees events published after attach()
- each publish is serialized once and handed to every observer in order
- an observer that can no longer be written to is detached, never retried
- no backpressure: each observer queue is unbounded, a slow reader just
  accumulates frames in its own queue
"""
import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ObserverClosed(Exception):
    """Raised when writing to an observer whose sink is gone."""


def format_sse(data: Any) -> str:
    return f"data: {json.dumps(data, default=str)}\n\n"


def connected_event() -> str:
    return format_sse({
        "type": "connected",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


class Observer:
    """
    One attached sink: an unbounded asyncio queue owned by a single event loop.

    send() may be called from any thread; frames are handed to the owning loop
    when the caller is not running on it.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        if loop is None:
            loop = asyncio.get_running_loop()
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._loop.is_closed()

    def close(self) -> None:
        self._closed = True

    def send(self, frame: str) -> None:
        if self.closed:
            raise ObserverClosed("observer is closed")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        try:
            if running is self._loop:
                self._queue.put_nowait(frame)
            else:
                self._loop.call_soon_threadsafe(self._put, frame)
        except RuntimeError as e:
            # loop shut down between the check and the call
            raise ObserverClosed(str(e)) from e

    def _put(self, frame: str) -> None:
        if not self._closed:
            self._queue.put_nowait(frame)

    def pending(self) -> int:
        """Frames delivered but not yet read."""
        return self._queue.qsize()

    async def receive(self, timeout: Optional[float] = None) -> str:
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    def drain(self) -> List[str]:
        frames = []
        while not self._queue.empty():
            frames.append(self._queue.get_nowait())
        return frames


class EventChannel:
    def __init__(self):
        self._observers: List[Observer] = []
        self._lock = threading.Lock()

    def attach(self, observer: Observer) -> Observer:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)
        logger.debug("Observer attached (%d total)", self.count)
        return observer

    def detach(self, observer: Observer) -> None:
        """Idempotent. Once this returns the observer receives nothing further."""
        observer.close()
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)
            else:
                return
        logger.debug("Observer detached (%d remaining)", self.count)

    def publish(self, event: Dict[str, Any]) -> int:
        """
        Deliver one event to every attached observer.

        Returns the number of observers that received it.
        """
        frame = format_sse(event)
        with self._lock:
            targets = list(self._observers)

        delivered = 0
        for observer in targets:
            try:
                observer.send(frame)
                delivered += 1
            except ObserverClosed:
                logger.debug("Dropping unwritable observer")
                self.detach(observer)
        return delivered

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._observers)

    def __len__(self) -> int:
        return self.count
