"""
Change broadcaster.

Keeps the registry of connected observers and fans every published change
event out to all of them.

Invariants:
    - The registry is guarded by one lock; connect, disconnect and publish
      may be called from any thread
    - Events get a global sequence number under that lock and are enqueued
      to every observer in the same order
    - A new observer's welcome message is queued before it can receive events
    - No replay: an observer only sees events published after it connected
    - An observer more than MAX_PENDING messages behind is dropped
"""

import asyncio
import logging
import threading
import uuid
from typing import Any, Dict, List, Optional

from errors import BroadcastFailure

logger = logging.getLogger(__name__)

WELCOME_EVENT = "welcome"
WELCOME_MESSAGE = "Welcome to the catalog change stream!"
MAX_PENDING = 1000


class Observer:
    """One connected client. Messages are queued on its own event loop.

    At most `max_pending` messages may wait undelivered; past that the
    observer is dropped and `next_message` returns None once the backlog
    is drained.
    """

    def __init__(self, observer_id: str, loop: asyncio.AbstractEventLoop, max_pending: int = MAX_PENDING):
        self.id = observer_id
        self.loop = loop
        self.max_pending = max_pending
        self.queue: asyncio.Queue = asyncio.Queue()
        self._pending = 0
        self._pending_lock = threading.Lock()

    def _schedule(self, message: Optional[Dict[str, Any]]) -> None:
        try:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, message)
        except RuntimeError as e:
            raise BroadcastFailure(f"observer {self.id} unreachable: {e}") from e

    def greet(self, message: Dict[str, Any]) -> None:
        """Queue a message directly; only valid on the observer's own loop."""
        with self._pending_lock:
            self._pending += 1
        self.queue.put_nowait(message)

    def deliver(self, message: Dict[str, Any]) -> None:
        with self._pending_lock:
            if self._pending >= self.max_pending:
                raise BroadcastFailure(f"observer {self.id} fell {self._pending} messages behind")
            self._pending += 1
        self._schedule(message)

    def close(self) -> None:
        """Wake the consumer with a None end-of-stream marker."""
        try:
            self._schedule(None)
        except BroadcastFailure:
            # Loop already gone; nobody is left to wake.
            return

    async def next_message(self) -> Optional[Dict[str, Any]]:
        message = await self.queue.get()
        if message is not None:
            with self._pending_lock:
                self._pending -= 1
        return message


class ChangeBroadcaster:
    def __init__(self, welcome_message: str = WELCOME_MESSAGE, max_pending: int = MAX_PENDING):
        self.welcome_message = welcome_message
        self.max_pending = max_pending
        self._observers: Dict[str, Observer] = {}
        self._lock = threading.Lock()
        self._sequence = 0

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def connect(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> Observer:
        """Register a new observer bound to `loop` (default: the running loop)."""
        observer = Observer(uuid.uuid4().hex, loop or asyncio.get_running_loop(), self.max_pending)
        observer.greet({"event": WELCOME_EVENT, "data": {"message": self.welcome_message}})
        with self._lock:
            self._observers[observer.id] = observer
        logger.info(f"Client connected: {observer.id}")
        return observer

    def disconnect(self, observer: Observer) -> None:
        with self._lock:
            removed = self._observers.pop(observer.id, None)
        if removed is not None:
            logger.info(f"Client disconnected: {observer.id}")

    def publish(self, event: str, payload: Any) -> int:
        """Enqueue `event` for every observer; returns how many were reached."""
        stale: List[Observer] = []
        delivered = 0
        with self._lock:
            self._sequence += 1
            message = {"event": event, "data": payload, "sequence": self._sequence}
            for observer in self._observers.values():
                try:
                    observer.deliver(message)
                    delivered += 1
                except BroadcastFailure as e:
                    logger.warning(f"Dropping observer: {e}")
                    stale.append(observer)
            for observer in stale:
                self._observers.pop(observer.id, None)
                observer.close()
        logger.debug(f"Published {event} #{message['sequence']} to {delivered} observer(s)")
        return delivered
