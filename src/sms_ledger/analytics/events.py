import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from sms_ledger.analytics.models import AnalyticsUpdate
from sms_ledger.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[AnalyticsUpdate], Any]

_CLOSED = object()


class Subscription:
    """One consumer's view of the channel; iterate it to receive updates."""

    def __init__(self, channel: "EventChannel", maxsize: int = 0):
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def offer(self, item: Any) -> None:
        """Enqueue without waiting; a full queue loses its oldest item."""
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            try:
                self._queue.get_nowait()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
            self._queue.put_nowait(item)

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> AnalyticsUpdate | None:
        if self.closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> AnalyticsUpdate:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._channel.unsubscribe(self)
        self.offer(_CLOSED)


class EventChannel:
    """Fire-and-forget broadcast of analytics updates to many subscribers."""

    def __init__(self, default_maxsize: int = 0):
        self.default_maxsize = default_maxsize
        self._subscriptions: list[Subscription] = []
        self._listeners: list[Listener] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, maxsize: int | None = None) -> Subscription:
        subscription = Subscription(self, self.default_maxsize if maxsize is None else maxsize)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def add_listener(self, callback: Listener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def publish(self, update: AnalyticsUpdate) -> None:
        for subscription in list(self._subscriptions):
            try:
                subscription.offer(update)
            except Exception as e:
                logger.error(f"[ANALYTICS] Dropping update for subscriber: {e}")

        for callback in list(self._listeners):
            self._notify(callback, update)

    def _notify(self, callback: Listener, update: AnalyticsUpdate) -> None:
        name = getattr(callback, "__name__", callback)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        is_async = inspect.iscoroutinefunction(callback)
        if loop is None and is_async:
            logger.warning(f"[ANALYTICS] No running loop for async listener {name}, skipping")
            return

        try:
            if loop is None:
                callback(update)
                return
            # Sync callbacks run on a worker thread, off the publishing path
            pending = callback(update) if is_async else asyncio.to_thread(callback, update)
        except Exception as e:
            logger.error(f"[ANALYTICS] Listener {name} failed: {e}")
            return

        task = asyncio.ensure_future(pending)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[ANALYTICS] Listener failed: {error}")

    async def drain(self) -> None:
        """Wait for listener callbacks still in flight."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()
