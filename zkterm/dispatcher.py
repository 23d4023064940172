"""
Realtime event dispatcher.

The correlator's read loop hands every pushed realtime frame to the
dispatcher, which queues it and delivers it from a single dispatch loop.
Handlers are keyed by an EventFlag mask; each matching subscription sees an
event exactly once, in arrival order.

Example:
    >>> dispatcher = EventDispatcher()
    >>> subscription = dispatcher.subscribe(EventFlag.ATTLOG, print)
    >>> ...
    >>> subscription.cancel()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable

from zkterm.models.events import RealtimeEvent, parse_event

if TYPE_CHECKING:
    from zkterm.protocol.packet import Frame

logger = logging.getLogger(__name__)

EventHandler = Callable[[RealtimeEvent], Any]
CloseHandler = Callable[["BaseException | None"], Any]


class _StreamEnd:
    """Queue marker ending the event stream."""

    def __init__(self, error: BaseException | None) -> None:
        self.error = error


class Subscription:
    """
    A registered event handler.

    Attributes:
        flags: Event mask the handler receives.
        handler: Callable or coroutine function receiving RealtimeEvent.
        active: False once cancelled.
    """

    def __init__(
        self,
        dispatcher: EventDispatcher,
        flags: int,
        handler: EventHandler,
        on_close: CloseHandler | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self.flags = flags
        self.handler = handler
        self.on_close = on_close
        self.active = True

    def matches(self, code: int) -> bool:
        return self.active and bool(self.flags & code)

    def cancel(self) -> None:
        """Stop delivering events to this handler. Safe to call twice."""
        if self.active:
            self.active = False
            self._dispatcher._remove(self)

    def __repr__(self) -> str:
        return f"Subscription(flags=0x{self.flags:04X}, active={self.active})"


class EventDispatcher:
    """
    Queue plus single dispatch loop for realtime events.

    The dispatcher is started when a session is established and stopped when
    it ends. Subscriptions survive reconnects; ``on_close`` callbacks are
    told each time the event stream ends, with the error that ended it (None
    for a normal disconnect).
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._queue: asyncio.Queue[Frame | _StreamEnd] | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """Check if the dispatch loop is accepting events."""
        return self._queue is not None and self._task is not None and not self._task.done()

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    def start(self) -> None:
        """Start the dispatch loop on the running event loop."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(self.run(self._queue))

    def subscribe(
        self,
        flags: int,
        handler: EventHandler,
        *,
        on_close: CloseHandler | None = None,
    ) -> Subscription:
        """
        Register a handler for the events in ``flags``.

        Args:
            flags: EventFlag mask.
            handler: Called with each matching RealtimeEvent. May be a
                coroutine function; it is awaited before the next event.
            on_close: Called when the event stream ends.

        Returns:
            Subscription that can be cancelled.
        """
        subscription = Subscription(self, int(flags), handler, on_close)
        self._subscriptions.append(subscription)
        logger.debug("Subscribed %r", subscription)
        return subscription

    def submit(self, frame: Frame) -> None:
        """
        Queue a realtime frame for dispatch.

        Never blocks; called from the correlator's read loop.
        """
        if self._queue is None:
            logger.warning("Dropping event 0x%04X: dispatcher not running", frame.event_code)
            return
        self._queue.put_nowait(frame)

    def close(self, error: BaseException | None = None) -> None:
        """
        End the event stream after the already queued events.

        Args:
            error: The error that ended the connection, if any.
        """
        if self._queue is None:
            return
        self._queue.put_nowait(_StreamEnd(error))
        self._queue = None

    async def flush(self) -> None:
        """Wait until every event submitted so far has been delivered."""
        queue, task = self._queue, self._task
        if queue is None or task is None or task.done():
            return
        joined = asyncio.ensure_future(queue.join())
        try:
            # A cancelled dispatch loop never finishes the queue.
            await asyncio.wait({joined, task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            joined.cancel()

    async def stop(self) -> None:
        """Close the stream and wait for the dispatch loop to finish."""
        self.close()
        task, self._task = self._task, None
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(task, timeout=1.0)
            except asyncio.TimeoutError:
                logger.warning("Dispatch loop did not stop in time")

    async def run(self, queue: asyncio.Queue[Frame | _StreamEnd]) -> None:
        """
        Dispatch loop: deliver queued events until the stream is closed.

        The queue is bound when the loop is created, so events queued before
        the loop first runs are still delivered after an early close().
        """
        while True:
            item = await queue.get()
            if isinstance(item, _StreamEnd):
                queue.task_done()
                break
            try:
                await self._deliver(parse_event(item))
            finally:
                queue.task_done()
        await self._notify_closed(item.error)

    async def _deliver(self, event: RealtimeEvent) -> None:
        logger.debug("Dispatching %s", type(event).__name__)
        for subscription in list(self._subscriptions):
            if not subscription.matches(event.code):
                continue
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event handler %r failed", subscription.handler)

    async def _notify_closed(self, error: BaseException | None) -> None:
        for subscription in list(self._subscriptions):
            if subscription.on_close is None or not subscription.active:
                continue
            try:
                result = subscription.on_close(error)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Close handler %r failed", subscription.on_close)

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
