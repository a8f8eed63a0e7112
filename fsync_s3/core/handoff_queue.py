"""Unbuffered handoff channel between the watcher and the uploader."""

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Optional, Tuple

logger = logging.getLogger(__name__)

_CLOSED = object()


class QueueClosed(Exception):
    """Raised by send/receive once the queue has been closed."""


class HandoffQueue:
    """Rendezvous queue: a send completes only once a receiver has taken the task.

    Each pending task travels with a future that the receiver resolves, so a
    producer can never run more than one task ahead of the consumer.
    """

    def __init__(self):
        """Initialize an empty, open queue."""
        self._pending: asyncio.Queue = asyncio.Queue()
        self._closed = False

        # Statistics
        self._stats = {
            "sent": 0,
            "received": 0,
            "abandoned": 0,
        }

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        return self._closed

    async def send(self, task: str) -> None:
        """Hand a task to the consumer, waiting until it has been received.

        Args:
            task: Path identifier to deliver

        Raises:
            QueueClosed: If the queue was closed before the send started
        """
        if self._closed:
            raise QueueClosed("send on closed queue")

        taken = asyncio.get_running_loop().create_future()
        self._pending.put_nowait((task, taken))
        self._stats["sent"] += 1

        # Cancelling here cancels `taken`, and receive() skips the task
        await taken

    async def receive(self) -> str:
        """Wait for the next task and release its sender.

        Raises:
            QueueClosed: Once the queue is closed and no task is waiting
        """
        while True:
            item = await self._pending.get()

            if item is _CLOSED:
                # Leave the marker for any other receiver
                self._pending.put_nowait(_CLOSED)
                raise QueueClosed("queue closed")

            task, taken = item
            if taken.cancelled():
                self._stats["abandoned"] += 1
                logger.debug(f"Skipping abandoned task: {task}")
                continue

            taken.set_result(None)
            self._stats["received"] += 1
            return task

    def close(self) -> None:
        """Close the queue. Tasks already waiting are still delivered."""
        if self._closed:
            return
        self._closed = True
        self._pending.put_nowait(_CLOSED)
        logger.debug("Handoff queue closed")

    def get_statistics(self) -> dict:
        """Get queue statistics."""
        return {"closed": self._closed, **self._stats}


async def until_stopped(awaitable: Awaitable, stop_event: Optional[asyncio.Event]) -> Tuple[bool, Any]:
    """Await `awaitable` unless `stop_event` fires first.

    Args:
        awaitable: Coroutine or future for the suspension point
        stop_event: Shared stop event, or None to simply await

    Returns:
        (True, result) when the awaitable completed, (False, None) when the
        stop event fired first and the awaitable was cancelled

    Exceptions raised by the awaitable propagate unchanged.
    """
    if stop_event is None:
        return True, await awaitable

    if stop_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        return False, None

    work = asyncio.ensure_future(awaitable)
    stopper = asyncio.ensure_future(stop_event.wait())
    try:
        done, _ = await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        if not work.done():
            work.cancel()

    if work in done:
        return True, work.result()

    with contextlib.suppress(asyncio.CancelledError):
        await work
    return False, None
