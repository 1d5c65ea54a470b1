"""Cooperative cancellation and progress event streams."""
import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from converter.conversion.models import ProgressEvent
from converter.errors import ConversionError

logger = logging.getLogger("converter.progress")

ProgressCallback = Callable[[ProgressEvent], None]


class CancellationToken:
    """A flag checked at checkpoints. ``cancel`` is idempotent."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self, detail: Optional[str] = None) -> None:
        if self._cancelled:
            raise ConversionError.cancelled(detail)


class ProgressStream:
    """Bounded, ordered stream of progress events.

    Consumers either ``subscribe`` a callback or iterate with ``async for``. Iteration
    ends after the terminal event (completed, error or cancelled). When the buffer is
    full the oldest buffered event is dropped; the terminal event is always delivered.
    """

    def __init__(self, maxsize: int = 64):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers: list[ProgressCallback] = []
        self._closed = False
        self.last: Optional[ProgressEvent] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: ProgressCallback) -> None:
        self._subscribers.append(callback)

    def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            logger.debug("Dropping progress event after stream closed: %s", event)
            return
        self.last = event
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(event)
        for callback in self._subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning("Progress subscriber failed: %s", e)
        if event.terminal:
            self._closed = True

    def drain(self) -> list[ProgressEvent]:
        """Pop every buffered event without waiting."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.terminal:
                return
