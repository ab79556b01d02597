# votifier/events.py

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Union

from .model import Vote

logger = logging.getLogger(__name__)

VoteCallback = Callable[[Vote], Union[None, Awaitable[None]]]


class VoteEventBus:
    """
    Delivers votes to host callbacks from a single consumer task.

    Connection handlers only enqueue, so every callback runs one vote at a
    time, in the order votes were decoded. The queue is bounded; when it is
    full the vote is dropped and logged rather than stalling the connection.
    The bus is itself a vote listener and is registered like any other.
    """
    concurrent_safe = True

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue[Vote | None] = asyncio.Queue(maxsize=maxsize)
        self._callbacks: List[VoteCallback] = []
        self._consumer: asyncio.Task | None = None

    def subscribe(self, callback: VoteCallback) -> None:
        self._callbacks.append(callback)

    def vote_made(self, vote: Vote) -> None:
        try:
            self._queue.put_nowait(vote)
        except asyncio.QueueFull:
            logger.error("Event queue full; dropping %s", vote)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._consume(), name="votifier-event-bus")

    async def stop(self) -> None:
        """Delivers what is already queued, then stops the consumer."""
        if self._consumer is None:
            return
        await self._queue.put(None)
        await self._consumer
        self._consumer = None

    async def _consume(self) -> None:
        while True:
            vote = await self._queue.get()
            try:
                if vote is None:
                    return
                for callback in self._callbacks:
                    try:
                        result = callback(vote)
                        if inspect.isawaitable(result):
                            await result
                    except Exception:
                        logger.exception("Event callback %r failed for %s", callback, vote)
            finally:
                self._queue.task_done()
