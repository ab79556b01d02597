# votifier/registry.py

import asyncio
import inspect
import logging
from typing import Dict, List, Protocol, runtime_checkable

from .model import Vote

logger = logging.getLogger(__name__)


@runtime_checkable
class VoteListener(Protocol):
    """
    Anything with a `vote_made(vote)` method, either a regular method or a
    coroutine method. It is called on the event loop.

    Set `concurrent_safe = True` on the listener to let overlapping
    connections call it at the same time. Otherwise calls are serialized.
    """

    def vote_made(self, vote: Vote): ...


class ListenerRegistry:
    """Maps listener names to listener instances and fans votes out to them."""

    def __init__(self):
        self._listeners: Dict[str, VoteListener] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def register(self, name: str, listener: VoteListener) -> None:
        """Registers a listener under a unique name."""
        if not isinstance(listener, VoteListener):
            raise ValueError(f"Listener '{name}' has no vote_made() method")
        if name in self._listeners:
            raise ValueError(f"A listener named '{name}' is already registered")
        self._listeners[name] = listener
        if not getattr(listener, "concurrent_safe", False):
            self._locks[name] = asyncio.Lock()
        logger.info("Registered vote listener '%s'.", name)

    def register_all(self, entries) -> None:
        """Registers `(name, listener)` pairs, skipping the ones that are rejected."""
        for name, listener in entries:
            try:
                self.register(name, listener)
            except ValueError as e:
                logger.error("Skipping listener: %s", e)

    def get(self, name: str) -> VoteListener | None:
        return self._listeners.get(name)

    def names(self) -> List[str]:
        return list(self._listeners)

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, name: str) -> bool:
        return name in self._listeners

    async def _deliver(self, listener: VoteListener, vote: Vote) -> None:
        result = listener.vote_made(vote)
        if inspect.isawaitable(result):
            await result

    async def _deliver_isolated(self, name: str, listener: VoteListener, vote: Vote) -> bool:
        lock = self._locks.get(name)
        try:
            if lock is None:
                await self._deliver(listener, vote)
            else:
                async with lock:
                    await self._deliver(listener, vote)
        except Exception:
            logger.exception("Listener '%s' failed to handle %s", name, vote)
            return False
        return True

    async def dispatch(self, vote: Vote) -> int:
        """
        Hands `vote` to every listener. A listener that raises is logged and
        skipped; the others still get the vote. Listeners run side by side, so
        waiting on one listener's lock does not hold up the rest.

        Returns:
            The number of listeners that took the vote without raising.
        """
        results = await asyncio.gather(*(
            self._deliver_isolated(name, listener, vote)
            for name, listener in list(self._listeners.items())
        ))
        return sum(results)
