# votifier/receiver.py

import asyncio
import logging
from typing import Set, Tuple

from .connection import VoteSession
from .errors import BindError

from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from .app import VotifierContext

logger = logging.getLogger(__name__)


class VoteReceiver:
    """
    Owns the listening socket. Every accepted connection gets its own
    VoteSession running in its own task, so a stalled sender only holds up
    itself (and only until the read timeout).
    """
    def __init__(self, context: 'VotifierContext', host: str, port: int):
        if context.key_pair is None:
            raise ValueError("VoteReceiver needs an RSA key pair before it can start")
        self.context = context
        self.host = host
        self.port = port

        self._server: asyncio.Server | None = None
        self._sessions: Set[asyncio.Task] = set()
        self._shutdown_started = False
        self._closed = asyncio.Event()

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def bound_address(self) -> Tuple[str, int]:
        """The (host, port) actually bound; useful when port 0 was requested."""
        if not self._server or not self._server.sockets:
            raise RuntimeError("VoteReceiver is not bound")
        return self._server.sockets[0].getsockname()[:2]

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Runs one VoteSession; it never lets an exception reach the accept loop."""
        task = asyncio.current_task()
        self._sessions.add(task)
        try:
            session = VoteSession(self.context, reader, writer)
            await session.handle_connection()
        finally:
            self._sessions.discard(task)

    async def start(self) -> None:
        """
        Binds the listening socket and starts accepting.

        Raises:
            BindError: the address/port cannot be bound.
        """
        if self._server is not None:
            return
        try:
            self._server = await asyncio.start_server(
                self.handle_client, self.host, self.port)
        except OSError as e:
            raise BindError(f"Could not bind to {self.host}:{self.port}: {e}") from e

        addrs = ', '.join(str(sock.getsockname()) for sock in self._server.sockets)
        logger.info("Votifier listening on %s", addrs)

    async def serve_forever(self) -> None:
        """Accepts connections until shutdown() is called."""
        await self.start()
        await self._closed.wait()

    async def shutdown(self) -> None:
        """
        Stops accepting and releases the listening socket. Sessions already
        running are left to finish; their read timeout bounds how long that
        takes. Later calls just wait for the first one to finish.
        """
        if self._shutdown_started:
            await self._closed.wait()
            return
        self._shutdown_started = True
        logger.info("Shutting down vote receiver...")
        try:
            if self._server:
                self._server.close()
                if self._sessions:
                    await asyncio.gather(*self._sessions, return_exceptions=True)
                await self._server.wait_closed()
        finally:
            self._closed.set()
        logger.info("Vote receiver stopped.")
