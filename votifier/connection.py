# votifier/connection.py

import asyncio
import enum
import logging

from . import protocol
from .errors import ConnectionLostError, ProtocolError, ShortReadError
from .model import Vote

from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from .app import VotifierContext

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    AWAITING_DATA = "awaiting_data"
    DECRYPTING = "decrypting"
    PARSING = "parsing"
    VALIDATING = "validating"
    DISPATCHING = "dispatching"
    CLOSED = "closed"
    ERROR = "error"


class VoteSession:
    """
    Handles one sender connection: read one ciphertext block, decrypt it,
    parse and validate the vote, dispatch it, close. Exactly one vote per
    connection; nothing is written back unless the greeting is enabled.
    """
    def __init__(self, context: 'VotifierContext', reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.context = context
        self.reader = reader
        self.writer = writer
        self.addr = writer.get_extra_info('peername')

        self.state = SessionState.AWAITING_DATA
        self.ciphertext: bytes | None = None
        self.plaintext: bytes | None = None
        self.vote: Vote | None = None
        self.error: ProtocolError | None = None
        self.closed = False
        # Last protocol step entered; kept when the session ends in ERROR.
        self.last_state = self.state

    def _enter(self, state: SessionState) -> None:
        self.state = state
        self.last_state = state
        logger.debug("%r -> %s", self.addr, state.name)

    async def _read_block(self) -> bytes:
        block_size = self.context.key_pair.block_size
        try:
            return await asyncio.wait_for(
                self.reader.readexactly(block_size),
                timeout=self.context.read_timeout,
            )
        except asyncio.IncompleteReadError as e:
            raise ShortReadError(
                f"Connection closed after {len(e.partial)} of {block_size} bytes") from e
        except asyncio.TimeoutError as e:
            raise ShortReadError(
                f"Timed out after {self.context.read_timeout}s waiting for {block_size} bytes") from e
        except (ConnectionError, OSError) as e:
            raise ShortReadError(f"Connection failed while reading: {e}") from e

    async def _send_greeting(self) -> None:
        try:
            self.writer.write(protocol.greeting())
            await self.writer.drain()
        except (ConnectionError, OSError) as e:
            raise ConnectionLostError(f"Connection lost while sending greeting: {e}") from e

    async def _process(self) -> None:
        if self.context.send_greeting:
            await self._send_greeting()

        self.ciphertext = await self._read_block()

        self._enter(SessionState.DECRYPTING)
        self.plaintext = await asyncio.to_thread(
            protocol.decrypt_block, self.context.key_pair.private_key, self.ciphertext)

        self._enter(SessionState.PARSING)
        fields = protocol.parse_fields(self.plaintext)

        self._enter(SessionState.VALIDATING)
        self.vote = protocol.validate_fields(fields)

        self._enter(SessionState.DISPATCHING)
        if self.context.debug:
            logger.info("Received vote record -> %s", self.vote)
        await self.context.registry.dispatch(self.vote)

    async def handle_connection(self) -> Vote | None:
        """Runs the whole exchange. Returns the dispatched vote, or None on failure."""
        try:
            await self._process()
        except ProtocolError as e:
            self.error = e
            self.state = SessionState.ERROR
            if self.context.debug:
                logger.debug("Vote from %r rejected in state %s", self.addr,
                             self.last_state.name, exc_info=True)
            logger.warning("Unable to process vote from %r: %s", self.addr, e)
        except Exception:
            self.state = SessionState.ERROR
            logger.exception("Unexpected error handling connection from %r", self.addr)
        finally:
            await self._close()
        return None if self.state is SessionState.ERROR else self.vote

    async def _close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Error while closing connection to %r: %s", self.addr, e)
        self.closed = True
        if self.state is not SessionState.ERROR:
            self.state = SessionState.CLOSED
        logger.debug("Connection to %r closed.", self.addr)
