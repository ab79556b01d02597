# votifier/app.py

import argparse
import asyncio
import logging
import signal
from dataclasses import dataclass, field

from . import keys, loader
from .config import Settings, load_settings
from .errors import KeyPersistenceError, VotifierError
from .events import VoteEventBus
from .keys import KeyPair
from .receiver import VoteReceiver
from .registry import ListenerRegistry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [Votifier] %(name)s: %(message)s"


@dataclass
class VotifierContext:
    """Everything a running receiver needs, built once in enable()."""
    settings: Settings
    key_pair: KeyPair
    registry: ListenerRegistry = field(default_factory=ListenerRegistry)

    @property
    def debug(self) -> bool:
        return self.settings.DEBUG

    @property
    def read_timeout(self) -> float:
        return self.settings.READ_TIMEOUT

    @property
    def send_greeting(self) -> bool:
        return self.settings.SEND_GREETING


def configure_logging(level: str = "INFO", debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else level.upper(),
        format=LOG_FORMAT,
    )


def _first_run_notice(settings: Settings) -> None:
    logger.info("Configuring Votifier for the first time...")
    logger.info("-" * 78)
    logger.info("Assigning Votifier to listen on port %d. If you are hosting on a shared", settings.PORT)
    logger.info("server please check with your hosting provider to verify that this port")
    logger.info("is available for your use, and set VOTIFIER_PORT if it is not.")
    logger.info("-" * 78)


class Votifier:
    """
    Application lifecycle: bootstrap directories and keys, load listeners,
    start the receiver; stop everything on disable().
    """
    def __init__(self, settings: Settings):
        self.settings = settings
        self.event_bus = VoteEventBus(maxsize=settings.EVENT_QUEUE_SIZE)
        self.context: VotifierContext | None = None
        self.receiver: VoteReceiver | None = None
        self._shutdown_task: asyncio.Task | None = None

    def _load_key_pair(self) -> KeyPair:
        rsa_dir = self.settings.RSA_DIRECTORY
        if not keys.keys_exist(rsa_dir):
            _first_run_notice(self.settings)
            try:
                rsa_dir.mkdir(parents=True, exist_ok=True)
                self.settings.LISTENER_DIRECTORY.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise KeyPersistenceError(f"Could not create {rsa_dir}: {e}") from e
        key_pair = keys.load_or_create(rsa_dir, self.settings.KEY_SIZE)
        logger.info("Public key (configure this on voting sites): %s", key_pair.public_key_b64())
        return key_pair

    def _build_registry(self) -> ListenerRegistry:
        registry = ListenerRegistry()
        registry.register("event-bus", self.event_bus)
        registry.register_all(loader.discover(self.settings.LISTENER_DIRECTORY))
        registry.register_all(loader.from_entry_points())
        return registry

    async def enable(self) -> VoteReceiver:
        """
        Starts the receiver.

        Raises:
            VotifierError: keys cannot be loaded/created or the port cannot be bound.
        """
        if self.settings.DEBUG:
            logger.info("DEBUG mode enabled!")
        try:
            key_pair = self._load_key_pair()
            self.context = VotifierContext(
                settings=self.settings,
                key_pair=key_pair,
                registry=self._build_registry(),
            )
            self.event_bus.start()
            self.receiver = VoteReceiver(self.context, self.settings.HOST, self.settings.PORT)
            await self.receiver.start()
        except VotifierError as e:
            logger.error("Votifier did not initialize properly! %s", e)
            await self.event_bus.stop()
            raise
        logger.info("Votifier enabled.")
        return self.receiver

    async def disable(self) -> None:
        if self.receiver is not None:
            await self.receiver.shutdown()
        await self.event_bus.stop()
        logger.info("Votifier disabled.")

    def request_shutdown(self) -> asyncio.Task | None:
        """Schedules receiver shutdown from a signal handler; repeated requests share one task."""
        if self.receiver is None:
            return None
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self.receiver.shutdown())
        return self._shutdown_task

    async def run(self) -> None:
        """enable(), serve until SIGINT/SIGTERM, then disable()."""
        receiver = await self.enable()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                # Windows event loops have no signal handlers.
                pass
        try:
            await receiver.serve_forever()
        finally:
            await self.disable()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="votifier", description="Votifier vote receiver")
    parser.add_argument("--env-file", help="settings file (default: votifier.env)")
    parser.add_argument("--print-public-key", action="store_true",
                        help="print the public key (creating keys if needed) and exit")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    settings = load_settings(args.env_file)
    configure_logging(settings.LOG_LEVEL, settings.DEBUG)

    if args.print_public_key:
        try:
            print(keys.load_or_create(settings.RSA_DIRECTORY, settings.KEY_SIZE).public_key_b64())
        except VotifierError as e:
            logger.error("Could not load RSA keys: %s", e)
            return 1
        return 0

    try:
        await Votifier(settings).run()
    except VotifierError:
        # enable() has already reported it.
        return 1
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received.")
    return 0


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
