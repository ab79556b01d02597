# tests/conftest.py

import asyncio

import pytest

from votifier import keys
from votifier.app import VotifierContext
from votifier.config import Settings
from votifier.model import Vote
from votifier.protocol import encode_vote, encrypt_payload
from votifier.receiver import VoteReceiver
from votifier.registry import ListenerRegistry


class RecordingListener:
    """Remembers every vote it is given."""
    def __init__(self):
        self.votes = []

    def vote_made(self, vote):
        self.votes.append(vote)


class FailingListener:
    def __init__(self):
        self.calls = 0

    def vote_made(self, vote):
        self.calls += 1
        raise RuntimeError("listener exploded")


class FakeWriter:
    """Just enough of asyncio.StreamWriter for VoteSession."""
    def __init__(self):
        self.written = b""
        self.closed = False

    def get_extra_info(self, name, default=None):
        return ("203.0.113.9", 40000) if name == "peername" else default

    def write(self, data):
        self.written += data

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


@pytest.fixture(scope="session")
def key_pair():
    return keys.generate(2048)


@pytest.fixture(scope="session")
def other_key_pair():
    return keys.generate(2048)


@pytest.fixture
def settings(tmp_path):
    return Settings(DATA_DIR=tmp_path, HOST="127.0.0.1", PORT=0, READ_TIMEOUT=0.5)


@pytest.fixture
def recorder():
    return RecordingListener()


@pytest.fixture
def context(settings, key_pair, recorder):
    registry = ListenerRegistry()
    registry.register("recorder", recorder)
    return VotifierContext(settings=settings, key_pair=key_pair, registry=registry)


@pytest.fixture
async def receiver(context):
    server = VoteReceiver(context, "127.0.0.1", 0)
    await server.start()
    yield server
    await server.shutdown()


def make_vote(n=0):
    return Vote(service_name=f"Service{n}", username=f"user{n}",
                address=f"198.51.100.{n % 256}", timestamp=str(1700000000 + n))


def encrypt_vote(public_key, vote):
    return encrypt_payload(public_key, encode_vote(vote))


async def send_bytes(address, data, eof=True):
    """Sends `data`, then waits for the server to close the connection."""
    reader, writer = await asyncio.open_connection(*address)
    writer.write(data)
    await writer.drain()
    if eof:
        writer.write_eof()
    received = await asyncio.wait_for(reader.read(), timeout=5)
    writer.close()
    await writer.wait_closed()
    return received
