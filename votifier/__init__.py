# votifier/__init__.py

from .errors import (
    BindError,
    ConnectionLostError,
    DecryptionError,
    KeyGenerationError,
    KeyLoadError,
    KeyPersistenceError,
    MalformedPayloadError,
    ShortReadError,
    VotifierError,
)
from .model import Vote
from .registry import ListenerRegistry, VoteListener

__version__ = "1.0.0"
