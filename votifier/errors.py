# votifier/errors.py


class VotifierError(Exception):
    """Base class for every error raised by the vote receiver."""


# --- Startup errors (fatal) ---

class BindError(VotifierError):
    """The listening socket could not be bound to the configured address/port."""


class KeyManagerError(VotifierError):
    """Base class for RSA key lifecycle failures."""


class KeyGenerationError(KeyManagerError):
    pass


class KeyPersistenceError(KeyManagerError):
    pass


class KeyLoadError(KeyManagerError):
    pass


# --- Per-connection errors (contained in the connection handler) ---

class ProtocolError(VotifierError):
    """A single connection failed; the server keeps accepting others."""


class ShortReadError(ProtocolError):
    """Fewer bytes than one ciphertext block arrived before EOF or timeout."""


class ConnectionLostError(ProtocolError):
    """The sender went away while the server was writing to it."""


class DecryptionError(ProtocolError):
    pass


class MalformedPayloadError(ProtocolError):
    """The decrypted plaintext does not follow the vote grammar."""
