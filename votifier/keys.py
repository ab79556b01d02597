# votifier/keys.py

import base64
import binascii
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .errors import KeyGenerationError, KeyLoadError, KeyPersistenceError

logger = logging.getLogger(__name__)

DEFAULT_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537

PUBLIC_KEY_FILE = "public.key"
PRIVATE_KEY_FILE = "private.key"


@dataclass(frozen=True)
class KeyPair:
    """An RSA key pair. Read-only once built, so it is shared freely between connections."""
    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey

    @property
    def key_size(self) -> int:
        return self.private_key.key_size

    @property
    def block_size(self) -> int:
        """Length in bytes of one ciphertext block (256 for a 2048-bit key)."""
        return (self.private_key.key_size + 7) // 8

    def public_key_der(self) -> bytes:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def private_key_der(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def public_key_b64(self) -> str:
        """The text vote sites are configured with."""
        return base64.b64encode(self.public_key_der()).decode("ascii")


def generate(bits: int = DEFAULT_KEY_SIZE) -> KeyPair:
    """
    Generates a fresh RSA key pair.

    Raises:
        KeyGenerationError: the requested key size cannot be produced.
    """
    logger.info("Generating RSA-%d key pair...", bits)
    try:
        private_key = rsa.generate_private_key(
            public_exponent=PUBLIC_EXPONENT,
            key_size=bits,
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyGenerationError(f"Cannot generate a {bits}-bit RSA key: {e}") from e
    logger.info("RSA key pair generated.")
    return KeyPair(private_key=private_key, public_key=private_key.public_key())


def _write_temp(directory: Path, data: bytes) -> Path:
    fd, name = tempfile.mkstemp(dir=directory, prefix=".", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
    except BaseException:
        Path(name).unlink(missing_ok=True)
        raise
    return Path(name)


def persist(path, key_pair: KeyPair) -> None:
    """
    Writes `public.key` and `private.key` (base64 of DER) into directory `path`.

    Both keys are staged in temporary files first; either both new files end
    up in place or the directory is left as it was, including any pair that
    was already there.

    Raises:
        KeyPersistenceError: on any I/O failure.
    """
    directory = Path(path)
    public_blob = base64.b64encode(key_pair.public_key_der())
    private_blob = base64.b64encode(key_pair.private_key_der())

    staged = []
    backups = {}
    placed = []
    try:
        directory.mkdir(parents=True, exist_ok=True)
        staged.append((_write_temp(directory, private_blob), directory / PRIVATE_KEY_FILE))
        staged.append((_write_temp(directory, public_blob), directory / PUBLIC_KEY_FILE))
        for _, final in staged:
            if final.exists():
                backups[final] = _write_temp(directory, final.read_bytes())
        for temp, final in staged:
            os.replace(temp, final)
            placed.append(final)
    except OSError as e:
        for temp, _ in staged:
            temp.unlink(missing_ok=True)
        # A half-placed pair is worse than none.
        if len(placed) != len(staged):
            _roll_back(placed, backups)
        raise KeyPersistenceError(f"Could not write RSA keys to {directory}: {e}") from e
    finally:
        for backup in backups.values():
            backup.unlink(missing_ok=True)
    logger.info("RSA keys saved to %s", directory)


def _roll_back(placed, backups) -> None:
    """Puts the previous files back over the ones already moved into place."""
    for final in placed:
        try:
            if final in backups:
                os.replace(backups[final], final)
            else:
                final.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Could not restore %s after a failed write: %s", final, e)


def _read_der(file_path: Path) -> bytes:
    try:
        text = file_path.read_bytes()
    except FileNotFoundError as e:
        raise KeyLoadError(f"Missing key file: {file_path}") from e
    except OSError as e:
        raise KeyLoadError(f"Could not read {file_path}: {e}") from e
    try:
        return base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyLoadError(f"{file_path} is not valid base64: {e}") from e


def load(path) -> KeyPair:
    """
    Reads the key pair written by `persist`.

    Raises:
        KeyLoadError: a file is missing or malformed, or the halves do not match.
    """
    directory = Path(path)
    public_der = _read_der(directory / PUBLIC_KEY_FILE)
    private_der = _read_der(directory / PRIVATE_KEY_FILE)

    try:
        public_key = serialization.load_der_public_key(public_der)
        private_key = serialization.load_der_private_key(private_der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyLoadError(f"Malformed RSA key in {directory}: {e}") from e

    if not isinstance(private_key, rsa.RSAPrivateKey) or not isinstance(public_key, rsa.RSAPublicKey):
        raise KeyLoadError(f"Keys in {directory} are not RSA keys")

    if private_key.public_key().public_numbers() != public_key.public_numbers():
        raise KeyLoadError(f"Public key in {directory} does not match the private key")

    logger.info("RSA keys loaded from %s", directory)
    return KeyPair(private_key=private_key, public_key=public_key)


def keys_exist(path) -> bool:
    """True when either key file is present."""
    directory = Path(path)
    return (directory / PUBLIC_KEY_FILE).exists() or (directory / PRIVATE_KEY_FILE).exists()


def load_or_create(path, bits: int = DEFAULT_KEY_SIZE) -> KeyPair:
    """
    Loads the stored pair, or generates and stores one on first run.

    A directory holding only one of the two files is an error, not a first run.
    """
    if keys_exist(path):
        return load(path)
    key_pair = generate(bits)
    persist(path, key_pair)
    return key_pair
