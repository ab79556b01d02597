# votifier/protocol.py
"""
The vote payload grammar.

A ciphertext block decrypts (RSA, PKCS#1 v1.5) to UTF-8 text:

    VOTE
    <service name>
    <username>
    <address>
    <timestamp>

A single trailing line break after the timestamp is tolerated.
"""

from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import DecryptionError, MalformedPayloadError
from .model import Vote

VOTE_MARKER = "VOTE"
FIELD_COUNT = 5
PROTOCOL_VERSION = "1.9"


def greeting() -> bytes:
    """Banner some senders expect before they write the ciphertext block."""
    return f"VOTIFIER {PROTOCOL_VERSION}\n".encode("ascii")


def decrypt_block(private_key: rsa.RSAPrivateKey, block: bytes) -> bytes:
    try:
        return private_key.decrypt(block, padding.PKCS1v15())
    except ValueError as e:
        raise DecryptionError(f"Could not decrypt vote block: {e}") from e


def parse_fields(plaintext: bytes) -> list[str]:
    """Splits a plaintext into its five raw fields, checking the marker."""
    try:
        text = plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedPayloadError(f"Payload is not UTF-8: {e}") from e

    if text.endswith("\r\n"):
        text = text[:-2]
    elif text.endswith("\n"):
        text = text[:-1]

    fields = [f[:-1] if f.endswith("\r") else f for f in text.split("\n")]
    if len(fields) != FIELD_COUNT:
        raise MalformedPayloadError(f"Expected {FIELD_COUNT} fields, got {len(fields)}")
    if fields[0].strip() != VOTE_MARKER:
        raise MalformedPayloadError(f"Missing '{VOTE_MARKER}' marker, got {fields[0]!r}")
    return fields


def validate_fields(fields: list[str]) -> Vote:
    """Builds a Vote from parsed fields. Address and timestamp are taken as sent."""
    _, service_name, username, address, timestamp = fields
    service_name = service_name.strip()
    username = username.strip()
    if not service_name:
        raise MalformedPayloadError("Empty service name")
    if not username:
        raise MalformedPayloadError("Empty username")
    return Vote(service_name=service_name, username=username,
                address=address, timestamp=timestamp)


def decode_vote(plaintext: bytes) -> Vote:
    return validate_fields(parse_fields(plaintext))


def encode_vote(vote: Vote) -> bytes:
    """The plaintext a sender encrypts for `vote`."""
    return "\n".join((VOTE_MARKER, vote.service_name, vote.username,
                      vote.address, vote.timestamp)).encode("utf-8")


def encrypt_payload(public_key: rsa.RSAPublicKey, plaintext: bytes) -> bytes:
    """
    Sender side of the scheme: one PKCS#1 v1.5 block under `public_key`.

    Raises:
        ValueError: the plaintext does not fit in one block.
    """
    return public_key.encrypt(plaintext, padding.PKCS1v15())
