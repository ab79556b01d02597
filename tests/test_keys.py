# tests/test_keys.py

import base64
import os

import pytest
from cryptography.hazmat.primitives.asymmetric import padding

from votifier import keys
from votifier.errors import KeyGenerationError, KeyLoadError, KeyPersistenceError


def test_generate_2048_bit_pair(key_pair):
    assert key_pair.key_size == 2048
    assert key_pair.block_size == 256
    assert key_pair.public_key.public_numbers() == key_pair.private_key.public_key().public_numbers()


def test_generate_rejects_weak_key_size():
    with pytest.raises(KeyGenerationError):
        keys.generate(256)


def test_persist_then_load_decrypts_what_the_generated_pair_encrypted(tmp_path, key_pair):
    keys.persist(tmp_path, key_pair)
    loaded = keys.load(tmp_path)

    ciphertext = key_pair.public_key.encrypt(b"hello votifier", padding.PKCS1v15())
    assert loaded.private_key.decrypt(ciphertext, padding.PKCS1v15()) == b"hello votifier"
    assert loaded.public_key_der() == key_pair.public_key_der()
    assert loaded.private_key_der() == key_pair.private_key_der()


def test_persisted_files_are_base64_der(tmp_path, key_pair):
    keys.persist(tmp_path, key_pair)

    public_text = (tmp_path / keys.PUBLIC_KEY_FILE).read_bytes()
    assert base64.b64decode(public_text) == key_pair.public_key_der()
    assert public_text.decode() == key_pair.public_key_b64()
    assert sorted(p.name for p in tmp_path.iterdir()) == [keys.PRIVATE_KEY_FILE, keys.PUBLIC_KEY_FILE]


def test_persist_creates_missing_directory(tmp_path, key_pair):
    target = tmp_path / "Votifier" / "rsa"
    keys.persist(target, key_pair)
    assert keys.keys_exist(target)


def test_persist_fails_cleanly_when_target_is_a_file(tmp_path, key_pair):
    blocker = tmp_path / "rsa"
    blocker.write_text("not a directory")

    with pytest.raises(KeyPersistenceError):
        keys.persist(blocker, key_pair)


def test_persist_leaves_nothing_when_second_move_fails(tmp_path, key_pair, monkeypatch):
    real_replace = os.replace
    calls = []

    def flaky_replace(src, dst):
        calls.append(dst)
        if len(calls) == 2:
            raise OSError("disk full")
        return real_replace(src, dst)

    monkeypatch.setattr(keys.os, "replace", flaky_replace)

    with pytest.raises(KeyPersistenceError):
        keys.persist(tmp_path, key_pair)
    assert list(tmp_path.iterdir()) == []


def test_failed_overwrite_keeps_the_existing_pair(tmp_path, key_pair, other_key_pair, monkeypatch):
    keys.persist(tmp_path, key_pair)
    real_replace = os.replace
    calls = []

    def flaky_replace(src, dst):
        calls.append(dst)
        if len(calls) == 2:
            raise OSError("disk full")
        return real_replace(src, dst)

    monkeypatch.setattr(keys.os, "replace", flaky_replace)

    with pytest.raises(KeyPersistenceError):
        keys.persist(tmp_path, other_key_pair)

    monkeypatch.setattr(keys.os, "replace", real_replace)
    assert sorted(p.name for p in tmp_path.iterdir()) == [keys.PRIVATE_KEY_FILE, keys.PUBLIC_KEY_FILE]
    assert keys.load(tmp_path).public_key_b64() == key_pair.public_key_b64()


def test_overwrite_replaces_both_files(tmp_path, key_pair, other_key_pair):
    keys.persist(tmp_path, key_pair)
    keys.persist(tmp_path, other_key_pair)

    assert keys.load(tmp_path).public_key_b64() == other_key_pair.public_key_b64()
    assert sorted(p.name for p in tmp_path.iterdir()) == [keys.PRIVATE_KEY_FILE, keys.PUBLIC_KEY_FILE]


def test_load_missing_files(tmp_path):
    with pytest.raises(KeyLoadError):
        keys.load(tmp_path)


def test_load_malformed_base64(tmp_path, key_pair):
    keys.persist(tmp_path, key_pair)
    (tmp_path / keys.PRIVATE_KEY_FILE).write_text("%%% not base64 %%%")

    with pytest.raises(KeyLoadError):
        keys.load(tmp_path)


def test_load_garbage_der(tmp_path, key_pair):
    keys.persist(tmp_path, key_pair)
    (tmp_path / keys.PUBLIC_KEY_FILE).write_bytes(base64.b64encode(b"definitely not DER"))

    with pytest.raises(KeyLoadError):
        keys.load(tmp_path)


def test_load_mismatched_halves(tmp_path, key_pair, other_key_pair):
    keys.persist(tmp_path, key_pair)
    (tmp_path / keys.PUBLIC_KEY_FILE).write_text(other_key_pair.public_key_b64())

    with pytest.raises(KeyLoadError, match="does not match"):
        keys.load(tmp_path)


def test_load_or_create_generates_once(tmp_path):
    first = keys.load_or_create(tmp_path / "rsa", bits=1024)
    second = keys.load_or_create(tmp_path / "rsa", bits=1024)
    assert first.public_key_b64() == second.public_key_b64()


def test_load_or_create_refuses_half_a_pair(tmp_path, key_pair):
    keys.persist(tmp_path, key_pair)
    (tmp_path / keys.PUBLIC_KEY_FILE).unlink()

    with pytest.raises(KeyLoadError):
        keys.load_or_create(tmp_path)
