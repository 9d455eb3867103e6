import base64
import json

import pytest

from sshdeck.errors import AuthenticationError, NotFoundError, PasswordStoreError
from sshdeck.fs import MemoryFileSystem
from sshdeck.password_manager import NONCE_SIZE, PasswordManager

PATH = "/home/u/.config/sshdeck/passwords.json"


@pytest.fixture
def manager(memfs):
    return PasswordManager(PATH, fs=memfs)


def test_set_and_get_decrypted_password(manager, memfs):
    assert manager.set_password("db1", "s3cr3t") is True

    assert manager.has_password("db1")
    assert manager.get_decrypted_password("db1") == "s3cr3t"
    stored = json.loads(memfs.read_bytes(PATH))
    assert "s3cr3t" not in stored["db1"]
    assert memfs.modes[PATH] == 0o600


def test_envelope_layout_and_fresh_nonce(manager):
    first = manager.encrypt_password("pw")
    second = manager.encrypt_password("pw")
    assert first != second

    raw = base64.b64decode(first)
    # nonce + ciphertext + 16 byte tag
    assert len(raw) == NONCE_SIZE + len("pw") + 16
    assert manager.decrypt_password(first) == manager.decrypt_password(second) == "pw"


def test_empty_password_is_not_stored(manager, memfs):
    assert manager.set_password("db1", "") is False
    assert not manager.has_password("db1")
    assert not memfs.exists(PATH)


def test_tampered_envelope_fails_authentication(manager):
    raw = bytearray(base64.b64decode(manager.encrypt_password("pw")))
    raw[-1] ^= 0x01
    with pytest.raises(AuthenticationError):
        manager.decrypt_password(base64.b64encode(bytes(raw)).decode())


@pytest.mark.parametrize("envelope", ["not base64!!", base64.b64encode(b"short").decode()])
def test_malformed_envelope_fails_authentication(manager, envelope):
    with pytest.raises(AuthenticationError):
        manager.decrypt_password(envelope)


def test_key_depends_on_file_path(manager, memfs):
    envelope = manager.encrypt_password("pw")
    other = PasswordManager("/elsewhere/passwords.json", fs=memfs)
    with pytest.raises(AuthenticationError):
        other.decrypt_password(envelope)


def test_missing_password_raises_not_found(manager):
    with pytest.raises(NotFoundError):
        manager.get_password("ghost")


def test_delete_and_rename(manager):
    manager.set_password("a", "one")
    manager.set_password("b", "two")

    manager.rename("a", "c")
    manager.delete_password("b")
    manager.delete_password("missing")

    assert manager.load_passwords().keys() == {"c"}
    assert manager.get_decrypted_password("c") == "one"


def test_corrupt_file_raises_store_error(memfs):
    memfs.write_bytes(PATH, b"not json")
    with pytest.raises(PasswordStoreError):
        PasswordManager(PATH, fs=memfs).load_passwords()


def test_write_failure_raises_store_error():
    class FailingFS(MemoryFileSystem):
        def rename(self, src, dst):
            raise PermissionError(dst)

    with pytest.raises(PasswordStoreError):
        PasswordManager(PATH, fs=FailingFS()).set_password("a", "pw")
