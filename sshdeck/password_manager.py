"""Encrypted password storage for sshdeck servers.

Passwords are sealed with AES-256-GCM and stored as base64(nonce || ciphertext)
in a JSON object keyed by alias. The key is the SHA-256 of the password file
path plus a fixed application string, so the file stays readable without any
extra key material. That also means anyone who knows the path can derive the
key: the encryption keeps passwords out of casual view, it is not a vault.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
from typing import Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .atomic import atomic_write
from .errors import AuthenticationError, NotFoundError, PasswordStoreError
from .fs import FileSystem, LocalFileSystem

KEY_CONTEXT = "sshdeck-password-encryption-key"
NONCE_SIZE = 12


class PasswordManager:
    """Stores one encrypted password per alias."""

    def __init__(
        self,
        path: str,
        fs: Optional[FileSystem] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.path = path
        self.fs = fs or LocalFileSystem()
        self.logger = logger or logging.getLogger(__name__)

    # -- crypto ---------------------------------------------------------
    def _encryption_key(self) -> bytes:
        return hashlib.sha256((self.path + KEY_CONTEXT).encode("utf-8")).digest()

    def encrypt_password(self, password: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = AESGCM(self._encryption_key()).encrypt(nonce, password.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt_password(self, envelope: str) -> str:
        try:
            raw = base64.b64decode(envelope, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AuthenticationError("encrypted password is not valid base64") from exc
        if len(raw) <= NONCE_SIZE:
            raise AuthenticationError("encrypted password too short")

        nonce, ciphertext = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            plaintext = AESGCM(self._encryption_key()).decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            raise AuthenticationError("encrypted password failed integrity check") from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AuthenticationError("decrypted password is not valid UTF-8") from exc

    # -- persistence ----------------------------------------------------
    def load_passwords(self) -> Dict[str, str]:
        try:
            if not self.fs.exists(self.path):
                return {}
            raw = self.fs.read_bytes(self.path)
        except OSError as e:
            raise PasswordStoreError(f"read passwords '{self.path}': {e}") from e

        if not raw.strip():
            return {}
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PasswordStoreError(f"parse passwords JSON '{self.path}': {e}") from e
        if not isinstance(data, dict):
            raise PasswordStoreError(f"passwords '{self.path}' is not a JSON object")
        return {str(alias): str(envelope) for alias, envelope in data.items()}

    def save_passwords(self, passwords: Dict[str, str]) -> None:
        data = json.dumps(passwords, indent=2, sort_keys=True).encode("utf-8") + b"\n"
        try:
            atomic_write(self.path, data, 0o600, fs=self.fs, log=self.logger)
        except OSError as e:
            self.logger.error("Failed to write passwords file %s: %s", self.path, e)
            raise PasswordStoreError(f"write passwords '{self.path}': {e}") from e

    # -- per-alias operations -------------------------------------------
    def set_password(self, alias: str, password: str) -> bool:
        """Encrypt and store *password*. Empty passwords are never stored."""
        if not password:
            return False
        passwords = self.load_passwords()
        passwords[alias] = self.encrypt_password(password)
        self.save_passwords(passwords)
        self.logger.debug("Stored password for %s", alias)
        return True

    def get_password(self, alias: str) -> str:
        """Return the stored envelope for *alias*."""
        passwords = self.load_passwords()
        try:
            return passwords[alias]
        except KeyError:
            raise NotFoundError(f"password for server '{alias}' not found") from None

    def has_password(self, alias: str) -> bool:
        try:
            self.get_password(alias)
        except NotFoundError:
            return False
        return True

    def get_decrypted_password(self, alias: str) -> str:
        return self.decrypt_password(self.get_password(alias))

    def delete_password(self, alias: str) -> None:
        passwords = self.load_passwords()
        if alias not in passwords:
            return
        del passwords[alias]
        self.save_passwords(passwords)
        self.logger.debug("Deleted password for %s", alias)

    def rename(self, old_alias: str, new_alias: str) -> None:
        """Move the envelope; the key does not depend on the alias."""
        passwords = self.load_passwords()
        if old_alias not in passwords or old_alias == new_alias:
            return
        passwords[new_alias] = passwords.pop(old_alias)
        self.save_passwords(passwords)


__all__ = ["PasswordManager", "KEY_CONTEXT", "NONCE_SIZE"]
