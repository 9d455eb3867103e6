"""Exception hierarchy shared by the sshdeck stores and repository."""

from typing import Optional


class SSHDeckError(Exception):
    """Base class for all sshdeck errors."""


class NotFoundError(SSHDeckError):
    """An alias was required but is absent from the store."""


class AlreadyExistsError(SSHDeckError):
    """An alias collides with an existing host block."""


class ValidationError(SSHDeckError, ValueError):
    """A server record carries values that cannot be written to the config."""


class ParseError(SSHDeckError):
    """The SSH config bytes could not be turned into a document."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.line = line
        self.reason = message
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class StorageError(SSHDeckError, OSError):
    """Reading or writing one of the backing files failed."""


class MetadataError(StorageError):
    """The metadata file is unreadable or malformed."""


class PasswordStoreError(StorageError):
    """The password file is unreadable or malformed."""


class AuthenticationError(SSHDeckError):
    """An encrypted password envelope failed its integrity check."""


__all__ = [
    "SSHDeckError",
    "NotFoundError",
    "AlreadyExistsError",
    "ValidationError",
    "ParseError",
    "StorageError",
    "MetadataError",
    "PasswordStoreError",
    "AuthenticationError",
]
