"""Server records exposed by :class:`sshdeck.repository.ServerRepository`."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .errors import ValidationError

DEFAULT_PORT = 22
MIN_PORT = 1
MAX_PORT = 65535
UNQUOTABLE_CHARS = "\"'\\"


def is_wildcard_pattern(token: str) -> bool:
    """Return True for Host patterns that match more than a single name."""
    return '*' in token or '?' in token or token.startswith('!')


@dataclass
class Server:
    """A logical server: one ``Host`` block merged with its metadata.

    ``password`` is write-only. It carries a new plaintext password into
    ``add_server``/``update_server`` and is never filled in by listing; use
    ``has_password`` to learn whether one is stored.
    """

    alias: str
    host: str = ""
    user: str = ""
    port: int = DEFAULT_PORT
    identity_files: List[str] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    pinned_at: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    ssh_count: int = 0
    has_password: bool = False
    password: str = field(default="", repr=False, compare=False)

    def __post_init__(self):
        if not self.aliases and self.alias:
            self.aliases = [self.alias]

    @property
    def is_pinned(self) -> bool:
        return self.pinned_at is not None

    def validate(self) -> None:
        """Raise :class:`ValidationError` if the record cannot be written."""
        alias = self.alias or ""
        if not alias.strip():
            raise ValidationError("alias must not be empty")
        if any(c.isspace() for c in alias):
            raise ValidationError(f"alias '{alias}' must not contain whitespace")
        if is_wildcard_pattern(alias):
            raise ValidationError(f"alias '{alias}' must not be a wildcard pattern")
        if any(c in UNQUOTABLE_CHARS for c in alias):
            raise ValidationError(f"alias '{alias}' must not contain quotes or backslashes")
        try:
            port = int(self.port)
        except (TypeError, ValueError):
            raise ValidationError(f"port '{self.port}' is not a number") from None
        if not MIN_PORT <= port <= MAX_PORT:
            raise ValidationError(f"port {port} is outside 1-65535")


__all__ = ["Server", "DEFAULT_PORT", "UNQUOTABLE_CHARS", "is_wildcard_pattern"]
