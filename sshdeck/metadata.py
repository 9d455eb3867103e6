"""Per-server metadata kept beside the SSH config.

The metadata file maps an alias to tags, pin time, last connection time and a
connection counter. It never holds anything ssh itself needs, so a missing
file simply means "no metadata yet".
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .atomic import atomic_write
from .errors import MetadataError
from .fs import FileSystem, LocalFileSystem

LEGACY_KEYS = {
    "pinnedAt": "pinned_at",
    "lastSeen": "last_seen",
    "sshCount": "ssh_count",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logging.getLogger(__name__).debug("Ignoring unparsable timestamp %r", value)
        return None


def normalize_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Strip, drop empties and de-duplicate while preserving order."""
    result: List[str] = []
    for tag in tags or []:
        tag = str(tag).strip()
        if tag and tag not in result:
            result.append(tag)
    return result


@dataclass
class MetadataRecord:
    tags: List[str] = field(default_factory=list)
    pinned_at: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    ssh_count: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetadataRecord":
        data = {LEGACY_KEYS.get(key, key): value for key, value in data.items()}
        try:
            count = max(0, int(data.get("ssh_count") or 0))
        except (TypeError, ValueError):
            count = 0
        tags = data.get("tags")
        return cls(
            tags=normalize_tags(tags if isinstance(tags, list) else []),
            pinned_at=parse_timestamp(data.get("pinned_at")),
            last_seen=parse_timestamp(data.get("last_seen")),
            ssh_count=count,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.tags:
            data["tags"] = list(self.tags)
        if self.pinned_at is not None:
            data["pinned_at"] = format_timestamp(self.pinned_at)
        if self.last_seen is not None:
            data["last_seen"] = format_timestamp(self.last_seen)
        if self.ssh_count:
            data["ssh_count"] = self.ssh_count
        return data


class MetadataStore:
    """JSON-backed store of :class:`MetadataRecord` keyed by alias.

    Every mutating call loads the whole file, changes one entry and writes the
    whole file back atomically. Two overlapping callers therefore race at file
    granularity and the last save wins.
    """

    def __init__(
        self,
        path: str,
        fs: Optional[FileSystem] = None,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.path = path
        self.fs = fs or LocalFileSystem()
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock or _utcnow

    def load_all(self) -> Dict[str, MetadataRecord]:
        try:
            if not self.fs.exists(self.path):
                return {}
            raw = self.fs.read_bytes(self.path)
        except OSError as e:
            raise MetadataError(f"read metadata '{self.path}': {e}") from e

        if not raw.strip():
            return {}
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MetadataError(f"parse metadata JSON '{self.path}': {e}") from e
        if not isinstance(data, dict):
            raise MetadataError(f"metadata '{self.path}' is not a JSON object")

        records: Dict[str, MetadataRecord] = {}
        for alias, entry in data.items():
            if isinstance(entry, dict):
                records[alias] = MetadataRecord.from_dict(entry)
            else:
                self.logger.warning("Ignoring malformed metadata entry for %s", alias)
        return records

    def save_all(self, records: Dict[str, MetadataRecord]) -> None:
        payload = {alias: record.to_dict() for alias, record in records.items()}
        data = json.dumps(payload, indent=2, sort_keys=True).encode("utf-8") + b"\n"
        try:
            atomic_write(self.path, data, 0o600, fs=self.fs, log=self.logger)
        except OSError as e:
            self.logger.error("Failed to write metadata %s: %s", self.path, e)
            raise MetadataError(f"write metadata '{self.path}': {e}") from e

    def get(self, alias: str) -> MetadataRecord:
        return self.load_all().get(alias) or MetadataRecord()

    def set_pinned(self, alias: str, pinned: bool) -> None:
        records = self.load_all()
        record = records.setdefault(alias, MetadataRecord())
        record.pinned_at = self.clock() if pinned else None
        self.save_all(records)

    def record_ssh(self, alias: str) -> None:
        records = self.load_all()
        record = records.setdefault(alias, MetadataRecord())
        record.ssh_count += 1
        record.last_seen = self.clock()
        self.save_all(records)

    def set_tags(self, alias: str, tags: Iterable[str]) -> None:
        records = self.load_all()
        records.setdefault(alias, MetadataRecord()).tags = normalize_tags(tags)
        self.save_all(records)

    def rename(self, old_alias: str, new_alias: str) -> None:
        records = self.load_all()
        if old_alias not in records or old_alias == new_alias:
            return
        records[new_alias] = records.pop(old_alias)
        self.save_all(records)

    def delete(self, alias: str) -> None:
        records = self.load_all()
        if alias not in records:
            return
        del records[alias]
        self.save_all(records)

    def update_server(self, alias: str, tags: Iterable[str], old_alias: Optional[str] = None) -> None:
        """Move the record from *old_alias* to *alias* and apply *tags*."""
        records = self.load_all()
        record = records.get(alias)
        if old_alias and old_alias != alias and old_alias in records:
            if record is not None:
                self.logger.warning("Replacing stale metadata for %s with that of %s", alias, old_alias)
            record = records.pop(old_alias)
        if record is None:
            record = MetadataRecord()
        record.tags = normalize_tags(tags)
        records[alias] = record
        self.save_all(records)


__all__ = ["MetadataRecord", "MetadataStore", "normalize_tags", "parse_timestamp", "format_timestamp"]
