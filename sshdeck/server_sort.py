"""Helpers for ordering merged server records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from gettext import gettext as _


@dataclass(frozen=True)
class SortPreset:
    """Describes a server sorting preset."""

    preset_id: str
    title: str
    description: str
    reverse: bool = False

    def __hash__(self) -> int:  # pragma: no cover - required for dataclass
        return hash(self.preset_id)


def _timestamp(value: Optional[datetime]) -> float:
    return value.timestamp() if value is not None else 0.0


def _alias_key(server) -> Tuple[str, str]:
    alias = str(getattr(server, "alias", "") or "")
    host = str(getattr(server, "host", "") or "")
    return (alias.casefold(), host.casefold())


def _pinned_key(server) -> Tuple:
    pinned_at = getattr(server, "pinned_at", None)
    # Pinned first, most recently pinned on top, then alphabetical
    return (pinned_at is None, -_timestamp(pinned_at), _alias_key(server))


def _last_seen_key(server) -> Tuple:
    return (-_timestamp(getattr(server, "last_seen", None)), _alias_key(server))


def _most_used_key(server) -> Tuple:
    return (-int(getattr(server, "ssh_count", 0) or 0), _alias_key(server))


DEFAULT_SERVER_SORT = "default"

SERVER_SORT_PRESETS: Dict[str, SortPreset] = {
    "default": SortPreset(
        preset_id="default",
        title=_("Pinned first"),
        description=_("Pinned servers on top, newest pin first, then by alias"),
    ),
    "alias-asc": SortPreset(
        preset_id="alias-asc",
        title=_("Alias (A-Z)"),
        description=_("Sort servers alphabetically by alias"),
    ),
    "alias-desc": SortPreset(
        preset_id="alias-desc",
        title=_("Alias (Z-A)"),
        description=_("Sort servers alphabetically by alias in reverse"),
        reverse=True,
    ),
    "last-seen": SortPreset(
        preset_id="last-seen",
        title=_("Recently used"),
        description=_("Most recently connected servers first"),
    ),
    "most-used": SortPreset(
        preset_id="most-used",
        title=_("Most used"),
        description=_("Servers with the most connections first"),
    ),
}

_SORT_KEYS: Dict[str, Callable] = {
    "default": _pinned_key,
    "alias-asc": _alias_key,
    "alias-desc": _alias_key,
    "last-seen": _last_seen_key,
    "most-used": _most_used_key,
}


def sort_servers(servers: Iterable, preset_id: str = DEFAULT_SERVER_SORT) -> List:
    """Return *servers* ordered by ``preset_id``; unknown presets use the default."""
    preset = SERVER_SORT_PRESETS.get(preset_id) or SERVER_SORT_PRESETS[DEFAULT_SERVER_SORT]
    key = _SORT_KEYS[preset.preset_id]
    return sorted(servers, key=key, reverse=preset.reverse)


def next_preset(preset_id: str) -> str:
    """Return the preset after ``preset_id``, wrapping around."""
    ids = list(SERVER_SORT_PRESETS)
    try:
        idx = ids.index(preset_id)
    except ValueError:
        return DEFAULT_SERVER_SORT
    return ids[(idx + 1) % len(ids)]


__all__ = [
    "DEFAULT_SERVER_SORT",
    "SERVER_SORT_PRESETS",
    "SortPreset",
    "next_preset",
    "sort_servers",
]
