"""Tests for server sorting helpers."""

from __future__ import annotations

from datetime import datetime, timezone

from sshdeck.models import Server
from sshdeck.server_sort import DEFAULT_SERVER_SORT, SERVER_SORT_PRESETS, next_preset, sort_servers


def _ts(day):
    return datetime(2024, 1, day, tzinfo=timezone.utc)


def _servers():
    return [
        Server(alias="charlie", host="c", ssh_count=1, last_seen=_ts(3)),
        Server(alias="Alpha", host="a", ssh_count=5),
        Server(alias="bravo", host="b", pinned_at=_ts(1), last_seen=_ts(5)),
        Server(alias="delta", host="d", pinned_at=_ts(2), ssh_count=5),
    ]


def test_default_sort_puts_newest_pin_first():
    ordered = sort_servers(_servers())
    assert [s.alias for s in ordered] == ["delta", "bravo", "Alpha", "charlie"]


def test_alias_sorts_are_case_insensitive():
    assert [s.alias for s in sort_servers(_servers(), "alias-asc")] == ["Alpha", "bravo", "charlie", "delta"]
    assert [s.alias for s in sort_servers(_servers(), "alias-desc")] == ["delta", "charlie", "bravo", "Alpha"]


def test_last_seen_and_most_used():
    assert [s.alias for s in sort_servers(_servers(), "last-seen")] == ["bravo", "charlie", "Alpha", "delta"]
    assert [s.alias for s in sort_servers(_servers(), "most-used")] == ["Alpha", "delta", "charlie", "bravo"]


def test_unknown_preset_falls_back_to_default():
    assert sort_servers(_servers(), "nope") == sort_servers(_servers(), DEFAULT_SERVER_SORT)


def test_sorting_is_idempotent_and_does_not_mutate_input():
    servers = _servers()
    once = sort_servers(servers, "most-used")
    assert sort_servers(once, "most-used") == once
    assert [s.alias for s in servers] == ["charlie", "Alpha", "bravo", "delta"]


def test_next_preset_cycles_through_all_presets():
    seen = [DEFAULT_SERVER_SORT]
    for _ in range(len(SERVER_SORT_PRESETS) - 1):
        seen.append(next_preset(seen[-1]))
    assert seen == list(SERVER_SORT_PRESETS)
    assert next_preset(seen[-1]) == DEFAULT_SERVER_SORT
    assert next_preset("bogus") == DEFAULT_SERVER_SORT
