from __future__ import annotations

from typing import Any, Iterable, List


def server_matches(server: Any, query: str) -> bool:
    """Return True if server matches the search query.

    The search checks the server's host, user, tags and every alias on its
    ``Host`` line in a case-insensitive manner.
    """
    if not query:
        return True
    text = query.lower()
    fields = [
        getattr(server, "host", ""),
        getattr(server, "user", ""),
    ]
    fields.extend(getattr(server, "tags", None) or [])
    fields.extend(getattr(server, "aliases", None) or [])
    return any(text in (field or "").lower() for field in fields)


def filter_servers(servers: Iterable[Any], query: str) -> List[Any]:
    return [server for server in servers if server_matches(server, query)]


__all__ = ["server_matches", "filter_servers"]
