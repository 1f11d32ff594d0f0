"""Validator-token cache for read queries."""

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from .exceptions import IndexerError

LOG = logging.getLogger("compact_client.cache")

T = TypeVar("T")


def cache_key(query: str, variables: Optional[Dict[str, Any]] = None) -> str:
    """Deterministic key for a query and its variables."""
    return json.dumps({"query": query, "variables": variables or {}}, sort_keys=True, separators=(",", ":"))


@dataclass
class CachedResponse(Generic[T]):
    """What a request hands back to the cache.

    ``not_modified`` is set when the server answered that the value behind
    the validator token is unchanged; ``value`` is then ignored.
    """
    value: Optional[T] = None
    etag: Optional[str] = None
    not_modified: bool = False


@dataclass
class _Entry:
    value: Any
    etag: Optional[str]


class QueryCache:
    """Per-key cache of the last value and validator token (ETag).

    Successful responses equal to the cached value hand back the cached
    object itself, so callers can use identity to detect changes. Errors
    raised by the request are never caught here.
    """

    def __init__(self, max_entries: int = 0):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def etag(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        return entry.etag if entry else None

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        return entry.value if entry else None

    def clear(self) -> None:
        self._entries.clear()

    async def query(self, key: str, request: Callable[[Optional[str]], Awaitable[CachedResponse]]) -> Any:
        """Run ``request`` with the last validator token seen for ``key``.

        Args:
            key: Deterministic encoding of the request body
            request: Coroutine function receiving the ETag (or None)

        Returns:
            The cached value when unchanged, the new value otherwise
        """
        entry = self._entries.get(key)
        response = await request(entry.etag if entry else None)

        if response.not_modified:
            if entry is None:
                raise IndexerError("Server reported not modified but nothing is cached", status_code=304)
            LOG.debug("cache hit (not modified) for %s", key[:60])
            self._touch(key)
            return entry.value

        if entry is not None and entry.value == response.value:
            if response.etag:
                entry.etag = response.etag
            self._touch(key)
            return entry.value

        self._entries[key] = _Entry(value=response.value, etag=response.etag)
        self._touch(key)
        self._evict()
        return response.value

    def _touch(self, key: str) -> None:
        self._entries.move_to_end(key)

    def _evict(self) -> None:
        if self.max_entries <= 0:
            return
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            LOG.debug("evicted cache entry %s", evicted[:60])
