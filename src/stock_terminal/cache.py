"""TTL key-value caches for merged financial statements.

Both implementations share one contract:

    get(key, ttl)   → value, or None on miss/expiry (expired entries are evicted)
    set(key, value) → store with the current time
    delete(key)     → drop the entry if present

``ttl`` is in seconds; ``ttl <= 0`` disables expiry.  Values must be
JSON-serialisable for FileTTLCache.
"""

from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Protocol

log = logging.getLogger(__name__)


class StatementCache(Protocol):
    def get(self, key: str, ttl: float) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


# ═══════════════════════════════════════════════════════════════════════════
#  In-memory cache
# ═══════════════════════════════════════════════════════════════════════════

class _CacheEntry:
    """Simple timestamped cache entry."""
    __slots__ = ("data", "timestamp")

    def __init__(self, data: Any):
        self.data = data
        self.timestamp = time.time()

    def expired(self, ttl: float) -> bool:
        return ttl > 0 and (time.time() - self.timestamp) > ttl


class MemoryTTLCache:
    """Process-local cache; contents are lost on restart."""

    def __init__(self) -> None:
        self._entries: dict[str, _CacheEntry] = {}

    def get(self, key: str, ttl: float) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(ttl):
            self.delete(key)
            return None
        return entry.data

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = _CacheEntry(value)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)


# ═══════════════════════════════════════════════════════════════════════════
#  On-disk cache (one JSON file per key, age taken from mtime)
# ═══════════════════════════════════════════════════════════════════════════

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]")


class FileTTLCache:
    """Cache persisted as ``<directory>/<key>.json`` files.

    Write failures are logged and ignored.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_FILENAME.sub('_', key)}.json"

    def get(self, key: str, ttl: float) -> Any:
        path = self._path(key)
        try:
            age = time.time() - path.stat().st_mtime
        except OSError:
            return None
        if ttl > 0 and age > ttl:
            self.delete(key)
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warning("Dropping unreadable cache file %s: %s", path, exc)
            self.delete(key)
            return None

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(value, indent=2, ensure_ascii=False), encoding="utf-8")
        except (OSError, TypeError) as exc:
            log.warning("Could not write cache file %s: %s", path, exc)

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("Could not delete cache file for %s: %s", key, exc)


# ═══════════════════════════════════════════════════════════════════════════
#  Module-level singleton, shared across the app
# ═══════════════════════════════════════════════════════════════════════════

_cache: StatementCache | None = None


def get_statement_cache() -> StatementCache:
    """Get or create the shared on-disk statement cache (dir from config)."""
    global _cache
    if _cache is None:
        from stock_terminal.config import get_config
        _cache = FileTTLCache(get_config().cache_dir)
    return _cache
