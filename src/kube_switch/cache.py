"""Caching decorator for kubeconfig stores.

``CachedStore`` wraps any store and implements the same contract. Results are
kept in a backing keyed by fetch identity: the in-memory backing collapses
duplicate reads within one run, the filesystem backing reuses results across
short-lived invocations.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

import structlog

from kube_switch.config import CacheConfig, CacheKind
from kube_switch.errors import ConfigError
from kube_switch.stores.base import KubeconfigStore
from kube_switch.utils import atomic_write_text

log = structlog.get_logger()

DEFAULT_CACHE_DIRECTORY = Path("~/.kube/switch-cache").expanduser()
DEFAULT_FILESYSTEM_TTL = timedelta(hours=1)

CONTEXTS_KEY = "contexts"

CacheValue = bytes | dict[str, str]


def kubeconfig_key(path: str) -> str:
    return f"kubeconfig:{path}"


class CacheBacking(Protocol):
    def get(self, key: str) -> CacheValue | None: ...

    def put(self, key: str, value: CacheValue) -> None: ...

    def clear(self) -> None: ...


class MemoryBacking:
    """Unbounded in-process map. Never evicts."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheValue] = {}

    def get(self, key: str) -> CacheValue | None:
        return self._entries.get(key)

    def put(self, key: str, value: CacheValue) -> None:
        self._entries[key] = value

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class FilesystemBacking:
    """One JSON file per key under ``directory``, expiring after ``ttl``."""

    def __init__(self, directory: Path, ttl: timedelta = DEFAULT_FILESYSTEM_TTL) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self.ttl = ttl

    def _entry_path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode()).hexdigest()
        return self.directory / f"{digest}.json"

    def get(self, key: str) -> CacheValue | None:
        path = self._entry_path(key)
        if not path.exists():
            return None

        try:
            entry = json.loads(path.read_text())
            cached_at = datetime.fromisoformat(entry["timestamp"])
            if datetime.now(tz=UTC) - cached_at > self.ttl:
                path.unlink(missing_ok=True)
                return None
            if entry["type"] == "bytes":
                return base64.b64decode(entry["value"])
            return {str(k): str(v) for k, v in entry["value"].items()}
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            # A cache entry is only an optimisation: drop it and refetch.
            log.warning("dropping_corrupt_cache_entry", path=str(path), error=str(e))
            path.unlink(missing_ok=True)
            return None

    def put(self, key: str, value: CacheValue) -> None:
        entry: dict[str, Any] = {"timestamp": datetime.now(tz=UTC).isoformat(), "key": key}
        if isinstance(value, bytes):
            entry["type"] = "bytes"
            entry["value"] = base64.b64encode(value).decode()
        else:
            entry["type"] = "mapping"
            entry["value"] = value
        path = self._entry_path(key)
        try:
            atomic_write_text(path, json.dumps(entry))
        except OSError as e:
            # The fetched value is still returned; only the persisted copy is lost.
            log.warning("cache_write_failed", path=str(path), error=str(e))

    def clear(self) -> None:
        for entry_file in self.directory.glob("*.json"):
            entry_file.unlink(missing_ok=True)


class CachedStore(KubeconfigStore):
    """Store decorator that fetches each key from the inner store at most once.

    Concurrent callers asking for the same key wait on a per-key lock, so only
    one of them reaches the inner store. Failures are never cached.
    """

    def __init__(self, inner: KubeconfigStore, backing: CacheBacking) -> None:
        super().__init__(inner.config)
        self.inner = inner
        self.backing = backing
        self._locks: dict[str, asyncio.Lock] = {}
        inner.set_content_listener(self._remember_kubeconfig)

    def _lock_for(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    def _remember_kubeconfig(self, path: str, content: bytes) -> None:
        self.backing.put(kubeconfig_key(path), content)

    async def list_contexts(self) -> dict[str, str]:
        async with self._lock_for(CONTEXTS_KEY):
            cached = self.backing.get(CONTEXTS_KEY)
            if isinstance(cached, dict):
                log.debug("cache_hit", store=self.id, key=CONTEXTS_KEY)
                return dict(cached)
            contexts = await self.inner.list_contexts()
            self.backing.put(CONTEXTS_KEY, dict(contexts))
            return dict(contexts)

    async def get_kubeconfig(self, path: str) -> bytes:
        key = kubeconfig_key(path)
        async with self._lock_for(key):
            cached = self.backing.get(key)
            if isinstance(cached, bytes):
                log.debug("cache_hit", store=self.id, key=key)
                return cached
            content = await self.inner.get_kubeconfig(path)
            self.backing.put(key, content)
            return content

    async def aclose(self) -> None:
        await self.inner.aclose()

    def flush(self) -> None:
        """Drop every cached entry for this store."""
        self.backing.clear()
        log.debug("cache_flushed", store=self.id)

    def __repr__(self) -> str:
        return f"CachedStore({self.inner!r})"


def new_cache(store: KubeconfigStore, cache_config: CacheConfig | None = None) -> CachedStore:
    """Wrap ``store`` in a cache selected by ``cache_config`` (in-memory when None).

    Raises:
        ConfigError: If the cache kind is not supported.
    """
    if cache_config is None or cache_config.kind == CacheKind.MEMORY:
        return CachedStore(store, MemoryBacking())
    if cache_config.kind == CacheKind.FILESYSTEM:
        directory = (cache_config.path or DEFAULT_CACHE_DIRECTORY) / store.id
        return CachedStore(store, FilesystemBacking(directory, cache_config.ttl or DEFAULT_FILESYSTEM_TTL))
    msg = f"Unknown cache kind {cache_config.kind!r} for store {store.id!r}."
    raise ConfigError(msg)
