"""File-backed cache of upstream responses keyed by target URL digest."""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Mapping, Optional

import structlog

LOGGER = structlog.get_logger("pathproxy.cache")

CONTENT_SUFFIX = ".bin"
METADATA_SUFFIX = ".json"


def sanitize_key(storage_dir: Path, cache_key: str) -> Path:
    root = storage_dir.resolve()
    candidate = root.joinpath(*cache_key.split("/"))
    resolved = candidate.resolve(strict=False)
    if resolved == root or not resolved.is_relative_to(root):
        raise ValueError(f"Invalid cache key: {cache_key}")
    return resolved


def url_digest(target_url: str) -> str:
    return hashlib.sha256(target_url.encode("utf-8")).hexdigest()


class CacheStore:
    """Minimal namespaced key-value interface the response cache is built on."""

    def get(self, namespace: str, key: str) -> Optional[bytes]:  # pragma: no cover - interface
        raise NotImplementedError

    def put(self, namespace: str, key: str, data: bytes) -> None:
        raise NotImplementedError

    def delete(self, namespace: str, key: str) -> bool:
        raise NotImplementedError

    def keys(self, namespace: str) -> list[str]:
        raise NotImplementedError


class LocalCacheStore(CacheStore):
    """One directory per namespace, one file per key."""

    def __init__(self, storage_path: Path) -> None:
        self._root = Path(storage_path).expanduser()

    def _path(self, namespace: str, key: str) -> Path:
        return sanitize_key(self._root, f"{namespace}/{key}")

    def get(self, namespace: str, key: str) -> Optional[bytes]:
        path = self._path(namespace, key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def put(self, namespace: str, key: str, data: bytes) -> None:
        path = self._path(namespace, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, namespace: str, key: str) -> bool:
        path = self._path(namespace, key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def keys(self, namespace: str) -> list[str]:
        directory = sanitize_key(self._root, namespace)
        if not directory.is_dir():
            return []
        return sorted(item.name for item in directory.iterdir() if item.is_file() and not item.name.startswith("."))


class MemoryCacheStore(CacheStore):
    def __init__(self) -> None:
        self._data: dict[str, dict[str, bytes]] = {}
        self._lock = threading.Lock()

    def get(self, namespace: str, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(namespace, {}).get(key)

    def put(self, namespace: str, key: str, data: bytes) -> None:
        with self._lock:
            self._data.setdefault(namespace, {})[key] = bytes(data)

    def delete(self, namespace: str, key: str) -> bool:
        with self._lock:
            return self._data.get(namespace, {}).pop(key, None) is not None

    def keys(self, namespace: str) -> list[str]:
        with self._lock:
            return sorted(self._data.get(namespace, {}))


@dataclass(frozen=True)
class CacheEntry:
    content: bytes
    content_type: str
    stored_at_ms: int
    ttl_seconds: int
    looked_up_at_ms: int

    @property
    def age_seconds(self) -> int:
        return max(0, self.looked_up_at_ms - self.stored_at_ms) // 1000

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp((self.stored_at_ms + self.ttl_seconds * 1000) / 1000, UTC)

    @property
    def expires_in_seconds(self) -> int:
        remaining_ms = self.stored_at_ms + self.ttl_seconds * 1000 - self.looked_up_at_ms
        return max(0, remaining_ms // 1000)


def _parse_metadata(raw: Optional[bytes]) -> Optional[tuple[str, int]]:
    if raw is None:
        return None
    try:
        payload = json.loads(raw)
        return str(payload["contentType"]), int(payload["timestamp"])
    except (ValueError, TypeError, KeyError):
        return None


class ResponseCache:
    """Per-route cache of fetched bytes.

    Each entry is a content blob plus a small JSON metadata blob holding the
    content type and the store timestamp in epoch milliseconds. An entry is
    served only while ``now - timestamp < ttl``; anything missing, stale or
    unreadable is treated as absent. Blocking I/O runs in worker threads.
    """

    def __init__(
        self,
        store: CacheStore,
        ttls: Mapping[str, int],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttls = dict(ttls)
        self._clock = clock

    def ttl_for(self, route_name: str) -> int:
        return self._ttls.get(route_name, 0)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def lookup(self, route_name: str, target_url: str) -> Optional[CacheEntry]:
        ttl = self.ttl_for(route_name)
        if ttl <= 0:
            return None
        return await asyncio.to_thread(self._lookup, route_name, url_digest(target_url), ttl)

    def _lookup(self, route_name: str, digest: str, ttl: int) -> Optional[CacheEntry]:
        try:
            metadata = _parse_metadata(self._store.get(route_name, digest + METADATA_SUFFIX))
            if metadata is None:
                return None
            content_type, stored_at_ms = metadata
            now_ms = self._now_ms()
            if now_ms - stored_at_ms >= ttl * 1000:
                return None
            content = self._store.get(route_name, digest + CONTENT_SUFFIX)
        except OSError as exc:
            LOGGER.warning("cache_read_failed", route=route_name, digest=digest, error=str(exc))
            return None
        if content is None:
            return None
        return CacheEntry(
            content=content,
            content_type=content_type,
            stored_at_ms=stored_at_ms,
            ttl_seconds=ttl,
            looked_up_at_ms=now_ms,
        )

    async def store(self, route_name: str, target_url: str, content: bytes, content_type: str) -> None:
        await asyncio.to_thread(self._store_entry, route_name, url_digest(target_url), content, content_type)

    def _store_entry(self, route_name: str, digest: str, content: bytes, content_type: str) -> None:
        metadata = json.dumps({"contentType": content_type, "timestamp": self._now_ms()}).encode("utf-8")
        self._store.put(route_name, digest + METADATA_SUFFIX, metadata)
        self._store.put(route_name, digest + CONTENT_SUFFIX, content)
        LOGGER.debug("cache_stored", route=route_name, digest=digest, bytes=len(content))

    async def invalidate_route(self, route_name: str) -> int:
        return await asyncio.to_thread(self._invalidate, route_name)

    def _invalidate(self, route_name: str) -> int:
        deleted = 0
        for digest in self._digests(route_name):
            self._delete_entry(route_name, digest)
            deleted += 1
        LOGGER.info("cache_invalidated", route=route_name, deleted=deleted)
        return deleted

    async def sweep_expired(self) -> int:
        total = 0
        for route_name, ttl in self._ttls.items():
            if ttl <= 0:
                continue
            try:
                total += await asyncio.to_thread(self._sweep_route, route_name, ttl)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("cache_sweep_route_failed", route=route_name, error=str(exc))
        LOGGER.info("cache_sweep_completed", deleted=total)
        return total

    def _sweep_route(self, route_name: str, ttl: int) -> int:
        deleted = 0
        now_ms = self._now_ms()
        for digest in self._digests(route_name):
            metadata = _parse_metadata(self._store.get(route_name, digest + METADATA_SUFFIX))
            if metadata is not None and now_ms - metadata[1] < ttl * 1000:
                continue
            self._delete_entry(route_name, digest)
            deleted += 1
        if deleted:
            LOGGER.info("cache_route_swept", route=route_name, deleted=deleted)
        return deleted

    def _digests(self, route_name: str) -> list[str]:
        digests: dict[str, None] = {}
        for key in self._store.keys(route_name):
            for suffix in (METADATA_SUFFIX, CONTENT_SUFFIX):
                if key.endswith(suffix):
                    digests.setdefault(key[: -len(suffix)], None)
        return list(digests)

    def _delete_entry(self, route_name: str, digest: str) -> None:
        self._store.delete(route_name, digest + CONTENT_SUFFIX)
        self._store.delete(route_name, digest + METADATA_SUFFIX)
