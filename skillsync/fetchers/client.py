"""Uniform contract for repository queries, shared by both backends."""

from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

from skillsync.core.cache import DEFAULT_CACHE_TTL, TTLCache
from skillsync.core.models import ClientStats, LicenseInfo, RepositoryMetadata, SkillFile

T = TypeVar("T")


class SourceClient(Protocol):
    async def get_repository_info(self, owner: str, repo: str) -> RepositoryMetadata: ...

    async def list_skill_files(self, owner: str, repo: str, path: str = "") -> list[SkillFile]: ...

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str = "") -> str: ...

    async def get_license_file(self, owner: str, repo: str, ref: str = "") -> LicenseInfo: ...

    def stats(self) -> ClientStats: ...

    def reset_stats(self) -> None: ...

    def clear_cache(self) -> None: ...


@runtime_checkable
class SearchCapable(Protocol):
    """Optional capability: only remote-API backends can search."""

    async def search_skill_files(self, query: str) -> list[SkillFile]: ...


class CachingClient:
    """Request/cache counters plus a TTL cache, for backends to build on."""

    def __init__(self, cache_ttl: float = DEFAULT_CACHE_TTL, cache: TTLCache | None = None) -> None:
        self.cache = cache if cache is not None else TTLCache(cache_ttl)
        self._stats_lock = threading.Lock()
        self._requests = 0
        self._cache_hits = 0
        self._cache_misses = 0

    def _count_request(self) -> None:
        with self._stats_lock:
            self._requests += 1

    def _cache_get(self, key: str) -> tuple[Any, bool]:
        value, found = self.cache.get(key)
        with self._stats_lock:
            if found:
                self._cache_hits += 1
            else:
                self._cache_misses += 1
        return value, found

    async def _cached(self, key: str, load: Callable[[], Awaitable[T]]) -> T:
        value, found = self._cache_get(key)
        if found:
            return value
        value = await load()
        self.cache.set(key, value)
        return value

    def stats(self) -> ClientStats:
        with self._stats_lock:
            return ClientStats(
                requests=self._requests,
                cache_hits=self._cache_hits,
                cache_misses=self._cache_misses,
            )

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._requests = 0
            self._cache_hits = 0
            self._cache_misses = 0

    def clear_cache(self) -> None:
        self.cache.clear()
