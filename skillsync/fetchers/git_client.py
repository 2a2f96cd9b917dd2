"""Source client that answers every query from a local shallow clone."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from skillsync.core.cache import DEFAULT_CACHE_TTL, TTLCache
from skillsync.core.hashing import generate_skill_id
from skillsync.core.models import (
    DirEntry,
    LicenseInfo,
    RepositoryHandle,
    RepositoryMetadata,
    SkillFile,
)
from skillsync.fetchers.client import CachingClient
from skillsync.fetchers.license import detect_license_type, license_urls
from skillsync.fetchers.repository_store import RepositoryStore

LOGGER = logging.getLogger(__name__)


class GitClient(CachingClient):
    """Clone-backed ``SourceClient``; results are cached under ``git:`` keys."""

    def __init__(
        self,
        store: RepositoryStore,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        cache: TTLCache | None = None,
    ) -> None:
        super().__init__(cache_ttl=cache_ttl, cache=cache)
        self.store = store

    async def _local_path(self, owner: str, repo: str) -> Path:
        self._count_request()
        return await self.store.clone_or_update(RepositoryHandle(owner=owner, repo=repo))

    async def get_repository_info(self, owner: str, repo: str) -> RepositoryMetadata:
        async def load() -> RepositoryMetadata:
            local_path = await self._local_path(owner, repo)
            return await self.store.get_repository_info(local_path)

        return await self._cached(f"git:repo:{owner}/{repo}", load)

    async def list_skill_files(self, owner: str, repo: str, path: str = "") -> list[SkillFile]:
        async def load() -> list[SkillFile]:
            local_path = await self._local_path(owner, repo)
            paths = await asyncio.to_thread(self.store.list_skill_files, local_path, path)
            commit_sha = await asyncio.to_thread(self.store.get_commit_sha, local_path)
            repo_name = f"{owner}/{repo}"
            return [
                SkillFile(
                    id=generate_skill_id(owner, repo, file_path),
                    path=file_path,
                    repo_name=repo_name,
                    owner=owner,
                    repo=repo,
                    url=f"https://github.com/{repo_name}/blob/{commit_sha}/{file_path}",
                    sha=commit_sha,
                )
                for file_path in paths
            ]

        return await self._cached(f"git:tree:{owner}/{repo}:{path}", load)

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str = "") -> str:
        # The working copy only ever holds the fetched head, whatever ``ref`` says.
        async def load() -> str:
            local_path = await self._local_path(owner, repo)
            return await asyncio.to_thread(self.store.read_file, local_path, path)

        return await self._cached(f"git:content:{owner}/{repo}:{path}@{ref or 'HEAD'}", load)

    async def get_license_file(self, owner: str, repo: str, ref: str = "") -> LicenseInfo:
        async def load() -> LicenseInfo:
            local_path = await self._local_path(owner, repo)
            file_name, content = await asyncio.to_thread(self.store.get_license_file, local_path)
            if not file_name:
                return LicenseInfo()
            commit_sha = await asyncio.to_thread(self.store.get_commit_sha, local_path)
            url, raw_url = license_urls(owner, repo, commit_sha, file_name)
            return LicenseInfo(
                type=detect_license_type(content),
                file_name=file_name,
                url=url,
                raw_url=raw_url,
            )

        return await self._cached(f"git:license:{owner}/{repo}@{ref or 'HEAD'}", load)

    async def list_directory_contents(self, owner: str, repo: str, dir_path: str) -> list[DirEntry]:
        async def load() -> list[DirEntry]:
            local_path = await self._local_path(owner, repo)
            return await asyncio.to_thread(self.store.list_directory, local_path, dir_path)

        return await self._cached(f"git:dir:{owner}/{repo}:{dir_path}", load)

    async def read_file_bytes(self, owner: str, repo: str, path: str) -> bytes:
        async def load() -> bytes:
            local_path = await self._local_path(owner, repo)
            return await asyncio.to_thread(self.store.read_file_bytes, local_path, path)

        return await self._cached(f"git:bytes:{owner}/{repo}:{path}", load)

    async def cleanup(self, max_age_seconds: float) -> list[RepositoryHandle]:
        removed = await self.store.cleanup_old_repos(max_age_seconds)
        if removed:
            LOGGER.info("Cleaned up %d stale clones", len(removed))
        return removed
