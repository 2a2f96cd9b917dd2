"""Scrape orchestration: bounded parallel sync of every configured source."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from skillsync.analyzers.skill_parser import SkillParser
from skillsync.analyzers.tags import extract_tags
from skillsync.core.config import Settings
from skillsync.core.dedup import DedupDecision, SlugDeduplicator
from skillsync.core.errors import ScrapeCancelledError, ScraperError, SkillItemError, SourceError
from skillsync.core.models import (
    MAX_OPTIONAL_FILE_SIZE,
    LicenseInfo,
    OptionalDir,
    OptionalFile,
    RepositoryHandle,
    RepositoryMetadata,
    ScraperStats,
    Skill,
    SkillFile,
    Source,
)
from skillsync.core.store import SYNC_META_LAST_FULL_SYNC, SYNC_META_TOTAL_SKILLS, SkillStore
from skillsync.fetchers.client import SearchCapable, SourceClient
from skillsync.fetchers.git_client import GitClient
from skillsync.fetchers.github_api_client import GitHubApiClient
from skillsync.fetchers.repo_metrics import GitHubPageMetrics
from skillsync.fetchers.repository_store import RepositoryStore
from skillsync.fetchers.seeds import SEARCH_QUERIES, SeedRepository, all_seeds, find_seed

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 5
DEFAULT_REPO_CACHE_TTL = 7 * 24 * 60 * 60.0

ProgressCallback = Callable[[int, int, str], None]


@dataclass(slots=True)
class ScrapeOptions:
    force: bool = False
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    on_progress: ProgressCallback | None = None
    cancel_event: asyncio.Event | None = None


@dataclass(slots=True)
class ScrapeOutcome:
    sources_processed: int = 0
    sources_skipped: int = 0
    skills_found: int = 0
    skills_new: int = 0
    skills_updated: int = 0
    errors: list[ScraperError] = field(default_factory=list)
    duration: float = 0.0

    def merge(self, other: ScrapeOutcome) -> None:
        self.sources_processed += other.sources_processed
        self.sources_skipped += other.sources_skipped
        self.skills_found += other.skills_found
        self.skills_new += other.skills_new
        self.skills_updated += other.skills_updated
        self.errors.extend(other.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sources_processed": self.sources_processed,
            "sources_skipped": self.sources_skipped,
            "skills_found": self.skills_found,
            "skills_new": self.skills_new,
            "skills_updated": self.skills_updated,
            "errors": [str(error) for error in self.errors],
            "duration_seconds": round(self.duration, 3),
        }


def _is_set(event: asyncio.Event | None) -> bool:
    return event is not None and event.is_set()


class Scraper:
    """Drives source clients, parsing, slug claiming and batched persistence."""

    def __init__(
        self,
        client: SourceClient,
        store: SkillStore,
        *,
        parser: SkillParser | None = None,
        git_client: GitClient | None = None,
        repo_cache_ttl_seconds: float = DEFAULT_REPO_CACHE_TTL,
        max_slug_attempts: int = 100,
    ) -> None:
        self.client = client
        self.store = store
        self.parser = parser or SkillParser()
        if git_client is None and isinstance(client, GitClient):
            git_client = client
        self.git_client = git_client
        self.repo_cache_ttl_seconds = repo_cache_ttl_seconds
        self.max_slug_attempts = max_slug_attempts

    @classmethod
    def from_settings(cls, settings: Settings, store: SkillStore | None = None) -> Scraper:
        """Build a scraper with the backend selected by ``use_git_clone``."""
        if store is None:
            from skillsync.core.db import SupabaseSkillStore

            store = SupabaseSkillStore.from_settings(settings)

        client: SourceClient
        if settings.use_git_clone:
            settings.ensure_directories()
            repositories = RepositoryStore(
                settings.repositories_dir,
                settings.github_token,
                repo_timeout=settings.repo_timeout_seconds,
                recent_update_ttl=settings.recent_update_ttl_seconds,
                metrics=GitHubPageMetrics(),
            )
            client = GitClient(repositories, cache_ttl=settings.cache_ttl_seconds)
        else:
            client = GitHubApiClient(
                settings.github_token,
                settings.rate_limit,
                cache_ttl=settings.cache_ttl_seconds,
            )
        return cls(
            client,
            store,
            repo_cache_ttl_seconds=settings.repo_cache_ttl_seconds,
            max_slug_attempts=settings.max_slug_attempts,
        )

    async def aclose(self) -> None:
        if isinstance(self.client, GitHubApiClient):
            await self.client.aclose()

    def new_deduplicator(self) -> SlugDeduplicator:
        return SlugDeduplicator(self.store, self.max_slug_attempts)

    async def scrape_all(
        self,
        sources: Sequence[SeedRepository] | None = None,
        options: ScrapeOptions | None = None,
    ) -> ScrapeOutcome:
        """Scrape every source with at most ``max_concurrency`` in flight.

        Per-file and per-source failures are collected in the outcome. When
        ``cancel_event`` fires, no new source starts and ScrapeCancelledError
        is raised carrying the partial outcome. The client cache is cleared
        first so a reused scraper sees upstream commits made since its last run.
        """
        options = options or ScrapeOptions()
        if options.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        self.client.clear_cache()
        seeds = list(sources) if sources is not None else all_seeds()
        started = time.monotonic()
        outcome = ScrapeOutcome()
        if not seeds:
            return outcome

        total = len(seeds)
        cancel = options.cancel_event
        semaphore = asyncio.Semaphore(options.max_concurrency)
        deduplicator = self.new_deduplicator()
        completed = 0

        def report(name: str) -> None:
            nonlocal completed
            completed += 1
            if options.on_progress is not None:
                options.on_progress(completed, total, name)

        if options.on_progress is not None:
            options.on_progress(0, total, "")

        async def run_one(seed: SeedRepository) -> ScrapeOutcome | ScraperError | None:
            if _is_set(cancel):
                return None
            async with semaphore:
                if _is_set(cancel):
                    return None
                try:
                    result: ScrapeOutcome | ScraperError = await self.scrape_repository(
                        seed.owner,
                        seed.repo,
                        force=options.force,
                        seed=seed,
                        deduplicator=deduplicator,
                        cancel_event=cancel,
                    )
                except ScrapeCancelledError as exc:
                    result = exc.outcome
                except Exception as exc:  # noqa: BLE001
                    LOGGER.warning("Scrape failed for %s: %s", seed.full_name, exc)
                    result = SourceError(seed.full_name, exc)
            report(seed.full_name)
            return result

        tasks = [asyncio.create_task(run_one(seed)) for seed in seeds]
        try:
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                if isinstance(result, ScrapeOutcome):
                    outcome.merge(result)
                elif isinstance(result, ScraperError):
                    outcome.errors.append(result)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        outcome.duration = time.monotonic() - started
        if _is_set(cancel):
            raise ScrapeCancelledError(outcome)
        return outcome

    async def scrape_repository(
        self,
        owner: str,
        repo: str,
        *,
        force: bool = False,
        seed: SeedRepository | None = None,
        deduplicator: SlugDeduplicator | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ScrapeOutcome:
        """Sync one source; skips listing and parsing when its commit is unchanged."""
        started = time.monotonic()
        outcome = ScrapeOutcome()
        seed = seed or find_seed(owner, repo)
        deduplicator = deduplicator or self.new_deduplicator()
        source_id = f"{owner}/{repo}"

        info = await self.client.get_repository_info(owner, repo)
        license_info = await self._fetch_repository_license(owner, repo, info.default_branch)
        source = _build_source(owner, repo, info, license_info, seed)
        existing_source = await self.store.get_source_by_id(source_id)
        now = datetime.now(timezone.utc)

        if (
            not force
            and existing_source is not None
            and info.commit_sha
            and existing_source.last_commit_sha == info.commit_sha
        ):
            source.skill_count = existing_source.skill_count
            source.last_scraped_at = now
            await self.store.upsert_source(source)
            outcome.sources_skipped = 1
            outcome.duration = time.monotonic() - started
            LOGGER.info("Unchanged since last sync, skipped %s", source_id)
            return outcome

        # The new commit is recorded only once the batch below is persisted.
        source.last_commit_sha = existing_source.last_commit_sha if existing_source else ""
        source.skill_count = existing_source.skill_count if existing_source else 0
        source.last_scraped_at = existing_source.last_scraped_at if existing_source else None
        await self.store.upsert_source(source)
        outcome.sources_processed = 1

        skill_files = await self.client.list_skill_files(owner, repo, seed.skill_path if seed else "")
        outcome.skills_found = len(skill_files)

        batch: list[Skill] = []
        new_ids: set[str] = set()
        for skill_file in skill_files:
            if _is_set(cancel_event):
                outcome.duration = time.monotonic() - started
                raise ScrapeCancelledError(outcome)
            try:
                prepared = await self._prepare_skill(skill_file, info, deduplicator, now)
            except SkillItemError as exc:
                LOGGER.warning("Skipping %s in %s: %s", skill_file.path, source_id, exc)
                outcome.errors.append(exc)
                continue
            if prepared is None:
                continue
            skill, is_new = prepared
            batch.append(skill)
            if is_new:
                new_ids.add(skill.id)

        persisted = True
        if batch:
            try:
                await self.store.upsert_skills_with_tags(batch)
            except Exception as exc:  # noqa: BLE001
                persisted = False
                LOGGER.warning("Persisting %d skills from %s failed: %s", len(batch), source_id, exc)
                outcome.errors.append(SourceError(source_id, exc))
            else:
                outcome.skills_new += len(new_ids)
                outcome.skills_updated += len(batch) - len(new_ids)

        try:
            source.skill_count = await self.store.update_source_skill_count(source_id)
        except Exception as exc:  # noqa: BLE001
            outcome.errors.append(SourceError(source_id, exc))

        if persisted:
            source.last_commit_sha = info.commit_sha
            source.last_scraped_at = now
        try:
            await self.store.upsert_source(source)
        except Exception as exc:  # noqa: BLE001
            outcome.errors.append(SourceError(source_id, exc))

        outcome.duration = time.monotonic() - started
        LOGGER.info(
            "Scraped %s: %d found, %d new, %d updated",
            source_id,
            outcome.skills_found,
            outcome.skills_new,
            outcome.skills_updated,
        )
        return outcome

    async def _prepare_skill(
        self,
        skill_file: SkillFile,
        info: RepositoryMetadata,
        deduplicator: SlugDeduplicator,
        now: datetime,
    ) -> tuple[Skill, bool] | None:
        """Fetch, parse and claim one file; None for a true duplicate."""
        op = "lookup"
        try:
            existing = await self.store.get_skill_by_id(skill_file.id)
            op = "fetch"
            content = await self.client.get_file_content(skill_file.owner, skill_file.repo, skill_file.path)
            op = "parse"
            skill = self.parser.parse(content, skill_file)
            op = "dedupe"
            decision = await deduplicator.claim(skill)
        except Exception as exc:  # noqa: BLE001
            raise SkillItemError(skill_file.path, op, exc) from exc

        if decision is DedupDecision.DUPLICATE:
            return None
        skill.stars = info.stars
        skill.forks = info.forks
        if not skill.author:
            skill.author = skill_file.owner
        skill.tags = extract_tags(content)
        skill.indexed_at = now
        return skill, existing is None

    async def _fetch_repository_license(self, owner: str, repo: str, ref: str) -> LicenseInfo:
        """Best effort; any failure means no license information."""
        try:
            info = await self.client.get_license_file(owner, repo, ref)
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("License lookup failed for %s/%s: %s", owner, repo, exc)
            return LicenseInfo()
        if info.file_name and not info.type:
            info.type = "Unknown"
        return info

    async def get_directory_contents(
        self, owner: str, repo: str, dir_path: str, name: str
    ) -> OptionalDir | None:
        """Collect an optional skill directory (scripts, references, assets).

        Only the clone backend can walk directories; returns None without it
        or when the directory holds no readable files.
        """
        if self.git_client is None:
            return None
        optional = OptionalDir(name=name)
        await self._collect_directory(owner, repo, dir_path.strip("/"), "", optional)
        return optional if optional.files else None

    async def _collect_directory(
        self, owner: str, repo: str, dir_path: str, rel_path: str, optional: OptionalDir
    ) -> None:
        assert self.git_client is not None
        entries = await self.git_client.list_directory_contents(owner, repo, dir_path)
        for entry in entries:
            entry_path = f"{dir_path}/{entry.name}" if dir_path else entry.name
            entry_rel = f"{rel_path}/{entry.name}" if rel_path else entry.name
            if entry.is_dir:
                try:
                    await self._collect_directory(owner, repo, entry_path, entry_rel, optional)
                except ScraperError as exc:
                    LOGGER.debug("Skipping directory %s: %s", entry_path, exc)
                continue
            if entry.size > MAX_OPTIONAL_FILE_SIZE:
                continue
            try:
                content = await self.git_client.read_file_bytes(owner, repo, entry_path)
            except ScraperError as exc:
                LOGGER.debug("Skipping unreadable file %s: %s", entry_path, exc)
                continue
            optional.files.append(
                OptionalFile(name=entry.name, path=entry_rel, content=content, size=len(content))
            )

    async def discover_sources(self, queries: Sequence[str] = SEARCH_QUERIES) -> list[RepositoryHandle]:
        """Repositories found by code search; empty when the backend cannot search."""
        if not isinstance(self.client, SearchCapable):
            return []
        found: list[RepositoryHandle] = []
        seen: set[RepositoryHandle] = set()
        for query in queries:
            try:
                files = await self.client.search_skill_files(query)
            except ScraperError as exc:
                LOGGER.warning("Search %r failed: %s", query, exc)
                continue
            for skill_file in files:
                handle = RepositoryHandle(owner=skill_file.owner, repo=skill_file.repo)
                if handle.owner and handle.repo and handle not in seen:
                    seen.add(handle)
                    found.append(handle)
        return found

    async def sync(self, options: ScrapeOptions | None = None) -> ScrapeOutcome:
        """Scrape all seeds, then record sync metadata."""
        outcome = await self.scrape_all(all_seeds(), options)
        try:
            await self.store.set_sync_meta(
                SYNC_META_LAST_FULL_SYNC, datetime.now(timezone.utc).replace(microsecond=0).isoformat()
            )
            stats = await self.store.get_stats()
            await self.store.set_sync_meta(SYNC_META_TOTAL_SKILLS, str(stats.total_skills))
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Recording sync metadata failed: %s", exc)
            outcome.errors.append(ScraperError(f"sync metadata: {exc}"))
        return outcome

    async def cleanup_old_repositories(self) -> list[RepositoryHandle]:
        if self.git_client is None:
            return []
        return await self.git_client.cleanup(self.repo_cache_ttl_seconds)

    async def stats(self) -> ScraperStats:
        client_stats = self.client.stats()
        stats = ScraperStats(
            api_requests=client_stats.requests,
            cache_hits=client_stats.cache_hits,
            cache_misses=client_stats.cache_misses,
        )
        try:
            store_stats = await self.store.get_stats()
            stats.skills_indexed = store_stats.total_skills
            stats.sources_count = store_stats.total_sources
            last_sync = await self.store.get_sync_meta(SYNC_META_LAST_FULL_SYNC)
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Store statistics unavailable: %s", exc)
            return stats
        if last_sync:
            try:
                stats.last_sync_at = datetime.fromisoformat(last_sync)
            except ValueError:
                LOGGER.debug("Ignoring malformed last sync time %r", last_sync)
        return stats


def _build_source(
    owner: str,
    repo: str,
    info: RepositoryMetadata,
    license_info: LicenseInfo,
    seed: SeedRepository | None,
) -> Source:
    source_id = f"{owner}/{repo}"
    return Source(
        id=source_id,
        owner=owner,
        repo=repo,
        full_name=info.full_name or source_id,
        description=info.description,
        url=f"https://github.com/{owner}/{repo}",
        clone_url=info.clone_url,
        stars=info.stars,
        forks=info.forks,
        watchers=info.watchers,
        default_branch=info.default_branch or "main",
        last_commit_sha=info.commit_sha,
        priority=seed.priority if seed else 5,
        is_official=bool(seed and seed.type == "official"),
        is_curated=bool(seed and seed.type == "curated"),
        license_type=license_info.type,
        license_url=license_info.url,
        license_file=license_info.file_name,
    )
