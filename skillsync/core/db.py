"""Supabase-backed SkillStore."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from datetime import datetime, timezone
from threading import Lock
from typing import Any

from dotenv import load_dotenv
from supabase import Client, create_client

from skillsync.core.config import Settings
from skillsync.core.models import Skill, SkillStats, Source, Tag

LOGGER = logging.getLogger(__name__)

SOURCE_COLUMNS = (
    "id,owner,repo,full_name,description,url,clone_url,stars,forks,watchers,"
    "default_branch,last_commit_sha,skill_count,priority,is_curated,is_official,"
    "license_type,license_url,license_file,last_scraped_at"
)
SKILL_COLUMNS = (
    "id,slug,title,description,content,fingerprint,source_id,file_path,version,"
    "author,license,stars,forks,indexed_at"
)

_client: Client | None = None
_client_lock = Lock()


def get_supabase_client(url: str = "", key: str = "") -> Client:
    """Return a singleton Supabase client.

    Explicit credentials win; otherwise SUPABASE_URL and SUPABASE_KEY are read
    from the environment.
    """
    global _client
    if _client is not None:
        return _client

    with _client_lock:
        if _client is None:
            load_dotenv()
            url = url or os.getenv("SUPABASE_URL", "")
            key = key or os.getenv("SUPABASE_KEY", "")
            if not url or not key:
                raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set")
            _client = create_client(url, key)
    return _client


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def source_to_row(source: Source) -> dict[str, Any]:
    return {
        "id": source.id,
        "owner": source.owner,
        "repo": source.repo,
        "full_name": source.full_name,
        "description": source.description,
        "url": source.url,
        "clone_url": source.clone_url,
        "stars": source.stars,
        "forks": source.forks,
        "watchers": source.watchers,
        "default_branch": source.default_branch,
        "last_commit_sha": source.last_commit_sha,
        "skill_count": source.skill_count,
        "priority": source.priority,
        "is_curated": source.is_curated,
        "is_official": source.is_official,
        "license_type": source.license_type,
        "license_url": source.license_url,
        "license_file": source.license_file,
        "last_scraped_at": _to_iso(source.last_scraped_at),
        "updated_at": _now_iso(),
    }


def source_from_row(row: dict[str, Any]) -> Source:
    return Source(
        id=row["id"],
        owner=row.get("owner") or "",
        repo=row.get("repo") or "",
        full_name=row.get("full_name") or row["id"],
        description=row.get("description") or "",
        url=row.get("url") or "",
        clone_url=row.get("clone_url") or "",
        stars=row.get("stars") or 0,
        forks=row.get("forks") or 0,
        watchers=row.get("watchers") or 0,
        default_branch=row.get("default_branch") or "main",
        last_commit_sha=row.get("last_commit_sha") or "",
        skill_count=row.get("skill_count") or 0,
        priority=row.get("priority") or 5,
        is_curated=bool(row.get("is_curated")),
        is_official=bool(row.get("is_official")),
        license_type=row.get("license_type") or "",
        license_url=row.get("license_url") or "",
        license_file=row.get("license_file") or "",
        last_scraped_at=_from_iso(row.get("last_scraped_at")),
    )


def skill_to_payload(skill: Skill) -> dict[str, Any]:
    """JSON object consumed by the ``upsert_skills_with_tags`` database function."""
    return {
        "id": skill.id,
        "slug": skill.slug,
        "title": skill.title,
        "description": skill.description,
        "content": skill.content,
        "fingerprint": skill.fingerprint,
        "source_id": skill.source_id,
        "file_path": skill.file_path,
        "version": skill.version,
        "author": skill.author,
        "license": skill.license,
        "stars": skill.stars,
        "forks": skill.forks,
        "indexed_at": _to_iso(skill.indexed_at) or _now_iso(),
        "tags": [
            {
                "id": tag.id,
                "name": tag.name,
                "slug": tag.slug,
                "category": tag.category,
                "color": tag.color,
            }
            for tag in skill.tags
        ],
    }


def skill_from_row(row: dict[str, Any]) -> Skill:
    tags = [
        Tag(
            id=item.get("id") or "",
            name=item.get("name") or "",
            slug=item.get("slug") or "",
            category=item.get("category") or "",
            color=item.get("color") or "",
            count=item.get("count") or 0,
        )
        for item in row.get("tags") or []
        if isinstance(item, dict)
    ]
    return Skill(
        id=row["id"],
        slug=row.get("slug") or "",
        title=row.get("title") or "",
        description=row.get("description") or "",
        content=row.get("content") or "",
        fingerprint=row.get("fingerprint") or "",
        source_id=row.get("source_id"),
        file_path=row.get("file_path") or "",
        version=row.get("version") or "",
        author=row.get("author") or "",
        license=row.get("license") or "",
        stars=row.get("stars") or 0,
        forks=row.get("forks") or 0,
        tags=tags,
        indexed_at=_from_iso(row.get("indexed_at")),
    )


class SupabaseSkillStore:
    """SkillStore over supabase-py; each blocking call runs in a worker thread."""

    def __init__(self, client: Client | None = None, *, url: str = "", key: str = "") -> None:
        self._client = client
        self._url = url
        self._key = key

    @classmethod
    def from_settings(cls, settings: Settings) -> SupabaseSkillStore:
        return cls(url=settings.supabase_url, key=settings.supabase_key)

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client(self._url, self._key)
        return self._client

    async def _first_row(self, table: str, columns: str, column: str, value: str) -> dict[str, Any] | None:
        def _query() -> list[dict[str, Any]]:
            response = self.client.table(table).select(columns).eq(column, value).limit(1).execute()
            return response.data or []

        rows = await asyncio.to_thread(_query)
        return rows[0] if rows else None

    async def get_source_by_id(self, source_id: str) -> Source | None:
        row = await self._first_row("sources", SOURCE_COLUMNS, "id", source_id)
        return source_from_row(row) if row else None

    async def upsert_source(self, source: Source) -> None:
        payload = source_to_row(source)

        def _query() -> None:
            self.client.table("sources").upsert(payload, on_conflict="id").execute()

        await asyncio.to_thread(_query)

    async def get_skill_by_slug(self, slug: str) -> Skill | None:
        row = await self._first_row("skills", SKILL_COLUMNS, "slug", slug)
        return skill_from_row(row) if row else None

    async def get_skill_by_id(self, skill_id: str) -> Skill | None:
        row = await self._first_row("skills", f"{SKILL_COLUMNS},tags(*)", "id", skill_id)
        return skill_from_row(row) if row else None

    async def upsert_skills_with_tags(self, skills: Sequence[Skill]) -> None:
        if not skills:
            return
        payload = [skill_to_payload(skill) for skill in skills]

        def _query() -> None:
            self.client.rpc("upsert_skills_with_tags", {"payload": payload}).execute()

        await asyncio.to_thread(_query)
        LOGGER.debug("Persisted %d skills", len(payload))

    async def update_source_skill_count(self, source_id: str) -> int:
        def _query() -> int:
            counted = (
                self.client.table("skills")
                .select("id", count="exact")
                .eq("source_id", source_id)
                .limit(1)
                .execute()
            )
            count = counted.count or 0
            (
                self.client.table("sources")
                .update({"skill_count": count, "updated_at": _now_iso()})
                .eq("id", source_id)
                .execute()
            )
            return count

        return await asyncio.to_thread(_query)

    async def set_sync_meta(self, key: str, value: str) -> None:
        def _query() -> None:
            (
                self.client.table("sync_meta")
                .upsert({"key": key, "value": value, "updated_at": _now_iso()}, on_conflict="key")
                .execute()
            )

        await asyncio.to_thread(_query)

    async def get_sync_meta(self, key: str) -> str:
        row = await self._first_row("sync_meta", "key,value", "key", key)
        return str(row.get("value") or "") if row else ""

    async def get_stats(self) -> SkillStats:
        def _count(table: str, column: str) -> int:
            response = self.client.table(table).select(column, count="exact").limit(1).execute()
            return response.count or 0

        def _query() -> SkillStats:
            return SkillStats(
                total_skills=_count("skills", "id"),
                total_tags=_count("tags", "id"),
                total_sources=_count("sources", "id"),
            )

        return await asyncio.to_thread(_query)
