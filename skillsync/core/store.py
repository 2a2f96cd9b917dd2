"""Persistence contract consumed by the scraper."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from skillsync.core.models import Skill, SkillStats, Source

SYNC_META_LAST_FULL_SYNC = "last_full_sync"
SYNC_META_TOTAL_SKILLS = "total_skills"


class SkillStore(Protocol):
    """Skill, tag and source storage.

    ``upsert_skills_with_tags`` persists one source's batch (each skill with
    its ``tags``) atomically: other readers see all of it or none of it.
    """

    async def get_source_by_id(self, source_id: str) -> Source | None: ...

    async def upsert_source(self, source: Source) -> None: ...

    async def get_skill_by_slug(self, slug: str) -> Skill | None: ...

    async def get_skill_by_id(self, skill_id: str) -> Skill | None: ...

    async def upsert_skills_with_tags(self, skills: Sequence[Skill]) -> None: ...

    async def update_source_skill_count(self, source_id: str) -> int:
        """Recount the persisted skills of a source, store and return the count."""
        ...

    async def set_sync_meta(self, key: str, value: str) -> None: ...

    async def get_sync_meta(self, key: str) -> str: ...

    async def get_stats(self) -> SkillStats: ...
