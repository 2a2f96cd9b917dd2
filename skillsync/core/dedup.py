"""Slug claiming for skills parsed concurrently within one scrape run."""

from __future__ import annotations

import asyncio
import enum
import logging

from skillsync.core.errors import SlugCollisionError
from skillsync.core.models import Skill
from skillsync.core.store import SkillStore

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_SLUG_ATTEMPTS = 100


class DedupDecision(enum.Enum):
    ACCEPTED = "accepted"
    RENAMED = "renamed"
    DUPLICATE = "duplicate"


class SlugDeduplicator:
    """Decides, under one lock, whether a candidate skill may take its slug.

    The claimed table maps slug -> skill id for candidates accepted during
    this run but possibly not yet persisted. One instance per run; tables are
    never shared between runs.
    """

    def __init__(self, store: SkillStore, max_attempts: int = DEFAULT_MAX_SLUG_ATTEMPTS) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self._lock = asyncio.Lock()
        self._claimed: dict[str, str] = {}

    def claimed(self) -> dict[str, str]:
        """Snapshot of the slug -> skill id claims made so far, for inspection."""
        return dict(self._claimed)

    async def claim(self, skill: Skill) -> DedupDecision:
        """Claim a slug for ``skill``, rewriting ``skill.slug`` if it had to be suffixed.

        Returns DUPLICATE, without claiming anything, when a persisted skill
        under a contested slug has the same content fingerprint.
        Raises SlugCollisionError once the suffix passes ``max_attempts``.
        """
        base_slug = skill.slug
        slug = base_slug
        suffix = 1

        async with self._lock:
            while True:
                holder = self._claimed.get(slug)
                if holder is None or holder == skill.id:
                    existing = await self.store.get_skill_by_slug(slug)
                    if existing is None or existing.id == skill.id:
                        self._claimed[slug] = skill.id
                        skill.slug = slug
                        return DedupDecision.ACCEPTED if slug == base_slug else DedupDecision.RENAMED
                    if existing.fingerprint == skill.fingerprint:
                        LOGGER.debug("Duplicate of %s skipped: %s", existing.id, skill.file_path)
                        return DedupDecision.DUPLICATE

                suffix += 1
                if suffix > self.max_attempts:
                    raise SlugCollisionError(base_slug, self.max_attempts)
                slug = f"{base_slug}-{suffix}"
