"""Shared FastAPI dependencies; tests override them via ``app.dependency_overrides``."""

from __future__ import annotations

from functools import lru_cache

from skillsync.core.config import Settings, load_settings
from skillsync.core.db import SupabaseSkillStore
from skillsync.core.orchestrator import Scraper
from skillsync.core.store import SkillStore


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


@lru_cache(maxsize=1)
def get_store() -> SkillStore:
    return SupabaseSkillStore.from_settings(get_settings())


@lru_cache(maxsize=1)
def get_scraper() -> Scraper:
    return Scraper.from_settings(get_settings(), store=get_store())
