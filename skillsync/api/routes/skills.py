from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from skillsync.api.deps import get_scraper, get_store
from skillsync.core.models import Skill, Source
from skillsync.core.orchestrator import Scraper
from skillsync.core.store import SkillStore

router = APIRouter(tags=["skills"])


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/skills/{slug}")
async def get_skill(slug: str, store: SkillStore = Depends(get_store)) -> dict[str, Any]:
    skill = await store.get_skill_by_slug(slug)
    if skill is None:
        raise HTTPException(status_code=404, detail="Skill not found")
    return _skill_to_dict(skill)


@router.get("/sources/{owner}/{repo}")
async def get_source(owner: str, repo: str, store: SkillStore = Depends(get_store)) -> dict[str, Any]:
    source = await store.get_source_by_id(f"{owner}/{repo}")
    if source is None:
        raise HTTPException(status_code=404, detail="Source not found")
    return _source_to_dict(source)


@router.get("/stats")
async def get_stats(scraper: Scraper = Depends(get_scraper)) -> dict[str, Any]:
    stats = await scraper.stats()
    return {
        "api_requests": stats.api_requests,
        "cache_hits": stats.cache_hits,
        "cache_misses": stats.cache_misses,
        "skills_indexed": stats.skills_indexed,
        "sources_count": stats.sources_count,
        "last_sync_at": stats.last_sync_at.isoformat() if stats.last_sync_at else None,
    }


def _skill_to_dict(skill: Skill) -> dict[str, Any]:
    return {
        "id": skill.id,
        "slug": skill.slug,
        "title": skill.title,
        "description": skill.description,
        "content": skill.content,
        "source_id": skill.source_id,
        "file_path": skill.file_path,
        "version": skill.version,
        "author": skill.author,
        "license": skill.license,
        "stars": skill.stars,
        "forks": skill.forks,
        "tags": [{"name": tag.name, "slug": tag.slug, "category": tag.category} for tag in skill.tags],
        "indexed_at": skill.indexed_at.isoformat() if skill.indexed_at else None,
    }


def _source_to_dict(source: Source) -> dict[str, Any]:
    return {
        "id": source.id,
        "owner": source.owner,
        "repo": source.repo,
        "description": source.description,
        "url": source.url,
        "stars": source.stars,
        "forks": source.forks,
        "default_branch": source.default_branch,
        "last_commit_sha": source.last_commit_sha,
        "skill_count": source.skill_count,
        "priority": source.priority,
        "is_official": source.is_official,
        "is_curated": source.is_curated,
        "license_type": source.license_type,
        "license_url": source.license_url,
        "last_scraped_at": source.last_scraped_at.isoformat() if source.last_scraped_at else None,
    }
