from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from skillsync.api.deps import get_scraper
from skillsync.core.orchestrator import DEFAULT_MAX_CONCURRENCY, ScrapeOptions, Scraper
from skillsync.fetchers.seeds import SeedRepository, all_seeds, find_seed, parse_repository_url

router = APIRouter(tags=["sync"])


class SyncRequest(BaseModel):
    force: bool = False
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, ge=1, le=32)
    sources: list[str] = Field(default_factory=list)


@router.post("/sync")
async def run_sync(request: SyncRequest, scraper: Scraper = Depends(get_scraper)) -> dict[str, Any]:
    seeds: list[SeedRepository] = []
    for value in request.sources:
        try:
            source = parse_repository_url(value)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        seeds.append(find_seed(source.owner, source.repo) or SeedRepository(source.owner, source.repo))

    outcome = await scraper.scrape_all(
        seeds or all_seeds(),
        ScrapeOptions(force=request.force, max_concurrency=request.max_concurrency),
    )
    return outcome.to_dict()
