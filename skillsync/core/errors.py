"""Exception hierarchy for the scraping pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from skillsync.core.orchestrator import ScrapeOutcome


class ScraperError(Exception):
    """Raised for recoverable scraper errors."""


class NotFoundError(ScraperError):
    """Remote resource does not exist."""


class RepoError(ScraperError):
    """A git operation against one repository failed."""

    def __init__(self, owner: str, repo: str, op: str, cause: BaseException) -> None:
        super().__init__(f"{owner}/{repo}: {op} failed: {cause}")
        self.owner = owner
        self.repo = repo
        self.op = op
        self.cause = cause
        self.__cause__ = cause


class SlugCollisionError(ScraperError):
    def __init__(self, base_slug: str, attempts: int) -> None:
        super().__init__(f"too many slug collisions for {base_slug} ({attempts} attempts)")
        self.base_slug = base_slug
        self.attempts = attempts


class SkillItemError(ScraperError):
    """One skill file could not be fetched, parsed or claimed."""

    def __init__(self, path: str, op: str, cause: BaseException) -> None:
        super().__init__(f"{op} {path}: {cause}")
        self.path = path
        self.op = op
        self.__cause__ = cause


class SourceError(ScraperError):
    """A whole source repository failed; other sources are unaffected."""

    def __init__(self, source: str, cause: BaseException) -> None:
        super().__init__(f"{source}: {cause}")
        self.source = source
        self.__cause__ = cause


class ScrapeCancelledError(ScraperError):
    """The run was cancelled; ``outcome`` holds what finished before that."""

    def __init__(self, outcome: ScrapeOutcome) -> None:
        super().__init__("scrape cancelled")
        self.outcome = outcome
