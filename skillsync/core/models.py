"""Domain records shared by the fetchers, the orchestrator and persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

MAX_OPTIONAL_FILE_SIZE = 1 << 20
OPTIONAL_DIR_NAMES = ("scripts", "references", "assets")


@dataclass(frozen=True, slots=True)
class RepositoryHandle:
    """One remote repository, identified by owner and name."""

    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def __str__(self) -> str:
        return self.full_name


@dataclass(slots=True)
class RepositoryMetadata:
    owner: str
    repo: str
    full_name: str
    description: str = ""
    stars: int = 0
    forks: int = 0
    watchers: int = 0
    default_branch: str = ""
    commit_sha: str = ""
    clone_url: str = ""
    license: str = ""
    local_path: Path | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class SkillFile:
    """A skill document discovered in a source repository."""

    id: str
    path: str
    repo_name: str
    owner: str
    repo: str
    url: str
    sha: str


@dataclass(slots=True)
class Tag:
    id: str
    name: str
    slug: str
    category: str
    color: str = ""
    count: int = 0


@dataclass(slots=True)
class Skill:
    """A parsed skill; in flight until the orchestrator persists it."""

    id: str
    slug: str
    title: str
    content: str
    fingerprint: str
    description: str = ""
    source_id: str | None = None
    file_path: str = ""
    version: str = ""
    author: str = ""
    license: str = ""
    stars: int = 0
    forks: int = 0
    tags: list[Tag] = field(default_factory=list)
    indexed_at: datetime | None = None


@dataclass(slots=True)
class Source:
    """Persisted record of one configured source repository."""

    id: str
    owner: str
    repo: str
    full_name: str
    description: str = ""
    url: str = ""
    clone_url: str = ""
    stars: int = 0
    forks: int = 0
    watchers: int = 0
    default_branch: str = "main"
    last_commit_sha: str = ""
    skill_count: int = 0
    priority: int = 5
    is_curated: bool = False
    is_official: bool = False
    license_type: str = ""
    license_url: str = ""
    license_file: str = ""
    last_scraped_at: datetime | None = None


@dataclass(slots=True)
class LicenseInfo:
    type: str = ""
    file_name: str = ""
    url: str = ""
    raw_url: str = ""


@dataclass(frozen=True, slots=True)
class DirEntry:
    name: str
    is_dir: bool
    size: int = 0


@dataclass(slots=True)
class OptionalFile:
    name: str
    path: str
    content: bytes
    size: int


@dataclass(slots=True)
class OptionalDir:
    name: str
    files: list[OptionalFile] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(item.size for item in self.files)

    @property
    def file_count(self) -> int:
        return len(self.files)


@dataclass(frozen=True, slots=True)
class ClientStats:
    requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0


@dataclass(slots=True)
class SkillStats:
    total_skills: int = 0
    total_tags: int = 0
    total_sources: int = 0


@dataclass(slots=True)
class ScraperStats:
    api_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    skills_indexed: int = 0
    sources_count: int = 0
    last_sync_at: datetime | None = None
