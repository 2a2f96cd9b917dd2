"""Configured source repositories and repository reference parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass

from skillsync.core.models import RepositoryHandle, Source

GITHUB_NAME_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9_-]{0,37}[A-Za-z0-9])?$")
HTTPS_PREFIXES = ("https://github.com/", "http://github.com/")
SSH_PREFIX = "git@github.com:"


@dataclass(frozen=True, slots=True)
class SeedRepository:
    owner: str
    repo: str
    priority: int = 5
    type: str = "community"
    skill_path: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def handle(self) -> RepositoryHandle:
        return RepositoryHandle(owner=self.owner, repo=self.repo)


OFFICIAL_SEEDS: tuple[SeedRepository, ...] = (
    SeedRepository("asteroid-belt", "skills", 10, "official"),
    SeedRepository("anthropics", "skills", 10, "official"),
    SeedRepository("anthropics", "anthropic-cookbook", 10, "official"),
)

PRIMARY_SKILLS_REPO = OFFICIAL_SEEDS[0]

CURATED_SEEDS: tuple[SeedRepository, ...] = (
    SeedRepository("skillcreatorai", "Awesome-Agent-Skills", 9, "curated"),
    SeedRepository("travisvn", "awesome-claude-skills", 9, "curated"),
    SeedRepository("alirezarezvani", "claude-skills", 9, "curated"),
    SeedRepository("abubakarsiddik31", "claude-skills-collection", 9, "curated"),
    SeedRepository("jqueryscript", "awesome-claude-code", 9, "curated"),
    SeedRepository("hesreallyhim", "awesome-claude-code", 9, "curated"),
    SeedRepository("VoltAgent", "awesome-claude-skills", 9, "curated"),
    SeedRepository("sickn33", "antigravity-awesome-skills", 9, "curated"),
    SeedRepository("ComposioHQ", "awesome-claude-skills", 9, "curated"),
    SeedRepository("obra", "superpowers", 9, "curated", skill_path="skills"),
)

SEARCH_QUERIES: tuple[str, ...] = (
    "filename:SKILL.md",
    "filename:SKILL.md path:*/",
    "filename:SKILL.md path:.claude/skills",
    "filename:SKILL.md path:.codex/skills",
    "filename:SKILL.md path:.cursor/skills",
)


def all_seeds() -> list[SeedRepository]:
    """Every seed, highest priority first; ties keep declaration order."""
    return sorted((*OFFICIAL_SEEDS, *CURATED_SEEDS), key=lambda seed: -seed.priority)


def find_seed(owner: str, repo: str) -> SeedRepository | None:
    for seed in all_seeds():
        if seed.owner == owner and seed.repo == repo:
            return seed
    return None


def is_valid_github_name(name: str) -> bool:
    """GitHub user/repo name rules: 1-39 chars, alphanumeric ends, '-' and '_' inside."""
    return bool(GITHUB_NAME_RE.match(name or ""))


def parse_repository_url(value: str) -> Source:
    """Parse ``owner/repo``, an HTTPS GitHub URL or an SSH GitHub URL into a Source."""
    text = (value or "").strip()
    if not text:
        raise ValueError("repository URL cannot be empty")

    if "://" not in text and "git@" not in text:
        parts = text.split("/")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"invalid repository format: expected 'owner/repo', got {text!r}")
    elif text.startswith(HTTPS_PREFIXES):
        parts = text.split("github.com/", 1)[1].split("/")
        if len(parts) < 2:
            raise ValueError(f"invalid GitHub HTTPS URL: {text}")
    elif text.startswith(SSH_PREFIX):
        parts = text[len(SSH_PREFIX) :].split("/")
        if len(parts) < 2:
            raise ValueError(f"invalid GitHub SSH URL: {text}")
    else:
        raise ValueError(f"unsupported repository URL format: {text}")

    owner = parts[0]
    repo = parts[1].removesuffix(".git")
    if not owner or not repo:
        raise ValueError(f"could not parse owner and repo from URL: {text}")
    if not is_valid_github_name(owner) or not is_valid_github_name(repo):
        raise ValueError(f"invalid owner or repo name: owner={owner}, repo={repo}")

    source_id = f"{owner}/{repo}"
    return Source(
        id=source_id,
        owner=owner,
        repo=repo,
        full_name=source_id,
        url=f"https://github.com/{owner}/{repo}",
        clone_url=f"https://github.com/{owner}/{repo}.git",
        priority=5,
        default_branch="main",
    )
