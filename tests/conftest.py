from __future__ import annotations

import asyncio
import shutil
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

import pytest
from git import Actor, Repo

from skillsync.core.errors import NotFoundError
from skillsync.core.hashing import generate_skill_id
from skillsync.core.models import (
    ClientStats,
    LicenseInfo,
    RepositoryMetadata,
    Skill,
    SkillFile,
    SkillStats,
    Source,
)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")

ACTOR = Actor("SkillSync Tests", "tests@skillsync.invalid")


class InMemorySkillStore:
    """SkillStore kept in dicts; records every batch it persists."""

    def __init__(self) -> None:
        self.sources: dict[str, Source] = {}
        self.skills: dict[str, Skill] = {}
        self.meta: dict[str, str] = {}
        self.batches: list[list[Skill]] = []
        self.fail_batches = False
        self.lookup_delay = 0.0

    async def get_source_by_id(self, source_id: str) -> Source | None:
        source = self.sources.get(source_id)
        return replace(source) if source else None

    async def upsert_source(self, source: Source) -> None:
        self.sources[source.id] = replace(source)

    async def get_skill_by_slug(self, slug: str) -> Skill | None:
        if self.lookup_delay:
            await asyncio.sleep(self.lookup_delay)
        for skill in self.skills.values():
            if skill.slug == slug:
                return replace(skill)
        return None

    async def get_skill_by_id(self, skill_id: str) -> Skill | None:
        skill = self.skills.get(skill_id)
        return replace(skill) if skill else None

    async def upsert_skills_with_tags(self, skills: Sequence[Skill]) -> None:
        if self.fail_batches:
            raise RuntimeError("database unavailable")
        self.batches.append([replace(skill) for skill in skills])
        for skill in skills:
            self.skills[skill.id] = replace(skill, tags=list(skill.tags))

    async def update_source_skill_count(self, source_id: str) -> int:
        count = sum(1 for skill in self.skills.values() if skill.source_id == source_id)
        if source_id in self.sources:
            self.sources[source_id].skill_count = count
        return count

    async def set_sync_meta(self, key: str, value: str) -> None:
        self.meta[key] = value

    async def get_sync_meta(self, key: str) -> str:
        return self.meta.get(key, "")

    async def get_stats(self) -> SkillStats:
        tag_names = {tag.name for skill in self.skills.values() for tag in skill.tags}
        return SkillStats(
            total_skills=len(self.skills),
            total_tags=len(tag_names),
            total_sources=len(self.sources),
        )


class FakeSourceClient:
    """SourceClient over in-memory repositories; counts calls per method."""

    def __init__(self) -> None:
        self.repos: dict[str, dict[str, str]] = {}
        self.commits: dict[str, str] = {}
        self.licenses: dict[str, str] = {}
        self.failing_repos: set[str] = set()
        self.failing_files: set[str] = set()
        self.calls: dict[str, int] = {}
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    def add_repo(self, owner: str, repo: str, files: dict[str, str], commit: str = "c1") -> None:
        self.repos[f"{owner}/{repo}"] = dict(files)
        self.commits[f"{owner}/{repo}"] = commit

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    async def get_repository_info(self, owner: str, repo: str) -> RepositoryMetadata:
        self._count("get_repository_info")
        full_name = f"{owner}/{repo}"
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        if full_name in self.failing_repos or full_name not in self.repos:
            raise NotFoundError(f"GitHub API not found: /repos/{full_name}")
        return RepositoryMetadata(
            owner=owner,
            repo=repo,
            full_name=full_name,
            description=f"{repo} description",
            stars=42,
            forks=7,
            default_branch="main",
            commit_sha=self.commits[full_name],
        )

    async def list_skill_files(self, owner: str, repo: str, path: str = "") -> list[SkillFile]:
        self._count("list_skill_files")
        full_name = f"{owner}/{repo}"
        return [
            SkillFile(
                id=generate_skill_id(owner, repo, file_path),
                path=file_path,
                repo_name=full_name,
                owner=owner,
                repo=repo,
                url=f"https://github.com/{full_name}/blob/main/{file_path}",
                sha=self.commits[full_name],
            )
            for file_path in sorted(self.repos[full_name])
            if file_path.rsplit("/", 1)[-1].lower() == "skill.md"
            and (not path or file_path.startswith(f"{path.strip('/')}/"))
        ]

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str = "") -> str:
        self._count("get_file_content")
        if path in self.failing_files:
            raise OSError(f"cannot read {path}")
        return self.repos[f"{owner}/{repo}"][path]

    async def get_license_file(self, owner: str, repo: str, ref: str = "") -> LicenseInfo:
        self._count("get_license_file")
        license_type = self.licenses.get(f"{owner}/{repo}")
        if license_type is None:
            return LicenseInfo()
        return LicenseInfo(
            type=license_type,
            file_name="LICENSE",
            url=f"https://github.com/{owner}/{repo}/blob/{ref or 'main'}/LICENSE",
        )

    def stats(self) -> ClientStats:
        return ClientStats(requests=sum(self.calls.values()))

    def reset_stats(self) -> None:
        self.calls.clear()

    def clear_cache(self) -> None:
        return None


def make_skill_file(owner: str, repo: str, path: str) -> SkillFile:
    return SkillFile(
        id=generate_skill_id(owner, repo, path),
        path=path,
        repo_name=f"{owner}/{repo}",
        owner=owner,
        repo=repo,
        url=f"https://github.com/{owner}/{repo}/blob/main/{path}",
        sha="abc123",
    )


def skill_md(name: str, body: str = "Does useful things.") -> str:
    return f"---\nname: {name}\ndescription: {name} skill\n---\n\n# {name}\n\n{body}\n"


class GitOrigins:
    """Creates "remote" repositories on disk at ``root/<owner>/<repo>``."""

    def __init__(self, root: Path) -> None:
        self.root = root

    @property
    def clone_url_template(self) -> str:
        return f"file://{self.root.as_posix()}/{{owner}}/{{repo}}"

    def create(self, owner: str, repo: str, files: dict[str, str]) -> str:
        path = self.root / owner / repo
        path.mkdir(parents=True)
        origin = Repo.init(path)
        self._write(path, files)
        origin.index.add(list(files))
        commit = origin.index.commit("initial", author=ACTOR, committer=ACTOR)
        origin.close()
        return commit.hexsha

    def commit(self, owner: str, repo: str, files: dict[str, str], message: str = "update") -> str:
        path = self.root / owner / repo
        with Repo(path) as origin:
            self._write(path, files)
            origin.index.add(list(files))
            return origin.index.commit(message, author=ACTOR, committer=ACTOR).hexsha

    @staticmethod
    def _write(path: Path, files: dict[str, str]) -> None:
        for rel_path, content in files.items():
            target = path / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")


@pytest.fixture
def store() -> InMemorySkillStore:
    return InMemorySkillStore()


@pytest.fixture
def fake_client() -> FakeSourceClient:
    return FakeSourceClient()


@pytest.fixture
def git_origins(tmp_path: Path) -> GitOrigins:
    return GitOrigins(tmp_path / "origin")
