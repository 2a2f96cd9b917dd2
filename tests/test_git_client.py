from __future__ import annotations

from pathlib import Path

import pytest
from conftest import GitOrigins, requires_git

from skillsync.core.errors import RepoError
from skillsync.core.hashing import generate_skill_id
from skillsync.fetchers.client import SearchCapable
from skillsync.fetchers.git_client import GitClient
from skillsync.fetchers.repository_store import RepositoryStore

pytestmark = requires_git

FILES = {
    "README.md": "# Demo\n\nDemo skills.\n",
    "LICENSE.md": "Licensed under the Apache License, Version 2.0\n",
    "skills/alpha/SKILL.md": "---\nname: Alpha\n---\n# Alpha\n",
    "skills/alpha/scripts/run.sh": "echo alpha\n",
}


@pytest.fixture
def client(tmp_path: Path, git_origins: GitOrigins) -> GitClient:
    git_origins.create("acme", "demo", FILES)
    store = RepositoryStore(tmp_path / "clones", clone_url_template=git_origins.clone_url_template)
    return GitClient(store)


@pytest.mark.asyncio
async def test_list_and_read_skill_files(client: GitClient) -> None:
    files = await client.list_skill_files("acme", "demo")

    assert [item.path for item in files] == ["skills/alpha/SKILL.md"]
    skill_file = files[0]
    assert skill_file.id == generate_skill_id("acme", "demo", "skills/alpha/SKILL.md")
    assert skill_file.repo_name == "acme/demo"
    assert skill_file.url == f"https://github.com/acme/demo/blob/{skill_file.sha}/skills/alpha/SKILL.md"

    content = await client.get_file_content("acme", "demo", "skills/alpha/SKILL.md")
    assert content.startswith("---\nname: Alpha")
    assert await client.list_skill_files("acme", "demo", "elsewhere") == []


@pytest.mark.asyncio
async def test_repository_info_and_license(client: GitClient) -> None:
    info = await client.get_repository_info("acme", "demo")
    assert info.description == "Demo skills."
    assert len(info.commit_sha) == 40

    license_info = await client.get_license_file("acme", "demo")
    assert license_info.type == "Apache-2.0"
    assert license_info.file_name == "LICENSE.md"
    assert license_info.url == f"https://github.com/acme/demo/blob/{info.commit_sha}/LICENSE.md"


@pytest.mark.asyncio
async def test_results_are_cached_and_counted(client: GitClient) -> None:
    await client.get_repository_info("acme", "demo")
    await client.get_repository_info("acme", "demo")

    stats = client.stats()
    assert stats.requests == 1
    assert stats.cache_hits == 1
    assert stats.cache_misses == 1

    client.reset_stats()
    client.clear_cache()
    await client.get_repository_info("acme", "demo")
    assert client.stats().requests == 1
    assert client.stats().cache_misses == 1


@pytest.mark.asyncio
async def test_directory_helpers(client: GitClient) -> None:
    entries = await client.list_directory_contents("acme", "demo", "skills/alpha")
    assert {entry.name for entry in entries} == {"SKILL.md", "scripts"}
    assert await client.read_file_bytes("acme", "demo", "skills/alpha/scripts/run.sh") == b"echo alpha\n"


@pytest.mark.asyncio
async def test_unknown_repository_raises_repo_error(client: GitClient) -> None:
    with pytest.raises(RepoError):
        await client.get_repository_info("acme", "absent")


def test_clone_backend_cannot_search(client: GitClient) -> None:
    assert not isinstance(client, SearchCapable)
