from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from conftest import FakeSourceClient, GitOrigins, InMemorySkillStore, requires_git, skill_md

from skillsync.core.config import Settings
from skillsync.core.errors import ScrapeCancelledError, SkillItemError, SourceError
from skillsync.core.models import Source
from skillsync.core.orchestrator import ScrapeOptions, Scraper
from skillsync.core.store import SYNC_META_LAST_FULL_SYNC, SYNC_META_TOTAL_SKILLS
from skillsync.fetchers.git_client import GitClient
from skillsync.fetchers.github_api_client import GitHubApiClient
from skillsync.fetchers.repository_store import RepositoryStore
from skillsync.fetchers.seeds import SeedRepository


def _seed(owner: str, repo: str, **kwargs) -> SeedRepository:
    return SeedRepository(owner, repo, **kwargs)


async def _persist_source(store: InMemorySkillStore, owner: str, repo: str, commit: str) -> None:
    await store.upsert_source(
        Source(id=f"{owner}/{repo}", owner=owner, repo=repo, full_name=f"{owner}/{repo}", last_commit_sha=commit)
    )


@pytest.mark.asyncio
async def test_end_to_end_skip_and_process(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    fake_client.add_repo("acme", "stable", {"SKILL.md": skill_md("Stable Skill")}, commit="old")
    fake_client.add_repo("acme", "fresh", {"skills/test/SKILL.md": skill_md("Test Skill")}, commit="new")
    await _persist_source(store, "acme", "stable", "old")

    outcome = await Scraper(fake_client, store).scrape_all([_seed("acme", "stable"), _seed("acme", "fresh")])

    assert outcome.sources_skipped == 1
    assert outcome.sources_processed == 1
    assert outcome.skills_found == 1
    assert outcome.skills_new == 1
    assert outcome.skills_updated == 0
    assert outcome.errors == []

    skill = await store.get_skill_by_slug("test-skill")
    assert skill is not None
    assert skill.source_id == "acme/fresh"
    assert skill.stars == 42
    assert skill.author == "acme"
    assert store.sources["acme/fresh"].last_commit_sha == "new"
    assert store.sources["acme/fresh"].skill_count == 1


@pytest.mark.asyncio
async def test_unchanged_commit_skips_listing_but_refreshes_timestamp(
    fake_client: FakeSourceClient, store: InMemorySkillStore
) -> None:
    fake_client.add_repo("acme", "stable", {"SKILL.md": skill_md("Stable")}, commit="same")
    await _persist_source(store, "acme", "stable", "same")
    store.sources["acme/stable"].skill_count = 4

    outcome = await Scraper(fake_client, store).scrape_repository("acme", "stable")

    assert outcome.sources_skipped == 1
    assert outcome.sources_processed == 0
    assert "list_skill_files" not in fake_client.calls
    assert "get_file_content" not in fake_client.calls
    assert store.sources["acme/stable"].last_scraped_at is not None
    assert store.sources["acme/stable"].skill_count == 4


@pytest.mark.asyncio
async def test_force_bypasses_unchanged_commit(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    fake_client.add_repo("acme", "stable", {"SKILL.md": skill_md("Stable")}, commit="same")
    await _persist_source(store, "acme", "stable", "same")

    outcome = await Scraper(fake_client, store).scrape_all(
        [_seed("acme", "stable")], ScrapeOptions(force=True)
    )

    assert outcome.sources_processed == 1
    assert outcome.sources_skipped == 0
    assert fake_client.calls["list_skill_files"] == 1
    assert outcome.skills_new == 1


@pytest.mark.asyncio
async def test_second_sync_counts_updates(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    fake_client.add_repo("acme", "demo", {"SKILL.md": skill_md("Demo")}, commit="c1")
    scraper = Scraper(fake_client, store)
    await scraper.scrape_repository("acme", "demo")

    fake_client.add_repo("acme", "demo", {"SKILL.md": skill_md("Demo", "Now better.")}, commit="c2")
    outcome = await scraper.scrape_repository("acme", "demo")

    assert (outcome.skills_new, outcome.skills_updated) == (0, 1)
    skill = await store.get_skill_by_slug("demo")
    assert skill is not None
    assert "Now better." in skill.content


@pytest.mark.asyncio
async def test_skill_path_limits_listing(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    fake_client.add_repo(
        "obra",
        "superpowers",
        {"skills/a/SKILL.md": skill_md("Inside"), "examples/SKILL.md": skill_md("Outside")},
    )

    outcome = await Scraper(fake_client, store).scrape_all([_seed("obra", "superpowers", skill_path="skills")])

    assert outcome.skills_found == 1
    assert await store.get_skill_by_slug("outside") is None


@pytest.mark.asyncio
async def test_per_file_errors_are_collected(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    fake_client.add_repo("acme", "demo", {"a/SKILL.md": skill_md("Good"), "b/SKILL.md": skill_md("Broken")})
    fake_client.failing_files.add("b/SKILL.md")

    outcome = await Scraper(fake_client, store).scrape_all([_seed("acme", "demo")])

    assert outcome.skills_found == 2
    assert outcome.skills_new == 1
    assert len(outcome.errors) == 1
    error = outcome.errors[0]
    assert isinstance(error, SkillItemError)
    assert (error.path, error.op) == ("b/SKILL.md", "fetch")


@pytest.mark.asyncio
async def test_failing_source_does_not_stop_others(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    fake_client.add_repo("acme", "ok", {"SKILL.md": skill_md("Fine")})
    fake_client.add_repo("acme", "down", {"SKILL.md": skill_md("Never")})
    fake_client.failing_repos.add("acme/down")

    outcome = await Scraper(fake_client, store).scrape_all([_seed("acme", "down"), _seed("acme", "ok")])

    assert outcome.sources_processed == 1
    assert outcome.skills_new == 1
    assert len(outcome.errors) == 1
    assert isinstance(outcome.errors[0], SourceError)
    assert outcome.errors[0].source == "acme/down"


@pytest.mark.asyncio
async def test_true_duplicates_across_sources_are_dropped(
    fake_client: FakeSourceClient, store: InMemorySkillStore
) -> None:
    content = skill_md("Shared")
    fake_client.add_repo("acme", "one", {"SKILL.md": content})
    fake_client.add_repo("acme", "two", {"SKILL.md": content})
    scraper = Scraper(fake_client, store)
    await scraper.scrape_all([_seed("acme", "one")])

    outcome = await scraper.scrape_all([_seed("acme", "two")])

    assert outcome.skills_found == 1
    assert outcome.skills_new == 0
    assert len(store.skills) == 1


@pytest.mark.asyncio
async def test_same_title_in_parallel_sources_gets_distinct_slugs(
    fake_client: FakeSourceClient, store: InMemorySkillStore
) -> None:
    for index in range(4):
        fake_client.add_repo("acme", f"repo{index}", {"SKILL.md": skill_md("Common", f"variant {index}")})
    fake_client.delay = 0.01

    outcome = await Scraper(fake_client, store).scrape_all(
        [_seed("acme", f"repo{index}") for index in range(4)], ScrapeOptions(max_concurrency=4)
    )

    assert outcome.skills_new == 4
    assert sorted(skill.slug for skill in store.skills.values()) == [
        "common",
        "common-2",
        "common-3",
        "common-4",
    ]


@pytest.mark.asyncio
async def test_failed_batch_keeps_previous_commit(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    fake_client.add_repo("acme", "demo", {"SKILL.md": skill_md("Demo")}, commit="c2")
    await _persist_source(store, "acme", "demo", "c1")
    store.fail_batches = True

    outcome = await Scraper(fake_client, store).scrape_repository("acme", "demo")

    assert isinstance(outcome.errors[0], SourceError)
    assert outcome.skills_new == 0
    assert store.sources["acme/demo"].last_commit_sha == "c1"

    store.fail_batches = False
    retry = await Scraper(fake_client, store).scrape_repository("acme", "demo")
    assert retry.sources_processed == 1
    assert store.sources["acme/demo"].last_commit_sha == "c2"


@pytest.mark.asyncio
async def test_concurrency_limit_is_respected(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    seeds = []
    for index in range(6):
        fake_client.add_repo("acme", f"r{index}", {"SKILL.md": skill_md(f"Skill {index}")})
        seeds.append(_seed("acme", f"r{index}"))
    fake_client.delay = 0.02

    await Scraper(fake_client, store).scrape_all(seeds, ScrapeOptions(max_concurrency=2))

    assert fake_client.max_in_flight == 2


@pytest.mark.asyncio
async def test_progress_is_reported_per_source(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    fake_client.add_repo("acme", "a", {"SKILL.md": skill_md("A")})
    fake_client.add_repo("acme", "b", {"SKILL.md": skill_md("B")})
    events: list[tuple[int, int, str]] = []

    await Scraper(fake_client, store).scrape_all(
        [_seed("acme", "a"), _seed("acme", "b")],
        ScrapeOptions(on_progress=lambda done, total, name: events.append((done, total, name))),
    )

    assert events[0] == (0, 2, "")
    assert [event[0] for event in events[1:]] == [1, 2]
    assert {event[2] for event in events[1:]} == {"acme/a", "acme/b"}


@pytest.mark.asyncio
async def test_cancel_event_stops_new_sources(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    seeds = []
    for index in range(5):
        fake_client.add_repo("acme", f"r{index}", {"SKILL.md": skill_md(f"Skill {index}")})
        seeds.append(_seed("acme", f"r{index}"))
    cancel = asyncio.Event()

    def on_progress(done: int, total: int, name: str) -> None:
        if done == 1:
            cancel.set()

    with pytest.raises(ScrapeCancelledError) as excinfo:
        await Scraper(fake_client, store).scrape_all(
            seeds, ScrapeOptions(max_concurrency=1, on_progress=on_progress, cancel_event=cancel)
        )

    partial = excinfo.value.outcome
    assert partial.sources_processed == 1
    assert partial.skills_new == 1
    assert fake_client.calls["get_repository_info"] == 1


@pytest.mark.asyncio
async def test_invalid_concurrency_is_rejected(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    with pytest.raises(ValueError):
        await Scraper(fake_client, store).scrape_all([], ScrapeOptions(max_concurrency=0))


@pytest.mark.asyncio
async def test_license_is_recorded_on_source(fake_client: FakeSourceClient, store: InMemorySkillStore) -> None:
    fake_client.add_repo("acme", "demo", {"SKILL.md": skill_md("Demo")})
    fake_client.licenses["acme/demo"] = "MIT"

    await Scraper(fake_client, store).scrape_all([_seed("acme", "demo", priority=9, type="curated")])

    source = store.sources["acme/demo"]
    assert source.license_type == "MIT"
    assert source.license_file == "LICENSE"
    assert source.is_curated
    assert source.priority == 9


@pytest.mark.asyncio
async def test_sync_records_metadata(
    monkeypatch: pytest.MonkeyPatch, fake_client: FakeSourceClient, store: InMemorySkillStore
) -> None:
    fake_client.add_repo("acme", "demo", {"SKILL.md": skill_md("Demo")})
    monkeypatch.setattr("skillsync.core.orchestrator.all_seeds", lambda: [_seed("acme", "demo")])
    scraper = Scraper(fake_client, store)

    outcome = await scraper.sync()

    assert outcome.skills_new == 1
    assert store.meta[SYNC_META_TOTAL_SKILLS] == "1"
    assert store.meta[SYNC_META_LAST_FULL_SYNC]

    stats = await scraper.stats()
    assert stats.skills_indexed == 1
    assert stats.sources_count == 1
    assert stats.last_sync_at is not None
    assert stats.api_requests > 0


@pytest.mark.asyncio
async def test_api_backend_has_no_clone_features(store: InMemorySkillStore) -> None:
    scraper = Scraper(GitHubApiClient(), store)
    assert scraper.git_client is None
    assert await scraper.get_directory_contents("acme", "demo", "skills/a/scripts", "scripts") is None
    assert await scraper.cleanup_old_repositories() == []
    await scraper.aclose()


@pytest.mark.asyncio
async def test_discovery_needs_search_capability(
    fake_client: FakeSourceClient, store: InMemorySkillStore
) -> None:
    assert await Scraper(fake_client, store).discover_sources() == []


def test_from_settings_selects_backend(tmp_path: Path, store: InMemorySkillStore) -> None:
    clone_scraper = Scraper.from_settings(Settings(data_dir=tmp_path), store=store)
    assert isinstance(clone_scraper.client, GitClient)
    assert clone_scraper.git_client is clone_scraper.client
    assert (tmp_path / "repositories").is_dir()

    api_scraper = Scraper.from_settings(Settings(data_dir=tmp_path, use_git_clone=False), store=store)
    assert isinstance(api_scraper.client, GitHubApiClient)


@requires_git
@pytest.mark.asyncio
async def test_optional_directories_from_clone(
    tmp_path: Path, git_origins: GitOrigins, store: InMemorySkillStore
) -> None:
    git_origins.create(
        "acme",
        "demo",
        {
            "skills/a/SKILL.md": skill_md("Alpha"),
            "skills/a/scripts/run.sh": "echo run\n",
            "skills/a/scripts/lib/util.py": "print('util')\n",
        },
    )
    repositories = RepositoryStore(tmp_path / "clones", clone_url_template=git_origins.clone_url_template)
    scraper = Scraper(GitClient(repositories), store)

    scripts = await scraper.get_directory_contents("acme", "demo", "skills/a/scripts", "scripts")
    missing = await scraper.get_directory_contents("acme", "demo", "skills/a/assets", "assets")

    assert scripts is not None
    assert sorted(item.path for item in scripts.files) == ["lib/util.py", "run.sh"]
    assert scripts.file_count == 2
    assert scripts.total_size == len("echo run\n") + len("print('util')\n")
    assert missing is None


@requires_git
@pytest.mark.asyncio
async def test_clone_backend_end_to_end(tmp_path: Path, git_origins: GitOrigins, store: InMemorySkillStore) -> None:
    git_origins.create("acme", "demo", {"skills/test/SKILL.md": skill_md("Test Skill"), "LICENSE": "MIT License\n"})
    repositories = RepositoryStore(tmp_path / "clones", clone_url_template=git_origins.clone_url_template)
    scraper = Scraper(GitClient(repositories), store)

    first = await scraper.scrape_all([_seed("acme", "demo")])
    second = await Scraper(GitClient(repositories), store).scrape_all([_seed("acme", "demo")])

    assert (first.sources_processed, first.skills_new) == (1, 1)
    assert second.sources_skipped == 1
    assert store.sources["acme/demo"].license_type == "MIT"
    assert (await store.get_skill_by_slug("test-skill")) is not None


@requires_git
@pytest.mark.asyncio
async def test_reused_scraper_picks_up_new_upstream_commit(
    tmp_path: Path, git_origins: GitOrigins, store: InMemorySkillStore
) -> None:
    git_origins.create("acme", "demo", {"a/SKILL.md": skill_md("Alpha Skill")})
    repositories = RepositoryStore(
        tmp_path / "clones", clone_url_template=git_origins.clone_url_template, recent_update_ttl=0
    )
    scraper = Scraper(GitClient(repositories), store)

    first = await scraper.scrape_all([_seed("acme", "demo")])
    head = git_origins.commit("acme", "demo", {"b/SKILL.md": skill_md("Beta Skill")})
    second = await scraper.scrape_all([_seed("acme", "demo")])

    assert first.skills_new == 1
    assert second.sources_processed == 1
    assert second.sources_skipped == 0
    assert second.skills_new == 1
    assert store.sources["acme/demo"].last_commit_sha == head
    assert (await store.get_skill_by_slug("beta-skill")) is not None
