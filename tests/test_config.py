from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from skillsync.core.config import Settings, load_settings


def test_defaults() -> None:
    settings = load_settings({})
    assert settings.use_git_clone is True
    assert settings.max_concurrency == 5
    assert settings.repo_timeout_seconds == 120.0
    assert settings.recent_update_ttl_seconds == 60.0
    assert settings.max_slug_attempts == 100
    assert settings.repo_cache_ttl_seconds == 7 * 24 * 60 * 60
    assert settings.repositories_dir == Path.home() / ".skillsync" / "repositories"


def test_environment_overrides(tmp_path: Path) -> None:
    settings = load_settings(
        {
            "SKILLSYNC_DATA_DIR": str(tmp_path),
            "SKILLSYNC_USE_GIT_CLONE": "false",
            "SKILLSYNC_MAX_CONCURRENCY": "8",
            "SKILLSYNC_RECENT_UPDATE_TTL_SECONDS": "5",
            "GITHUB_TOKEN": "ghp_example",
            "SUPABASE_URL": "https://example.supabase.co",
            "SUPABASE_KEY": "service-key",
        }
    )
    assert settings.data_dir == tmp_path
    assert settings.use_git_clone is False
    assert settings.max_concurrency == 8
    assert settings.recent_update_ttl_seconds == 5.0
    assert settings.github_token == "ghp_example"
    assert settings.supabase_url == "https://example.supabase.co"
    assert settings.supabase_key == "service-key"


def test_data_dir_expands_home() -> None:
    settings = Settings(data_dir="~/skills-data")
    assert settings.data_dir == Path.home() / "skills-data"


def test_ensure_directories_creates_repositories_dir(tmp_path: Path) -> None:
    settings = Settings(data_dir=tmp_path / "data")
    settings.ensure_directories()
    assert (tmp_path / "data" / "repositories").is_dir()


@pytest.mark.parametrize(
    "environ",
    [{"SKILLSYNC_MAX_CONCURRENCY": "0"}, {"SKILLSYNC_REPO_CACHE_TTL_DAYS": "0"}, {"SKILLSYNC_RATE_LIMIT": "-1"}],
)
def test_invalid_values_raise_validation_error(environ: dict[str, str]) -> None:
    with pytest.raises(ValidationError):
        load_settings(environ)


def test_log_level_is_normalized_and_validated() -> None:
    assert load_settings({}).log_level == "INFO"
    assert load_settings({"SKILLSYNC_LOG_LEVEL": "debug"}).log_level == "DEBUG"
    with pytest.raises(ValidationError):
        load_settings({"SKILLSYNC_LOG_LEVEL": "chatty"})


def test_prefixed_supabase_credentials_are_read() -> None:
    settings = load_settings(
        {"SKILLSYNC_SUPABASE_URL": "https://prefixed.supabase.co", "SKILLSYNC_SUPABASE_KEY": "prefixed-key"}
    )
    assert settings.supabase_url == "https://prefixed.supabase.co"
    assert settings.supabase_key == "prefixed-key"
