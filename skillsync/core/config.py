"""Runtime settings read from the environment (and a local .env file)."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "SKILLSYNC_"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseModel):
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".skillsync")
    github_token: str = ""
    use_git_clone: bool = True
    repo_cache_ttl_days: int = Field(default=7, ge=1)
    cache_ttl_seconds: float = Field(default=24 * 60 * 60, gt=0)
    rate_limit: int = Field(default=0, ge=0)
    max_concurrency: int = Field(default=5, ge=1)
    repo_timeout_seconds: float = Field(default=120.0, gt=0)
    recent_update_ttl_seconds: float = Field(default=60.0, ge=0)
    max_slug_attempts: int = Field(default=100, ge=1)
    supabase_url: str = ""
    supabase_key: str = ""
    log_level: str = "INFO"

    @field_validator("data_dir")
    @classmethod
    def _expand_home(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def repositories_dir(self) -> Path:
        return self.data_dir / "repositories"

    @property
    def repo_cache_ttl_seconds(self) -> float:
        return self.repo_cache_ttl_days * 24 * 60 * 60.0

    def ensure_directories(self) -> None:
        self.repositories_dir.mkdir(parents=True, exist_ok=True)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables; raises ValidationError when invalid."""
    if environ is None:
        load_dotenv()
        environ = os.environ

    values: dict[str, object] = {}
    for field_name in Settings.model_fields:
        key = f"{ENV_PREFIX}{field_name.upper()}"
        if key in environ:
            values[field_name] = environ[key]

    for field_name, key in (
        ("github_token", "GITHUB_TOKEN"),
        ("supabase_url", "SUPABASE_URL"),
        ("supabase_key", "SUPABASE_KEY"),
    ):
        if environ.get(key):
            values[field_name] = environ[key]
    return Settings(**values)
