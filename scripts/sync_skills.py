#!/usr/bin/env python3
"""
Sync skills from the configured source repositories into Supabase.

Usage:
  python scripts/sync_skills.py
  python scripts/sync_skills.py --force --concurrency 8
  python scripts/sync_skills.py --source anthropics/skills --source https://github.com/obra/superpowers
  python scripts/sync_skills.py --use-api --discover
  python scripts/sync_skills.py --cleanup
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from skillsync.core.config import LOG_LEVELS, load_settings
from skillsync.core.orchestrator import ScrapeOptions, Scraper
from skillsync.fetchers.seeds import SeedRepository, find_seed, parse_repository_url


def parse_args(default_log_level: str) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync skills from GitHub source repositories.")
    parser.add_argument("--force", action="store_true", help="Re-scrape sources whose commit is unchanged.")
    parser.add_argument("--concurrency", type=int, default=None, help="Sources scraped in parallel.")
    parser.add_argument(
        "--source",
        action="append",
        default=[],
        help="Repository to sync (owner/repo or GitHub URL). Repeatable; defaults to all seeds.",
    )
    parser.add_argument("--use-api", action="store_true", help="Use the GitHub REST API instead of local clones.")
    parser.add_argument("--cleanup", action="store_true", help="Remove stale local clones after syncing.")
    parser.add_argument(
        "--discover",
        action="store_true",
        help="List repositories found by code search (API backend only) instead of syncing.",
    )
    parser.add_argument(
        "--no-progress",
        dest="progress",
        action="store_false",
        default=True,
        help="Disable per-source progress lines on stderr.",
    )
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=LOG_LEVELS,
        help="Logging level (defaults to SKILLSYNC_LOG_LEVEL).",
    )
    return parser.parse_args()


def _print_progress(completed: int, total: int, name: str) -> None:
    if completed == 0:
        print(f"Syncing {total} sources", file=sys.stderr)
        return
    print(f"[{completed}/{total}] {name}", file=sys.stderr)


async def run() -> int:
    settings = load_settings()
    args = parse_args(settings.log_level)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    update: dict[str, object] = {}
    if args.use_api:
        update["use_git_clone"] = False
    if args.concurrency is not None:
        update["max_concurrency"] = max(args.concurrency, 1)
    if update:
        settings = settings.model_copy(update=update)

    seeds: list[SeedRepository] = []
    for value in args.source:
        try:
            source = parse_repository_url(value)
        except ValueError as exc:
            print(json.dumps({"error": str(exc)}, ensure_ascii=False))
            return 2
        seeds.append(find_seed(source.owner, source.repo) or SeedRepository(source.owner, source.repo))

    scraper = Scraper.from_settings(settings)
    try:
        if args.discover:
            handles = await scraper.discover_sources()
            print(json.dumps({"discovered": [handle.full_name for handle in handles]}, ensure_ascii=False))
            return 0

        options = ScrapeOptions(
            force=args.force,
            max_concurrency=settings.max_concurrency,
            on_progress=_print_progress if args.progress else None,
        )
        if seeds:
            outcome = await scraper.scrape_all(seeds, options)
        else:
            outcome = await scraper.sync(options)

        summary = outcome.to_dict()
        if args.cleanup:
            removed = await scraper.cleanup_old_repositories()
            summary["clones_removed"] = [handle.full_name for handle in removed]
    finally:
        await scraper.aclose()

    print(json.dumps({"summary": summary}, ensure_ascii=False))
    return 0 if not outcome.errors else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(run()))
