"""Background runner that keeps the skill index in sync with its sources."""

from __future__ import annotations

import argparse
import asyncio
import logging

from skillsync.core.config import LOG_LEVELS, Settings, load_settings
from skillsync.core.orchestrator import ScrapeOptions, ScrapeOutcome, Scraper

LOGGER = logging.getLogger(__name__)


async def run_once(scraper: Scraper, settings: Settings, force: bool = False) -> ScrapeOutcome:
    """One full sync followed by clone cleanup."""
    outcome = await scraper.sync(ScrapeOptions(force=force, max_concurrency=settings.max_concurrency))
    LOGGER.info(
        "Sync finished: processed=%d skipped=%d new=%d updated=%d errors=%d",
        outcome.sources_processed,
        outcome.sources_skipped,
        outcome.skills_new,
        outcome.skills_updated,
        len(outcome.errors),
    )
    removed = await scraper.cleanup_old_repositories()
    if removed:
        LOGGER.info("Removed %d stale clones", len(removed))
    return outcome


async def run_forever(scraper: Scraper, settings: Settings, interval_seconds: float, force: bool = False) -> None:
    while True:
        try:
            await run_once(scraper, settings, force=force)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Sync run failed: %s", exc)
        await asyncio.sleep(interval_seconds)


async def _main(args: argparse.Namespace, settings: Settings) -> int:
    scraper = Scraper.from_settings(settings)
    try:
        if args.once:
            outcome = await run_once(scraper, settings, force=args.force)
            print(f"processed={outcome.sources_processed} errors={len(outcome.errors)}")
            return 1 if outcome.errors else 0
        await run_forever(scraper, settings, max(args.interval, 1.0), force=args.force)
        return 0
    finally:
        await scraper.aclose()


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SkillSync periodic sync runner")
    parser.add_argument("--once", action="store_true", help="Run one sync and exit")
    parser.add_argument("--interval", type=float, default=3600.0, help="Seconds between syncs")
    parser.add_argument("--force", action="store_true", help="Re-scrape sources with unchanged commits")
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=LOG_LEVELS,
        help="Logging level (defaults to SKILLSYNC_LOG_LEVEL).",
    )
    return parser


def main() -> int:
    settings = load_settings()
    args = build_parser(settings).parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return asyncio.run(_main(args, settings))


if __name__ == "__main__":
    raise SystemExit(main())
