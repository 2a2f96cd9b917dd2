"""Best-effort star/fork counts scraped from public GitHub repository pages."""

from __future__ import annotations

import logging
import re
from typing import Protocol

import httpx
from bs4 import BeautifulSoup

LOGGER = logging.getLogger(__name__)

GITHUB_WEB_BASE = "https://github.com"
USER_AGENT = "Mozilla/5.0 (compatible; SkillSync/1.0)"
MAX_PAGE_BYTES = 500 * 1024
COUNT_RE = re.compile(r"^\s*([0-9][0-9,]*(?:\.[0-9]+)?)\s*([KMBkmb]?)\s*$")

COUNTER_IDS = {
    "stargazer": "repo-stars-counter-star",
    "fork": "repo-network-counter",
}


class RepoMetricsProvider(Protocol):
    async def fetch_counts(self, owner: str, repo: str) -> tuple[int, int]:
        """Return (stars, forks); (0, 0) when unknown."""
        ...


def parse_count(value: str) -> int:
    """Parse count strings like '1.2k', '1,234' or '3M'; 0 when unparseable."""
    match = COUNT_RE.match(value or "")
    if not match:
        return 0
    base = float(match.group(1).replace(",", ""))
    suffix = match.group(2).upper()
    multiplier = {"": 1, "K": 1_000, "M": 1_000_000, "B": 1_000_000_000}[suffix]
    return int(base * multiplier)


def _metric_patterns(metric: str) -> list[re.Pattern[str]]:
    word = re.escape(metric)
    return [
        re.compile(rf"{word}[^>]*title=\"([0-9,]+)\"", re.IGNORECASE),
        re.compile(rf"{word}[^<]*</[^>]+>\s*<[^>]*>([0-9,.kKmM]+)", re.IGNORECASE),
        re.compile(rf"([0-9][0-9,.]*[kKmM]?)\s*{word}s?\b"),
        re.compile(rf"aria-label=\"([0-9,]+)\s+{word}"),
    ]


def parse_metric_from_html(html: str, metric: str) -> int:
    """Extract one counter ("stargazer" or "fork") from a repository page."""
    soup = BeautifulSoup(html, "html.parser")
    counter_id = COUNTER_IDS.get(metric)
    if counter_id:
        node = soup.find(id=counter_id)
        if node is not None:
            title = str(node.get("title") or "")
            count = parse_count(title) or parse_count(node.get_text(strip=True))
            if count:
                return count

    for pattern in _metric_patterns(metric):
        match = pattern.search(html)
        if match:
            count = parse_count(match.group(1))
            if count:
                return count
    return 0


class GitHubPageMetrics:
    """Scrapes the public repository page; never raises."""

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        base_url: str = GITHUB_WEB_BASE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def fetch_counts(self, owner: str, repo: str) -> tuple[int, int]:
        url = f"{self.base_url}/{owner}/{repo}"
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            LOGGER.debug("Metrics fetch failed for %s/%s: %s", owner, repo, exc)
            return 0, 0

        if response.status_code != 200:
            LOGGER.debug("Metrics fetch for %s/%s returned HTTP %s", owner, repo, response.status_code)
            return 0, 0

        html = response.content[:MAX_PAGE_BYTES].decode("utf-8", errors="replace")
        return parse_metric_from_html(html, "stargazer"), parse_metric_from_html(html, "fork")
