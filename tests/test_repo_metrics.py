from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from skillsync.fetchers.repo_metrics import GitHubPageMetrics, parse_count, parse_metric_from_html

FIXTURES = Path(__file__).parent / "fixtures"


def _fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


@pytest.mark.parametrize(
    ("value", "expected"),
    [("1,234", 1234), ("1.2k", 1200), ("3M", 3_000_000), ("42", 42), ("", 0), ("n/a", 0)],
)
def test_parse_count(value: str, expected: int) -> None:
    assert parse_count(value) == expected


def test_counter_elements_are_preferred() -> None:
    html = _fixture("repo_page.html")
    assert parse_metric_from_html(html, "stargazer") == 1234
    assert parse_metric_from_html(html, "fork") == 56


def test_regex_fallbacks_for_older_markup() -> None:
    html = _fixture("repo_page_legacy.html")
    assert parse_metric_from_html(html, "stargazer") == 3400
    assert parse_metric_from_html(html, "fork") == 87


def test_unknown_markup_yields_zero() -> None:
    assert parse_metric_from_html("<html><body>nothing</body></html>", "stargazer") == 0


@pytest.mark.asyncio
async def test_fetch_counts_reads_repository_page() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, text=_fixture("repo_page.html"))

    metrics = GitHubPageMetrics(transport=httpx.MockTransport(handler))
    assert await metrics.fetch_counts("acme", "demo") == (1234, 56)
    assert seen == ["https://github.com/acme/demo"]


@pytest.mark.asyncio
async def test_fetch_counts_never_raises() -> None:
    def not_found(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="missing")

    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert await GitHubPageMetrics(transport=httpx.MockTransport(not_found)).fetch_counts("a", "b") == (0, 0)
    assert await GitHubPageMetrics(transport=httpx.MockTransport(broken)).fetch_counts("a", "b") == (0, 0)
