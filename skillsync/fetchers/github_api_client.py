"""Source client that talks to the GitHub REST API directly."""

from __future__ import annotations

import asyncio
import base64
import logging
from datetime import datetime
from typing import Any

import httpx

from skillsync.core.cache import DEFAULT_CACHE_TTL, TTLCache
from skillsync.core.errors import NotFoundError, ScraperError
from skillsync.core.hashing import generate_skill_id
from skillsync.core.models import LicenseInfo, RepositoryMetadata, SkillFile
from skillsync.fetchers.client import CachingClient
from skillsync.fetchers.license import LICENSE_FILE_NAMES, detect_license_type, license_urls
from skillsync.fetchers.repository_store import is_skill_file_path, path_in_scope

LOGGER = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
AUTHENTICATED_RATE_LIMIT = 20
UNAUTHENTICATED_RATE_LIMIT = 5
LOW_QUOTA_THRESHOLD = 100
SEARCH_PAGE_SIZE = 100


class TokenBucketLimiter:
    """Token bucket for async request pacing: ``rate_per_minute`` refill, ``burst`` capacity."""

    def __init__(self, rate_per_minute: float, burst: int | None = None) -> None:
        self.rate_per_minute = max(rate_per_minute, 0.001)
        self.refill_per_second = self.rate_per_minute / 60.0
        self.capacity = float(burst if burst is not None else max(1, int(rate_per_minute)))
        self._tokens = self.capacity
        self._updated_at: float | None = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        loop = asyncio.get_running_loop()
        async with self._lock:
            now = loop.time()
            if self._updated_at is not None:
                elapsed = now - self._updated_at
                self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
            self._updated_at = now
            if self._tokens < 1.0:
                await asyncio.sleep((1.0 - self._tokens) / self.refill_per_second)
                self._tokens = 1.0
                self._updated_at = loop.time()
            self._tokens -= 1.0


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class GitHubApiClient(CachingClient):
    """API-backed ``SourceClient`` with rate limiting, retries and search."""

    def __init__(
        self,
        token: str = "",
        rate_limit: int = 0,
        *,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        cache: TTLCache | None = None,
        timeout_seconds: float = 20.0,
        attempts: int = 4,
        backoff_seconds: float = 0.8,
        base_url: str = GITHUB_API_BASE,
        transport: httpx.AsyncBaseTransport | None = None,
        limiter: TokenBucketLimiter | None = None,
    ) -> None:
        super().__init__(cache_ttl=cache_ttl, cache=cache)
        self.token = (token or "").strip()
        if rate_limit <= 0:
            rate_limit = AUTHENTICATED_RATE_LIMIT if self.token else UNAUTHENTICATED_RATE_LIMIT
        self.rate_limit = rate_limit
        self.limiter = limiter or TokenBucketLimiter(rate_limit, burst=rate_limit)
        self.timeout_seconds = timeout_seconds
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "SkillSync skill scraper",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=httpx.Timeout(self.timeout_seconds),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> GitHubApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _check_quota(self, response: httpx.Response) -> None:
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None and remaining.isdigit() and int(remaining) < LOW_QUOTA_THRESHOLD:
            LOGGER.warning("GitHub API rate limit low: %s requests remaining", remaining)

    async def _request(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        last_error: Exception | None = None
        for attempt in range(1, self.attempts + 1):
            await self.limiter.acquire()
            self._count_request()
            try:
                response = await self._http().get(path, params=params)
            except httpx.TransportError as exc:
                last_error = exc
            else:
                self._check_quota(response)
                status = response.status_code
                if status == 404:
                    raise NotFoundError(f"GitHub API not found: {path}")
                if status >= 500 or status in {403, 429}:
                    last_error = ScraperError(f"GitHub API HTTP {status} for {path}")
                elif status >= 400:
                    raise ScraperError(f"GitHub API HTTP {status} for {path}: {response.text[:200]}")
                else:
                    return response
            if attempt < self.attempts:
                await asyncio.sleep(min(10.0, self.backoff_seconds * (2 ** (attempt - 1))))
        raise ScraperError(f"Failed API request {path}: {last_error}") from last_error

    async def _json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._request(path, params=params)
        return response.json()

    async def get_repository_info(self, owner: str, repo: str) -> RepositoryMetadata:
        async def load() -> RepositoryMetadata:
            payload = await self._json(f"/repos/{owner}/{repo}")
            branch = str(payload.get("default_branch") or "")
            commit_sha = ""
            if branch:
                try:
                    branch_payload = await self._json(f"/repos/{owner}/{repo}/branches/{branch}")
                    commit_sha = str((branch_payload.get("commit") or {}).get("sha") or "")
                except ScraperError as exc:
                    LOGGER.debug("Branch lookup failed for %s/%s@%s: %s", owner, repo, branch, exc)
            license_payload = payload.get("license") or {}
            return RepositoryMetadata(
                owner=owner,
                repo=repo,
                full_name=str(payload.get("full_name") or f"{owner}/{repo}"),
                description=str(payload.get("description") or ""),
                stars=int(payload.get("stargazers_count") or 0),
                forks=int(payload.get("forks_count") or 0),
                watchers=int(payload.get("watchers_count") or 0),
                default_branch=branch,
                commit_sha=commit_sha,
                clone_url=str(payload.get("clone_url") or ""),
                license=str(license_payload.get("name") or ""),
                updated_at=_parse_timestamp(payload.get("updated_at")),
            )

        return await self._cached(f"repo:{owner}/{repo}", load)

    async def list_skill_files(self, owner: str, repo: str, path: str = "") -> list[SkillFile]:
        async def load() -> list[SkillFile]:
            payload = await self._json(f"/repos/{owner}/{repo}")
            branch = str(payload.get("default_branch") or "main")
            tree = await self._json(f"/repos/{owner}/{repo}/git/trees/{branch}", params={"recursive": "1"})
            if tree.get("truncated"):
                LOGGER.warning("Tree listing truncated for %s/%s", owner, repo)

            repo_name = f"{owner}/{repo}"
            files: list[SkillFile] = []
            for entry in tree.get("tree") or []:
                entry_path = str(entry.get("path") or "")
                if entry.get("type") != "blob" or not is_skill_file_path(entry_path):
                    continue
                if not path_in_scope(entry_path, path):
                    continue
                files.append(
                    SkillFile(
                        id=generate_skill_id(owner, repo, entry_path),
                        path=entry_path,
                        repo_name=repo_name,
                        owner=owner,
                        repo=repo,
                        url=f"https://github.com/{repo_name}/blob/{branch}/{entry_path}",
                        sha=str(entry.get("sha") or ""),
                    )
                )
            return files

        return await self._cached(f"tree:{owner}/{repo}:{path}", load)

    async def _get_contents(self, owner: str, repo: str, path: str, ref: str) -> str:
        params = {"ref": ref} if ref else None
        payload = await self._json(f"/repos/{owner}/{repo}/contents/{path}", params=params)
        if not isinstance(payload, dict) or payload.get("type") != "file":
            raise ScraperError(f"Path is not file: {owner}/{repo}:{path}")
        encoded = payload.get("content", "")
        if payload.get("encoding") != "base64" or not isinstance(encoded, str):
            raise ScraperError(f"Unsupported encoding for {path}: {payload.get('encoding')}")
        try:
            decoded = base64.b64decode(encoded, validate=False)
        except ValueError as exc:
            raise ScraperError(f"Failed decoding base64 file {path}: {exc}") from exc
        return decoded.decode("utf-8", errors="replace")

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str = "") -> str:
        async def load() -> str:
            return await self._get_contents(owner, repo, path, ref)

        return await self._cached(f"content:{owner}/{repo}:{path}@{ref}", load)

    async def get_license_file(self, owner: str, repo: str, ref: str = "") -> LicenseInfo:
        async def load() -> LicenseInfo:
            for file_name in LICENSE_FILE_NAMES:
                try:
                    content = await self._get_contents(owner, repo, file_name, ref)
                except NotFoundError:
                    continue
                except ScraperError as exc:
                    LOGGER.debug("License probe %s failed for %s/%s: %s", file_name, owner, repo, exc)
                    continue
                url, raw_url = license_urls(owner, repo, ref, file_name)
                return LicenseInfo(
                    type=detect_license_type(content),
                    file_name=file_name,
                    url=url,
                    raw_url=raw_url,
                )
            return LicenseInfo()

        return await self._cached(f"license:{owner}/{repo}@{ref}", load)

    async def search_skill_files(self, query: str) -> list[SkillFile]:
        """Code search across GitHub, following every result page."""

        async def load() -> list[SkillFile]:
            files: list[SkillFile] = []
            url: str | None = "/search/code"
            params: dict[str, Any] | None = {
                "q": query,
                "sort": "indexed",
                "order": "desc",
                "per_page": SEARCH_PAGE_SIZE,
            }
            while url:
                response = await self._request(url, params=params)
                for item in response.json().get("items") or []:
                    repository = item.get("repository") or {}
                    repo_name = str(repository.get("full_name") or "")
                    owner = str((repository.get("owner") or {}).get("login") or "")
                    repo = str(repository.get("name") or "")
                    item_path = str(item.get("path") or "")
                    files.append(
                        SkillFile(
                            id=generate_skill_id(owner, repo, item_path),
                            path=item_path,
                            repo_name=repo_name,
                            owner=owner,
                            repo=repo,
                            url=str(item.get("html_url") or ""),
                            sha=str(item.get("sha") or ""),
                        )
                    )
                url = response.links.get("next", {}).get("url")
                params = None
            return files

        return await self._cached(f"search:{query}", load)
