"""Local working-copy clones of remote skill repositories."""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import re
import shutil
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from git import Repo
from git.cmd import Git
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from git.objects import Commit, Tree

from skillsync.core.errors import RepoError
from skillsync.core.models import DirEntry, RepositoryHandle, RepositoryMetadata
from skillsync.fetchers.license import LICENSE_FILE_NAMES
from skillsync.fetchers.repo_metrics import RepoMetricsProvider

LOGGER = logging.getLogger(__name__)

DEFAULT_REPO_TIMEOUT = 120.0
DEFAULT_RECENT_UPDATE_TTL = 60.0
DEFAULT_CLONE_URL_TEMPLATE = "https://github.com/{owner}/{repo}.git"

SKILL_FILE_NAMES = frozenset({"skill.md", "claude.md"})
README_NAMES = ("README.md", "README", "readme.md", "Readme.md")
REMOTE_HEAD_REFS = (
    "refs/remotes/origin/HEAD",
    "refs/remotes/origin/main",
    "refs/remotes/origin/master",
)
README_SCAN_BYTES = 2048
MAX_DESCRIPTION_LENGTH = 200
NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")


def is_skill_file_path(path: str) -> bool:
    """Check whether a repo path names a skill document (any depth)."""
    name = path.rsplit("/", 1)[-1]
    return name.lower() in SKILL_FILE_NAMES


def path_in_scope(path: str, scope: str) -> bool:
    scope = scope.strip("/")
    if not scope:
        return True
    return path == scope or path.startswith(f"{scope}/")


def extract_readme_description(text: str) -> str:
    """First prose line of a README, skipping headings, images and badges."""
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(("#", "!")):
            continue
        if line.startswith("[") and "](" in line:
            continue
        if len(line) > MAX_DESCRIPTION_LENGTH:
            return line[:MAX_DESCRIPTION_LENGTH] + "..."
        return line
    return ""


class RepositoryStore:
    """Shallow working-copy clones kept under ``base_dir/<owner>/<repo>``.

    Clone, update and removal of one repository are serialized by a lock
    owned by that repository's handle; different repositories never wait on
    each other. A handle updated within ``recent_update_ttl`` seconds is
    served straight from disk, without taking its lock or touching the
    network.

    Read helpers (``list_skill_files``, ``read_file`` ...) are blocking and
    read git objects at the checked-out commit; call them from a worker
    thread.
    """

    def __init__(
        self,
        base_dir: Path | str,
        token: str = "",
        *,
        repo_timeout: float = DEFAULT_REPO_TIMEOUT,
        recent_update_ttl: float = DEFAULT_RECENT_UPDATE_TTL,
        clone_url_template: str = DEFAULT_CLONE_URL_TEMPLATE,
        metrics: RepoMetricsProvider | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.token = (token or "").strip()
        self.repo_timeout = repo_timeout
        self.recent_update_ttl = recent_update_ttl
        self.clone_url_template = clone_url_template
        self.metrics = metrics
        self._clock = clock

        self._locks: dict[RepositoryHandle, asyncio.Lock] = {}
        self._locks_guard = threading.Lock()
        self._recent: dict[RepositoryHandle, float] = {}
        self._recent_guard = threading.Lock()

    def path_for(self, handle: RepositoryHandle) -> Path:
        for part in (handle.owner, handle.repo):
            if not NAME_RE.match(part) or part in {".", ".."}:
                raise ValueError(f"Invalid repository name component: {part!r}")
        return self.base_dir / handle.owner / handle.repo

    def clone_url(self, handle: RepositoryHandle) -> str:
        return self.clone_url_template.format(owner=handle.owner, repo=handle.repo)

    @staticmethod
    def handle_for_path(local_path: Path | str) -> RepositoryHandle:
        path = Path(local_path)
        return RepositoryHandle(owner=path.parent.name, repo=path.name)

    def _lock_for(self, handle: RepositoryHandle) -> asyncio.Lock:
        lock = self._locks.get(handle)
        if lock is not None:
            return lock
        with self._locks_guard:
            return self._locks.setdefault(handle, asyncio.Lock())

    def was_recently_updated(self, handle: RepositoryHandle) -> bool:
        with self._recent_guard:
            marked_at = self._recent.get(handle)
        return marked_at is not None and self._clock() - marked_at < self.recent_update_ttl

    def mark_recently_updated(self, handle: RepositoryHandle) -> None:
        with self._recent_guard:
            self._recent[handle] = self._clock()

    def forget(self, handle: RepositoryHandle) -> None:
        with self._recent_guard:
            self._recent.pop(handle, None)

    def _is_fresh(self, handle: RepositoryHandle, path: Path) -> bool:
        return self.was_recently_updated(handle) and (path / ".git").exists()

    def _git_env(self) -> dict[str, str]:
        env = {"GIT_TERMINAL_PROMPT": "0"}
        if self.token:
            credentials = base64.b64encode(f"oauth2:{self.token}".encode("utf-8")).decode("ascii")
            env.update(
                {
                    "GIT_CONFIG_COUNT": "1",
                    "GIT_CONFIG_KEY_0": "http.extraheader",
                    "GIT_CONFIG_VALUE_0": f"AUTHORIZATION: basic {credentials}",
                }
            )
        return env

    async def clone_or_update(self, handle: RepositoryHandle, timeout: float | None = None) -> Path:
        """Ensure a current working copy exists and return its path.

        ``timeout`` can only shorten the store's own per-repository limit.
        """
        path = self.path_for(handle)
        if self._is_fresh(handle, path):
            LOGGER.debug("Recently updated, using local copy: %s", handle)
            return path

        async with self._lock_for(handle):
            if self._is_fresh(handle, path):
                LOGGER.debug("Updated while waiting, using local copy: %s", handle)
                return path

            limit = self.repo_timeout if timeout is None else min(timeout, self.repo_timeout)
            try:
                async with asyncio.timeout(limit) as deadline:
                    remaining = _remaining(deadline)
                    if (path / ".git").exists():
                        await _run_blocking(self._update_blocking, handle, path, remaining)
                    else:
                        await _run_blocking(self._clone_blocking, handle, path, remaining)
            except TimeoutError as exc:
                LOGGER.warning("Timed out after %.0fs updating %s", limit, handle)
                raise RepoError(handle.owner, handle.repo, "timeout", exc) from exc

            self.mark_recently_updated(handle)
            os.utime(path, None)
        return path

    def _clone_blocking(self, handle: RepositoryHandle, path: Path, timeout: float) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        LOGGER.debug("Cloning %s into %s", handle, path)
        git = Git(str(path.parent))
        try:
            git.clone(
                "--depth",
                "1",
                "--single-branch",
                "--no-tags",
                self.clone_url(handle),
                str(path),
                env=self._git_env(),
                kill_after_timeout=timeout,
            )
        except GitCommandError as exc:
            shutil.rmtree(path, ignore_errors=True)
            LOGGER.warning("Clone failed for %s: %s", handle, exc)
            raise RepoError(handle.owner, handle.repo, "clone", exc) from exc

    def _update_blocking(self, handle: RepositoryHandle, path: Path, timeout: float) -> None:
        try:
            repo = Repo(path)
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise RepoError(handle.owner, handle.repo, "open", exc) from exc

        with repo:
            LOGGER.debug("Fetching %s", handle)
            try:
                repo.git.fetch(
                    "--force",
                    "--no-tags",
                    "--depth",
                    "1",
                    "origin",
                    env=self._git_env(),
                    kill_after_timeout=timeout,
                )
            except GitCommandError as exc:
                LOGGER.warning("Fetch failed for %s: %s", handle, exc)
                raise RepoError(handle.owner, handle.repo, "fetch", exc) from exc

            target = self._resolve_remote_head(handle, repo)
            try:
                repo.head.reset(target, index=True, working_tree=True)
            except GitCommandError as exc:
                raise RepoError(handle.owner, handle.repo, "reset", exc) from exc

    @staticmethod
    def _resolve_remote_head(handle: RepositoryHandle, repo: Repo) -> Commit:
        for ref in REMOTE_HEAD_REFS:
            try:
                return repo.commit(ref)
            except (BadName, ValueError):
                continue
        cause = LookupError("none of origin/HEAD, origin/main, origin/master exist")
        raise RepoError(handle.owner, handle.repo, "resolve-ref", cause)

    def _open(self, local_path: Path | str) -> Repo:
        handle = self.handle_for_path(local_path)
        try:
            return Repo(local_path)
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise RepoError(handle.owner, handle.repo, "open", exc) from exc

    def _head_commit(self, repo: Repo, local_path: Path | str) -> Commit:
        try:
            return repo.head.commit
        except ValueError as exc:
            handle = self.handle_for_path(local_path)
            raise RepoError(handle.owner, handle.repo, "read", exc) from exc

    def get_commit_sha(self, local_path: Path | str) -> str:
        with self._open(local_path) as repo:
            return self._head_commit(repo, local_path).hexsha

    def read_repository_info(self, local_path: Path | str) -> RepositoryMetadata:
        """Metadata derivable from the clone itself; counts are left at zero."""
        handle = self.handle_for_path(local_path)
        with self._open(local_path) as repo:
            commit = self._head_commit(repo, local_path)
            try:
                branch = repo.active_branch.name
            except TypeError:
                branch = ""
            return RepositoryMetadata(
                owner=handle.owner,
                repo=handle.repo,
                full_name=handle.full_name,
                description=_readme_description(commit.tree),
                default_branch=branch,
                commit_sha=commit.hexsha,
                clone_url=self.clone_url(handle),
                local_path=Path(local_path),
                updated_at=commit.committed_datetime,
            )

    async def get_repository_info(self, local_path: Path | str) -> RepositoryMetadata:
        info = await asyncio.to_thread(self.read_repository_info, local_path)
        if self.metrics is not None:
            info.stars, info.forks = await self.metrics.fetch_counts(info.owner, info.repo)
        return info

    def list_skill_files(self, local_path: Path | str, scope: str = "") -> list[str]:
        """Skill document paths in the commit tree, optionally under ``scope``."""
        with self._open(local_path) as repo:
            tree = self._head_commit(repo, local_path).tree
            paths = [
                item.path
                for item in tree.traverse()
                if item.type == "blob" and is_skill_file_path(item.path) and path_in_scope(item.path, scope)
            ]
        return sorted(paths)

    def read_file_bytes(self, local_path: Path | str, path: str) -> bytes:
        handle = self.handle_for_path(local_path)
        with self._open(local_path) as repo:
            tree = self._head_commit(repo, local_path).tree
            try:
                blob = tree / path.strip("/")
            except KeyError as exc:
                raise RepoError(handle.owner, handle.repo, "read", FileNotFoundError(path)) from exc
            if blob.type != "blob":
                raise RepoError(handle.owner, handle.repo, "read", IsADirectoryError(path))
            return blob.data_stream.read()

    def read_file(self, local_path: Path | str, path: str) -> str:
        return self.read_file_bytes(local_path, path).decode("utf-8", errors="replace")

    def list_directory(self, local_path: Path | str, dir_path: str) -> list[DirEntry]:
        """Immediate children of ``dir_path``; empty when it does not exist."""
        with self._open(local_path) as repo:
            tree: Any = self._head_commit(repo, local_path).tree
            dir_path = dir_path.strip("/")
            if dir_path:
                try:
                    tree = tree / dir_path
                except KeyError:
                    return []
                if tree.type != "tree":
                    return []
            return [
                DirEntry(
                    name=item.name,
                    is_dir=item.type == "tree",
                    size=item.size if item.type == "blob" else 0,
                )
                for item in tree
            ]

    def get_license_file(self, local_path: Path | str) -> tuple[str, str]:
        """Return (file name, content) of the first license file, or empty strings."""
        with self._open(local_path) as repo:
            tree = self._head_commit(repo, local_path).tree
            for name in LICENSE_FILE_NAMES:
                try:
                    blob = tree / name
                except KeyError:
                    continue
                if blob.type == "blob":
                    return name, blob.data_stream.read().decode("utf-8", errors="replace")
        return "", ""

    async def cleanup_old_repos(self, max_age_seconds: float) -> list[RepositoryHandle]:
        """Delete clones whose directory mtime is older than ``max_age_seconds``."""
        removed: list[RepositoryHandle] = []
        if not self.base_dir.is_dir():
            return removed

        for owner_dir in sorted(self.base_dir.iterdir()):
            if not owner_dir.is_dir():
                continue
            for repo_dir in sorted(owner_dir.iterdir()):
                if not repo_dir.is_dir() or not _is_stale(repo_dir, max_age_seconds):
                    continue
                handle = RepositoryHandle(owner=owner_dir.name, repo=repo_dir.name)
                async with self._lock_for(handle):
                    # Re-check under the lock: an update may have just refreshed it.
                    if not repo_dir.exists() or not _is_stale(repo_dir, max_age_seconds):
                        continue
                    await self._delete(handle, repo_dir)
                LOGGER.info("Removed stale clone %s", handle)
                removed.append(handle)
            _remove_if_empty(owner_dir)
        return removed

    async def remove_repository(self, handle: RepositoryHandle) -> None:
        path = self.path_for(handle)
        async with self._lock_for(handle):
            if path.exists():
                await self._delete(handle, path)
        _remove_if_empty(path.parent)

    async def _delete(self, handle: RepositoryHandle, path: Path) -> None:
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except OSError as exc:
            raise RepoError(handle.owner, handle.repo, "remove", exc) from exc
        finally:
            self.forget(handle)


def _readme_description(tree: Tree) -> str:
    for name in README_NAMES:
        try:
            blob = tree / name
        except KeyError:
            continue
        if blob.type != "blob":
            continue
        head = blob.data_stream.read(README_SCAN_BYTES)
        description = extract_readme_description(head.decode("utf-8", errors="replace"))
        if description:
            return description
    return ""


def _remaining(deadline: asyncio.Timeout) -> float:
    when = deadline.when()
    if when is None:
        return DEFAULT_REPO_TIMEOUT
    return max(when - asyncio.get_running_loop().time(), 0.1)


def _is_stale(path: Path, max_age_seconds: float) -> bool:
    try:
        mtime = path.stat().st_mtime
    except FileNotFoundError:
        return False
    return time.time() - mtime > max_age_seconds


def _remove_if_empty(directory: Path) -> None:
    if directory.is_dir() and not any(directory.iterdir()):
        directory.rmdir()


async def _run_blocking(func: Callable[..., Any], *args: Any) -> Any:
    """Run ``func`` in a worker thread that outlives caller cancellation.

    A running git process cannot be interrupted from here, so on cancellation
    the caller still waits for the thread (bounded by ``kill_after_timeout``)
    before the cancellation propagates and the repository lock is released.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.wait({task})
        if not task.cancelled():
            task.exception()
        raise
