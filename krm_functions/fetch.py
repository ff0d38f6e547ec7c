"""Fetching package content from upstreams.

The Fleet resolver only describes what to fetch. A `Fetcher` materializes an
upstream at a ref into a local directory.
"""

from abc import ABC, abstractmethod
import asyncio
import hashlib
import logging
from pathlib import Path
import tempfile

import git
from slugify import slugify

from .exceptions import FetchException
from .fleet import Upstream

__all__ = [
    "Fetcher",
    "GitFetcher",
]

_LOGGER = logging.getLogger(__name__)


class Fetcher(ABC):
    """Retrieves the content of an upstream at a ref."""

    @abstractmethod
    async def fetch(self, upstream: Upstream, ref: str) -> Path:
        """Return the local directory with the upstream content at the ref."""


class GitFetcher(Fetcher):
    """Clones git upstreams into a cache directory.

    Each repository and ref is cloned once for the lifetime of the fetcher.
    """

    def __init__(self, cache_dir: Path | None = None) -> None:
        """Initialize GitFetcher."""
        if cache_dir is None:
            cache_dir = Path(tempfile.gettempdir()) / "krm-functions-cache"
        self._cache_dir = cache_dir
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[Path, asyncio.Lock] = {}
        self._fetched: set[Path] = set()

    def repo_path(self, url: str, ref: str) -> Path:
        """Return the cache path for the repository at the ref."""
        name = url.rstrip("/").removesuffix(".git").split("/")[-1].split(":")[-1]
        digest = hashlib.sha256(f"{url}@{ref}".encode()).hexdigest()[:12]
        return self._cache_dir / f"{slugify(name, max_length=50)}-{digest}"

    def _clone(self, url: str, ref: str, path: Path) -> None:
        existing = (path / ".git").exists()
        if existing:
            _LOGGER.info("Updating existing repository at %s", path)
            repo = git.Repo(str(path))
            repo.git.fetch("--tags", "origin")
        else:
            _LOGGER.info("Cloning repository %s to %s", url, path)
            repo = git.Repo.clone_from(url, str(path))
        _LOGGER.debug("Checking out %s in %s", ref, path)
        repo.git.checkout(ref)
        if existing and not repo.head.is_detached:
            repo.git.merge("--ff-only", f"origin/{ref}")

    async def fetch(self, upstream: Upstream, ref: str) -> Path:
        """Clone the upstream and check out the ref."""
        path = self.repo_path(upstream.location, ref)
        lock = self._locks.setdefault(path, asyncio.Lock())
        async with lock:
            if path in self._fetched:
                return path
            try:
                await asyncio.to_thread(self._clone, upstream.location, ref, path)
            except git.GitError as err:
                raise FetchException(
                    f"Unable to fetch upstream {upstream.name} at {ref}: {err}"
                ) from err
            self._fetched.add(path)
        return path
