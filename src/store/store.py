"""Content-addressed package store.

Every resolved package is unpacked once into ``<root>/<name>@<version>/``;
a zero-byte ``_complete`` marker written after a successful unpack makes the
entry immutable and lets later runs skip the network entirely.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import shutil
import tarfile
import tempfile
import zlib
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Protocol, Union

from constants import Constants
from common.errors import NetworkError, StoreError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from common.retry import retry
from common.scoped_path import scoped_join
from resolve.models import ResolvedDependency

from .cache import SingleFlightCache

logger = logging.getLogger(__name__)

# Strongest first; the first algorithm present in an SRI string is checked.
_SRI_ALGORITHMS = ("sha512", "sha384", "sha256", "sha1")


class TarballSource(Protocol):
    """Anything that can stream a tarball by URL."""

    def iter_tarball(self, url: str) -> AsyncIterator[bytes]:
        ...


class IntegrityChecker:
    """Incrementally hash a download and compare it with an SRI string."""

    def __init__(self, integrity: Optional[str]):
        self.algorithm: Optional[str] = None
        self.expected: Optional[str] = None
        hashes: Dict[str, str] = {}
        for token in (integrity or "").split():
            algo, _, digest = token.partition("-")
            if digest:
                hashes.setdefault(algo.lower(), digest)
        for algo in _SRI_ALGORITHMS:
            if algo in hashes:
                self.algorithm, self.expected = algo, hashes[algo]
                break
        self._hash = hashlib.new(self.algorithm) if self.algorithm else None

    def update(self, chunk: bytes) -> None:
        if self._hash is not None:
            self._hash.update(chunk)

    def verify(self, package_id: str) -> None:
        if self._hash is None:
            return
        actual = base64.b64encode(self._hash.digest()).decode("ascii")
        if actual != self.expected:
            raise StoreError(
                package_id,
                f"integrity check failed ({self.algorithm}): expected {self.expected}, got {actual}",
            )


class Store:
    """Download cache keyed by ``ResolvedDependency.id()``.

    ``download`` is safe to call any number of times concurrently: a
    single-flight cache runs at most one download per id, and a semaphore
    bounds how many downloads are on the network at once.
    """

    def __init__(
        self,
        source: Optional[TarballSource],
        root: Union[str, Path] = Constants.STORE_DIR,
        limit: int = Constants.CLIENT_LIMIT,
        progress=None,
    ):
        """Initialize the store.

        Args:
            source: Tarball stream provider (the registry client). May be None
                for a store that is only inspected or cleared.
            root: Store directory.
            limit: Maximum simultaneous downloads.
            progress: Optional progress reporter.
        """
        self.root = Path(root)
        self._source = source
        self._semaphore = asyncio.Semaphore(limit)
        self._downloads: SingleFlightCache[str, None] = SingleFlightCache("store")
        self._progress = progress

    def entry_path(self, dep: ResolvedDependency) -> Path:
        return scoped_join(self.root, dep.id())

    def is_complete(self, dep: ResolvedDependency) -> bool:
        return (self.entry_path(dep) / Constants.COMPLETE_MARKER).exists()

    async def download(self, dep: ResolvedDependency) -> None:
        """Make sure ``dep`` is unpacked in the store.

        Raises:
            StoreError: tagged with the package id, shared by every waiter.
        """
        await self._downloads.get(dep.id(), lambda: self._download_shared(dep))

    def warm(self, dep: ResolvedDependency) -> None:
        """Start downloading ``dep`` in the background without waiting."""
        self._downloads.start(dep.id(), lambda: self._download_shared(dep))

    async def cancel_pending(self) -> None:
        """Abort downloads that are still in flight."""
        await self._downloads.cancel_pending()

    def stats(self) -> dict:
        """Download counters for this run."""
        return self._downloads.stats()

    async def _download_shared(self, dep: ResolvedDependency) -> None:
        try:
            await retry(lambda: self._download(dep))
        except NetworkError as exc:
            raise StoreError(dep.id(), str(exc)) from exc

    async def _download(self, dep: ResolvedDependency) -> None:
        target = self.entry_path(dep)
        if self.is_complete(dep):
            logger.debug("Skipped downloading %s", dep.id())
            return
        if self._source is None or not dep.tarball:
            raise StoreError(dep.id(), "no tarball URL recorded")

        async with self._semaphore:
            if self._progress:
                self._progress.log(f"Downloading {dep.id()}")
            checker = IntegrityChecker(dep.integrity)
            spool = tempfile.SpooledTemporaryFile(max_size=Constants.SPOOL_MAX_BYTES)
            try:
                with Timer() as timer:
                    async for chunk in self._source.iter_tarball(dep.tarball):
                        checker.update(chunk)
                        spool.write(chunk)
                if is_debug_enabled(logger):
                    logger.debug(
                        "Fetched tarball",
                        extra=extra_context(
                            event="download",
                            component="store",
                            target=safe_url(dep.tarball),
                            duration_ms=timer.duration_ms(),
                        ),
                    )
            except BaseException:
                spool.close()
                raise

        try:
            checker.verify(dep.id())
            await asyncio.to_thread(self._unpack, dep, spool, target)
        finally:
            spool.close()

        (target / Constants.COMPLETE_MARKER).touch()
        if self._progress:
            self._progress.inc(f"Downloaded {dep.id()}")

    @staticmethod
    def _unpack(dep: ResolvedDependency, spool, target: Path) -> None:
        spool.seek(0)
        if target.exists():
            shutil.rmtree(target)
        target.mkdir(parents=True)
        try:
            with tarfile.open(fileobj=spool, mode="r:gz") as archive:
                archive.extractall(target, filter="data")
        except (tarfile.TarError, zlib.error, EOFError, OSError) as exc:
            raise StoreError(dep.id(), f"failed to unpack archive: {exc}") from exc

    def package_dir(self, dep: ResolvedDependency) -> Path:
        """Root of the unpacked package inside its entry (normally ``package/``)."""
        entry = self.entry_path(dep)
        try:
            dirs = sorted(p for p in entry.iterdir() if p.is_dir())
        except FileNotFoundError as exc:
            raise StoreError(dep.id(), "not present in the store") from exc
        if not dirs:
            raise StoreError(dep.id(), "no package src found")
        return dirs[0]

    def clear(self) -> None:
        """Remove every store entry (explicit cache clear)."""
        self._downloads.clear()
        if self.root.exists():
            shutil.rmtree(self.root)
            logger.info("Removed store %s", self.root)
