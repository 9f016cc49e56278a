"""NPM registry client: package metadata and tarball streams."""

from __future__ import annotations

import logging
from typing import AsyncIterator
from urllib.parse import quote

from constants import Constants
from common.errors import NetworkError, ResolutionError
from common.http_client import HttpClient
from common.logging_utils import extra_context, is_debug_enabled, Timer, safe_url
from common.retry import retry
from store.cache import SingleFlightCache

from .models import Packument

logger = logging.getLogger(__name__)


def package_url(registry_url: str, name: str) -> str:
    """Build the packument URL; the ``/`` of a scoped name is percent-encoded."""
    base = registry_url if registry_url.endswith("/") else registry_url + "/"
    if name.startswith("@"):
        return base + "@" + quote(name[1:], safe="")
    return base + quote(name, safe="")


class NpmRegistryClient:
    """Fetches packuments by name and streams tarballs by URL.

    Metadata requests are deduplicated per name for the lifetime of the
    client, so a resolver fanning out over many requirements that share a
    package name talks to the registry once.
    """

    def __init__(self, http: HttpClient, registry_url: str = Constants.REGISTRY_URL_NPM):
        """Initialize the client.

        Args:
            http: Shared HTTP client (credentials are injected there).
            registry_url: Base URL of the registry.
        """
        self._http = http
        self.registry_url = registry_url
        self._packuments: SingleFlightCache[str, Packument] = SingleFlightCache("npm_metadata")

    async def fetch_package(self, name: str) -> Packument:
        """Get the packument for ``name``.

        Raises:
            ResolutionError: when the registry does not know the package.
            NetworkError: when the registry stays unreachable after retries.
        """
        return await self._packuments.get(name, lambda: self._fetch_package(name))

    async def _fetch_package(self, name: str) -> Packument:
        url = package_url(self.registry_url, name)
        with Timer() as timer:
            data = await retry(
                lambda: self._http.get_json(
                    url, context="npm", headers={"Accept": Constants.NPM_METADATA_ACCEPT}
                )
            )
        if data is None:
            logger.warning(
                "Package not found in registry: %s",
                name,
                extra=extra_context(
                    event="http_response",
                    outcome="not_found",
                    status_code=404,
                    target=safe_url(url),
                    package_manager="npm",
                ),
            )
            raise ResolutionError(f"Package {name} was not found in the registry", package_name=name)
        if not isinstance(data, dict):
            raise NetworkError(f"Unexpected metadata document for {name}", url=url)
        if is_debug_enabled(logger):
            logger.debug(
                "Fetched package metadata",
                extra=extra_context(
                    event="http_response",
                    outcome="success",
                    duration_ms=timer.duration_ms(),
                    target=name,
                    package_manager="npm",
                ),
            )
        return Packument.from_json(name, data)

    async def iter_tarball(self, url: str) -> AsyncIterator[bytes]:
        """Stream a package tarball (gzip-compressed) in chunks."""
        async for chunk in self._http.iter_bytes(url, context="tarball"):
            yield chunk

    def stats(self) -> dict:
        """Metadata cache statistics."""
        return self._packuments.stats()
