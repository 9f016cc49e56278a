"""Commands that edit package.json: add, remove and upgrade."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from cli_config import BaleConfig
from cli_install import registry_session
from constants import Constants
from common.errors import ManifestError, ResolutionError
from common.tasks import gather_or_cancel
from manifest import Manifest
from versioning.parser import parse_cli_token

logger = logging.getLogger(__name__)


async def _latest_versions(registry: Any, names: Sequence[str]) -> Dict[str, str]:
    packuments = await gather_or_cancel(registry.fetch_package(name) for name in names)
    latest: Dict[str, str] = {}
    for name, packument in zip(names, packuments):
        version = packument.dist_tags.get("latest")
        if not version:
            raise ResolutionError(f"Package {name} has no `latest` tag", package_name=name)
        latest[name] = version
    return latest


async def add_packages(
    manifest: Manifest,
    tokens: Sequence[str],
    dev: bool,
    pin: bool,
    registry: Any,
) -> Dict[str, str]:
    """Add ``tokens`` to the chosen dependency section of ``manifest``.

    A token with an explicit range is written as given; otherwise the
    registry's ``latest`` version is written as ``^x.y.z`` (or exactly, when
    ``pin`` is set). Returns the entries that were written.
    """
    explicit: Dict[str, str] = {}
    lookup: List[str] = []
    for token in tokens:
        try:
            name, requirement = parse_cli_token(token)
        except ValueError as exc:
            raise ManifestError(str(exc)) from exc
        if requirement is None:
            lookup.append(name)
        else:
            explicit[name] = requirement

    written = dict(explicit)
    if lookup:
        for name, version in (await _latest_versions(registry, lookup)).items():
            written[name] = version if pin else f"^{version}"

    section = manifest.section(dev)
    for name in _token_names(tokens):
        if name in written:
            section[name] = written[name]
            logger.info("Added %s %s", name, written[name])
    return written


def _token_names(tokens: Sequence[str]) -> List[str]:
    """Package names of ``tokens`` in the order given."""
    return [parse_cli_token(token)[0] for token in tokens]


async def add(args: Any, config: BaleConfig, registry: Optional[Any] = None) -> Dict[str, str]:
    if not args.PACKAGES:
        logger.info("Note: no packages specified")
        return {}
    manifest = Manifest.read_or_default(Constants.PACKAGE_JSON_FILE)
    async with registry_session(config, registry) as client:
        written = await add_packages(manifest, args.PACKAGES, args.DEV, args.PIN, client)
    manifest.save(Constants.PACKAGE_JSON_FILE)
    return written


def remove(args: Any, config: Optional[BaleConfig] = None) -> None:
    manifest = Manifest.read_or_default(Constants.PACKAGE_JSON_FILE)
    section = manifest.section(args.DEV)
    for name in args.PACKAGES:
        if name not in section:
            raise ManifestError(f"Package `{name}` is not specified in `{Constants.PACKAGE_JSON_FILE}`")
        del section[name]
    manifest.save(Constants.PACKAGE_JSON_FILE)
    logger.info("Removed %d dependencies", len(args.PACKAGES))


async def upgrade(args: Any, config: BaleConfig, registry: Optional[Any] = None) -> None:
    """Move every dependency and devDependency to its latest version."""
    manifest = Manifest.read(Constants.PACKAGE_JSON_FILE)
    async with registry_session(config, registry) as client:
        for dev in (False, True):
            names = list(manifest.section(dev))
            if names:
                await add_packages(manifest, names, dev, args.PIN, client)
    manifest.save(Constants.PACKAGE_JSON_FILE)
