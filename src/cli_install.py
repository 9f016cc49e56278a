"""Install, update and clean commands.

``install`` is the main pipeline: resolve (or verify) the graph, persist the
lockfile, build the plan, and place it unless the previous installation
already matches it exactly.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from cli_config import BaleConfig
from constants import Constants
from common.errors import LockfileMismatchError
from common.http_client import HttpClient
from common.logging_utils import extra_context, is_debug_enabled, Timer
from installer.bins import setup_bins
from installer.installer import Installer
from installer.plan import Plan, read_plan, write_plan
from installer.scripts import run_lifecycle_scripts
from manifest import Manifest
from progress import Progress
from registry.npm.client import NpmRegistryClient
from resolve.graph import Graph
from resolve.lockfile import Lockfile, load_graph
from store.store import Store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def registry_session(config: BaleConfig, registry: Optional[Any] = None) -> AsyncIterator[Any]:
    """Yield ``registry`` when given, else a registry client bound to a fresh HTTP session."""
    if registry is not None:
        yield registry
        return
    async with HttpClient(auth_headers=config.auth_headers) as http:
        client = NpmRegistryClient(http, config.registry)
        try:
            yield client
        finally:
            logger.debug("Registry metadata cache: %s", client.stats())


def init_storage() -> None:
    """Create the store, the plan snapshot directory and the project bin directory."""
    for directory in (
        Constants.STORE_DIR,
        os.path.dirname(Constants.PLAN_FILE),
        Constants.BIN_DIR,
    ):
        os.makedirs(directory, exist_ok=True)


async def prepare_plan(immutable: bool, manifest: Manifest, registry: Any) -> Plan:
    """Resolve the manifest against the lockfile and unroll it into a Plan.

    Immutable runs never touch the registry or the lockfile.
    """
    roots = list(manifest.iter_all())
    graph = load_graph(Constants.LOCKFILE)

    if immutable:
        await graph.append(roots, strict=True)
    else:
        previous = graph.copy()
        await graph.append(roots, registry=registry)
        graph = graph.prune(roots)
        if graph != previous or not os.path.exists(Constants.LOCKFILE):
            Lockfile.from_graph(graph).write(Constants.LOCKFILE)
            logger.info("Wrote %s (%d relations)", Constants.LOCKFILE, len(graph))

    plan = Plan.from_trees(graph.build_trees(roots))
    if is_debug_enabled(logger):
        logger.debug(
            "Planned installation",
            extra=extra_context(
                event="decision",
                component="cli",
                action="prepare_plan",
                count=plan.size(),
            ),
        )
    return plan


def verify_installation(manifest: Manifest, plan: Plan) -> bool:
    """True when the persisted plan equals ``plan`` and still satisfies the manifest."""
    installed = read_plan(Constants.PLAN_FILE)
    if installed is None or installed != plan:
        return False
    return installed.satisfies(manifest)


async def install(args: Any, config: BaleConfig, registry: Optional[Any] = None) -> Plan:
    """Install everything package.json declares."""
    manifest = Manifest.read(Constants.PACKAGE_JSON_FILE)
    progress = Progress()

    async with registry_session(config, registry) as client:
        plan = await prepare_plan(bool(getattr(args, "IMMUTABLE", False)), manifest, client)
        init_storage()
        size = plan.size()
        progress.set_total(size * 2)  # download + place

        if verify_installation(manifest, plan):
            logger.info("Packages already installed")
            return plan

        store = Store(client, Constants.STORE_DIR, config.download_concurrency, progress)
        installer = Installer(store, ".", progress)
        with Timer() as timer:
            await installer.execute_plan(plan)
            await asyncio.to_thread(setup_bins, plan, ".")
        logger.debug("Store downloads: %s", store.stats())
        progress.finish()
        if size:
            logger.info("Installed %d packages in %dms", size, timer.duration_ms())

    await run_lifecycle_scripts(
        plan, ".", progress=progress, disallow=config.disallow_install_scripts
    )
    write_plan(Constants.PLAN_FILE, plan)
    return plan


async def update(args: Any, config: BaleConfig, registry: Optional[Any] = None) -> Graph:
    """Re-resolve every requirement from scratch and rewrite the lockfile."""
    if getattr(args, "IMMUTABLE", False):
        raise LockfileMismatchError("Cannot update lockfile", hint="Remove the --immutable flag")
    manifest = Manifest.read(Constants.PACKAGE_JSON_FILE)
    init_storage()

    graph = Graph()
    async with registry_session(config, registry) as client:
        with Timer() as timer:
            await graph.append(manifest.iter_all(), registry=client)
    Lockfile.from_graph(graph).write(Constants.LOCKFILE)
    logger.info("Prepared %d packages in %dms", len(graph), timer.duration_ms())
    return graph


def clean(args: Any = None, config: Optional[BaleConfig] = None) -> None:
    """Remove node_modules and the private directory (including the store)."""
    Store(None, Constants.STORE_DIR).clear()
    for directory in (Constants.NODE_MODULES, Constants.PRIVATE_DIR):
        try:
            shutil.rmtree(directory)
            logger.info("Removed %s", directory)
        except FileNotFoundError:
            pass
