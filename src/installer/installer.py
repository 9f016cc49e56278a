"""Materialize a Plan as a nested node_modules tree."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import List, Set, Tuple, Union

from constants import Constants
from common.errors import InstallError
from common.logging_utils import extra_context, is_debug_enabled, Timer
from common.scoped_path import scoped_join
from common.tasks import cancel_all
from resolve.models import DependencyTree, ResolvedDependency
from store.store import Store

from .plan import Plan

logger = logging.getLogger(__name__)

Prefix = Tuple[str, ...]


def marker_name(dep: ResolvedDependency) -> str:
    """Install marker file name; ``/`` of scoped ids is encoded as ``+``."""
    return Constants.INSTALL_MARKER_PREFIX + dep.id().replace("/", "+")


def install_path(project_dir: Union[str, Path], prefix: Prefix, name: str) -> Path:
    """``node_modules/<a1>/node_modules/<a2>/.../node_modules/<name>`` under ``project_dir``."""
    parts: List[str] = []
    for ancestor in (*prefix, name):
        parts.extend((Constants.NODE_MODULES, ancestor))
    return scoped_join(project_dir, *parts)


def hardlink_dir(src: Path, dst: Path) -> int:
    """Recreate the tree at ``src`` under ``dst`` with hard links; returns the file count."""
    linked = 0
    dst.mkdir(parents=True, exist_ok=True)
    for dirpath, dirnames, filenames in os.walk(src):
        rel = os.path.relpath(dirpath, src)
        out_dir = dst if rel == "." else dst / rel
        for name in list(dirnames):
            source = os.path.join(dirpath, name)
            if os.path.islink(source):
                os.symlink(os.readlink(source), out_dir / name)
                dirnames.remove(name)
            else:
                (out_dir / name).mkdir(exist_ok=True)
        for name in filenames:
            source = os.path.join(dirpath, name)
            if os.path.islink(source):
                os.symlink(os.readlink(source), out_dir / name)
            else:
                os.link(source, out_dir / name)
                linked += 1
    return linked


class Installer:
    """Places every node of a Plan, parents strictly before their children."""

    def __init__(self, store: Store, project_dir: Union[str, Path] = ".", progress=None):
        self.store = store
        self.project_dir = Path(project_dir)
        self._progress = progress

    async def execute_plan(self, plan: Plan) -> None:
        """Download and place every package of ``plan``.

        All downloads are started up front; placement of a node begins as
        soon as its own download is finished. The first failure cancels
        outstanding placements and downloads, then propagates.
        """
        for tree in plan.trees.values():
            for node in tree.walk():
                self.store.warm(node.root)

        pending: Set[asyncio.Task] = {
            asyncio.ensure_future(self._install_node((), tree)) for tree in plan.trees.values()
        }
        with Timer() as timer:
            try:
                while pending:
                    done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                    # Read every exception so none is reported as never retrieved.
                    errors = [task.exception() for task in done if not task.cancelled()]
                    errors = [exc for exc in errors if exc is not None]
                    if errors:
                        raise errors[0]
                    for task in done:
                        for prefix, child in task.result():
                            pending.add(asyncio.ensure_future(self._install_node(prefix, child)))
            except BaseException:
                await cancel_all(pending)
                await self.store.cancel_pending()
                raise
        logger.info("Placed %d packages in %dms", plan.size(), timer.duration_ms())

    async def _install_node(
        self, prefix: Prefix, tree: DependencyTree
    ) -> List[Tuple[Prefix, DependencyTree]]:
        dep = tree.root
        await self.store.download(dep)
        target = install_path(self.project_dir, prefix, dep.name)
        placed = await asyncio.to_thread(self._place, dep, target)
        if is_debug_enabled(logger):
            logger.debug(
                "Installed %s",
                dep.id(),
                extra=extra_context(
                    event="install",
                    component="installer",
                    target=str(target),
                    outcome="placed" if placed else "skipped",
                ),
            )
        if self._progress:
            self._progress.inc(f"Installed {dep.id()}")
        child_prefix = (*prefix, dep.name)
        return [(child_prefix, child) for child in tree.children.values()]

    def _place(self, dep: ResolvedDependency, target: Path) -> bool:
        marker = target / marker_name(dep)
        if marker.exists():
            return False
        try:
            if target.is_symlink() or target.is_file():
                target.unlink()
            elif target.exists():
                shutil.rmtree(target)
            hardlink_dir(self.store.package_dir(dep), target)
            marker.touch()
        except OSError as exc:
            raise InstallError(f"Failed to install {dep.id()} into {target}: {exc}") from exc
        return True
