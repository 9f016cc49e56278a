"""``why``: explain which packages pull a given package into the install."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, List, Optional, Set

from cli_config import BaleConfig
from constants import Constants
from common.errors import ResolutionError
from manifest import Manifest
from resolve.graph import Graph
from resolve.lockfile import load_graph

logger = logging.getLogger(__name__)


def explain(graph: Graph, manifest: Manifest, name: str, version: Optional[str] = None) -> List[str]:
    """Walk requirers breadth-first from ``name`` up to package.json.

    Returns the report lines. Each package version is reported once, so
    dependency cycles terminate.

    Raises:
        ResolutionError: when the package (or that version) is not used.
    """
    packages = graph.packages()
    queue: Deque[str] = deque()
    if version is not None:
        queue.append(f"{name}@{version}")
    else:
        queue.extend(dep.id() for dep in graph.find(name))
    if not queue:
        raise ResolutionError(f"Package {name} is not used", package_name=name)

    index = graph.reverse_index()
    roots = list(manifest.iter_all())
    seen: Set[str] = set()
    lines: List[str] = []
    while queue:
        pkg_id = queue.popleft()
        if pkg_id in seen:
            continue
        seen.add(pkg_id)
        dep = packages.get(pkg_id)
        if dep is None:
            raise ResolutionError(f"Package {pkg_id} is not used", package_name=name)

        direct = any(
            spec.name == dep.name and spec.version_requirement.satisfies(dep.version) for spec in roots
        )
        parents = sorted(index.get(pkg_id, ()))
        if not parents and not direct:
            raise ResolutionError(f"Package {pkg_id} is not used", package_name=dep.name)
        if parents:
            lines.append(f"{pkg_id} is used by:")
            for parent in parents:
                lines.append(f" - {parent}")
                queue.append(parent)
        if direct:
            lines.append(f"{pkg_id} is used by {Constants.PACKAGE_JSON_FILE}")
        lines.append("")
    lines.append(f"Analyzed {len(seen)} packages")
    return lines


def why(args: Any, config: Optional[BaleConfig] = None) -> List[str]:
    manifest = Manifest.read(Constants.PACKAGE_JSON_FILE)
    graph = load_graph(Constants.LOCKFILE)
    lines = explain(graph, manifest, args.NAME, args.VERSION)
    for line in lines:
        print(line)
    return lines
