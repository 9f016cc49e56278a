"""Dependency graph: requirement -> resolved package relations.

The graph is the provenance record of resolution. Each relation binds a
requirement (``PackageSpecifier``) to the ``ResolvedDependency`` chosen for it;
every resolved package also lists its own requirements, so the graph alone is
enough to rebuild installable trees without talking to the registry.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Protocol, Set

from common.errors import LockfileMismatchError, ResolutionError
from common.logging_utils import extra_context, is_debug_enabled, Timer
from common.tasks import gather_or_cancel
from registry.npm.models import Packument, VersionInfo
from versioning.models import PackageSpecifier, RequirementKind, VersionRequirement, parse_version

from .models import DependencyTree, ResolvedDependency

logger = logging.getLogger(__name__)


class MetadataSource(Protocol):
    """Anything that can fetch a packument by package name."""

    async def fetch_package(self, name: str) -> Packument:
        ...


def _to_resolved(info: VersionInfo) -> ResolvedDependency:
    return ResolvedDependency(
        name=info.name,
        version=info.version,
        tarball=info.dist.tarball,
        integrity=info.dist.integrity,
        bins=dict(info.bins),
        dependencies=tuple(info.dependencies),
    )


def pick_version(spec: PackageSpecifier, packument: Packument) -> VersionInfo:
    """Select the version of ``packument`` that ``spec`` resolves to.

    Ranges take the highest satisfying version; tags follow ``dist-tags``.
    """
    if not packument.versions:
        raise ResolutionError(f"Package {spec.name} has no published versions", package_name=spec.name)
    req = spec.version_requirement
    if req.kind is RequirementKind.TAG:
        tagged = packument.dist_tags.get(req.raw.strip())
        if tagged is None or tagged not in packument.versions:
            raise ResolutionError(
                f"Package {spec.name} has no dist-tag '{req.raw}'", package_name=spec.name
            )
        return packument.versions[tagged]
    if req.kind is RequirementKind.UNSUPPORTED:
        raise ResolutionError(f"Unsupported version requirement {spec}", package_name=spec.name)
    for version in packument.sorted_versions():
        if req.satisfies(version):
            return packument.versions[version]
    raise ResolutionError(
        f"No version of {spec.name} satisfies '{spec.requirement}'", package_name=spec.name
    )


class Graph:
    """Set of (requirement, resolved dependency) relations."""

    def __init__(self, relations: Optional[Dict[PackageSpecifier, ResolvedDependency]] = None):
        self.relations: Dict[PackageSpecifier, ResolvedDependency] = dict(relations or {})

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Graph):
            return NotImplemented
        return self.relations == other.relations

    def __len__(self) -> int:
        return len(self.relations)

    def copy(self) -> "Graph":
        return Graph(self.relations)

    async def append(
        self,
        requirements: Iterable[PackageSpecifier],
        strict: bool = False,
        *,
        registry: Optional[MetadataSource] = None,
    ) -> None:
        """Resolve ``requirements`` (and everything they require) into the graph.

        Requirements that already have a relation are left alone. In strict
        mode nothing is fetched: the graph must already cover the whole
        closure, otherwise ``LockfileMismatchError`` is raised.

        The graph is only modified when the whole call succeeds.
        """
        requirements = list(requirements)
        if strict:
            self._verify_closure(requirements)
            return
        if registry is None:
            raise ValueError("A registry is required to resolve new requirements")

        working = dict(self.relations)
        frontier = sorted({r for r in requirements if r not in working})
        added = 0
        with Timer() as timer:
            while frontier:
                to_fetch: List[PackageSpecifier] = []
                for spec in frontier:
                    reused = self._pick_existing(working, spec)
                    if reused is not None:
                        working[spec] = reused
                    else:
                        to_fetch.append(spec)

                names = sorted({spec.name for spec in to_fetch})
                packuments = dict(
                    zip(names, await gather_or_cancel(registry.fetch_package(n) for n in names))
                )
                for spec in to_fetch:
                    reused = self._pick_existing(working, spec)
                    working[spec] = reused or _to_resolved(pick_version(spec, packuments[spec.name]))
                    if is_debug_enabled(logger):
                        logger.debug(
                            "Resolved %s to %s",
                            spec,
                            working[spec].version,
                            extra=extra_context(event="resolve", component="graph", target=str(spec)),
                        )

                added += len(frontier)
                frontier = sorted({
                    dep
                    for spec in frontier
                    for dep in working[spec].dependencies
                    if dep not in working
                })

        self.relations = working
        logger.info("Resolved %d new requirements in %dms", added, timer.duration_ms())

    @staticmethod
    def _pick_existing(
        relations: Dict[PackageSpecifier, ResolvedDependency], spec: PackageSpecifier
    ) -> Optional[ResolvedDependency]:
        """Highest already-resolved version of ``spec.name`` satisfying its range."""
        req = spec.version_requirement
        if req.kind is RequirementKind.UNSUPPORTED:
            raise ResolutionError(f"Unsupported version requirement {spec}", package_name=spec.name)
        if not req.is_range:
            return None
        candidates = {
            dep.id(): dep
            for dep in relations.values()
            if dep.name == spec.name and req.satisfies(dep.version)
        }
        if not candidates:
            return None
        return max(candidates.values(), key=lambda d: parse_version(d.version))

    def _verify_closure(self, requirements: List[PackageSpecifier]) -> None:
        stack = list(requirements)
        seen: Set[PackageSpecifier] = set()
        while stack:
            spec = stack.pop()
            if spec in seen:
                continue
            seen.add(spec)
            dep = self.resolve(spec)
            req = VersionRequirement.parse(spec.requirement)
            if req.is_range and not req.satisfies(dep.version):
                raise LockfileMismatchError(
                    f"Lockfile resolves {spec} to {dep.version}, which does not satisfy it"
                )
            stack.extend(dep.dependencies)

    def resolve(self, spec: PackageSpecifier) -> ResolvedDependency:
        """Return the resolution recorded for ``spec``."""
        dep = self.relations.get(spec)
        if dep is None:
            raise LockfileMismatchError(
                f"{spec} is not present in the lockfile",
                hint="Run install without --immutable to update the lockfile",
            )
        return dep

    def build_trees(self, roots: Iterable[PackageSpecifier]) -> List[DependencyTree]:
        """Unroll the relations reachable from each root into a DependencyTree.

        A dependency that is already an ancestor on the current path is a
        cycle boundary and is not descended into again.
        """
        trees = []
        for spec in roots:
            tree = DependencyTree(self.resolve(spec))
            stack = [(tree, frozenset({tree.root.id()}))]
            while stack:
                node, path = stack.pop()
                for child_spec in node.root.dependencies:
                    child_dep = self.resolve(child_spec)
                    if child_dep.id() in path:
                        continue
                    child = DependencyTree(child_dep)
                    node.children[child_dep.name] = child
                    stack.append((child, path | {child_dep.id()}))
            trees.append(tree)
        return trees

    def prune(self, roots: Iterable[PackageSpecifier]) -> "Graph":
        """Return a graph holding only the relations reachable from ``roots``."""
        kept: Dict[PackageSpecifier, ResolvedDependency] = {}
        stack = list(roots)
        while stack:
            spec = stack.pop()
            if spec in kept or spec not in self.relations:
                continue
            kept[spec] = self.relations[spec]
            stack.extend(kept[spec].dependencies)
        return Graph(kept)

    def packages(self) -> Dict[str, ResolvedDependency]:
        """Unique resolved packages keyed by id."""
        return {dep.id(): dep for dep in self.relations.values()}

    def find(self, name: str) -> List[ResolvedDependency]:
        """Every resolved version of ``name``, lowest first."""
        found = [dep for dep in self.packages().values() if dep.name == name]
        return sorted(found, key=lambda d: (parse_version(d.version) is None, parse_version(d.version) or d.version))

    def reverse_index(self) -> Dict[str, Set[str]]:
        """Map each resolved id to the ids of resolved packages that require it."""
        index: Dict[str, Set[str]] = defaultdict(set)
        for dep in self.packages().values():
            for spec in dep.dependencies:
                child = self.relations.get(spec)
                if child is not None:
                    index[child.id()].add(dep.id())
        return index

    def required_by(self, package_id: str) -> Set[str]:
        """Ids of resolved packages that depend on ``package_id``."""
        return set(self.reverse_index().get(package_id, set()))

    def satisfies_invariant(self) -> bool:
        """True when every range relation resolves to a version inside its range."""
        for spec, dep in self.relations.items():
            req = spec.version_requirement
            if req.is_range and not req.satisfies(dep.version):
                return False
        return True
