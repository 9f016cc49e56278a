"""Lockfile: the persisted relation set of a resolved Graph.

Format (JSON, keys sorted so diffs stay small)::

    {
      "lockfileVersion": 1,
      "packages": {"left-pad@1.3.0": {"name": ..., "version": ..., "tarball": ...}},
      "relations": [{"name": "left-pad", "requirement": "^1.0.0", "resolved": "left-pad@1.3.0"}]
    }

Each resolved package is stored once under its id; relations point at ids.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Union

from constants import Constants
from common.errors import LockfileMismatchError
from versioning.models import PackageSpecifier

from .graph import Graph
from .models import ResolvedDependency

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def write_json(path: PathLike, data: Any) -> None:
    """Write ``data`` as pretty JSON, replacing ``path`` atomically."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.write("\n")
        os.replace(tmp, target)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


@dataclass
class Lockfile:
    """Serializable snapshot of a Graph's relations."""

    relations: Dict[PackageSpecifier, ResolvedDependency] = field(default_factory=dict)

    @classmethod
    def from_graph(cls, graph: Graph) -> "Lockfile":
        return cls(relations=dict(graph.relations))

    def to_graph(self) -> Graph:
        return Graph(self.relations)

    def to_dict(self) -> Dict[str, Any]:
        packages = {dep.id(): dep.to_dict() for dep in self.relations.values()}
        return {
            "lockfileVersion": Constants.LOCKFILE_VERSION,
            "packages": dict(sorted(packages.items())),
            "relations": [
                {"name": spec.name, "requirement": spec.requirement, "resolved": dep.id()}
                for spec, dep in sorted(self.relations.items())
            ],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Lockfile":
        if not isinstance(data, dict):
            raise LockfileMismatchError("Lockfile is not a JSON object")
        version = data.get("lockfileVersion")
        if version != Constants.LOCKFILE_VERSION:
            raise LockfileMismatchError(f"Unsupported lockfileVersion {version!r}")
        try:
            packages = {
                pkg_id: ResolvedDependency.from_dict(info)
                for pkg_id, info in (data.get("packages") or {}).items()
            }
            relations: Dict[PackageSpecifier, ResolvedDependency] = {}
            for rel in data.get("relations") or []:
                spec = PackageSpecifier(rel["name"], rel.get("requirement", ""))
                relations[spec] = packages[rel["resolved"]]
        except (KeyError, TypeError, AttributeError) as exc:
            raise LockfileMismatchError(f"Lockfile is malformed: {exc}") from exc
        return cls(relations=relations)

    def write(self, path: PathLike = Constants.LOCKFILE) -> None:
        write_json(path, self.to_dict())
        logger.debug("Wrote lockfile %s with %d relations", path, len(self.relations))

    @classmethod
    def read(cls, path: PathLike = Constants.LOCKFILE) -> "Lockfile":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise LockfileMismatchError(f"Failed to parse {path}: {exc}") from exc
        return cls.from_dict(data)


def load_graph(path: PathLike = Constants.LOCKFILE) -> Graph:
    """Graph recorded in the lockfile, or an empty graph when there is none."""
    if not os.path.exists(path):
        logger.debug("No lockfile at %s", path)
        return Graph()
    graph = Lockfile.read(path).to_graph()
    if not graph.satisfies_invariant():
        raise LockfileMismatchError(
            f"{path} records versions outside their ranges",
            hint="Run update to re-resolve the lockfile",
        )
    return graph
