"""Installation plan: one dependency tree per top-level requirement."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from manifest import Manifest
from resolve.lockfile import write_json
from resolve.models import DependencyTree

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def tree_size(trees: Mapping[str, DependencyTree]) -> int:
    """Count every node of a forest (used for progress totals)."""
    return len(trees) + sum(tree_size(t.children) for t in trees.values())


@dataclass
class Plan:
    """Forest of installable trees keyed by root package name.

    Equality is structural, which is what decides whether a previous
    installation can be reused as-is.
    """

    trees: Dict[str, DependencyTree] = field(default_factory=dict)

    @classmethod
    def from_trees(cls, trees: Iterable[DependencyTree]) -> "Plan":
        return cls({tree.root.name: tree for tree in trees})

    def satisfies(self, manifest: Manifest) -> bool:
        """True when every manifest requirement is met by the root of the same name.

        Pure range check against the roots; no I/O and no mutation.
        """
        roots = {tree.root.name: tree.root.version for tree in self.trees.values()}
        for spec in manifest.iter_all():
            version = roots.get(spec.name)
            if version is None:
                return False
            if not spec.version_requirement.satisfies(version):
                return False
        return True

    def size(self) -> int:
        return tree_size(self.trees)

    def to_dict(self) -> Dict[str, Any]:
        return {name: tree.to_dict() for name, tree in sorted(self.trees.items())}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        return cls({name: DependencyTree.from_dict(tree) for name, tree in data.items()})


def write_plan(path: PathLike, plan: Plan) -> None:
    """Persist the plan snapshot of a completed installation."""
    write_json(path, plan.to_dict())


def read_plan(path: PathLike) -> Optional[Plan]:
    """Load a plan snapshot; a missing or unreadable snapshot yields None."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return Plan.from_dict(json.load(f))
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
        logger.warning("Ignoring unreadable plan snapshot %s: %s", path, exc)
        return None
