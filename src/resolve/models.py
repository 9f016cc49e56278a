"""Data models for resolved packages and dependency trees."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from versioning.models import PackageSpecifier


@dataclass(frozen=True)
class ResolvedDependency:
    """A requirement bound to one concrete published version."""
    name: str
    version: str
    tarball: str
    integrity: Optional[str] = None
    bins: Dict[str, str] = field(default_factory=dict)
    dependencies: Tuple[PackageSpecifier, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "dependencies", tuple(sorted(self.dependencies)))

    def id(self) -> str:  # pylint: disable=invalid-name
        """Content-address key, ``name@version``."""
        return f"{self.name}@{self.version}"

    def __hash__(self) -> int:
        return hash(self.id())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "tarball": self.tarball,
        }
        if self.integrity:
            data["integrity"] = self.integrity
        if self.bins:
            data["bins"] = dict(sorted(self.bins.items()))
        if self.dependencies:
            data["dependencies"] = {d.name: d.requirement for d in sorted(self.dependencies)}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolvedDependency":
        deps = data.get("dependencies") or {}
        return cls(
            name=data["name"],
            version=data["version"],
            tarball=data.get("tarball", ""),
            integrity=data.get("integrity"),
            bins=dict(data.get("bins") or {}),
            dependencies=tuple(sorted(PackageSpecifier(n, r) for n, r in deps.items())),
        )


@dataclass
class DependencyTree:
    """A resolved package and the subtrees of the packages it requires.

    Each tree node is owned by its parent; a package reachable from two roots
    appears as two separate nodes.
    """
    root: ResolvedDependency
    children: Dict[str, "DependencyTree"] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"root": self.root.to_dict()}
        if self.children:
            data["children"] = {k: v.to_dict() for k, v in sorted(self.children.items())}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DependencyTree":
        return cls(
            root=ResolvedDependency.from_dict(data["root"]),
            children={k: cls.from_dict(v) for k, v in (data.get("children") or {}).items()},
        )

    def walk(self):
        """Yield every node of the tree, parent before children."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(list(node.children.values())))
