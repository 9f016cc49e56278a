"""Typed views over npm registry metadata (packuments)."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from versioning.models import PackageSpecifier, parse_version


@dataclass(frozen=True)
class Dist:
    """Tarball location and integrity of one published version."""
    tarball: str
    integrity: Optional[str] = None


@dataclass
class VersionInfo:
    """One entry of a packument's ``versions`` map."""
    name: str
    version: str
    dist: Dist
    dependencies: Tuple[PackageSpecifier, ...] = ()
    bins: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_json(cls, name: str, data: Dict[str, Any]) -> "VersionInfo":
        """Build from registry JSON, normalizing ``bin`` and the integrity field."""
        dist = data.get("dist") or {}
        integrity = dist.get("integrity")
        if not integrity and dist.get("shasum"):
            integrity = hex_sha1_to_sri(dist["shasum"])
        deps = data.get("dependencies") or {}
        return cls(
            name=name,
            version=str(data.get("version", "")),
            dist=Dist(tarball=str(dist.get("tarball", "")), integrity=integrity),
            dependencies=tuple(
                sorted(PackageSpecifier(dep, str(req)) for dep, req in deps.items())
            ),
            bins=normalize_bins(name, data.get("bin")),
        )


def normalize_bins(name: str, raw: Any) -> Dict[str, str]:
    """Turn a manifest ``bin`` field into a command -> path map.

    A plain string means a single command named after the package (without
    its scope).
    """
    if isinstance(raw, str):
        return {name.rsplit("/", 1)[-1]: raw}
    if isinstance(raw, dict):
        return {str(cmd): str(path) for cmd, path in raw.items() if isinstance(path, str)}
    return {}


def hex_sha1_to_sri(shasum: str) -> str:
    """Convert a legacy hex ``shasum`` into an SRI ``sha1-`` string."""
    return "sha1-" + base64.b64encode(bytes.fromhex(shasum)).decode("ascii")


@dataclass
class Packument:
    """Package metadata document: dist-tags plus every published version."""
    name: str
    dist_tags: Dict[str, str] = field(default_factory=dict)
    versions: Dict[str, VersionInfo] = field(default_factory=dict)

    @classmethod
    def from_json(cls, name: str, data: Dict[str, Any]) -> "Packument":
        versions: Dict[str, VersionInfo] = {}
        for version, info in (data.get("versions") or {}).items():
            if isinstance(info, dict):
                info = {**info, "version": info.get("version", version)}
                versions[version] = VersionInfo.from_json(name, info)
        return cls(
            name=name,
            dist_tags={str(k): str(v) for k, v in (data.get("dist-tags") or {}).items()},
            versions=versions,
        )

    def sorted_versions(self) -> List[str]:
        """Published semver versions, highest first; non-semver entries are skipped."""
        parsed = [(parse_version(v), v) for v in self.versions]
        return [v for p, v in sorted((x for x in parsed if x[0] is not None), reverse=True)]
