"""Data models for version requirements and package specifiers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from functools import total_ordering
from typing import Optional

import semantic_version

_TAG_RE = re.compile(r"^[A-Za-z][A-Za-z0-9._-]*$")


class RequirementKind(Enum):
    """How a requirement string is interpreted."""
    RANGE = "range"
    TAG = "tag"
    UNSUPPORTED = "unsupported"


def parse_version(version: str) -> Optional[semantic_version.Version]:
    """Parse a published version, returning None for non-semver strings."""
    try:
        return semantic_version.Version(version.strip().lstrip("v="))
    except ValueError:
        return None


@dataclass(frozen=True)
class VersionRequirement:
    """Normalized representation of a requirement string and its matcher."""
    raw: str
    kind: RequirementKind
    spec: Optional[semantic_version.NpmSpec] = field(default=None, compare=False, repr=False)

    @classmethod
    def parse(cls, raw: str) -> "VersionRequirement":
        """Classify ``raw`` as an npm range, a dist-tag or something unsupported.

        An empty requirement means any version, as in package.json.
        """
        text = (raw or "").strip()
        try:
            return cls(raw=raw, kind=RequirementKind.RANGE, spec=semantic_version.NpmSpec(text or "*"))
        except ValueError:
            pass
        if _TAG_RE.match(text):
            return cls(raw=raw, kind=RequirementKind.TAG)
        return cls(raw=raw, kind=RequirementKind.UNSUPPORTED)

    @property
    def is_range(self) -> bool:
        return self.kind is RequirementKind.RANGE

    def satisfies(self, version: str) -> bool:
        """Test a concrete version; tags and unsupported requirements never match."""
        if self.spec is None:
            return False
        parsed = parse_version(version)
        if parsed is None:
            return False
        return self.spec.match(parsed)


@total_ordering
@dataclass(frozen=True)
class PackageSpecifier:
    """A package name plus the requirement declared for it."""
    name: str
    requirement: str

    def __str__(self) -> str:
        return f"{self.name}@{self.requirement}"

    def __lt__(self, other: "PackageSpecifier") -> bool:
        if not isinstance(other, PackageSpecifier):
            return NotImplemented
        return (self.name, self.requirement) < (other.name, other.requirement)

    @property
    def version_requirement(self) -> VersionRequirement:
        return VersionRequirement.parse(self.requirement)
