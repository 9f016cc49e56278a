"""package.json model.

Only the fields bale acts on are typed; everything else is kept verbatim in
``raw`` so saving a manifest never drops unrelated keys.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Union

from constants import Constants, LifecycleScript
from common.errors import ManifestError
from versioning.models import PackageSpecifier
from versioning.parser import parse_manifest_entry

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

DEPENDENCIES = "dependencies"
DEV_DEPENDENCIES = "devDependencies"


def _string_map(data: Dict[str, Any], key: str) -> Dict[str, str]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ManifestError(f"`{Constants.PACKAGE_JSON_FILE}` contains non-object {key} field")
    return {str(k): str(v) for k, v in value.items()}


@dataclass
class Manifest:
    """Declared dependencies, devDependencies and scripts of a package."""

    name: Optional[str] = None
    version: Optional[str] = None
    dependencies: Dict[str, str] = field(default_factory=dict)
    dev_dependencies: Dict[str, str] = field(default_factory=dict)
    scripts: Dict[str, str] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Manifest":
        if not isinstance(data, dict):
            raise ManifestError(f"`{Constants.PACKAGE_JSON_FILE}` is invalid")
        scripts = {
            str(k): v for k, v in (data.get("scripts") or {}).items() if isinstance(v, str)
        } if isinstance(data.get("scripts"), dict) else {}
        return cls(
            name=data.get("name"),
            version=data.get("version"),
            dependencies=_string_map(data, DEPENDENCIES),
            dev_dependencies=_string_map(data, DEV_DEPENDENCIES),
            scripts=scripts,
            raw=dict(data),
        )

    @classmethod
    def read(cls, path: PathLike = Constants.PACKAGE_JSON_FILE) -> "Manifest":
        try:
            with open(path, "r", encoding="utf-8") as f:
                return cls.from_dict(json.load(f))
        except FileNotFoundError as exc:
            raise ManifestError(f"No {Constants.PACKAGE_JSON_FILE} found at {path}") from exc
        except json.JSONDecodeError as exc:
            raise ManifestError(f"Failed to parse {path}: {exc}") from exc

    @classmethod
    def read_or_default(cls, path: PathLike = Constants.PACKAGE_JSON_FILE) -> "Manifest":
        if not os.path.exists(path):
            return cls()
        return cls.read(path)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.raw)
        for key, value in ((DEPENDENCIES, self.dependencies), (DEV_DEPENDENCIES, self.dev_dependencies)):
            if value:
                data[key] = dict(value)
            else:
                data.pop(key, None)
        return data

    def save(self, path: PathLike = Constants.PACKAGE_JSON_FILE) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
            f.write("\n")

    def section(self, dev: bool) -> Dict[str, str]:
        return self.dev_dependencies if dev else self.dependencies

    def iter_all(self) -> Iterator[PackageSpecifier]:
        """Every declared requirement, dependencies first, then devDependencies."""
        for name, requirement in self.dependencies.items():
            yield parse_manifest_entry(name, requirement)
        for name, requirement in self.dev_dependencies.items():
            yield parse_manifest_entry(name, requirement)

    def lifecycle_script(self, script: LifecycleScript) -> Optional[str]:
        return self.scripts.get(script.value)
