"""Runtime configuration: config file, environment overrides, registry credentials.

Lookup order for the config file: ``--config`` when given, otherwise the first
of ``Constants.CONFIG_FILES`` present in the project directory. JSON is a
subset of YAML, so every format goes through ``yaml.safe_load``.

Example ``bale.yml``::

    registry: https://registry.npmjs.org/
    download_concurrency: 16
    disallow_install_scripts: false
    registries:
      - url: https://npm.example.com/
        token: abc123
"""

from __future__ import annotations

import base64
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from constants import Constants
from common.errors import BaleError

logger = logging.getLogger(__name__)

_TRUE = ("1", "true", "yes", "on")


class ConfigError(BaleError):
    """The config file cannot be read or has an invalid shape."""


@dataclass
class RegistryAuth:
    """Pass-through credentials for every URL starting with ``url``."""

    url: str
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    def header(self) -> Optional[str]:
        if self.token:
            return f"Bearer {self.token}"
        if self.username is not None and self.password is not None:
            raw = f"{self.username}:{self.password}".encode("utf-8")
            return "Basic " + base64.b64encode(raw).decode("ascii")
        return None


@dataclass
class BaleConfig:
    """Settings that change install behavior."""

    registry: str = Constants.REGISTRY_URL_NPM
    download_concurrency: int = Constants.CLIENT_LIMIT
    disallow_install_scripts: bool = False
    registries: List[RegistryAuth] = field(default_factory=list)
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[str] = None) -> "BaleConfig":
        registries = []
        for entry in data.get("registries") or []:
            if not isinstance(entry, dict) or not entry.get("url"):
                raise ConfigError(f"Invalid registries entry in {source}: {entry!r}")
            registries.append(
                RegistryAuth(
                    url=str(entry["url"]),
                    token=entry.get("token"),
                    username=entry.get("username"),
                    password=entry.get("password"),
                )
            )
        try:
            concurrency = int(data.get("download_concurrency", Constants.CLIENT_LIMIT))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"download_concurrency must be an integer in {source}") from exc
        return cls(
            registry=str(data.get("registry") or Constants.REGISTRY_URL_NPM),
            download_concurrency=max(1, concurrency),
            disallow_install_scripts=bool(data.get("disallow_install_scripts", False)),
            registries=registries,
            source=source,
        )

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> "BaleConfig":
        """Apply ``BALE_*`` environment overrides in place."""
        env = os.environ if environ is None else environ
        if env.get("BALE_REGISTRY"):
            self.registry = env["BALE_REGISTRY"]
        if env.get("BALE_DOWNLOAD_CONCURRENCY"):
            try:
                self.download_concurrency = max(1, int(env["BALE_DOWNLOAD_CONCURRENCY"]))
            except ValueError:
                logger.warning(
                    "Ignoring invalid BALE_DOWNLOAD_CONCURRENCY=%r", env["BALE_DOWNLOAD_CONCURRENCY"]
                )
        if "BALE_DISALLOW_INSTALL_SCRIPTS" in env:
            self.disallow_install_scripts = env["BALE_DISALLOW_INSTALL_SCRIPTS"].strip().lower() in _TRUE
        return self

    def auth_headers(self, url: str) -> Dict[str, str]:
        """Authorization header for ``url``; the longest matching prefix wins."""
        matches = [r for r in self.registries if url.startswith(r.url)]
        for registry in sorted(matches, key=lambda r: len(r.url), reverse=True):
            header = registry.header()
            if header:
                return {"Authorization": header}
        return {}


def find_config(project_dir: str = ".") -> Optional[str]:
    for name in Constants.CONFIG_FILES:
        candidate = os.path.join(project_dir, name)
        if os.path.isfile(candidate):
            return candidate
    return None


def load_config(path: Optional[str] = None, project_dir: str = ".") -> BaleConfig:
    """Load configuration and apply environment overrides.

    Raises:
        ConfigError: when an explicitly given file is missing, or any config
            file is unparsable.
    """
    if path is not None and not os.path.isfile(path):
        raise ConfigError(f"Config file not found: {path}")
    path = path or find_config(project_dir)
    if path is None:
        return BaleConfig().apply_env()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to load config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping")
    logger.debug("Loaded config from %s", path)
    return BaleConfig.from_dict(data, source=path).apply_env()
