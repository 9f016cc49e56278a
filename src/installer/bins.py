"""Executable links for the ``bin`` entries of installed packages."""

from __future__ import annotations

import logging
import os
import stat
from collections import deque
from pathlib import Path
from typing import Deque, Dict, Tuple, Union

from constants import Constants
from common.errors import InstallError
from common.scoped_path import scoped_join
from resolve.models import DependencyTree

from .installer import install_path
from .plan import Plan

logger = logging.getLogger(__name__)

_CMD_SHIM = (
    "@ECHO off\r\nGOTO start\r\n:find_dp0\r\nSET dp0=%~dp0\r\nEXIT /b\r\n:start\r\n"
    "SETLOCAL\r\nCALL :find_dp0\r\n\r\n\"%dp0%\\{target}\" %*\r\n"
)
_PS1_SHIM = (
    "#!/usr/bin/env pwsh\r\n$basedir=Split-Path $MyInvocation.MyCommand.Definition -Parent\r\n"
    "\r\n& \"$basedir/{target}\" $args\r\nexit $LASTEXITCODE\r\n"
)


def _valid_command(cmd: str) -> bool:
    return bool(cmd) and "/" not in cmd and "\\" not in cmd and cmd not in (".", "..")


def _make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def link_bins(bin_dir: Path, package_dir: Path, bins: Dict[str, str]) -> int:
    """Link ``bins`` of the package at ``package_dir`` into ``bin_dir``.

    Entries already present in ``bin_dir`` are kept. Returns the number of
    links created.
    """
    created = 0
    for cmd, rel in sorted(bins.items()):
        if not _valid_command(cmd):
            logger.debug("Skipping bin entry %r of %s", cmd, package_dir)
            continue
        script = scoped_join(package_dir, rel)
        if not script.exists() and script.with_suffix(".js").exists():
            script = script.with_suffix(".js")
        if not script.exists():
            logger.warning("Bin %s of %s points at missing file %s", cmd, package_dir.name, rel)
            continue

        bin_dir.mkdir(parents=True, exist_ok=True)
        target = os.path.relpath(script, bin_dir)
        try:
            if os.name == "nt":
                cmd_path = bin_dir / f"{cmd}.cmd"
                if cmd_path.exists():
                    continue
                cmd_path.write_text(_CMD_SHIM.format(target=target.replace("/", "\\")), encoding="utf-8")
                (bin_dir / f"{cmd}.ps1").write_text(
                    _PS1_SHIM.format(target=target.replace("\\", "/")), encoding="utf-8"
                )
            else:
                link = bin_dir / cmd
                if link.exists() or link.is_symlink():
                    continue
                os.symlink(target, link)
                _make_executable(script)
        except OSError as exc:
            raise InstallError(f"Failed to link bin {cmd} of {package_dir.name}: {exc}") from exc
        created += 1
    return created


def setup_bins(plan: Plan, project_dir: Union[str, Path] = ".") -> int:
    """Create bin links for every node of ``plan``.

    Every package with bins gets an entry in the project's ``node_modules/.bin``.
    Nodes are visited breadth first, so a root keeps its command name when a
    nested package declares the same one. A nested package is additionally
    linked into the ``node_modules/.bin`` of the package that contains it.
    """
    project_dir = Path(project_dir)
    top_bin_dir = project_dir / Constants.BIN_DIR
    created = 0
    queue: Deque[Tuple[Tuple[str, ...], DependencyTree]] = deque(
        ((), plan.trees[name]) for name in sorted(plan.trees)
    )
    while queue:
        prefix, node = queue.popleft()
        dep = node.root
        if dep.bins:
            package_dir = install_path(project_dir, prefix, dep.name)
            created += link_bins(top_bin_dir, package_dir, dep.bins)
            if prefix:
                parent_bin_dir = install_path(project_dir, prefix[:-1], prefix[-1]) / Constants.BIN_DIR
                created += link_bins(parent_bin_dir, package_dir, dep.bins)
        queue.extend(((*prefix, dep.name), node.children[name]) for name in sorted(node.children))
    if created:
        logger.debug("Linked %d bins", created)
    return created
