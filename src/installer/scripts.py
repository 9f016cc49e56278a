"""Lifecycle scripts of installed packages."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, List, Mapping, Optional, Tuple, Union

from constants import Constants, LifecycleScript
from common.errors import ScriptError
from manifest import Manifest
from resolve.models import DependencyTree

from .installer import install_path
from .plan import Plan
from .shell import new_path, run_script

logger = logging.getLogger(__name__)

ShellRunner = Callable[[str, Union[str, Path], Optional[Mapping[str, str]]], Awaitable[int]]


def declared_scripts(manifest: Manifest) -> List[Tuple[LifecycleScript, str]]:
    """Install-time scripts of ``manifest`` in execution order."""
    found = []
    for script in LifecycleScript:
        command = manifest.lifecycle_script(script)
        if command:
            found.append((script, command))
    return found


async def run_lifecycle_scripts(
    plan: Plan,
    project_dir: Union[str, Path] = ".",
    shell: ShellRunner = run_script,
    progress=None,
    disallow: bool = False,
) -> int:
    """Run preinstall/install/postinstall of every placed package.

    Each tree is walked depth-first with a parent's scripts finishing before
    any of its children's start. The first nonzero exit raises ScriptError.
    With ``disallow`` set nothing runs; packages that declare scripts are
    reported instead. Returns the number of scripts executed.
    """
    project_dir = Path(project_dir)
    project_bin = project_dir / Constants.BIN_DIR
    executed = 0
    for name in sorted(plan.trees):
        stack: List[Tuple[Tuple[str, ...], DependencyTree]] = [((), plan.trees[name])]
        while stack:
            prefix, node = stack.pop()
            dep = node.root
            package_dir = install_path(project_dir, prefix, dep.name)
            scripts = declared_scripts(Manifest.read_or_default(package_dir / Constants.PACKAGE_JSON_FILE))

            if scripts and disallow:
                message = (
                    f"Package {dep.id()} declares install scripts that were not run; "
                    "unset `disallow_install_scripts` to run them"
                )
                if progress:
                    progress.warning(message)
                else:
                    logger.warning(message)
                scripts = []

            for script, command in scripts:
                chain = " > ".join((*prefix, dep.name))
                logger.info("Executing %s script for %s", script.value, chain)
                env = dict(os.environ)
                env["PATH"] = new_path([package_dir / Constants.BIN_DIR, project_bin])
                returncode = await shell(command, package_dir, env)
                executed += 1
                if returncode != 0:
                    raise ScriptError(script.value, dep.id(), returncode)

            child_prefix = (*prefix, dep.name)
            for child_name in sorted(node.children, reverse=True):
                stack.append((child_prefix, node.children[child_name]))
    return executed
