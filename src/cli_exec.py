"""``exec``, ``x`` and ``create``: run package binaries.

``exec`` installs the project and runs a command with ``node_modules/.bin``
on PATH. ``x`` runs a command from PATH, or installs the package of the same
name into a throwaway project first. ``create NAME`` is ``x create-NAME``.
"""

from __future__ import annotations

import argparse
import contextlib
import logging
import os
import shlex
import shutil
import tempfile
from typing import Any, List, Optional, Sequence

from cli_config import BaleConfig
from cli_install import install, registry_session
from cli_manifest import add_packages
from constants import Constants
from common.errors import ManifestError
from installer.shell import new_path, run_script
from manifest import Manifest
from versioning.parser import parse_cli_token

logger = logging.getLogger(__name__)


def _command_line(exe: str, exe_args: Optional[Sequence[str]]) -> str:
    exe_args = list(exe_args or [])
    if exe_args and exe_args[0] == "--":
        exe_args = exe_args[1:]
    return shlex.join([exe, *exe_args])


async def _run_with_bins(command: str, bin_dirs: List[str]) -> int:
    env = dict(os.environ)
    env["PATH"] = new_path(bin_dirs)
    logger.info("Running: %s", command)
    returncode = await run_script(command, os.getcwd(), env)
    if returncode != 0:
        logger.debug("%s exited with %d", command, returncode)
    return returncode


def command_name(token: str) -> str:
    """Binary name a package token is expected to provide (``@scope/tool`` -> ``tool``)."""
    try:
        name, _ = parse_cli_token(token)
    except ValueError as exc:
        raise ManifestError(str(exc)) from exc
    return name.rsplit("/", 1)[-1]


async def exec_command(args: Any, config: BaleConfig, registry: Optional[Any] = None) -> int:
    """Install, then run ``args.EXE`` with the project's bins on PATH."""
    await install(args, config, registry)
    command = _command_line(args.EXE, getattr(args, "EXE_ARGS", None))
    return await _run_with_bins(command, [os.path.abspath(Constants.BIN_DIR)])


async def install_bin_temp(
    args: Any, config: BaleConfig, token: str, project_dir: str, registry: Optional[Any] = None
) -> str:
    """Install ``token`` into an empty project at ``project_dir``; return its bin directory."""
    temp_args = argparse.Namespace(**{**vars(args), "IMMUTABLE": False})
    with contextlib.chdir(project_dir):
        logger.debug("Installing %s into %s", token, project_dir)
        manifest = Manifest()
        async with registry_session(config, registry) as client:
            await add_packages(manifest, [token], False, False, client)
            manifest.save(Constants.PACKAGE_JSON_FILE)
            await install(temp_args, config, client)
        return os.path.abspath(Constants.BIN_DIR)


async def download_and_exec(args: Any, config: BaleConfig, registry: Optional[Any] = None) -> int:
    """Run ``args.NAME`` from PATH, installing it into a temporary project when absent."""
    token = args.NAME
    command = _command_line(command_name(token), getattr(args, "EXE_ARGS", None))
    if shutil.which(command_name(token)):
        return await _run_with_bins(command, [])

    with tempfile.TemporaryDirectory(prefix="bale-x-") as project_dir:
        bin_dir = await install_bin_temp(args, config, token, project_dir, registry)
        return await _run_with_bins(command, [bin_dir])


async def create(args: Any, config: BaleConfig, registry: Optional[Any] = None) -> int:
    """Scaffold a project with the ``create-NAME`` starter kit."""
    starter = argparse.Namespace(**{**vars(args), "NAME": f"create-{args.NAME}", "EXE_ARGS": []})
    return await download_and_exec(starter, config, registry)
