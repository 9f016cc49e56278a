"""``run``: install, then run a package.json script with node_modules/.bin on PATH."""

from __future__ import annotations

import logging
import os
import shlex
from typing import Any, Optional

from cli_config import BaleConfig
from cli_install import install
from constants import Constants
from common.errors import ManifestError
from installer.shell import new_path, run_script
from manifest import Manifest

logger = logging.getLogger(__name__)


def _script_command(manifest: Manifest, name: str, extra_args) -> str:
    script = manifest.scripts.get(name)
    if script is None:
        raise ManifestError(f"Script `{name}` is not defined")
    if extra_args:
        if extra_args[0] == "--":
            extra_args = extra_args[1:]
        script = " ".join([script, *(shlex.quote(a) for a in extra_args)])
    return script


async def run_command(args: Any, config: BaleConfig, registry: Optional[Any] = None) -> int:
    """Return the script's exit status; the entry point exits with it."""
    manifest = Manifest.read(Constants.PACKAGE_JSON_FILE)
    command = _script_command(manifest, args.SCRIPT, getattr(args, "SCRIPT_ARGS", None))

    await install(args, config, registry)

    env = dict(os.environ)
    env["PATH"] = new_path([Constants.BIN_DIR])
    logger.info("Running: %s", command)
    returncode = await run_script(command, os.getcwd(), env)
    if returncode != 0:
        logger.debug("Script %s exited with %d", args.SCRIPT, returncode)
    return returncode
