"""Run package scripts through the platform shell."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Iterable, Mapping, Optional, Union

logger = logging.getLogger(__name__)


def new_path(bin_dirs: Iterable[Union[str, Path]], base: Optional[str] = None) -> str:
    """``PATH`` with ``bin_dirs`` prepended in order."""
    current = os.environ.get("PATH", "") if base is None else base
    parts = [os.path.abspath(d) for d in bin_dirs]
    if current:
        parts.append(current)
    return os.pathsep.join(parts)


async def run_script(
    script: str, cwd: Union[str, Path], env: Optional[Mapping[str, str]] = None
) -> int:
    """Run ``script`` in a shell and return its exit status.

    Output is inherited from the current process.
    """
    logger.debug("Running `%s` in %s", script, cwd)
    proc = await asyncio.create_subprocess_shell(
        script,
        cwd=str(cwd),
        env=dict(env) if env is not None else None,
    )
    try:
        return await proc.wait()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
