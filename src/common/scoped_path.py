"""Path joins that refuse to escape their base directory."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Union

from common.errors import InstallError

PathLike = Union[str, "os.PathLike[str]"]


def scoped_join(base: PathLike, *parts: PathLike) -> Path:
    """Join ``parts`` onto ``base``, rejecting results outside of ``base``.

    Package names and ids come from registry metadata, so a name such as
    ``../../etc`` must not be able to place files outside the project.
    """
    base_path = Path(os.path.abspath(base))
    target = Path(os.path.abspath(os.path.join(base_path, *[os.fspath(p) for p in parts])))
    if target != base_path and base_path not in target.parents:
        raise InstallError(f"Path {os.path.join(*[os.fspath(p) for p in parts])} escapes {base_path}")
    return target
